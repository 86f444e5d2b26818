"""
Core modules for the OpenRouter statusline.

This package contains transcript scanning, the OpenRouter client and the
incremental accounting engine.
"""
