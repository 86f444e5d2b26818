"""
OpenRouter cost statusline for Claude Code.

Tracks per-session OpenRouter spend from the Claude Code transcript.
"""

__version__ = "0.1.0"
