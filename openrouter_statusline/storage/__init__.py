"""
Storage layer for per-session state.
"""

from .models import SessionState
from .repository import StateRepository

__all__ = ["SessionState", "StateRepository"]
