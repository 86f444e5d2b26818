"""
Repository pattern for session state.

Each session is stored as a single JSON document that is read at the start
of a run and fully replaced at the end of it.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from .models import SessionState

logger = logging.getLogger(__name__)

STATE_FILE_PREFIX = "claude-openrouter-cost-"
_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


class StateRepository:
    """File-backed store of SessionState records keyed by session id.

    Missing or corrupt files load as a fresh SessionState; nothing here
    talks to the network.
    """

    def __init__(self, state_dir: Optional[str] = None):
        """Initialize the repository.

        Args:
            state_dir: Directory holding state files (defaults to the
                system temp directory)
        """
        self.state_dir = Path(state_dir or tempfile.gettempdir()).expanduser()

    def path_for(self, session_id: str) -> Path:
        """Return the state file path for a session."""
        safe_id = _UNSAFE_CHARS.sub("_", session_id)
        return self.state_dir / f"{STATE_FILE_PREFIX}{safe_id}.json"

    def exists(self, session_id: str) -> bool:
        return self.path_for(session_id).exists()

    def load(self, session_id: str) -> SessionState:
        """Load state for a session, falling back to an empty record.

        Args:
            session_id: External session token

        Returns:
            The persisted SessionState, or a default one when the file is
            absent, unreadable or structurally invalid
        """
        path = self.path_for(session_id)
        if not path.exists():
            return SessionState()

        try:
            with open(path, 'r', encoding='utf-8') as f:
                raw = json.load(f)
        except (OSError, ValueError, RecursionError) as e:
            logger.warning("Discarding unreadable state file %s: %s", path, e)
            return SessionState()

        state = SessionState.from_dict(raw)
        if state is None:
            logger.warning("Discarding structurally invalid state file %s", path)
            return SessionState()
        return state

    def save(self, session_id: str, state: SessionState) -> Path:
        """Persist state atomically.

        The record is written to a temporary file in the target directory
        and moved over the old file, so readers see either the previous or
        the new record, never a partial one.

        Args:
            session_id: External session token
            state: State to persist

        Returns:
            Path of the written state file
        """
        path = self.path_for(session_id)
        path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
        )
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump(state.to_dict(), f, indent=2)
            os.replace(tmp_name, path)
        except Exception:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        logger.debug("Saved state for session %s to %s", session_id, path)
        return path
