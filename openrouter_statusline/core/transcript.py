"""
Transcript scanning.

Discovers OpenRouter generation ids in a Claude Code transcript (JSONL).
"""

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

logger = logging.getLogger(__name__)

GENERATION_ID_PREFIX = "gen-"


def _generation_id(line: str) -> Optional[str]:
    """Return the generation id referenced by one transcript line, if any."""
    try:
        entry = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(entry, dict):
        return None
    message = entry.get("message")
    if not isinstance(message, dict):
        return None
    message_id = message.get("id")
    if isinstance(message_id, str) and message_id.startswith(GENERATION_ID_PREFIX):
        return message_id
    return None


def extract_ids_from_lines(lines: Iterable[str]) -> List[str]:
    """Collect unique generation ids from transcript lines.

    Blank, malformed and non-matching lines are skipped. Ids are returned
    in first-seen order.
    """
    ids = {}
    for line in lines:
        if not line.strip():
            continue
        gen_id = _generation_id(line)
        if gen_id is not None:
            ids.setdefault(gen_id, None)
    return list(ids)


def extract_generation_ids(transcript_path: str) -> List[str]:
    """Collect unique generation ids from a transcript file.

    Args:
        transcript_path: Path to the JSONL transcript

    Returns:
        Unique ids in discovery order; empty if the file is missing or
        cannot be read
    """
    path = Path(transcript_path)
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            return extract_ids_from_lines(f)
    except OSError as e:
        logger.debug("Transcript %s not readable: %s", path, e)
        return []
