"""
Data models for storage layer.

Defines the per-session record persisted between statusline runs.
"""

import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


def _number(value: Any) -> bool:
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


@dataclass
class SessionState:
    """Accumulated usage for one assistant session.

    ``seen_ids`` is the dedup ledger: an id is appended exactly once, when
    its cost has been folded into the totals. Balance fields are cached
    snapshots stamped with the epoch millisecond they were fetched at.
    """
    seen_ids: List[str] = field(default_factory=list)
    total_cost: float = 0.0
    total_cache_discount: float = 0.0
    last_provider: str = ""
    last_model: str = ""
    key_usage: Optional[float] = None
    key_limit: Optional[float] = None
    balance_fetched_at: int = 0
    account_credits: Optional[float] = None
    account_credits_fetched_at: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Any) -> Optional["SessionState"]:
        """Build state from decoded JSON.

        Returns None when the record is structurally unusable (not an
        object, or no list of string ids). Individual fields of the wrong
        type fall back to their defaults.
        """
        if not isinstance(data, dict):
            return None
        seen_ids = data.get("seen_ids")
        if not isinstance(seen_ids, list) or not all(isinstance(i, str) for i in seen_ids):
            return None

        def num(key: str, default):
            value = data.get(key)
            return value if _number(value) else default

        def text(key: str) -> str:
            value = data.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            seen_ids=list(dict.fromkeys(seen_ids)),
            total_cost=num("total_cost", 0.0),
            total_cache_discount=num("total_cache_discount", 0.0),
            last_provider=text("last_provider"),
            last_model=text("last_model"),
            key_usage=num("key_usage", None),
            key_limit=num("key_limit", None),
            balance_fetched_at=num("balance_fetched_at", 0),
            account_credits=num("account_credits", None),
            account_credits_fetched_at=num("account_credits_fetched_at", 0)
        )
