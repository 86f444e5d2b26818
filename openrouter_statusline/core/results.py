"""
Result types returned by the OpenRouter client.

Every lookup yields either a typed payload or ``NOT_FOUND``; transport
errors, bad statuses and malformed bodies are all folded into the latter.
"""

from dataclasses import dataclass
from typing import Optional, TypeVar, Union


class NotFound:
    """Marker for any lookup that did not produce a usable payload."""
    _instance: Optional["NotFound"] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "NOT_FOUND"


NOT_FOUND = NotFound()


@dataclass(frozen=True)
class EventResolution:
    """Authoritative cost data for one generation."""
    total_cost: float
    cache_discount: float = 0.0
    provider_name: str = ""
    model: str = ""


@dataclass(frozen=True)
class Balance:
    """Usage of the API key; ``limit`` is None for unlimited keys."""
    usage: float
    limit: Optional[float] = None

    @property
    def remaining(self) -> Optional[float]:
        if self.limit is None:
            return None
        return self.limit - self.usage


@dataclass(frozen=True)
class Credits:
    """Account-wide credit totals."""
    total_credits: float
    total_usage: float

    @property
    def remaining(self) -> float:
        return self.total_credits - self.total_usage


T = TypeVar("T")
Result = Union[T, NotFound]
