"""
Incremental usage accounting.

Folds newly discovered generations into a session's running totals and
keeps the cached key balance and account credits fresh.

Run order:
1. Skip every id already in the session's dedup ledger
2. Resolve the remaining ids one by one (retry + throttle) and fold successes
3. Refresh the key balance when its cache is older than the TTL
4. Refresh account credits when a management key is present and stale
5. Persist the state, whether or not anything changed
"""

import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional

from openrouter_statusline.config.loader import DEFAULT_BALANCE_TTL_MS
from openrouter_statusline.storage.models import SessionState
from openrouter_statusline.storage.repository import StateRepository
from .fetcher import OpenRouterClient
from .results import NOT_FOUND

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Snapshot:
    """Everything the renderer needs for one statusline."""
    total_cost: float
    total_cache_discount: float
    last_provider: str
    last_model: str
    key_usage: Optional[float]
    key_limit: Optional[float]
    account_credits: Optional[float]
    succeeded: int = 0
    failed: int = 0

    @property
    def new_event_count(self) -> int:
        return self.succeeded + self.failed

    @property
    def key_remaining(self) -> Optional[float]:
        if self.key_usage is None or self.key_limit is None:
            return None
        return self.key_limit - self.key_usage

    @classmethod
    def from_state(cls, state: SessionState, succeeded: int = 0, failed: int = 0) -> "Snapshot":
        return cls(
            total_cost=state.total_cost,
            total_cache_discount=state.total_cache_discount,
            last_provider=state.last_provider,
            last_model=state.last_model,
            key_usage=state.key_usage,
            key_limit=state.key_limit,
            account_credits=state.account_credits,
            succeeded=succeeded,
            failed=failed
        )


@dataclass
class RunReport:
    """Outcome of one accounting pass."""
    state: SessionState
    snapshot: Snapshot
    new_ids: List[str] = field(default_factory=list)
    balance_refreshed: bool = False
    credits_refreshed: bool = False


def is_stale(fetched_at: int, now_ms: int, ttl_ms: int) -> bool:
    """A cached figure is stale once strictly more than ``ttl_ms`` old."""
    return now_ms - fetched_at > ttl_ms


class AccountingEngine:
    """Merges OpenRouter usage into per-session state.

    Args:
        client: Client used for every upstream lookup
        repository: Where session state is loaded from and saved to
        balance_ttl_ms: Freshness window for key balance and credits
    """

    def __init__(
        self,
        client: OpenRouterClient,
        repository: StateRepository,
        balance_ttl_ms: int = DEFAULT_BALANCE_TTL_MS
    ):
        self.client = client
        self.repository = repository
        self.balance_ttl_ms = balance_ttl_ms

    def apply(
        self,
        state: SessionState,
        discovered_ids: Iterable[str],
        now_ms: int,
        management_key: Optional[str] = None
    ) -> RunReport:
        """Fold new events and refresh stale balances into ``state`` in place.

        Unresolved ids stay out of ``seen_ids`` so a later run retries
        them. No lookup failure aborts the pass.

        Args:
            state: Prior session state, mutated in place
            discovered_ids: Ids found in the transcript, in discovery order
            now_ms: Current wall-clock time in epoch milliseconds
            management_key: Optional key enabling account credits

        Returns:
            RunReport with the updated state and render snapshot
        """
        seen = set(state.seen_ids)
        new_ids = [event_id for event_id in dict.fromkeys(discovered_ids) if event_id not in seen]

        succeeded = 0
        failed = 0
        for event_id, resolution in self.client.resolve_events(new_ids):
            if resolution is NOT_FOUND:
                failed += 1
                continue

            succeeded += 1
            state.total_cost += resolution.total_cost
            state.total_cache_discount += resolution.cache_discount
            if resolution.provider_name:
                state.last_provider = resolution.provider_name
            if resolution.model:
                state.last_model = resolution.model
            state.seen_ids.append(event_id)

        if new_ids:
            logger.info(
                "Resolved %d of %d new generations (%d failed)",
                succeeded, len(new_ids), failed
            )

        balance_refreshed = self._refresh_balance(state, now_ms)
        credits_refreshed = self._refresh_credits(state, now_ms, management_key)

        return RunReport(
            state=state,
            snapshot=Snapshot.from_state(state, succeeded=succeeded, failed=failed),
            new_ids=new_ids,
            balance_refreshed=balance_refreshed,
            credits_refreshed=credits_refreshed
        )

    def run(
        self,
        session_id: str,
        discovered_ids: Iterable[str],
        now_ms: int,
        management_key: Optional[str] = None
    ) -> RunReport:
        """Load, update and persist one session's state."""
        state = self.repository.load(session_id)
        report = self.apply(state, discovered_ids, now_ms, management_key)
        self.repository.save(session_id, report.state)
        return report

    def _refresh_balance(self, state: SessionState, now_ms: int) -> bool:
        if not is_stale(state.balance_fetched_at, now_ms, self.balance_ttl_ms):
            return False

        balance = self.client.fetch_balance()
        if balance is NOT_FOUND:
            logger.debug("Key balance refresh failed, keeping cached value")
            return False

        state.key_usage = balance.usage
        state.key_limit = balance.limit
        state.balance_fetched_at = now_ms
        return True

    def _refresh_credits(
        self,
        state: SessionState,
        now_ms: int,
        management_key: Optional[str]
    ) -> bool:
        if not management_key:
            return False
        if not is_stale(state.account_credits_fetched_at, now_ms, self.balance_ttl_ms):
            return False

        credits = self.client.fetch_credits(management_key)
        if credits is NOT_FOUND:
            logger.debug("Account credits refresh failed, keeping cached value")
            return False

        state.account_credits = credits.remaining
        state.account_credits_fetched_at = now_ms
        return True
