"""
OpenRouter API client.

Performs the three read-only lookups the statusline needs. Lookups never
raise: every failure is reported as ``NOT_FOUND`` so callers only deal with
a resolved/unresolved outcome.
"""

import logging
import math
import time
from typing import Any, Callable, Dict, Iterable, Iterator, Optional, Tuple

import httpx

from openrouter_statusline.config.loader import FetchConfig
from .results import NOT_FOUND, Balance, Credits, EventResolution, Result

logger = logging.getLogger(__name__)

Sleep = Callable[[float], None]


def _is_number(value: Any) -> bool:
    """True for finite ints and floats; NaN and infinities are rejected."""
    if not isinstance(value, (int, float)) or isinstance(value, bool):
        return False
    return math.isfinite(value)


def parse_generation(data: Dict[str, Any]) -> Result[EventResolution]:
    """Validate a ``/generation`` payload."""
    total_cost = data.get("total_cost")
    if not _is_number(total_cost):
        return NOT_FOUND
    cache_discount = data.get("cache_discount")
    provider_name = data.get("provider_name")
    model = data.get("model")
    return EventResolution(
        total_cost=float(total_cost),
        cache_discount=float(cache_discount) if _is_number(cache_discount) else 0.0,
        provider_name=provider_name if isinstance(provider_name, str) else "",
        model=model if isinstance(model, str) else ""
    )


def parse_balance(data: Dict[str, Any]) -> Result[Balance]:
    """Validate an ``/auth/key`` payload."""
    usage = data.get("usage")
    limit = data.get("limit")
    if not _is_number(usage):
        return NOT_FOUND
    if limit is not None and not _is_number(limit):
        return NOT_FOUND
    return Balance(usage=float(usage), limit=float(limit) if limit is not None else None)


def parse_credits(data: Dict[str, Any]) -> Result[Credits]:
    """Validate a ``/credits`` payload."""
    total_credits = data.get("total_credits")
    total_usage = data.get("total_usage")
    if not _is_number(total_credits) or not _is_number(total_usage):
        return NOT_FOUND
    return Credits(total_credits=float(total_credits), total_usage=float(total_usage))


class OpenRouterClient:
    """Thin OpenRouter client with per-event retry and batch throttling.

    Args:
        api_key: Key used for generation and key-balance lookups
        config: Retry, throttle and transport settings
        http_client: Optional pre-built httpx client (tests pass one backed
            by ``httpx.MockTransport``)
        sleep: Blocking sleep in seconds, injectable for tests
    """

    def __init__(
        self,
        api_key: str,
        config: Optional[FetchConfig] = None,
        http_client: Optional[httpx.Client] = None,
        sleep: Sleep = time.sleep
    ):
        if not api_key or not api_key.strip():
            raise ValueError("api_key is required and cannot be empty")

        self.api_key = api_key
        self.config = config or FetchConfig()
        self._sleep = sleep
        self._owns_client = http_client is None
        self._http = http_client or httpx.Client(timeout=self.config.timeout_s)

    def close(self) -> None:
        if self._owns_client:
            self._http.close()

    def __enter__(self) -> "OpenRouterClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _get_data(
        self,
        path: str,
        token: str,
        params: Optional[Dict[str, str]] = None
    ) -> Optional[Dict[str, Any]]:
        """GET an endpoint and return its ``data`` object, or None on any failure."""
        url = f"{self.config.base_url}{path}"
        try:
            response = self._http.get(
                url,
                params=params,
                headers={"Authorization": f"Bearer {token}"}
            )
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug("Request to %s failed: %s", path, e)
            return None

        if not response.is_success:
            logger.debug("Request to %s returned HTTP %s", path, response.status_code)
            return None

        try:
            body = response.json()
        except ValueError as e:
            logger.debug("Response from %s is not JSON: %s", path, e)
            return None

        data = body.get("data") if isinstance(body, dict) else None
        if not isinstance(data, dict):
            logger.debug("Response from %s has no data object", path)
            return None
        return data

    def _resolve_once(self, event_id: str) -> Result[EventResolution]:
        data = self._get_data("/generation", self.api_key, params={"id": event_id})
        if data is None:
            return NOT_FOUND
        return parse_generation(data)

    def resolve_event(self, event_id: str) -> Result[EventResolution]:
        """Look up cost data for a generation, retrying per the retry policy.

        After failed attempt ``n`` the client waits ``base_delay_ms * n``
        before trying again. Gives up after ``max_attempts`` attempts.
        """
        retry = self.config.retry
        attempts = retry.attempts

        for attempt in range(1, attempts + 1):
            result = self._resolve_once(event_id)
            if result is not NOT_FOUND:
                return result
            if attempt < attempts:
                delay_ms = retry.base_delay_ms * attempt
                logger.debug(
                    "Generation %s unresolved (attempt %d/%d), retrying in %dms",
                    event_id, attempt, attempts, delay_ms
                )
                self._sleep(delay_ms / 1000.0)

        logger.debug("Generation %s unresolved after %d attempts", event_id, attempts)
        return NOT_FOUND

    def resolve_events(self, event_ids: Iterable[str]) -> Iterator[Tuple[str, Result[EventResolution]]]:
        """Resolve ids one after another, throttling between distinct ids.

        Yields each id with its result as soon as it is resolved so the
        caller can fold results incrementally.
        """
        throttle = self.config.throttle
        for index, event_id in enumerate(event_ids):
            if index > 0 and throttle.enabled:
                self._sleep(throttle.delay_ms / 1000.0)
            yield event_id, self.resolve_event(event_id)

    def fetch_balance(self) -> Result[Balance]:
        """Fetch usage and limit of the API key."""
        data = self._get_data("/auth/key", self.api_key)
        if data is None:
            return NOT_FOUND
        return parse_balance(data)

    def fetch_credits(self, management_key: str) -> Result[Credits]:
        """Fetch account credits; requires a management key."""
        if not management_key:
            return NOT_FOUND
        data = self._get_data("/credits", management_key)
        if data is None:
            return NOT_FOUND
        return parse_credits(data)
