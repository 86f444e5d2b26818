"""
Unit tests for the accounting engine.

Tests deduplication, at-least-once resolution, TTL-gated balance refresh
and unconditional persistence against a fake OpenRouter upstream.
"""

import json
import shutil
import tempfile

import httpx

from openrouter_statusline.config.loader import FetchConfig, RetryConfig
from openrouter_statusline.core.accounting import AccountingEngine, Snapshot, is_stale
from openrouter_statusline.core.fetcher import OpenRouterClient
from openrouter_statusline.storage.models import SessionState
from openrouter_statusline.storage.repository import StateRepository

TTL_MS = 60_000
NOW_MS = 1_700_000_000_000
SESSION = "session-1"


class FakeOpenRouter:
    """In-memory stand-in for the OpenRouter API."""

    def __init__(self):
        self.generations = {}
        self.transient_failures = {}
        self.key = {"usage": 2.0, "limit": 20.0}
        self.credits = {"total_credits": 50.0, "total_usage": 12.5}
        self.requests = []

    def add_generation(self, gen_id, cost, discount=0.0, provider="Anthropic",
                       model="anthropic/claude-4.5-sonnet"):
        self.generations[gen_id] = {
            "total_cost": cost,
            "cache_discount": discount,
            "provider_name": provider,
            "model": model,
        }

    def handler(self, request):
        self.requests.append(request)
        path = request.url.path
        if path.endswith("/generation"):
            gen_id = request.url.params["id"]
            if self.transient_failures.get(gen_id, 0) > 0:
                self.transient_failures[gen_id] -= 1
                return httpx.Response(502)
            if gen_id not in self.generations:
                return httpx.Response(404)
            # json.dumps keeps NaN and Infinity as bare tokens, like a lax upstream
            return httpx.Response(200, text=json.dumps({"data": self.generations[gen_id]}))
        if path.endswith("/auth/key"):
            if self.key is None:
                return httpx.Response(500)
            return httpx.Response(200, json={"data": self.key})
        if path.endswith("/credits"):
            if self.credits is None:
                return httpx.Response(500)
            return httpx.Response(200, json={"data": self.credits})
        return httpx.Response(404)

    def lookups(self, suffix):
        return [r for r in self.requests if r.url.path.endswith(suffix)]

    def generation_lookups(self):
        return [r.url.params["id"] for r in self.lookups("/generation")]


class EngineTestCase:
    """Shared fixtures for engine tests."""

    def setup_method(self):
        """Set up a temp state directory and fake upstream."""
        self.temp_dir = tempfile.mkdtemp()
        self.upstream = FakeOpenRouter()
        self.sleeps = []
        self.repository = StateRepository(self.temp_dir)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _engine(self, retry=None):
        client = OpenRouterClient(
            "sk-or-test",
            FetchConfig(retry=retry or RetryConfig(max_attempts=2, base_delay_ms=100)),
            http_client=httpx.Client(transport=httpx.MockTransport(self.upstream.handler)),
            sleep=self.sleeps.append
        )
        return AccountingEngine(client, self.repository, balance_ttl_ms=TTL_MS)

    def _fresh_state(self, **overrides):
        """State whose balances are already fresh at NOW_MS."""
        state = SessionState(balance_fetched_at=NOW_MS, account_credits_fetched_at=NOW_MS)
        for key, value in overrides.items():
            setattr(state, key, value)
        return state


class TestEventAccounting(EngineTestCase):
    """Test folding of generation costs into session totals."""

    def test_partial_failure_scenario(self):
        """Test that a failed id contributes nothing and stays unseen."""
        self.upstream.add_generation("gen-e1", 1.5)

        report = self._engine().run(SESSION, ["gen-e1", "gen-e2"], NOW_MS)

        state = self.repository.load(SESSION)
        assert state.seen_ids == ["gen-e1"]
        assert state.total_cost == 1.5
        assert report.snapshot.succeeded == 1
        assert report.snapshot.failed == 1
        assert report.new_ids == ["gen-e1", "gen-e2"]
        # e2 was tried once plus one retry
        assert self.upstream.generation_lookups() == ["gen-e1", "gen-e2", "gen-e2"]
        assert self.sleeps == [0.1]

    def test_transient_failure_then_success_counts_as_success(self):
        """Test that a retried event is reported as succeeded."""
        self.upstream.add_generation("gen-e1", 0.75)
        self.upstream.transient_failures["gen-e1"] = 1

        report = self._engine().run(SESSION, ["gen-e1"], NOW_MS)

        assert report.snapshot.succeeded == 1
        assert report.snapshot.failed == 0
        assert report.state.total_cost == 0.75
        assert self.sleeps == [0.1]

    def test_rerun_is_idempotent(self):
        """Test that a second run over the same log changes nothing."""
        self.upstream.add_generation("gen-e1", 1.0)
        self.upstream.add_generation("gen-e2", 2.0)
        engine = self._engine()

        engine.run(SESSION, ["gen-e1", "gen-e2"], NOW_MS)
        path = self.repository.path_for(SESSION)
        first = path.read_text(encoding="utf-8")
        lookups_after_first = len(self.upstream.requests)

        report = engine.run(SESSION, ["gen-e1", "gen-e2"], NOW_MS)

        assert report.new_ids == []
        assert report.snapshot.new_event_count == 0
        assert path.read_text(encoding="utf-8") == first
        assert len(self.upstream.requests) == lookups_after_first

    def test_seen_ids_never_resubmitted(self):
        """Test that already accounted ids are not looked up again."""
        self.upstream.add_generation("gen-old", 9.0)
        self.upstream.add_generation("gen-new", 1.0)
        self.repository.save(SESSION, self._fresh_state(seen_ids=["gen-old"], total_cost=9.0))

        report = self._engine().run(SESSION, ["gen-old", "gen-new", "gen-old"], NOW_MS)

        assert self.upstream.generation_lookups() == ["gen-new"]
        assert report.state.seen_ids == ["gen-old", "gen-new"]
        assert report.state.total_cost == 10.0

    def test_failed_event_is_resolved_on_later_run(self):
        """Test at-least-once resolution across runs."""
        self.upstream.add_generation("gen-e1", 1.5)
        engine = self._engine()

        engine.run(SESSION, ["gen-e1", "gen-e2"], NOW_MS)
        self.upstream.add_generation("gen-e2", 0.5)
        report = engine.run(SESSION, ["gen-e1", "gen-e2"], NOW_MS + 1)

        assert report.new_ids == ["gen-e2"]
        assert report.state.seen_ids == ["gen-e1", "gen-e2"]
        assert report.state.total_cost == 2.0

    def test_event_failing_every_run_contributes_nothing(self):
        """Test that a permanently failing event is never counted."""
        self.upstream.add_generation("gen-ok", 1.25)
        engine = self._engine()

        for offset in range(3):
            report = engine.run(SESSION, ["gen-ok", "gen-bad"], NOW_MS + offset)

        assert report.state.total_cost == 1.25
        assert "gen-bad" not in report.state.seen_ids
        assert report.snapshot.failed == 1

    def test_non_finite_cost_is_never_folded(self):
        """Test that a NaN or infinite cost counts as a failed lookup."""
        self.upstream.add_generation("gen-ok", 1.0)
        self.upstream.add_generation("gen-nan", float("nan"))
        self.upstream.add_generation("gen-inf", float("inf"))

        report = self._engine().run(SESSION, ["gen-ok", "gen-nan", "gen-inf"], NOW_MS)

        state = self.repository.load(SESSION)
        assert state.seen_ids == ["gen-ok"]
        assert state.total_cost == 1.0
        assert report.snapshot.succeeded == 1
        assert report.snapshot.failed == 2
        assert "NaN" not in self.repository.path_for(SESSION).read_text(encoding="utf-8")

    def test_duplicate_discovered_ids_resolved_once(self):
        """Test that duplicates within one discovery list are collapsed."""
        self.upstream.add_generation("gen-e1", 1.0)

        report = self._engine().run(SESSION, ["gen-e1", "gen-e1"], NOW_MS)

        assert self.upstream.generation_lookups() == ["gen-e1"]
        assert report.state.total_cost == 1.0
        assert report.state.seen_ids == ["gen-e1"]

    def test_labels_track_latest_non_empty_values(self):
        """Test that provider and model are overwritten, not accumulated."""
        self.upstream.add_generation("gen-1", 0.1, provider="Anthropic", model="claude-4.5-sonnet")
        self.upstream.add_generation("gen-2", 0.1, provider="Google", model="gemini-2.5-pro")
        self.upstream.add_generation("gen-3", 0.1, provider="", model="")

        report = self._engine().run(SESSION, ["gen-1", "gen-2", "gen-3"], NOW_MS)

        assert report.state.last_provider == "Google"
        assert report.state.last_model == "gemini-2.5-pro"

    def test_cache_discount_accumulates_including_negative(self):
        """Test that discounts are summed as reported by the upstream."""
        self.upstream.add_generation("gen-1", 1.0, discount=0.25)
        self.upstream.add_generation("gen-2", 1.0, discount=-0.05)

        report = self._engine().run(SESSION, ["gen-1", "gen-2"], NOW_MS)

        assert abs(report.state.total_cache_discount - 0.20) < 1e-9

    def test_apply_mutates_state_without_persisting(self):
        """Test that apply leaves persistence to run."""
        self.upstream.add_generation("gen-1", 1.0)
        state = self._fresh_state()

        report = self._engine().apply(state, ["gen-1"], NOW_MS)

        assert report.state is state
        assert state.total_cost == 1.0
        assert not self.repository.exists(SESSION)


class TestBalanceRefresh(EngineTestCase):
    """Test TTL gating of the key balance."""

    def test_not_refreshed_within_ttl(self):
        """Test that a balance younger than the TTL is not refetched."""
        fetched_at = NOW_MS - (TTL_MS - 1)
        self.repository.save(SESSION, SessionState(
            key_usage=1.0, key_limit=10.0, balance_fetched_at=fetched_at
        ))

        report = self._engine().run(SESSION, [], NOW_MS)

        assert self.upstream.lookups("/auth/key") == []
        assert report.balance_refreshed is False
        assert report.state.balance_fetched_at == fetched_at

    def test_not_refreshed_at_exact_ttl(self):
        """Test that staleness requires strictly more than the TTL."""
        assert is_stale(NOW_MS - TTL_MS, NOW_MS, TTL_MS) is False
        assert is_stale(NOW_MS - TTL_MS - 1, NOW_MS, TTL_MS) is True

    def test_refreshed_after_ttl(self):
        """Test that a stale balance is refetched and restamped."""
        self.repository.save(SESSION, SessionState(
            key_usage=1.0, key_limit=10.0, balance_fetched_at=NOW_MS - (TTL_MS + 1)
        ))

        report = self._engine().run(SESSION, [], NOW_MS)

        assert len(self.upstream.lookups("/auth/key")) == 1
        assert report.balance_refreshed is True
        assert report.state.key_usage == 2.0
        assert report.state.key_limit == 20.0
        assert report.state.balance_fetched_at == NOW_MS

    def test_first_run_fetches_balance(self):
        """Test that a new session fetches its balance immediately."""
        report = self._engine().run(SESSION, [], NOW_MS)

        assert report.snapshot.key_usage == 2.0
        assert report.snapshot.key_remaining == 18.0

    def test_failed_refresh_keeps_cached_values(self):
        """Test graceful degradation when the balance lookup fails."""
        stale_at = NOW_MS - TTL_MS * 5
        self.upstream.key = None
        self.repository.save(SESSION, SessionState(
            key_usage=3.0, key_limit=10.0, balance_fetched_at=stale_at
        ))

        report = self._engine().run(SESSION, [], NOW_MS)

        state = self.repository.load(SESSION)
        assert report.balance_refreshed is False
        assert state.key_usage == 3.0
        assert state.key_limit == 10.0
        assert state.balance_fetched_at == stale_at

    def test_unlimited_key_stores_null_limit(self):
        """Test that an unlimited key keeps a null limit."""
        self.upstream.key = {"usage": 7.0, "limit": None}

        report = self._engine().run(SESSION, [], NOW_MS)

        assert report.state.key_usage == 7.0
        assert report.state.key_limit is None
        assert report.snapshot.key_remaining is None


class TestCreditsRefresh(EngineTestCase):
    """Test the optional account credits figure."""

    def test_no_management_key_disables_credits(self):
        """Test that credits are never fetched without a management key."""
        report = self._engine().run(SESSION, [], NOW_MS)

        assert self.upstream.lookups("/credits") == []
        assert report.state.account_credits is None

    def test_credits_are_total_minus_usage(self):
        """Test the remaining credits computation."""
        report = self._engine().run(SESSION, [], NOW_MS, management_key="sk-or-mgmt")

        assert report.credits_refreshed is True
        assert report.state.account_credits == 37.5
        assert report.state.account_credits_fetched_at == NOW_MS

    def test_credits_respect_ttl(self):
        """Test that fresh credits are not refetched."""
        self.repository.save(SESSION, self._fresh_state(account_credits=5.0))

        report = self._engine().run(SESSION, [], NOW_MS + 1, management_key="sk-or-mgmt")

        assert self.upstream.lookups("/credits") == []
        assert report.state.account_credits == 5.0

    def test_failed_credits_refresh_keeps_prior_value(self):
        """Test that a failed lookup leaves credits and timestamp untouched."""
        self.upstream.credits = None
        self.repository.save(SESSION, SessionState(account_credits=11.0, account_credits_fetched_at=1))

        report = self._engine().run(SESSION, [], NOW_MS, management_key="sk-or-mgmt")

        assert report.state.account_credits == 11.0
        assert report.state.account_credits_fetched_at == 1


class TestPersistence(EngineTestCase):
    """Test that every run persists its state."""

    def test_state_saved_when_nothing_changed(self):
        """Test that a run with no new ids still writes the state file."""
        self.upstream.key = None

        self._engine().run(SESSION, [], NOW_MS)

        assert self.repository.exists(SESSION)
        assert self.repository.load(SESSION) == SessionState()

    def test_snapshot_reflects_state(self):
        """Test that the snapshot mirrors the persisted totals."""
        self.upstream.add_generation("gen-1", 1.5, discount=0.5)

        report = self._engine().run(SESSION, ["gen-1"], NOW_MS)

        assert report.snapshot == Snapshot.from_state(report.state, succeeded=1, failed=0)
        assert report.snapshot.total_cost == 1.5
        assert report.snapshot.total_cache_discount == 0.5
