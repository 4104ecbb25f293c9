"""Shared fakes for the deployer tests.

Collaborators are replaced with in-memory fakes; the gate, dedup cache,
tracker and summary under test are the real implementations.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from deployer.execution.balance import BalanceGuard
from deployer.execution.dedup import DedupCache
from deployer.execution.engine import ActionKind, ActionResult
from deployer.execution.gate import AdmissionGate
from deployer.execution.tracker import PositionTracker
from deployer.models import DeploymentRecord, MarketQuote, Strategy
from deployer.store import StoreError
from deployer.summary import RollingSummaryStore

AGENT_WALLET = "AgentWa11et1111111111111111111111111111111"
NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class InMemoryStore:
    """DeploymentStore keeping the latest version of each record."""

    def __init__(self):
        self.records: dict[str, DeploymentRecord] = {}
        self.fail_saves = False
        self.fail_reads = False
        self.save_calls = 0
        self.refresh_calls = 0

    async def save(self, record):
        self.save_calls += 1
        if self.fail_saves:
            raise StoreError("store down")
        self.records[record.mint] = record.model_copy(deep=True)

    async def find_by_trigger(self, trigger_id):
        self._check_reads()
        for record in sorted(self.records.values(), key=lambda r: r.deployed_at):
            if record.trigger_id == trigger_id:
                return record.model_copy(deep=True)
        return None

    async def list_active(self):
        self._check_reads()
        return [r.model_copy(deep=True) for r in self.records.values() if r.is_active]

    async def list_recent(self, limit):
        self._check_reads()
        ordered = sorted(self.records.values(), key=lambda r: r.deployed_at, reverse=True)
        return [r.model_copy(deep=True) for r in ordered[:limit]]

    async def list_all(self):
        self._check_reads()
        ordered = sorted(self.records.values(), key=lambda r: r.deployed_at)
        return [r.model_copy(deep=True) for r in ordered]

    async def list_triggered(self):
        self._check_reads()
        self.refresh_calls += 1
        return [(r.trigger_id, r.label) for r in self.records.values() if r.trigger_id]

    def _check_reads(self):
        if self.fail_reads:
            raise StoreError("store down")


class FakeWallet:
    """SOL balance plus per-mint token balances."""

    def __init__(self, balance=1.0):
        self.balance = balance
        self.tokens: dict[str, float] = {}
        self.fail = False

    async def get_balance(self, address):
        if self.fail:
            raise ConnectionError("rpc unreachable")
        return self.balance

    async def get_token_balance(self, owner, mint):
        if self.fail:
            raise ConnectionError("rpc unreachable")
        return self.tokens.get(mint, 0.0)

    async def close(self):
        pass


class FakeMarket:
    """Quotes by mint; a missing mint raises like an unavailable provider."""

    def __init__(self):
        self.quotes: dict[str, MarketQuote] = {}
        self.gate: asyncio.Event | None = None

    async def get_quote(self, mint):
        if self.gate is not None:
            await self.gate.wait()
        if mint not in self.quotes:
            raise ConnectionError(f"no quote for {mint}")
        return self.quotes[mint].model_copy()

    async def close(self):
        pass


class FakeEngine:
    """Executor that records calls and succeeds unless told otherwise."""

    def __init__(self, configured=True, delay=0.0):
        self.wallet_address = AGENT_WALLET
        self.dry_run = False
        self.configured = configured
        self.delay = delay
        self.fail_kinds: set[ActionKind] = set()
        self.calls = []

    @property
    def is_configured(self):
        return self.configured

    @property
    def action_log(self):
        return list(self.calls)

    async def execute_action(self, spec):
        self.calls.append(spec)
        if self.delay:
            await asyncio.sleep(self.delay)
        n = len(self.calls)
        if spec.kind in self.fail_kinds:
            return ActionResult(spec=spec, success=False, error="transaction timed out")
        return ActionResult(
            spec=spec,
            success=True,
            reference=f"sig{n}",
            mint=spec.mint or f"Mint{n}pump",
        )

    async def close(self):
        pass


class FakeClock:
    """Manually advanced clock in seconds."""

    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def make_record(mint="Mint1pump", strategy=Strategy.SPECIFIC_MOMENT, trigger_id=None,
                initial_spend=0.05, deployed_at=None, **kwargs):
    return DeploymentRecord(
        mint=mint,
        name=kwargs.pop("name", "Lobster Way"),
        symbol=kwargs.pop("symbol", "LBSTR"),
        strategy=strategy,
        trigger_ref=f"https://x.com/someone/status/{trigger_id}" if trigger_id else None,
        trigger_id=trigger_id,
        initial_spend=initial_spend,
        confidence=80,
        deployed_at=deployed_at or NOW - timedelta(hours=1),
        **kwargs,
    )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def engine():
    return FakeEngine()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def summary(store):
    return RollingSummaryStore(store)


@pytest.fixture
def dedup(store, clock):
    return DedupCache(store, ttl=300, clock=clock)


@pytest.fixture
def balance(wallet):
    return BalanceGuard(wallet, wallet_address=AGENT_WALLET, reserve=0.3, minimum_action=0.05)


@pytest.fixture
def gate(dedup, balance, engine, summary, clock):
    return AdmissionGate(
        dedup,
        balance,
        engine,
        summary,
        cooldown=240,
        min_confidence=60,
        default_confidence=70,
        default_spend=0.05,
        clock=clock,
    )


@pytest.fixture
def tracker(store, market, wallet, engine, summary):
    return PositionTracker(
        store, market, wallet, engine, summary, max_concurrency=2, now=lambda: NOW,
    )


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_deployment():
    return make_record
