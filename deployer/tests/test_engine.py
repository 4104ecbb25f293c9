"""Tests for the executor wrapper and the store / client adapters."""

import asyncio
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from deployer.api.market_client import MarketDataClient
from deployer.execution.engine import ActionKind, ActionSpec, ExecutionEngine
from deployer.models import Outcome
from deployer.store import (
    DEPLOYMENT_COLUMNS,
    ClickHouseDeploymentStore,
    StoreError,
    record_to_row,
    row_to_record,
)


# ------------------------------------------------------------------
# Execution engine
# ------------------------------------------------------------------
def test_dry_run_create_returns_synthetic_mint():
    engine = ExecutionEngine(api_key="", wallet_address="", dry_run=True)
    spec = ActionSpec.create("Lobster Way", "LBSTR", None, 0.05)

    result = asyncio.run(engine.execute_action(spec))

    assert engine.is_configured
    assert result.success
    assert result.dry_run
    assert result.mint.startswith("dry_")
    assert result.reference.startswith("dry_")
    assert engine.action_log == [result]


def test_live_engine_requires_credentials():
    engine = ExecutionEngine(api_key="", wallet_address="w", dry_run=False)
    assert not engine.is_configured

    result = asyncio.run(engine.execute_action(ActionSpec.sell_all("Mint1pump")))

    assert not result.success
    assert "not configured" in result.error


def test_live_create_without_metadata_reports_failure():
    engine = ExecutionEngine(api_key="key", wallet_address="w", dry_run=False)

    result = asyncio.run(engine.execute_action(ActionSpec.create("A", "A", None, 0.05)))

    assert not result.success
    assert "metadata_uri" in result.error


def test_sell_payload_sells_everything():
    engine = ExecutionEngine(api_key="key", wallet_address="w", dry_run=False)

    payload, mint = engine._build_payload(ActionSpec.sell_all("Mint1pump", "LBSTR"))

    assert mint == "Mint1pump"
    assert payload["action"] == "sell"
    assert payload["amount"] == "100%"
    assert payload["denominatedInSol"] == "false"
    assert payload["pool"] == "auto"


def test_create_payload_generates_mint_keypair():
    engine = ExecutionEngine(api_key="key", wallet_address="w", dry_run=False)
    spec = ActionSpec.create("Lobster Way", "LBSTR", "https://ipfs.io/ipfs/Qm", 0.1)

    payload, mint = engine._build_payload(spec)

    assert payload["action"] == "create"
    assert payload["tokenMetadata"] == {
        "name": "Lobster Way", "symbol": "LBSTR", "uri": "https://ipfs.io/ipfs/Qm",
    }
    assert payload["amount"] == 0.1
    assert payload["denominatedInSol"] == "true"
    assert mint and payload["mint"] != mint


def test_action_spec_rejects_zero_amount():
    with pytest.raises(ValueError):
        ActionSpec(kind=ActionKind.CREATE, amount=0)


# ------------------------------------------------------------------
# Deployment store
# ------------------------------------------------------------------
def test_row_conversion_preserves_record(make_deployment):
    record = make_deployment(trigger_id="123", virality_score=8.5)
    record.performance.outcome = Outcome.LOSS
    record.performance.closed_at = datetime(2025, 6, 2, tzinfo=timezone.utc)

    row = record_to_row(record)

    assert len(row) == len(DEPLOYMENT_COLUMNS)
    assert row_to_record(row) == record


def test_untriggered_record_stores_empty_strings(make_deployment):
    row = dict(zip(DEPLOYMENT_COLUMNS, record_to_row(make_deployment())))
    assert row["trigger_id"] == ""
    assert row_to_record(list(row.values())).trigger_id is None


class FakeClickHouse:
    def __init__(self, rows=None, fail=False):
        self.rows = rows or []
        self.fail = fail
        self.queries = []

    def query(self, sql, parameters=None):
        self.queries.append((sql, parameters))
        if self.fail:
            raise ConnectionError("clickhouse unreachable")
        return SimpleNamespace(result_rows=self.rows)


def test_store_reads_latest_version(make_deployment):
    record = make_deployment(trigger_id="123")
    client = FakeClickHouse(rows=[tuple(record_to_row(record))])
    store = ClickHouseDeploymentStore(client=client)

    found = asyncio.run(store.find_by_trigger("123"))

    assert found == record
    sql, params = client.queries[0]
    assert "FINAL" in sql
    assert params == {"trigger_id": "123"}


def test_store_query_failure_raises_store_error():
    store = ClickHouseDeploymentStore(client=FakeClickHouse(fail=True))

    with pytest.raises(StoreError):
        asyncio.run(store.list_active())


def test_store_lists_full_history_unbounded(make_deployment):
    records = [make_deployment(mint=f"M{i}") for i in range(3)]
    client = FakeClickHouse(rows=[tuple(record_to_row(r)) for r in records])
    store = ClickHouseDeploymentStore(client=client)

    assert [r.mint for r in asyncio.run(store.list_all())] == ["M0", "M1", "M2"]
    sql, _ = client.queries[0]
    assert "FINAL" in sql
    assert "LIMIT" not in sql


def test_store_triggered_labels():
    client = FakeClickHouse(rows=[("123", "Lobster Way", "LBSTR")])
    store = ClickHouseDeploymentStore(client=client)

    assert asyncio.run(store.list_triggered()) == [("123", "Lobster Way ($LBSTR)")]


# ------------------------------------------------------------------
# Market data parsing
# ------------------------------------------------------------------
def test_parse_token_reads_first_pool():
    data = {
        "holders": 214,
        "pools": [
            {"price": {"quote": 2.8e-8, "usd": 4.1e-6}, "marketCap": {"usd": 4100.5}},
            {"price": {"quote": 9.9, "usd": 9.9}, "marketCap": {"usd": 1}},
        ],
    }

    quote = MarketDataClient.parse_token("Mint1pump", data)

    assert quote.price == 2.8e-8
    assert quote.price_usd == 4.1e-6
    assert quote.market_cap == 4100.5
    assert quote.holders == 214


def test_parse_token_defaults_to_zero():
    quote = MarketDataClient.parse_token("Mint1pump", {"pools": [{"price": {}}]})

    assert quote.price == 0.0
    assert quote.market_cap == 0.0
    assert quote.holders == 0
