"""Persistent deployment store backed by ClickHouse.

The ``deployments`` table is a ReplacingMergeTree keyed by mint and
versioned by ``updated_at``: ``save`` always appends a full row and reads
go through ``FINAL`` so only the latest version of each record is seen.
The store is the source of truth; the dedup cache, gate state and rolling
summary are projections that can be rebuilt from it at any time.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Optional, Protocol

import clickhouse_connect
from clickhouse_connect.driver.client import Client

from deployer.config import (
    CLICKHOUSE_DATABASE,
    CLICKHOUSE_HOST,
    CLICKHOUSE_PASSWORD,
    CLICKHOUSE_PORT,
    CLICKHOUSE_SECURE,
    CLICKHOUSE_USER,
    WRITER_BASE_BACKOFF,
    WRITER_MAX_RETRIES,
)
from deployer.models import DeploymentRecord, Outcome, Performance, Strategy

logger = logging.getLogger(__name__)

DEPLOYMENT_COLUMNS: list[str] = [
    "mint", "name", "symbol", "theme", "strategy",
    "trigger_ref", "trigger_id", "deployed_at", "initial_spend",
    "confidence", "virality_score", "reasoning", "signature",
    "current_value", "peak_value", "current_market_cap", "peak_market_cap",
    "holders", "fees_collected", "profit", "outcome", "exit_reason",
    "closed_at", "updated_at",
]

_SELECT = ", ".join(DEPLOYMENT_COLUMNS)


class StoreError(Exception):
    """Raised when the persistent store cannot serve a request."""


class DeploymentStore(Protocol):
    """Append-only persistence contract used by the core."""

    async def save(self, record: DeploymentRecord) -> None: ...

    async def find_by_trigger(self, trigger_id: str) -> Optional[DeploymentRecord]: ...

    async def list_active(self) -> list[DeploymentRecord]: ...

    async def list_recent(self, limit: int) -> list[DeploymentRecord]: ...

    async def list_all(self) -> list[DeploymentRecord]: ...

    async def list_triggered(self) -> list[tuple[str, str]]: ...


def record_to_row(record: DeploymentRecord) -> list[Any]:
    """Flatten a record into a ``deployments`` row."""
    perf = record.performance
    return [
        record.mint,
        record.name,
        record.symbol,
        record.theme,
        record.strategy.value,
        record.trigger_ref or "",
        record.trigger_id or "",
        record.deployed_at,
        record.initial_spend,
        record.confidence,
        record.virality_score,
        record.reasoning,
        record.signature,
        perf.current_value,
        perf.peak_value,
        perf.current_market_cap,
        perf.peak_market_cap,
        perf.holders,
        perf.fees_collected,
        perf.profit,
        perf.outcome.value,
        perf.exit_reason,
        perf.closed_at,
        record.updated_at,
    ]


def row_to_record(row: tuple | list) -> DeploymentRecord:
    """Inverse of :func:`record_to_row`."""
    data = dict(zip(DEPLOYMENT_COLUMNS, row))
    return DeploymentRecord(
        mint=data["mint"],
        name=data["name"],
        symbol=data["symbol"],
        theme=data["theme"] or "",
        strategy=Strategy(data["strategy"]),
        trigger_ref=data["trigger_ref"] or None,
        trigger_id=data["trigger_id"] or None,
        deployed_at=data["deployed_at"],
        initial_spend=float(data["initial_spend"]),
        confidence=float(data["confidence"]),
        virality_score=data["virality_score"],
        reasoning=data["reasoning"] or "",
        signature=data["signature"] or "",
        performance=Performance(
            current_value=float(data["current_value"]),
            peak_value=float(data["peak_value"]),
            current_market_cap=float(data["current_market_cap"]),
            peak_market_cap=float(data["peak_market_cap"]),
            holders=int(data["holders"]),
            fees_collected=float(data["fees_collected"]),
            profit=float(data["profit"]),
            outcome=Outcome(data["outcome"]),
            exit_reason=data["exit_reason"] or "",
            closed_at=data["closed_at"],
        ),
        updated_at=data["updated_at"],
    )


class ClickHouseDeploymentStore:
    """DeploymentStore implementation over clickhouse-connect.

    clickhouse-connect is synchronous, so every call runs in a worker
    thread to keep the event loop free for the gate and the tracker.
    """

    def __init__(self, client: Optional[Client] = None) -> None:
        self._client = client

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = clickhouse_connect.get_client(
                host=CLICKHOUSE_HOST,
                port=CLICKHOUSE_PORT,
                username=CLICKHOUSE_USER,
                password=CLICKHOUSE_PASSWORD,
                database=CLICKHOUSE_DATABASE,
                secure=CLICKHOUSE_SECURE,
                connect_timeout=30,
                send_receive_timeout=120,
            )
        return self._client

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def save(self, record: DeploymentRecord) -> None:
        """Append a new version of *record*.

        Retries with exponential backoff and raises StoreError once the
        retries are exhausted so the caller can queue the record for
        reconciliation.
        """
        row = record_to_row(record)
        backoff = WRITER_BASE_BACKOFF

        for attempt in range(1, WRITER_MAX_RETRIES + 1):
            try:
                client = self._get_client()
                await asyncio.to_thread(
                    client.insert, "deployments", [row], column_names=DEPLOYMENT_COLUMNS,
                )
                logger.debug("deployment_saved", extra={"mint": record.mint})
                return
            except Exception as e:
                logger.warning(
                    "deployment_save_retry",
                    extra={"mint": record.mint, "attempt": attempt, "backoff": backoff},
                    exc_info=True,
                )
                if attempt == WRITER_MAX_RETRIES:
                    raise StoreError(f"failed to save deployment {record.mint}") from e
                await asyncio.sleep(backoff)
                backoff *= 2
                # Reconnect on next attempt
                self._client = None

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def find_by_trigger(self, trigger_id: str) -> Optional[DeploymentRecord]:
        rows = await self._query(
            f"""
            SELECT {_SELECT}
            FROM deployments FINAL
            WHERE trigger_id = {{trigger_id:String}}
            ORDER BY deployed_at
            LIMIT 1
            """,
            {"trigger_id": trigger_id},
        )
        return row_to_record(rows[0]) if rows else None

    async def list_active(self) -> list[DeploymentRecord]:
        rows = await self._query(
            f"""
            SELECT {_SELECT}
            FROM deployments FINAL
            WHERE outcome = {{outcome:String}}
            ORDER BY deployed_at
            """,
            {"outcome": Outcome.ACTIVE.value},
        )
        return [row_to_record(r) for r in rows]

    async def list_recent(self, limit: int) -> list[DeploymentRecord]:
        rows = await self._query(
            f"""
            SELECT {_SELECT}
            FROM deployments FINAL
            ORDER BY deployed_at DESC
            LIMIT {{limit:UInt32}}
            """,
            {"limit": int(limit)},
        )
        return [row_to_record(r) for r in rows]

    async def list_all(self) -> list[DeploymentRecord]:
        """Every deployment ever made, oldest first."""
        rows = await self._query(
            f"""
            SELECT {_SELECT}
            FROM deployments FINAL
            ORDER BY deployed_at
            """,
            {},
        )
        return [row_to_record(r) for r in rows]

    async def list_triggered(self) -> list[tuple[str, str]]:
        """Return ``(trigger_id, label)`` for every record with a trigger."""
        rows = await self._query(
            """
            SELECT trigger_id, name, symbol
            FROM deployments FINAL
            WHERE trigger_id != ''
            """,
            {},
        )
        return [(r[0], f"{r[1]} (${r[2]})") for r in rows]

    async def _query(self, sql: str, parameters: dict[str, Any]) -> list[tuple]:
        try:
            client = self._get_client()
            result = await asyncio.to_thread(client.query, sql, parameters=parameters)
            return list(result.result_rows)
        except Exception as e:
            self._client = None
            raise StoreError("deployment store query failed") from e
