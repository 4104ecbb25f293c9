"""Batched ClickHouse writer for the audit tables.

Audit rows never block or fail an action. Rows of a failed flush are put
back at the front of their buffer and go out with the next flush; once a
buffer grows past BUFFER_MAX_ROWS its oldest rows are dropped and counted.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import TYPE_CHECKING, Any

import clickhouse_connect
from clickhouse_connect.driver.client import Client

from deployer.config import (
    BUFFER_FLUSH_INTERVAL,
    BUFFER_FLUSH_SIZE,
    BUFFER_MAX_ROWS,
    CLICKHOUSE_DATABASE,
    CLICKHOUSE_HOST,
    CLICKHOUSE_PASSWORD,
    CLICKHOUSE_PORT,
    CLICKHOUSE_SECURE,
    CLICKHOUSE_USER,
    WRITER_BASE_BACKOFF,
    WRITER_MAX_RETRIES,
)

if TYPE_CHECKING:
    from deployer.execution.engine import ActionResult
    from deployer.models import Position
    from deployer.summary import RollingSummary

logger = logging.getLogger(__name__)

TABLE_COLUMNS: dict[str, list[str]] = {
    "deployment_actions": [
        "action_id", "kind", "mint", "symbol", "amount",
        "success", "reference", "error", "dry_run", "latency_ms",
        "executed_at",
    ],
    "position_snapshots": [
        "mint", "symbol", "strategy", "held_quantity", "price",
        "market_cap", "holders", "fees", "current_value", "roi",
        "inactive_hours", "decision", "reason", "computed_at",
    ],
    "rolling_summaries": [
        "summary_text", "total_deployed", "total_profitable", "total_loss",
        "total_dead", "total_profit", "strategy_stats", "key_learnings",
        "updated_at",
    ],
}


class ClickHouseWriter:
    """Process-wide audit writer, one buffer per table.

    A buffer is flushed when it reaches BUFFER_FLUSH_SIZE rows, or by the
    scheduler's ``flush_stale`` job once it is BUFFER_FLUSH_INTERVAL old.
    """

    _instance: ClickHouseWriter | None = None

    def __init__(self) -> None:
        self._client: Client | None = None
        self._buffers: dict[str, list[list[Any]]] = {t: [] for t in TABLE_COLUMNS}
        self._last_flush: dict[str, float] = {t: time.monotonic() for t in TABLE_COLUMNS}
        self._lock = asyncio.Lock()
        self.dropped_rows = 0

    @classmethod
    def get_instance(cls) -> ClickHouseWriter:
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def _get_client(self) -> Client:
        if self._client is None:
            self._client = clickhouse_connect.get_client(
                host=CLICKHOUSE_HOST,
                port=CLICKHOUSE_PORT,
                username=CLICKHOUSE_USER,
                password=CLICKHOUSE_PASSWORD,
                database=CLICKHOUSE_DATABASE,
                secure=CLICKHOUSE_SECURE,
                compress="lz4",
                connect_timeout=30,
                send_receive_timeout=300,
            )
        return self._client

    # ------------------------------------------------------------------
    # Audit rows
    # ------------------------------------------------------------------

    async def write_action(self, result: ActionResult) -> None:
        """One row per executor call, successful or not."""
        await self._append("deployment_actions", [
            result.action_id,
            result.spec.kind.value,
            result.mint,
            result.spec.symbol,
            result.spec.amount,
            1 if result.success else 0,
            result.reference,
            result.error,
            1 if result.dry_run else 0,
            result.latency_ms,
            result.executed_at,
        ])

    async def write_snapshot(self, position: Position, decision: str, reason: str) -> None:
        await self._append("position_snapshots", [
            position.mint,
            position.symbol,
            position.strategy.value,
            position.held_quantity,
            position.price,
            position.market_cap,
            position.holders,
            position.fees,
            position.current_value,
            position.roi,
            position.inactive_hours,
            decision,
            reason,
            position.computed_at,
        ])

    async def write_summary(self, summary: RollingSummary) -> None:
        stats = {k.value: v.model_dump() for k, v in summary.strategy_performance.items()}
        await self._append("rolling_summaries", [
            summary.summary_text,
            summary.total_deployed,
            summary.total_profitable,
            summary.total_loss,
            summary.total_dead,
            summary.total_profit,
            json.dumps(stats),
            list(summary.key_learnings),
            summary.last_updated,
        ])

    # ------------------------------------------------------------------
    # Flushing
    # ------------------------------------------------------------------

    async def flush_all(self) -> None:
        async with self._lock:
            for table in TABLE_COLUMNS:
                await self._flush_table(table)

    async def flush_stale(self) -> None:
        """Flush every buffer older than BUFFER_FLUSH_INTERVAL seconds."""
        now = time.monotonic()
        async with self._lock:
            for table in TABLE_COLUMNS:
                if now - self._last_flush[table] >= BUFFER_FLUSH_INTERVAL:
                    await self._flush_table(table)

    @property
    def pending_rows(self) -> dict[str, int]:
        return {table: len(rows) for table, rows in self._buffers.items()}

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _append(self, table: str, row: list[Any]) -> None:
        async with self._lock:
            self._buffers[table].append(row)
            if len(self._buffers[table]) >= BUFFER_FLUSH_SIZE:
                await self._flush_table(table)

    async def _flush_table(self, table: str) -> None:
        rows = self._buffers[table]
        self._last_flush[table] = time.monotonic()
        if not rows:
            return

        self._buffers[table] = []
        if await self._insert_with_retry(table, rows):
            return

        requeued = rows + self._buffers[table]
        overflow = len(requeued) - BUFFER_MAX_ROWS
        if overflow > 0:
            self.dropped_rows += overflow
            logger.error("audit_rows_dropped", extra={"table": table, "rows": overflow})
            requeued = requeued[overflow:]
        self._buffers[table] = requeued

    async def _insert_with_retry(self, table: str, rows: list[list[Any]]) -> bool:
        backoff = WRITER_BASE_BACKOFF

        for attempt in range(1, WRITER_MAX_RETRIES + 1):
            try:
                client = self._get_client()
                await asyncio.to_thread(
                    client.insert, table, rows, column_names=TABLE_COLUMNS[table],
                )
                logger.info("flush_ok", extra={"table": table, "rows": len(rows)})
                return True
            except Exception:
                logger.warning(
                    "insert_retry",
                    extra={"table": table, "attempt": attempt, "rows": len(rows)},
                    exc_info=True,
                )
                if attempt == WRITER_MAX_RETRIES:
                    break
                await asyncio.sleep(backoff)
                backoff *= 2
                # Reconnect on next attempt
                self._client = None

        logger.error("insert_failed", extra={"table": table, "rows": len(rows)})
        return False

    def run_migration(self, sql: str) -> None:
        """Execute a schema file statement by statement."""
        client = self._get_client()
        for statement in sql.split(";"):
            statement = statement.strip()
            if statement:
                client.command(statement)
