"""Rolling summary: audit trail and learning signal over past deployments.

Every deployment and every outcome change goes through this store: the
record is persisted first (append-only, the store is the source of truth)
and then the in-memory aggregate is updated. The aggregate can be rebuilt
from the store at any time with :meth:`RollingSummaryStore.rebuild`.

Writes that fail after an action already executed (money moved) are kept
in a reconciliation queue and retried by :meth:`reconcile`.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field

from deployer.clickhouse_writer import ClickHouseWriter
from deployer.config import SUMMARY_MAX_LEARNINGS
from deployer.models import DeploymentRecord, Outcome, Strategy
from deployer.store import DeploymentStore

logger = logging.getLogger(__name__)

# Closed positions needed before a strategy gets a learning line
_MIN_CLOSED_FOR_LEARNING = 3


class StrategyStats(BaseModel):
    deployed: int = 0
    profitable: int = 0
    loss: int = 0
    dead: int = 0
    profit: float = 0.0

    @property
    def closed(self) -> int:
        return self.profitable + self.loss + self.dead

    @property
    def win_rate(self) -> float:
        return self.profitable / self.closed if self.closed else 0.0


class RollingSummary(BaseModel):
    """Aggregate of historical outcomes."""

    summary_text: str = "No deployments yet."
    total_deployed: int = 0
    total_profitable: int = 0
    total_loss: int = 0
    total_dead: int = 0
    total_profit: float = 0.0
    strategy_performance: dict[Strategy, StrategyStats] = Field(
        default_factory=lambda: {s: StrategyStats() for s in Strategy}
    )
    key_learnings: list[str] = Field(default_factory=list)
    last_updated: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RollingSummaryStore:
    """Owns the rolling summary and all deployment write-backs."""

    def __init__(
        self,
        store: DeploymentStore,
        writer: Optional[ClickHouseWriter] = None,
    ) -> None:
        self._store = store
        self._writer = writer
        self._summary = RollingSummary()
        # Latest outcome per mint, so a repeated outcome write is not double-counted
        self._outcomes: dict[str, Outcome] = {}
        self._pending: dict[str, DeploymentRecord] = {}

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    async def record_deployment(self, record: DeploymentRecord) -> bool:
        """Persist a new deployment and count it.

        Returns False when persisting failed; the record is then queued
        for reconciliation and still counted, since the action happened.
        """
        persisted = await self._persist(record)
        self._apply(record)
        await self._publish()
        logger.info(
            "deployment_recorded",
            extra={
                "mint": record.mint,
                "symbol": record.symbol,
                "strategy": record.strategy.value,
                "initial_spend": record.initial_spend,
                "persisted": persisted,
            },
        )
        return persisted

    async def record_outcome(self, record: DeploymentRecord) -> bool:
        """Persist a closed (or dead) position and update counters."""
        persisted = await self._persist(record)
        self._apply(record)
        await self._publish()
        logger.info(
            "outcome_recorded",
            extra={
                "mint": record.mint,
                "outcome": record.performance.outcome.value,
                "profit": round(record.performance.profit, 6),
                "persisted": persisted,
            },
        )
        return persisted

    async def update_performance(self, record: DeploymentRecord) -> bool:
        """Persist a performance refresh of an active position.

        Counters are unaffected.
        """
        return await self._persist(record)

    async def reconcile(self) -> int:
        """Retry saving queued records. Returns how many are still pending."""
        for mint, record in list(self._pending.items()):
            try:
                await self._store.save(record)
            except Exception:
                logger.warning("reconcile_retry_failed", extra={"mint": mint}, exc_info=True)
                continue
            # A newer version may have been queued while awaiting
            if self._pending.get(mint) is record:
                del self._pending[mint]
            logger.info("reconciled", extra={"mint": mint})
        return len(self._pending)

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    def get_rolling_summary(self) -> RollingSummary:
        return self._summary.model_copy(deep=True)

    async def get_recent_deployments(self, limit: int = 5) -> list[DeploymentRecord]:
        return await self._store.list_recent(limit)

    @property
    def pending(self) -> list[DeploymentRecord]:
        return list(self._pending.values())

    def pending_outcome(self, mint: str) -> Optional[Outcome]:
        """Outcome of the queued, not yet persisted version of *mint*, if any."""
        queued = self._pending.get(mint)
        return queued.performance.outcome if queued is not None else None

    async def rebuild(self) -> RollingSummary:
        """Recompute the aggregate from the full store history (plus pending records)."""
        records = await self._store.list_all()
        by_mint = {r.mint: r for r in records}
        by_mint.update(self._pending)

        self._summary = RollingSummary()
        self._outcomes = {}
        for record in sorted(by_mint.values(), key=lambda r: r.deployed_at):
            self._apply(record)
        await self._publish()
        logger.info("summary_rebuilt", extra={"records": len(by_mint)})
        return self.get_rolling_summary()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _persist(self, record: DeploymentRecord) -> bool:
        queued = self._pending.get(record.mint)
        if queued is not None and not queued.is_active and record.is_active:
            # A queued close outranks any later active version
            logger.warning(
                "stale_active_write_skipped",
                extra={"mint": record.mint, "queued_outcome": queued.performance.outcome.value},
            )
            return False

        record.updated_at = datetime.now(timezone.utc)
        try:
            await self._store.save(record)
        except Exception:
            self._pending[record.mint] = record.model_copy(deep=True)
            logger.error(
                "reconciliation_risk",
                extra={
                    "mint": record.mint,
                    "outcome": record.performance.outcome.value,
                    "pending": len(self._pending),
                },
                exc_info=True,
            )
            return False
        self._pending.pop(record.mint, None)
        return True

    def _apply(self, record: DeploymentRecord) -> None:
        summary = self._summary
        stats = summary.strategy_performance.setdefault(record.strategy, StrategyStats())
        previous = self._outcomes.get(record.mint)
        outcome = record.performance.outcome

        if previous is None:
            summary.total_deployed += 1
            stats.deployed += 1
        if previous is None or previous == Outcome.ACTIVE:
            if outcome == Outcome.PROFITABLE:
                summary.total_profitable += 1
                stats.profitable += 1
            elif outcome == Outcome.LOSS:
                summary.total_loss += 1
                stats.loss += 1
            elif outcome == Outcome.DEAD:
                summary.total_dead += 1
                stats.dead += 1
            if outcome != Outcome.ACTIVE:
                summary.total_profit += record.performance.profit
                stats.profit += record.performance.profit

        self._outcomes[record.mint] = outcome
        summary.key_learnings = extract_learnings(summary)
        summary.summary_text = render_summary(summary)
        summary.last_updated = datetime.now(timezone.utc)

    async def _publish(self) -> None:
        if self._writer is not None:
            await self._writer.write_summary(self._summary)


def extract_learnings(summary: RollingSummary) -> list[str]:
    """Derive short, factual learnings from the per-strategy counters."""
    learnings: list[str] = []
    ranked = sorted(
        (
            (strategy, stats)
            for strategy, stats in summary.strategy_performance.items()
            if stats.closed >= _MIN_CLOSED_FOR_LEARNING
        ),
        key=lambda item: item[1].win_rate,
        reverse=True,
    )
    for strategy, stats in ranked:
        learnings.append(
            f"{strategy.value}: {stats.profitable}/{stats.closed} closed profitable "
            f"({stats.win_rate:.0%}), net {stats.profit:+.4f} SOL"
        )
    if len(ranked) >= 2 and ranked[0][1].win_rate > ranked[-1][1].win_rate:
        learnings.append(
            f"Prefer {ranked[0][0].value} over {ranked[-1][0].value} "
            f"({ranked[0][1].win_rate:.0%} vs {ranked[-1][1].win_rate:.0%} win rate)"
        )
    closed = summary.total_profitable + summary.total_loss + summary.total_dead
    if closed >= _MIN_CLOSED_FOR_LEARNING and summary.total_dead * 2 >= closed:
        learnings.append(
            f"{summary.total_dead}/{closed} closed deployments went dead; "
            "favor triggers with sustained engagement"
        )
    return learnings[:SUMMARY_MAX_LEARNINGS]


def render_summary(summary: RollingSummary) -> str:
    if summary.total_deployed == 0:
        return "No deployments yet."
    active = summary.total_deployed - (
        summary.total_profitable + summary.total_loss + summary.total_dead
    )
    parts = [
        f"{summary.total_deployed} deployed",
        f"{summary.total_profitable} profitable",
        f"{summary.total_loss} loss",
        f"{summary.total_dead} dead",
        f"{active} active",
    ]
    return f"{', '.join(parts)}; net profit {summary.total_profit:+.4f} SOL."
