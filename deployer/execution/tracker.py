"""Position lifecycle tracker: re-evaluates every open deployment.

On each cycle it:

1. Lists the active deployments from the store
2. For each one, with bounded concurrency and a per-mint lock:
   a. Fetches a fresh market quote and the held token quantity
   b. Recomputes value and ROI (never reused across cycles)
   c. Runs the exit policy
   d. Sells through the executor and records the outcome, or refreshes
      the performance sub-record and keeps holding
3. Writes one position snapshot per evaluated position for monitoring

A failure on one position is recorded for that position only; the rest of
the cycle proceeds. Ticks that arrive while a cycle is still in flight are
skipped, and no new cycle starts once shutdown has begun.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import BaseModel, Field

from deployer.api.market_client import MarketDataClient
from deployer.api.wallet_client import SolanaRpcClient
from deployer.clickhouse_writer import ClickHouseWriter
from deployer.config import TRACKER_MAX_CONCURRENCY
from deployer.execution.engine import ActionSpec, ExecutionEngine
from deployer.execution.exit_policy import ExitAction, ExitDecision, ExitPolicy
from deployer.models import DeploymentRecord, Outcome, Position
from deployer.store import DeploymentStore
from deployer.summary import RollingSummary, RollingSummaryStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class PositionEvaluation(BaseModel):
    """What happened to one position in one cycle."""

    mint: str
    symbol: str
    decision: Optional[ExitDecision] = None
    outcome: Outcome = Outcome.ACTIVE
    roi_pct: Optional[float] = None
    sold: bool = False
    error: str = ""


class CycleReport(BaseModel):
    """Summary of one tracker cycle."""

    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    skipped: bool = False
    skip_reason: str = ""
    evaluated: int = 0
    held: int = 0
    sold: int = 0
    dead: int = 0
    errors: int = 0
    evaluations: list[PositionEvaluation] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Position Tracker
# ---------------------------------------------------------------------------


class PositionTracker:
    """Runs the exit policy over all active deployments.

    Attributes:
        policy: Exit thresholds.
        max_concurrency: Positions evaluated at the same time.
    """

    def __init__(
        self,
        store: DeploymentStore,
        market: MarketDataClient,
        wallet: SolanaRpcClient,
        engine: ExecutionEngine,
        summary: RollingSummaryStore,
        policy: Optional[ExitPolicy] = None,
        max_concurrency: int = TRACKER_MAX_CONCURRENCY,
        writer: Optional[ClickHouseWriter] = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._store = store
        self._market = market
        self._wallet = wallet
        self._engine = engine
        self._summary = summary
        self._writer = writer
        self._now = now
        self.policy = policy or ExitPolicy()
        self.max_concurrency = max(1, max_concurrency)
        self._cycle_lock = asyncio.Lock()
        self._position_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._shutting_down = False
        self._last_report: Optional[CycleReport] = None

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleReport:
        """Evaluate every active position once.

        Called by the scheduler every TRACKER_INTERVAL seconds.
        """
        if self._shutting_down:
            return CycleReport(skipped=True, skip_reason="shutting_down")
        if self._cycle_lock.locked():
            logger.info("tracker_cycle_skipped", extra={"reason": "cycle_in_flight"})
            return CycleReport(skipped=True, skip_reason="cycle_in_flight")

        async with self._cycle_lock:
            report = CycleReport(started_at=self._now())
            try:
                records = await self._store.list_active()
            except Exception:
                logger.error("tracker_list_active_failed", exc_info=True)
                report.skipped = True
                report.skip_reason = "store_unavailable"
                return report
            records = self._without_queued_closes(records)

            sem = asyncio.Semaphore(self.max_concurrency)

            async def _bounded(record: DeploymentRecord) -> PositionEvaluation:
                async with sem:
                    return await self.evaluate(record)

            report.evaluations = list(await asyncio.gather(*[_bounded(r) for r in records]))
            for ev in report.evaluations:
                report.evaluated += 1
                if ev.error:
                    report.errors += 1
                elif ev.sold:
                    report.sold += 1
                elif ev.outcome == Outcome.DEAD:
                    report.dead += 1
                else:
                    report.held += 1

            self._last_report = report
            logger.info(
                "tracker_cycle_complete",
                extra={
                    "evaluated": report.evaluated,
                    "held": report.held,
                    "sold": report.sold,
                    "dead": report.dead,
                    "errors": report.errors,
                },
            )
            return report

    async def evaluate(self, record: DeploymentRecord) -> PositionEvaluation:
        """Fetch → compute → decide → (sell) → persist for one position.

        Never raises: failures are returned on the evaluation.
        """
        ev = PositionEvaluation(mint=record.mint, symbol=record.symbol)
        async with self._position_locks[record.mint]:
            await self._evaluate_locked(record, ev)
        # Drop a closed position's lock only after releasing it
        if ev.outcome != Outcome.ACTIVE:
            self._position_locks.pop(record.mint, None)
        return ev

    async def _evaluate_locked(self, record: DeploymentRecord, ev: PositionEvaluation) -> None:
        try:
            position = await self.compute_position(record)
        except Exception as e:
            ev.error = f"market data unavailable: {e}"
            logger.warning(
                "position_evaluation_failed",
                extra={"mint": record.mint, "error": str(e)},
            )
            return

        ev.roi_pct = position.roi_pct

        if position.held_quantity <= 0:
            if position.inactive_hours > self.policy.dead_window_hours:
                await self._mark_dead(record, position, ev)
            else:
                await self._hold(record, position)
            await self._snapshot(position, "none", "nothing_held")
            return

        decision = self.policy.decide(
            position.roi_pct,
            position.inactive_hours,
            position.holder_delta,
        )
        ev.decision = decision

        if decision.action == ExitAction.SELL:
            await self._sell(record, position, decision, ev)
        else:
            await self._hold(record, position)

        await self._snapshot(position, decision.action.value, decision.reason.value)

    async def compute_position(self, record: DeploymentRecord) -> Position:
        """Build a fresh Position from live market and wallet data."""
        quote = await self._market.get_quote(record.mint)
        held = await self._wallet.get_token_balance(self._engine.wallet_address, record.mint)
        return Position.from_market(record, quote, held, now=self._now())

    # ------------------------------------------------------------------
    # Tracking query interface
    # ------------------------------------------------------------------

    async def list_positions(self) -> list[Position]:
        """Recompute every active position. Read-only; failures are skipped."""
        records = self._without_queued_closes(await self._store.list_active())
        sem = asyncio.Semaphore(self.max_concurrency)

        async def _one(record: DeploymentRecord) -> Optional[Position]:
            async with sem:
                try:
                    return await self.compute_position(record)
                except Exception:
                    logger.warning("position_query_failed", extra={"mint": record.mint}, exc_info=True)
                    return None

        positions = await asyncio.gather(*[_one(r) for r in records])
        return [p for p in positions if p is not None]

    def get_summary(self) -> RollingSummary:
        return self._summary.get_rolling_summary()

    def _without_queued_closes(self, records: list[DeploymentRecord]) -> list[DeploymentRecord]:
        """Drop records whose closed version is still waiting for reconciliation."""
        kept = []
        for record in records:
            queued = self._summary.pending_outcome(record.mint)
            if queued is not None and queued != Outcome.ACTIVE:
                logger.info(
                    "position_close_pending",
                    extra={"mint": record.mint, "outcome": queued.value},
                )
                continue
            kept.append(record)
        return kept

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def _sell(
        self,
        record: DeploymentRecord,
        position: Position,
        decision: ExitDecision,
        ev: PositionEvaluation,
    ) -> None:
        result = await self._engine.execute_action(
            ActionSpec.sell_all(record.mint, record.symbol)
        )
        if not result.success:
            ev.error = f"sell failed: {result.error}"
            logger.warning(
                "position_exit_failed",
                extra={"mint": record.mint, "reason": decision.reason.value, "error": result.error},
            )
            # Still active: refresh performance and retry on the next tick
            await self._hold(record, position)
            return

        outcome = Outcome.PROFITABLE if position.roi > 0 else Outcome.LOSS
        self._apply_market(record, position)
        perf = record.performance
        perf.profit = position.profit
        perf.outcome = outcome
        perf.exit_reason = decision.reason.value
        perf.closed_at = self._now()
        await self._summary.record_outcome(record)

        ev.sold = True
        ev.outcome = outcome
        logger.info(
            "position_exit",
            extra={
                "mint": record.mint,
                "symbol": record.symbol,
                "reason": decision.reason.value,
                "roi_pct": round(position.roi_pct, 2),
                "profit": round(position.profit, 6),
                "signature": result.reference,
            },
        )

    async def _hold(self, record: DeploymentRecord, position: Position) -> None:
        self._apply_market(record, position)
        await self._summary.update_performance(record)

    async def _mark_dead(
        self,
        record: DeploymentRecord,
        position: Position,
        ev: PositionEvaluation,
    ) -> None:
        self._apply_market(record, position)
        perf = record.performance
        perf.profit = position.profit
        perf.outcome = Outcome.DEAD
        perf.exit_reason = "nothing_held"
        perf.closed_at = self._now()
        await self._summary.record_outcome(record)
        ev.outcome = Outcome.DEAD
        logger.info(
            "position_dead",
            extra={"mint": record.mint, "inactive_hours": round(position.inactive_hours, 1)},
        )

    @staticmethod
    def _apply_market(record: DeploymentRecord, position: Position) -> None:
        perf = record.performance
        perf.current_value = position.current_value
        perf.peak_value = max(perf.peak_value, position.current_value)
        perf.current_market_cap = position.market_cap
        perf.peak_market_cap = max(perf.peak_market_cap, position.market_cap)
        perf.holders = position.holders
        perf.fees_collected = position.fees

    async def _snapshot(self, position: Position, decision: str, reason: str) -> None:
        if self._writer is not None:
            await self._writer.write_snapshot(position, decision, reason)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def begin_shutdown(self) -> None:
        self._shutting_down = True
        logger.info("position_tracker_shutdown")

    async def drain(self) -> None:
        """Wait for an in-flight cycle (and its sells) to finish."""
        async with self._cycle_lock:
            pass

    def status(self) -> dict:
        report = self._last_report
        return {
            "shutting_down": self._shutting_down,
            "cycle_in_flight": self._cycle_lock.locked(),
            "last_cycle_at": report.started_at.isoformat() if report else None,
            "last_cycle_evaluated": report.evaluated if report else 0,
            "last_cycle_sold": report.sold if report else 0,
            "last_cycle_errors": report.errors if report else 0,
        }
