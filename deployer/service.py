"""Wires the store, collaborators, gate and tracker into one service."""

from __future__ import annotations

import logging

from deployer.api.market_client import MarketDataClient
from deployer.api.wallet_client import SolanaRpcClient
from deployer.clickhouse_writer import ClickHouseWriter
from deployer.execution.balance import BalanceGuard
from deployer.execution.dedup import DedupCache
from deployer.execution.engine import ExecutionEngine
from deployer.execution.gate import AdmissionGate
from deployer.execution.tracker import PositionTracker
from deployer.store import ClickHouseDeploymentStore, DeploymentStore
from deployer.summary import RollingSummaryStore

logger = logging.getLogger(__name__)


class DeployerService:
    """Owns every long-lived component of the process."""

    def __init__(
        self,
        store: DeploymentStore,
        wallet: SolanaRpcClient,
        market: MarketDataClient,
        engine: ExecutionEngine,
        writer: ClickHouseWriter | None = None,
    ) -> None:
        self.store = store
        self.wallet = wallet
        self.market = market
        self.engine = engine
        self.writer = writer
        self.summary = RollingSummaryStore(store, writer=writer)
        self.dedup = DedupCache(store)
        self.balance = BalanceGuard(wallet, wallet_address=engine.wallet_address)
        self.gate = AdmissionGate(self.dedup, self.balance, engine, self.summary)
        self.tracker = PositionTracker(
            store, market, wallet, engine, self.summary, writer=writer,
        )

    @classmethod
    def from_config(cls) -> DeployerService:
        writer = ClickHouseWriter.get_instance()
        return cls(
            store=ClickHouseDeploymentStore(),
            wallet=SolanaRpcClient(),
            market=MarketDataClient(),
            engine=ExecutionEngine(writer=writer),
            writer=writer,
        )

    async def warm_up(self) -> None:
        """Rebuild the derived projections from the store."""
        await self.dedup.refresh()
        try:
            recent = await self.store.list_recent(1)
        except Exception:
            logger.error("cooldown_restore_failed", exc_info=True)
        else:
            if recent:
                await self.gate.restore_cooldown(recent[0].deployed_at.timestamp())
        try:
            await self.summary.rebuild()
        except Exception:
            logger.error("summary_rebuild_failed", exc_info=True)

    async def refresh_and_reconcile(self) -> None:
        """Push queued records to the store, then rebuild the dedup cache."""
        pending = await self.summary.reconcile()
        if pending:
            logger.warning("reconciliation_pending", extra={"pending": pending})
        await self.dedup.refresh()

    async def shutdown(self) -> None:
        """Stop admitting work, let in-flight actions finish, close clients."""
        self.gate.begin_shutdown()
        self.tracker.begin_shutdown()
        await self.gate.drain()
        await self.tracker.drain()
        if self.summary.pending:
            logger.error(
                "shutdown_with_unreconciled_records",
                extra={"mints": [r.mint for r in self.summary.pending]},
            )
        await self.engine.close()
        await self.market.close()
        await self.wallet.close()
        if self.writer is not None:
            await self.writer.flush_all()
