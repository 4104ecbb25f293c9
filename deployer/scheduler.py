"""APScheduler-based runtime for the token deployer."""

from __future__ import annotations

import asyncio
import logging
import signal

from aiohttp import web
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from deployer.config import (
    BUFFER_FLUSH_INTERVAL,
    DEDUP_CACHE_TTL,
    HTTP_HOST,
    HTTP_PORT,
    RECONCILE_INTERVAL,
    TRACKER_INTERVAL,
)
from deployer.server import build_app
from deployer.service import DeployerService

logger = logging.getLogger(__name__)


class DeployerScheduler:
    """Runs the tracker and maintenance jobs next to the HTTP interface."""

    def __init__(self, service: DeployerService) -> None:
        self._service = service
        self._scheduler = AsyncIOScheduler()
        self._shutdown_event = asyncio.Event()
        self._http_runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Register jobs, start the scheduler, and block until shutdown."""
        # Rebuild dedup cache and rolling summary from the store
        logger.info("initial_warm_up")
        try:
            await self._service.warm_up()
        except Exception:
            logger.error("initial_warm_up_failed", exc_info=True)

        # Register scheduled jobs
        self._scheduler.add_job(
            self._job_position_tracker,
            "interval",
            seconds=TRACKER_INTERVAL,
            id="position_tracker",
            name="Position Tracker",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.add_job(
            self._job_dedup_refresh,
            "interval",
            seconds=DEDUP_CACHE_TTL,
            id="dedup_refresh",
            name="Dedup Cache Refresh",
        )
        self._scheduler.add_job(
            self._job_reconcile,
            "interval",
            seconds=RECONCILE_INTERVAL,
            id="reconcile",
            name="Reconcile Pending Records",
        )
        if self._service.writer is not None:
            self._scheduler.add_job(
                self._service.writer.flush_stale,
                "interval",
                seconds=BUFFER_FLUSH_INTERVAL,
                id="buffer_flush",
                name="Buffer Flush",
            )

        self._scheduler.start()
        logger.info("scheduler_started", extra={"tracker_interval": TRACKER_INTERVAL})

        await self._start_http_server()

        # Register signal handlers
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._signal_handler)

        # Block until shutdown
        await self._shutdown_event.wait()
        await self._stop()

    async def _stop(self) -> None:
        logger.info("scheduler_stopping")
        # No new ticks; running jobs are left to finish
        self._scheduler.shutdown(wait=False)

        if self._http_runner:
            await self._http_runner.cleanup()

        await self._service.shutdown()
        logger.info("scheduler_stopped")

    def _signal_handler(self) -> None:
        logger.info("shutdown_signal_received")
        self._shutdown_event.set()

    # ------------------------------------------------------------------
    # Job wrappers (catch exceptions so scheduler keeps running)
    # ------------------------------------------------------------------

    async def _job_position_tracker(self) -> None:
        try:
            await self._service.tracker.run_cycle()
        except Exception:
            logger.error("position_tracker_error", exc_info=True)

    async def _job_dedup_refresh(self) -> None:
        try:
            await self._service.dedup.refresh()
        except Exception:
            logger.error("dedup_refresh_error", exc_info=True)

    async def _job_reconcile(self) -> None:
        try:
            await self._service.refresh_and_reconcile()
        except Exception:
            logger.error("reconcile_error", exc_info=True)

    # ------------------------------------------------------------------
    # HTTP interface
    # ------------------------------------------------------------------

    async def _start_http_server(self) -> None:
        app = build_app(self._service)
        self._http_runner = web.AppRunner(app)
        await self._http_runner.setup()
        site = web.TCPSite(self._http_runner, HTTP_HOST, HTTP_PORT)
        await site.start()
        logger.info("http_server_started", extra={"host": HTTP_HOST, "port": HTTP_PORT})
