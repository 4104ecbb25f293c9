"""HTTP interface: proposals in, positions and summary out."""

from __future__ import annotations

import logging

from aiohttp import web
from pydantic import ValidationError

from deployer.execution.balance import BalanceUnavailable
from deployer.execution.gate import AdmissionStatus, ProposedAction
from deployer.service import DeployerService

logger = logging.getLogger(__name__)

SERVICE_KEY = web.AppKey("service", DeployerService)

_MAX_RECENT = 20


def build_app(service: DeployerService) -> web.Application:
    app = web.Application()
    app[SERVICE_KEY] = service
    app.router.add_get("/health", health)
    app.router.add_post("/proposals", propose)
    app.router.add_get("/can-deploy", can_deploy)
    app.router.add_get("/balance", balance)
    app.router.add_get("/positions", positions)
    app.router.add_get("/summary", summary)
    app.router.add_get("/deployments/recent", recent_deployments)
    return app


async def health(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    body = {
        "status": "ok",
        "gate": service.gate.status(),
        "tracker": service.tracker.status(),
        "pending_reconciliation": len(service.summary.pending),
        "actions_executed": len(service.engine.action_log),
    }
    if service.writer is not None:
        body["audit_pending_rows"] = service.writer.pending_rows
        body["audit_dropped_rows"] = service.writer.dropped_rows
    return web.json_response(body)


async def propose(request: web.Request) -> web.Response:
    """POST /proposals: evaluate and (maybe) execute a deployment."""
    service = request.app[SERVICE_KEY]
    try:
        body = await request.json()
        action = ProposedAction.model_validate(body)
    except ValidationError as e:
        return web.json_response(
            {"error": "invalid_proposal", "details": e.errors(include_url=False)},
            status=400,
        )
    except ValueError:
        return web.json_response({"error": "invalid_json"}, status=400)

    result = await service.gate.propose(action)
    status = 200 if result.status != AdmissionStatus.FAILED else 502
    return web.json_response(result.model_dump(mode="json"), status=status)


async def can_deploy(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    report = await service.gate.preflight()
    return web.json_response(report.model_dump(mode="json"))


async def balance(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        check = await service.balance.check_balance()
    except BalanceUnavailable as e:
        return web.json_response({"error": str(e)}, status=503)
    return web.json_response(check.model_dump(mode="json"))


async def positions(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        items = await service.tracker.list_positions()
    except Exception:
        logger.error("positions_query_failed", exc_info=True)
        return web.json_response({"error": "store_unavailable"}, status=503)
    return web.json_response([
        {**p.model_dump(mode="json"), "roi_pct": p.roi_pct} for p in items
    ])


async def summary(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    return web.json_response(service.tracker.get_summary().model_dump(mode="json"))


async def recent_deployments(request: web.Request) -> web.Response:
    service = request.app[SERVICE_KEY]
    try:
        limit = int(request.query.get("limit", "5"))
    except ValueError:
        return web.json_response({"error": "invalid_limit"}, status=400)
    limit = max(1, min(limit, _MAX_RECENT))
    try:
        records = await service.summary.get_recent_deployments(limit)
    except Exception:
        logger.error("recent_deployments_failed", exc_info=True)
        return web.json_response({"error": "store_unavailable"}, status=503)
    return web.json_response([r.model_dump(mode="json") for r in records])
