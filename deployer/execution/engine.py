"""Action executor wrapping the PumpPortal trade API.

Every irreversible action (token create with initial buy, sell) goes
through this single interface so that logging and the audit trail are
centralized.

The engine operates in two modes:
- DRY_RUN: logs actions and returns synthetic references (paper mode)
- LIVE: submits actions to PumpPortal, which signs with the agent wallet

``execute_action`` never raises: any failure is reported as an
ActionResult with ``success=False`` so callers can tell "attempted and
failed" apart from "never attempted".
"""

from __future__ import annotations

import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from deployer.api.pumpportal_client import PumpPortalClient
from deployer.clickhouse_writer import ClickHouseWriter
from deployer.config import (
    AGENT_WALLET_ADDRESS,
    CREATE_PRIORITY_FEE_SOL,
    CREATE_SLIPPAGE_PCT,
    EXECUTION_DRY_RUN,
    PUMPPORTAL_API_KEY,
    SELL_PRIORITY_FEE_SOL,
    SELL_SLIPPAGE_PCT,
)

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ActionKind(str, Enum):
    """Kind of irreversible action."""

    CREATE = "create"   # Create token + initial buy (amount in SOL)
    SELL = "sell"       # Sell held tokens (amount in percent of holdings)


class ActionSpec(BaseModel):
    """Request to perform one irreversible action."""

    kind: ActionKind
    mint: Optional[str] = Field(default=None, description="Target mint (sell only).")
    name: str = ""
    symbol: str = ""
    metadata_uri: Optional[str] = Field(default=None, description="IPFS metadata URI (create).")
    amount: float = Field(..., gt=0, description="SOL for create, percent for sell.")
    slippage: float = Field(default=CREATE_SLIPPAGE_PCT, ge=0, le=100)
    priority_fee: float = Field(default=CREATE_PRIORITY_FEE_SOL, ge=0)

    @classmethod
    def create(cls, name: str, symbol: str, metadata_uri: Optional[str], amount_sol: float) -> ActionSpec:
        return cls(
            kind=ActionKind.CREATE,
            name=name,
            symbol=symbol,
            metadata_uri=metadata_uri,
            amount=amount_sol,
        )

    @classmethod
    def sell_all(cls, mint: str, symbol: str = "") -> ActionSpec:
        return cls(
            kind=ActionKind.SELL,
            mint=mint,
            symbol=symbol,
            amount=100.0,
            slippage=SELL_SLIPPAGE_PCT,
            priority_fee=SELL_PRIORITY_FEE_SOL,
        )


class ActionResult(BaseModel):
    """Outcome of an executed action."""

    spec: ActionSpec
    action_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    success: bool = False
    reference: str = Field(default="", description="Settlement transaction signature.")
    mint: str = ""
    error: str = ""
    dry_run: bool = False
    executed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    latency_ms: float = 0.0


# ---------------------------------------------------------------------------
# Execution Engine
# ---------------------------------------------------------------------------


class ExecutionEngine:
    """Centralized executor for create and sell actions.

    Attributes:
        dry_run: If True, actions are logged but not submitted.
        _client: PumpPortalClient (lazy-initialized in live mode).
        _action_log: In-memory log of all action results.
    """

    def __init__(
        self,
        api_key: str = PUMPPORTAL_API_KEY,
        wallet_address: str = AGENT_WALLET_ADDRESS,
        dry_run: bool = EXECUTION_DRY_RUN,
        writer: Optional[ClickHouseWriter] = None,
    ) -> None:
        self.dry_run = dry_run
        self.wallet_address = wallet_address
        self._api_key = api_key
        self._writer = writer
        self._client: Optional[PumpPortalClient] = None
        self._action_log: list[ActionResult] = []

    @property
    def is_configured(self) -> bool:
        """True when the engine has what it needs to act in its mode."""
        if self.dry_run:
            return True
        return bool(self._api_key and self.wallet_address)

    def _get_client(self) -> PumpPortalClient:
        if self._client is None:
            self._client = PumpPortalClient(self._api_key)
        return self._client

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    async def execute_action(self, spec: ActionSpec) -> ActionResult:
        """Perform *spec* once and report the outcome.

        Args:
            spec: Action parameters.

        Returns:
            ActionResult with the settlement reference or an error string.
        """
        result = ActionResult(spec=spec, dry_run=self.dry_run, mint=spec.mint or "")

        if self.dry_run:
            result.success = True
            result.reference = f"dry_{int(time.time() * 1000)}"
            if spec.kind == ActionKind.CREATE:
                result.mint = f"dry_{uuid.uuid4().hex}"
            logger.info(
                "action_dry_run",
                extra={
                    "kind": spec.kind.value,
                    "mint": result.mint,
                    "symbol": spec.symbol,
                    "amount": spec.amount,
                },
            )
            await self._record(result)
            return result

        if not self.is_configured:
            result.error = "PUMPPORTAL_API_KEY / AGENT_WALLET_ADDRESS not configured"
            await self._record(result)
            return result

        start = time.monotonic()
        try:
            payload, mint = self._build_payload(spec)
            resp = await self._get_client().trade(payload)
            result.latency_ms = (time.monotonic() - start) * 1000

            errors = resp.get("errors") or []
            signature = resp.get("signature") or ""
            if errors or not signature:
                result.error = "; ".join(str(e) for e in errors) or "no signature returned"
            else:
                result.success = True
                result.reference = signature
                result.mint = mint

            logger.info(
                "action_executed",
                extra={
                    "kind": spec.kind.value,
                    "mint": result.mint,
                    "symbol": spec.symbol,
                    "amount": spec.amount,
                    "success": result.success,
                    "signature": result.reference,
                    "error": result.error,
                    "latency_ms": result.latency_ms,
                },
            )

        except Exception as e:
            result.latency_ms = (time.monotonic() - start) * 1000
            result.error = str(e) or type(e).__name__
            logger.error(
                "action_failed",
                extra={"kind": spec.kind.value, "mint": spec.mint, "error": result.error},
                exc_info=True,
            )

        await self._record(result)
        return result

    def _build_payload(self, spec: ActionSpec) -> tuple[dict[str, Any], str]:
        """Build the PumpPortal request body and return it with the mint."""
        if spec.kind == ActionKind.CREATE:
            if not spec.metadata_uri:
                raise ValueError("metadata_uri is required to create a token")
            from solders.keypair import Keypair

            mint_keypair = Keypair()
            mint = str(mint_keypair.pubkey())
            payload = {
                "action": "create",
                "tokenMetadata": {
                    "name": spec.name,
                    "symbol": spec.symbol,
                    "uri": spec.metadata_uri,
                },
                "mint": str(mint_keypair),
                "denominatedInSol": "true",
                "amount": spec.amount,
                "slippage": spec.slippage,
                "priorityFee": spec.priority_fee,
                "pool": "pump",
            }
            return payload, mint

        if not spec.mint:
            raise ValueError("mint is required to sell")
        payload = {
            "action": "sell",
            "mint": spec.mint,
            "amount": f"{spec.amount:g}%",
            "denominatedInSol": "false",
            "slippage": spec.slippage,
            "priorityFee": spec.priority_fee,
            "pool": "auto",
        }
        return payload, spec.mint

    async def _record(self, result: ActionResult) -> None:
        self._action_log.append(result)
        if self._writer is not None:
            await self._writer.write_action(result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @property
    def action_log(self) -> list[ActionResult]:
        """Return the in-memory action log."""
        return list(self._action_log)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
        logger.info("execution_engine_closed")
