"""Deployment admission gate: every proposed deployment passes through here.

The gate enforces, in order:

0. Shutdown / configuration (the capability must be able to act)
1. Duplicate trigger (one deployment per source post)
2. Cooldown between admitted deployments
3. Minimum confidence
4. Wallet balance above the reserve, covering the requested spend

All checks, the cooldown stamp, the executor call and the write-back of
the record and dedup entry run inside one critical section guarded by an
asyncio.Lock. Two near-simultaneous proposals therefore can never both
observe "cooldown satisfied", and a completed deployment is always in the
dedup cache before the next proposal is evaluated.

A failed executor call still consumes the cooldown window; nothing is
retried automatically. The next proposal is the retry.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from pydantic import BaseModel, Field

from deployer.config import (
    DEFAULT_CONFIDENCE,
    DEFAULT_INITIAL_BUY_SOL,
    DEPLOYMENT_COOLDOWN_SECONDS,
    MIN_CONFIDENCE,
    PUMPFUN_WEB_URL,
)
from deployer.execution.balance import BalanceCheck, BalanceGuard, BalanceUnavailable
from deployer.execution.dedup import DedupCache, extract_trigger_id
from deployer.execution.engine import ActionSpec, ExecutionEngine
from deployer.models import DeploymentRecord, Strategy
from deployer.summary import RollingSummaryStore

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------


class ProposedAction(BaseModel):
    """A deployment proposed by the decision-maker."""

    name: str = Field(..., min_length=1, max_length=32)
    symbol: str = Field(..., min_length=1, max_length=10)
    description: str = ""
    theme: str = ""
    strategy: Strategy
    confidence_score: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    initial_buy_sol: Optional[float] = Field(default=None, ge=0.01)
    trigger_ref: Optional[str] = Field(default=None, description="Source post URL.")
    virality_score: Optional[float] = None
    metadata_uri: Optional[str] = Field(default=None, description="Uploaded token metadata.")
    reasoning: str = ""


class AdmissionStatus(str, Enum):
    ADMITTED = "admitted"   # Executed and recorded
    REJECTED = "rejected"   # Never attempted
    FAILED = "failed"       # Attempted, executor reported failure


class RejectionReason(str, Enum):
    DUPLICATE = "duplicate"
    COOLDOWN = "cooldown"
    LOW_CONFIDENCE = "low_confidence"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_CONFIGURED = "not_configured"
    SHUTTING_DOWN = "shutting_down"


class AdmissionResult(BaseModel):
    """Tagged outcome of a proposal."""

    status: AdmissionStatus
    reason: Optional[RejectionReason] = None
    detail: str = ""
    wait_seconds: Optional[int] = None
    existing_label: Optional[str] = None
    mint: Optional[str] = None
    signature: Optional[str] = None
    url: Optional[str] = None
    deployment_id: Optional[str] = None

    @property
    def admitted(self) -> bool:
        return self.status == AdmissionStatus.ADMITTED

    @classmethod
    def rejected(cls, reason: RejectionReason, detail: str, **kwargs) -> AdmissionResult:
        return cls(status=AdmissionStatus.REJECTED, reason=reason, detail=detail, **kwargs)


class PreflightReport(BaseModel):
    """Read-only view of whether a deployment would currently pass."""

    can_deploy: bool
    reasons: list[str] = Field(default_factory=list)
    wait_seconds: int = 0
    balance: Optional[BalanceCheck] = None


class GateState:
    """Process-wide gate state. Mutated only under ``lock``."""

    def __init__(self, dedup: DedupCache) -> None:
        self.lock = asyncio.Lock()
        self.dedup = dedup
        self.last_deployment_at: Optional[float] = None
        self.shutting_down = False


# ---------------------------------------------------------------------------
# Admission Gate
# ---------------------------------------------------------------------------


class AdmissionGate:
    """Sequences dedup, cooldown, confidence and balance checks.

    Attributes:
        state: The single GateState instance owned by this gate.
        cooldown: Minimum seconds between admitted deployments.
        min_confidence: Lowest accepted confidence score.
    """

    def __init__(
        self,
        dedup: DedupCache,
        balance: BalanceGuard,
        engine: ExecutionEngine,
        summary: RollingSummaryStore,
        cooldown: float = DEPLOYMENT_COOLDOWN_SECONDS,
        min_confidence: float = MIN_CONFIDENCE,
        default_confidence: float = DEFAULT_CONFIDENCE,
        default_spend: float = DEFAULT_INITIAL_BUY_SOL,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.state = GateState(dedup)
        self.balance = balance
        self.engine = engine
        self.summary = summary
        self.cooldown = cooldown
        self.min_confidence = min_confidence
        self.default_confidence = default_confidence
        self.default_spend = default_spend
        self._clock = clock

    # ------------------------------------------------------------------
    # Proposal interface
    # ------------------------------------------------------------------

    async def propose(self, action: ProposedAction) -> AdmissionResult:
        """Evaluate *action* and, if admitted, execute and record it."""
        async with self.state.lock:
            now = self._clock()
            rejection = await self._check(action, now)
            if rejection is not None:
                logger.info(
                    "admission_rejected",
                    extra={
                        "symbol": action.symbol,
                        "reason": rejection.reason.value if rejection.reason else "",
                        "detail": rejection.detail,
                        "wait_seconds": rejection.wait_seconds,
                    },
                )
                return rejection

            # Admitted: stamp the cooldown in the same critical section
            self.state.last_deployment_at = now
            logger.info(
                "admission_granted",
                extra={"symbol": action.symbol, "strategy": action.strategy.value},
            )
            return await self._execute(action)

    async def _check(self, action: ProposedAction, now: float) -> Optional[AdmissionResult]:
        """Run the checks in order; None means admitted."""
        if self.state.shutting_down:
            return AdmissionResult.rejected(
                RejectionReason.SHUTTING_DOWN, "Shutdown in progress; no new deployments."
            )

        if not self.engine.is_configured:
            return AdmissionResult.rejected(
                RejectionReason.NOT_CONFIGURED,
                "PUMPPORTAL_API_KEY / AGENT_WALLET_ADDRESS not configured",
            )

        # 1. Duplicate trigger
        if action.trigger_ref:
            dup = await self.state.dedup.is_duplicate(action.trigger_ref)
            if dup.duplicate:
                return AdmissionResult.rejected(
                    RejectionReason.DUPLICATE,
                    f'This post has already been tokenized as "{dup.existing_label}". '
                    f"Post URL: {action.trigger_ref}",
                    existing_label=dup.existing_label,
                )

        # 2. Cooldown
        wait = self._wait_seconds(now)
        if wait > 0:
            return AdmissionResult.rejected(
                RejectionReason.COOLDOWN,
                f"Too soon since last deployment. Wait {wait} seconds.",
                wait_seconds=wait,
            )

        # 3. Confidence
        confidence = self._confidence(action)
        if confidence < self.min_confidence:
            return AdmissionResult.rejected(
                RejectionReason.LOW_CONFIDENCE,
                f"Confidence too low ({confidence:g}%). Minimum {self.min_confidence:g}% required.",
            )

        # 4. Balance (fail closed)
        spend = self._spend(action)
        try:
            balance = await self.balance.check_balance()
        except BalanceUnavailable as e:
            return AdmissionResult.rejected(
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Wallet balance unavailable: {e}",
            )

        if not balance.sufficient:
            return AdmissionResult.rejected(
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Insufficient balance: {balance.spendable:.4f} SOL. "
                f"Need at least {balance.reserve_amount + self.balance.minimum_action:.4f} SOL.",
            )
        if balance.available < spend:
            return AdmissionResult.rejected(
                RejectionReason.INSUFFICIENT_FUNDS,
                f"Not enough available SOL. Available: {balance.available:.4f}, Needed: {spend:g}",
            )

        return None

    async def _execute(self, action: ProposedAction) -> AdmissionResult:
        """Call the executor once and write back the record + dedup entry."""
        spend = self._spend(action)
        spec = ActionSpec.create(
            name=action.name,
            symbol=action.symbol.upper()[:6],
            metadata_uri=action.metadata_uri,
            amount_sol=spend,
        )
        result = await self.engine.execute_action(spec)

        if not result.success:
            logger.warning(
                "deployment_failed",
                extra={"symbol": spec.symbol, "error": result.error},
            )
            return AdmissionResult(status=AdmissionStatus.FAILED, detail=result.error)

        record = DeploymentRecord(
            mint=result.mint,
            name=action.name,
            symbol=spec.symbol,
            theme=action.theme,
            strategy=action.strategy,
            trigger_ref=action.trigger_ref,
            trigger_id=extract_trigger_id(action.trigger_ref),
            deployed_at=datetime.now(timezone.utc),
            initial_spend=spend,
            confidence=self._confidence(action),
            virality_score=action.virality_score,
            reasoning=action.reasoning or f"Deployed using {action.strategy.value} strategy",
            signature=result.reference,
        )

        # Dedup entry goes in even if the record write below fails
        self.state.dedup.add(action.trigger_ref, record.label)
        persisted = await self.summary.record_deployment(record)

        url = f"{PUMPFUN_WEB_URL}/{record.mint}"
        logger.info(
            "deployment_succeeded",
            extra={
                "mint": record.mint,
                "symbol": record.symbol,
                "signature": record.signature,
                "url": url,
                "persisted": persisted,
            },
        )
        return AdmissionResult(
            status=AdmissionStatus.ADMITTED,
            detail="" if persisted else "Deployed; record pending reconciliation.",
            mint=record.mint,
            signature=record.signature,
            url=url,
            deployment_id=record.mint,
        )

    # ------------------------------------------------------------------
    # Read-only checks
    # ------------------------------------------------------------------

    async def preflight(self) -> PreflightReport:
        """Report whether a deployment would currently pass the generic checks.

        Does not touch gate state; dedup and confidence depend on the
        proposal and are not evaluated.
        """
        reasons: list[str] = []
        can_deploy = True

        wait = self._wait_seconds(self._clock())
        if wait > 0:
            can_deploy = False
            reasons.append(f"Must wait {wait} more seconds since last deployment")

        balance: Optional[BalanceCheck] = None
        try:
            balance = await self.balance.check_balance()
            if not balance.sufficient:
                can_deploy = False
                reasons.append(f"Insufficient balance: {balance.spendable:.4f} SOL")
        except BalanceUnavailable:
            can_deploy = False
            reasons.append("Failed to check wallet balance")

        if not self.engine.is_configured:
            can_deploy = False
            reasons.append("PUMPPORTAL_API_KEY / AGENT_WALLET_ADDRESS not configured")

        if self.state.shutting_down:
            can_deploy = False
            reasons.append("Shutdown in progress")

        if can_deploy:
            reasons.append("All checks passed")

        return PreflightReport(
            can_deploy=can_deploy,
            reasons=reasons,
            wait_seconds=wait,
            balance=balance,
        )

    def status(self) -> dict:
        """Return current gate status for health checks."""
        return {
            "last_deployment_at": self.state.last_deployment_at,
            "cooldown_seconds": self.cooldown,
            "wait_seconds": self._wait_seconds(self._clock()),
            "dedup_cache_size": self.state.dedup.size,
            "dedup_unconfirmed": len(self.state.dedup.unconfirmed),
            "shutting_down": self.state.shutting_down,
            "dry_run": self.engine.dry_run,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def restore_cooldown(self, last_deployment_at: float) -> None:
        """Seed the cooldown from the newest stored deployment (epoch seconds)."""
        async with self.state.lock:
            current = self.state.last_deployment_at
            if current is None or last_deployment_at > current:
                self.state.last_deployment_at = last_deployment_at
        logger.info(
            "cooldown_restored",
            extra={"last_deployment_at": self.state.last_deployment_at},
        )

    def begin_shutdown(self) -> None:
        self.state.shutting_down = True
        logger.info("admission_gate_shutdown")

    async def drain(self) -> None:
        """Wait for an in-flight admission (and its executor call) to finish."""
        async with self.state.lock:
            pass

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _wait_seconds(self, now: float) -> int:
        last = self.state.last_deployment_at
        if last is None:
            return 0
        remaining = self.cooldown - (now - last)
        return math.ceil(remaining) if remaining > 0 else 0

    def _confidence(self, action: ProposedAction) -> float:
        if action.confidence_score is None:
            return self.default_confidence
        return action.confidence_score

    def _spend(self, action: ProposedAction) -> float:
        return action.initial_buy_sol or self.default_spend
