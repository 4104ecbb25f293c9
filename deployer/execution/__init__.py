"""Execution layer for the token deployer.

This package sits between the decision-maker (which proposes deployments
with a confidence score) and the irreversible actions on chain. It owns
the admission gate, the executor wrapper and the position tracker.

The execution layer is intentionally conservative: one deployment per
source post, a cooldown between deployments, a wallet reserve that is
never spent, and fail-closed behavior whenever the balance is unknown.

Modules:
    engine       -- Create / sell executor wrapping the PumpPortal trade API
    dedup        -- Trigger dedup cache backed by the deployment store
    balance      -- Wallet headroom above the reserve
    gate         -- Admission gate state machine
    exit_policy  -- Pure hold / sell decision
    tracker      -- Position lifecycle loop
"""

from deployer.execution.balance import BalanceCheck, BalanceGuard, BalanceUnavailable
from deployer.execution.dedup import DedupCache, DedupResult, extract_trigger_id
from deployer.execution.engine import ActionKind, ActionResult, ActionSpec, ExecutionEngine
from deployer.execution.exit_policy import ExitAction, ExitDecision, ExitPolicy, ExitReason
from deployer.execution.gate import (
    AdmissionGate,
    AdmissionResult,
    AdmissionStatus,
    GateState,
    PreflightReport,
    ProposedAction,
    RejectionReason,
)
from deployer.execution.tracker import CycleReport, PositionEvaluation, PositionTracker

__all__ = [
    "ActionKind",
    "ActionResult",
    "ActionSpec",
    "AdmissionGate",
    "AdmissionResult",
    "AdmissionStatus",
    "BalanceCheck",
    "BalanceGuard",
    "BalanceUnavailable",
    "CycleReport",
    "DedupCache",
    "DedupResult",
    "ExecutionEngine",
    "ExitAction",
    "ExitDecision",
    "ExitPolicy",
    "ExitReason",
    "GateState",
    "PositionEvaluation",
    "PositionTracker",
    "PreflightReport",
    "ProposedAction",
    "RejectionReason",
    "extract_trigger_id",
]
