"""Exit policy: pure mapping from position metrics to hold / sell.

Boundary convention: every threshold comparison is strict. A position
sitting exactly on the take-profit, stop-loss or dead-token floor is held
and reconsidered on the next tracker cycle.
"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field

from deployer.config import (
    EXIT_DEAD_MIN_ROI_PCT,
    EXIT_DEAD_WINDOW_HOURS,
    EXIT_STOP_LOSS_PCT,
    EXIT_TAKE_PROFIT_PCT,
)


class ExitAction(str, Enum):
    HOLD = "hold"
    SELL = "sell"


class ExitReason(str, Enum):
    TAKE_PROFIT = "take_profit"
    STOP_LOSS = "stop_loss"
    DEAD_TOKEN = "dead_token"
    WITHIN_THRESHOLDS = "within_thresholds"


class ExitDecision(BaseModel):
    action: ExitAction
    reason: ExitReason

    @property
    def should_sell(self) -> bool:
        return self.action == ExitAction.SELL


class ExitPolicy(BaseModel):
    """Tunable thresholds; the shape of the rule set is fixed."""

    take_profit_pct: float = Field(default=EXIT_TAKE_PROFIT_PCT)
    stop_loss_pct: float = Field(default=EXIT_STOP_LOSS_PCT)
    dead_window_hours: float = Field(default=EXIT_DEAD_WINDOW_HOURS, gt=0)
    dead_min_roi_pct: float = Field(default=EXIT_DEAD_MIN_ROI_PCT)

    def decide(
        self,
        roi_pct: float,
        inactive_hours: float,
        holder_delta: int = 0,
    ) -> ExitDecision:
        """Decide whether to exit.

        Args:
            roi_pct: ROI in percent (fees included).
            inactive_hours: Hours since the last observed trade.
            holder_delta: Holder count change since the last cycle. Carried
                for the audit trail; it does not move the decision.
        """
        if roi_pct > self.take_profit_pct:
            return ExitDecision(action=ExitAction.SELL, reason=ExitReason.TAKE_PROFIT)
        if roi_pct < self.stop_loss_pct:
            return ExitDecision(action=ExitAction.SELL, reason=ExitReason.STOP_LOSS)
        # A dead token is only exited while it still shows a gain; a dead
        # break-even or losing position is left for the stop-loss.
        if inactive_hours > self.dead_window_hours and roi_pct > self.dead_min_roi_pct:
            return ExitDecision(action=ExitAction.SELL, reason=ExitReason.DEAD_TOKEN)
        return ExitDecision(action=ExitAction.HOLD, reason=ExitReason.WITHIN_THRESHOLDS)
