"""Deployment records, market quotes and the position read-model.

A DeploymentRecord is written once when a token is deployed; only its
Performance sub-record changes afterwards. Every change is persisted as a
new version of the record (the store is append-only), so the latest version
of each mint is the source of truth for the dedup cache, the rolling
summary and the position tracker.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Strategy(str, Enum):
    """How the decision-maker arrived at a deployment."""

    SPECIFIC_MOMENT = "specific_moment"
    EMERGING_TREND = "emerging_trend"
    PATTERN_BASED = "pattern_based"


class Outcome(str, Enum):
    """Lifecycle tag of a deployment."""

    ACTIVE = "active"
    PROFITABLE = "profitable"
    LOSS = "loss"
    DEAD = "dead"


class Performance(BaseModel):
    """Mutable performance sub-record of a deployment (values in SOL)."""

    current_value: float = Field(default=0.0, description="Value of held tokens.")
    peak_value: float = Field(default=0.0, description="Highest observed value.")
    current_market_cap: float = Field(default=0.0, description="Latest market cap (USD).")
    peak_market_cap: float = Field(default=0.0, description="Highest market cap (USD).")
    holders: int = Field(default=0, description="Latest holder count.")
    fees_collected: float = Field(default=0.0, description="Creator fees earned.")
    profit: float = Field(default=0.0, description="Value + fees - initial spend.")
    outcome: Outcome = Outcome.ACTIVE
    exit_reason: str = ""
    closed_at: Optional[datetime] = None


class DeploymentRecord(BaseModel):
    """A deployed token and its tracked performance."""

    mint: str = Field(..., description="Token mint address.")
    name: str
    symbol: str
    theme: str = ""
    strategy: Strategy
    trigger_ref: Optional[str] = Field(default=None, description="Source post URL.")
    trigger_id: Optional[str] = Field(default=None, description="Normalized trigger id.")
    deployed_at: datetime = Field(default_factory=_utcnow)
    initial_spend: float = Field(..., gt=0, description="Initial buy in SOL.")
    confidence: float = Field(default=0.0, ge=0.0, le=100.0)
    virality_score: Optional[float] = None
    reasoning: str = ""
    signature: str = Field(default="", description="Settlement signature of the create.")
    performance: Performance = Field(default_factory=Performance)
    updated_at: datetime = Field(default_factory=_utcnow)

    @property
    def label(self) -> str:
        """Human-readable label, e.g. ``Lobster Way ($LBSTR)``."""
        return f"{self.name} (${self.symbol})"

    @property
    def is_active(self) -> bool:
        return self.performance.outcome == Outcome.ACTIVE


class MarketQuote(BaseModel):
    """Live market state for a token.

    Every numeric field defaults to zero so that a partial response from a
    market data provider never propagates None into ROI math.
    """

    mint: str
    price: float = Field(default=0.0, description="Token price in SOL.")
    price_usd: float = 0.0
    market_cap: float = Field(default=0.0, description="Market cap in USD.")
    holders: int = 0
    fees: float = Field(default=0.0, description="Creator fees earned, in SOL.")
    last_trade_at: Optional[datetime] = None


def compute_roi(current_value: float, fees: float, initial_spend: float) -> float:
    """Return on initial spend, fees included, as a fraction.

    ``(current_value + fees - initial_spend) / initial_spend``
    """
    if initial_spend <= 0:
        raise ValueError("initial_spend must be positive")
    return (current_value + fees - initial_spend) / initial_spend


class Position(BaseModel):
    """Read-model of an active deployment, recomputed from live data.

    Never cached: every tracker cycle and every query builds new instances.
    """

    mint: str
    name: str
    symbol: str
    strategy: Strategy
    initial_spend: float
    held_quantity: float = 0.0
    price: float = 0.0
    market_cap: float = 0.0
    holders: int = 0
    holder_delta: int = Field(default=0, description="Holders now minus last observed.")
    fees: float = 0.0
    current_value: float = 0.0
    roi: float = Field(default=0.0, description="Fractional ROI.")
    inactive_hours: float = Field(default=0.0, description="Hours since last trade.")
    deployed_at: datetime
    computed_at: datetime = Field(default_factory=_utcnow)

    @property
    def roi_pct(self) -> float:
        return self.roi * 100.0

    @property
    def profit(self) -> float:
        return self.current_value + self.fees - self.initial_spend

    @classmethod
    def from_market(
        cls,
        record: DeploymentRecord,
        quote: MarketQuote,
        held_quantity: float,
        now: Optional[datetime] = None,
    ) -> Position:
        """Build a position from a record, a fresh quote and the held quantity.

        Inactivity is measured from the last observed trade; a token that
        has never traded is measured from its deployment time.
        """
        now = now or _utcnow()
        current_value = held_quantity * quote.price
        last_activity = quote.last_trade_at or record.deployed_at
        inactive_hours = max(0.0, (now - last_activity).total_seconds() / 3600.0)
        return cls(
            mint=record.mint,
            name=record.name,
            symbol=record.symbol,
            strategy=record.strategy,
            initial_spend=record.initial_spend,
            held_quantity=held_quantity,
            price=quote.price,
            market_cap=quote.market_cap,
            holders=quote.holders,
            holder_delta=quote.holders - record.performance.holders,
            fees=quote.fees,
            current_value=current_value,
            roi=compute_roi(current_value, quote.fees, record.initial_spend),
            inactive_hours=inactive_hours,
            deployed_at=record.deployed_at,
            computed_at=now,
        )
