"""Market data for deployed tokens (SolanaTracker + PumpPortal creator fees)."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from deployer.config import (
    HTTP_TIMEOUT,
    PUMPPORTAL_API_URL,
    SOLANA_TRACKER_API_KEY,
    SOLANA_TRACKER_API_URL,
)
from deployer.models import MarketQuote

logger = logging.getLogger(__name__)


class MarketDataUnavailable(Exception):
    """Raised when no usable quote could be fetched for a token."""


class MarketDataClient:
    """Fetch price, market cap, holders, fees and last trade for a mint.

    Only the token lookup is mandatory. Fees and last-trade time are
    best-effort: a failure there degrades to zero / unknown instead of
    failing the whole quote.
    """

    def __init__(self, api_key: str = SOLANA_TRACKER_API_KEY) -> None:
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._tracker = httpx.AsyncClient(
            base_url=SOLANA_TRACKER_API_URL,
            timeout=HTTP_TIMEOUT,
            headers=headers,
        )
        self._pumpportal = httpx.AsyncClient(
            base_url=PUMPPORTAL_API_URL,
            timeout=HTTP_TIMEOUT,
            headers={"Accept": "application/json"},
        )

    async def close(self) -> None:
        await self._tracker.aclose()
        await self._pumpportal.aclose()

    # ------------------------------------------------------------------
    # Public
    # ------------------------------------------------------------------

    async def get_quote(self, mint: str) -> MarketQuote:
        """GET /tokens/{mint} plus fees and the latest trade."""
        try:
            resp = await self._tracker.get(f"/tokens/{mint}")
            resp.raise_for_status()
            data = resp.json()
        except Exception as e:
            logger.warning("fetch_token_error", extra={"mint": mint}, exc_info=True)
            raise MarketDataUnavailable(f"token lookup failed for {mint}") from e

        quote = self.parse_token(mint, data)
        quote.fees = await self.fetch_creator_fees(mint)
        quote.last_trade_at = await self.fetch_last_trade_time(mint)
        return quote

    async def fetch_creator_fees(self, mint: str) -> float:
        """GET /creator-fees: total creator fees earned, in SOL.

        A 404 means the token never accrued fees.
        """
        try:
            resp = await self._pumpportal.get("/creator-fees", params={"mint": mint})
            if resp.status_code == 404:
                return 0.0
            resp.raise_for_status()
            data = resp.json() or {}
            return float(data.get("totalEarned") or 0)
        except Exception:
            logger.warning("fetch_creator_fees_error", extra={"mint": mint}, exc_info=True)
            return 0.0

    async def fetch_last_trade_time(self, mint: str) -> Optional[datetime]:
        """GET /trades/{mint}: timestamp of the most recent trade."""
        try:
            resp = await self._tracker.get(f"/trades/{mint}")
            resp.raise_for_status()
            data = resp.json() or {}
        except Exception:
            logger.warning("fetch_trades_error", extra={"mint": mint}, exc_info=True)
            return None

        trades = data.get("trades") if isinstance(data, dict) else data
        times = [t.get("time") for t in trades or [] if t.get("time")]
        if not times:
            return None
        return _parse_epoch_ms(max(times))

    @staticmethod
    def parse_token(mint: str, data: dict[str, Any]) -> MarketQuote:
        """Convert a SolanaTracker token payload into a MarketQuote.

        Uses the first pool; the quote price is denominated in SOL.
        """
        pools = data.get("pools") or []
        pool = pools[0] if pools else {}
        price = pool.get("price") or {}
        market_cap = pool.get("marketCap") or {}
        return MarketQuote(
            mint=mint,
            price=float(price.get("quote") or 0),
            price_usd=float(price.get("usd") or 0),
            market_cap=float(market_cap.get("usd") or 0),
            holders=int(data.get("holders") or 0),
        )


def _parse_epoch_ms(value: Any) -> Optional[datetime]:
    try:
        return datetime.fromtimestamp(float(value) / 1000.0, tz=timezone.utc)
    except (TypeError, ValueError, OverflowError, OSError):
        return None
