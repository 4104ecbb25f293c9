"""Balance guard: spendable SOL above a fixed reserve."""

from __future__ import annotations

import logging

from pydantic import BaseModel

from deployer.api.wallet_client import SolanaRpcClient
from deployer.config import AGENT_WALLET_ADDRESS, MIN_DEPLOYMENT_SOL, MIN_WALLET_RESERVE_SOL

logger = logging.getLogger(__name__)


class BalanceUnavailable(Exception):
    """Raised when the wallet balance cannot be determined."""


class BalanceCheck(BaseModel):
    """Point-in-time wallet headroom."""

    spendable: float
    available: float
    sufficient: bool
    reserve_amount: float
    wallet_address: str = ""


class BalanceGuard:
    """Pure query over the wallet: no state, no caching.

    Must be called immediately before every admission decision since the
    balance can change between proposal and execution.
    """

    def __init__(
        self,
        wallet: SolanaRpcClient,
        wallet_address: str = AGENT_WALLET_ADDRESS,
        reserve: float = MIN_WALLET_RESERVE_SOL,
        minimum_action: float = MIN_DEPLOYMENT_SOL,
    ) -> None:
        self._wallet = wallet
        self.wallet_address = wallet_address
        self.reserve = reserve
        self.minimum_action = minimum_action

    async def check_balance(self) -> BalanceCheck:
        """Query the wallet and compute headroom above the reserve.

        Raises:
            BalanceUnavailable: wallet not configured or RPC failure.
        """
        if not self.wallet_address:
            raise BalanceUnavailable("AGENT_WALLET_ADDRESS not configured")

        try:
            spendable = await self._wallet.get_balance(self.wallet_address)
        except Exception as e:
            logger.warning("balance_query_failed", extra={"wallet": self.wallet_address}, exc_info=True)
            raise BalanceUnavailable("wallet balance query failed") from e

        return self.evaluate(spendable)

    def evaluate(self, spendable: float) -> BalanceCheck:
        available = max(0.0, spendable - self.reserve)
        return BalanceCheck(
            spendable=spendable,
            available=available,
            sufficient=available >= self.minimum_action,
            reserve_amount=self.reserve,
            wallet_address=self.wallet_address,
        )
