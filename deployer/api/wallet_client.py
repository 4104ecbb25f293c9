"""Client for the Solana JSON-RPC API (SOL and SPL token balances)."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from deployer.config import HTTP_TIMEOUT, LAMPORTS_PER_SOL, SOLANA_RPC_URL

logger = logging.getLogger(__name__)


class RpcError(Exception):
    """Raised when the RPC node returns an error or an unusable response."""


class SolanaRpcClient:
    """Read-only wallet queries against a Solana RPC node."""

    def __init__(self, rpc_url: str = SOLANA_RPC_URL) -> None:
        self._client = httpx.AsyncClient(timeout=HTTP_TIMEOUT)
        self._rpc_url = rpc_url
        self._request_id = 0

    async def close(self) -> None:
        await self._client.aclose()

    async def get_balance(self, address: str) -> float:
        """Return the SOL balance of *address*."""
        result = await self._call("getBalance", [address, {"commitment": "confirmed"}])
        lamports = (result or {}).get("value")
        if lamports is None:
            raise RpcError(f"getBalance returned no value for {address}")
        return int(lamports) / LAMPORTS_PER_SOL

    async def get_token_balance(self, owner: str, mint: str) -> float:
        """Return how many *mint* tokens *owner* holds (UI amount).

        Sums every token account of the owner for that mint; no account
        means a zero balance.
        """
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": "confirmed"}],
        )
        total = 0.0
        for account in (result or {}).get("value") or []:
            info = (
                account.get("account", {})
                .get("data", {})
                .get("parsed", {})
                .get("info", {})
            )
            amount = info.get("tokenAmount", {}).get("uiAmount")
            total += float(amount or 0)
        return total

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    async def _call(self, method: str, params: list[Any]) -> Any:
        self._request_id += 1
        body = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }
        try:
            resp = await self._client.post(self._rpc_url, json=body)
            resp.raise_for_status()
            payload = resp.json()
        except httpx.HTTPError as e:
            logger.warning("rpc_request_error", extra={"method": method}, exc_info=True)
            raise RpcError(f"{method} request failed") from e

        if payload.get("error"):
            logger.warning(
                "rpc_error_response",
                extra={"method": method, "error": str(payload["error"])},
            )
            raise RpcError(f"{method} failed: {payload['error']}")
        return payload.get("result")
