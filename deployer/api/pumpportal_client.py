"""Client for the PumpPortal Lightning trade API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from deployer.config import HTTP_TIMEOUT, PUMPPORTAL_API_URL

logger = logging.getLogger(__name__)


class PumpPortalClient:
    """POST /trade: PumpPortal signs and sends with the wallet tied to the key."""

    def __init__(self, api_key: str) -> None:
        self._api_key = api_key
        self._client = httpx.AsyncClient(
            base_url=PUMPPORTAL_API_URL,
            timeout=HTTP_TIMEOUT,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def trade(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit a create/buy/sell request.

        Returns the decoded JSON body; PumpPortal reports failures either
        with a non-2xx status or with a non-empty ``errors`` list.
        """
        resp = await self._client.post(
            "/trade",
            params={"api-key": self._api_key},
            json=payload,
        )
        if resp.status_code >= 400:
            raise httpx.HTTPStatusError(
                f"PumpPortal {resp.status_code}: {resp.text[:200]}",
                request=resp.request,
                response=resp,
            )
        return resp.json()
