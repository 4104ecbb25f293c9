"""Dedup cache: at most one deployment per trigger (source post).

Two-tier read with a bounded staleness window:

1. In-memory map ``trigger_id -> label``, rebuilt in full from the store
   whenever it is older than ``ttl`` seconds (before the lookup is served,
   so staleness never exceeds the TTL regardless of query volume).
2. On a memory miss, a direct point lookup in the store, so a stale cache
   can never produce a false negative while the store is reachable.

If the store is unreachable the cache serves its last known state and the
lookup is logged as a reconciliation risk; it never raises and never
blocks admission.
"""

from __future__ import annotations

import logging
import re
import time
from typing import Callable, Optional

from pydantic import BaseModel

from deployer.config import DEDUP_CACHE_TTL
from deployer.store import DeploymentStore

logger = logging.getLogger(__name__)

_STATUS_ID = re.compile(r"status(?:es)?/(\d+)")


def extract_trigger_id(trigger_ref: Optional[str]) -> Optional[str]:
    """Extract the numeric post id from an x.com / twitter.com status URL.

    Returns None when the reference cannot be parsed; such references are
    not deduplicated.
    """
    if not trigger_ref:
        return None
    match = _STATUS_ID.search(trigger_ref)
    return match.group(1) if match else None


class DedupResult(BaseModel):
    """Result of a duplicate check."""

    duplicate: bool = False
    existing_label: Optional[str] = None


class DedupCache:
    """Trigger-id cache derived from the deployment store."""

    def __init__(
        self,
        store: DeploymentStore,
        ttl: float = DEDUP_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._store = store
        self._ttl = ttl
        self._clock = clock
        self._entries: dict[str, str] = {}
        # Added locally but not yet seen in the store (e.g. failed write-back)
        self._unconfirmed: set[str] = set()
        self._last_refresh: Optional[float] = None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def is_duplicate(self, trigger_ref: Optional[str]) -> DedupResult:
        """Check whether *trigger_ref* was already deployed."""
        trigger_id = extract_trigger_id(trigger_ref)
        if trigger_id is None:
            return DedupResult()

        if self.is_stale:
            await self.refresh()

        label = self._entries.get(trigger_id)
        if label is not None:
            return DedupResult(duplicate=True, existing_label=label)

        try:
            existing = await self._store.find_by_trigger(trigger_id)
        except Exception:
            logger.error(
                "dedup_store_unavailable",
                extra={
                    "trigger_id": trigger_id,
                    "cache_size": len(self._entries),
                    "risk": "reconciliation",
                },
                exc_info=True,
            )
            return DedupResult()

        if existing is None:
            return DedupResult()

        self._entries[trigger_id] = existing.label
        logger.info(
            "dedup_cache_backfilled",
            extra={"trigger_id": trigger_id, "label": existing.label},
        )
        return DedupResult(duplicate=True, existing_label=existing.label)

    def add(self, trigger_ref: Optional[str], label: str) -> None:
        """Insert a freshly deployed trigger. No-op for unparseable refs."""
        trigger_id = extract_trigger_id(trigger_ref)
        if trigger_id is None:
            return
        self._entries[trigger_id] = label
        self._unconfirmed.add(trigger_id)

    async def refresh(self) -> bool:
        """Rebuild the whole map from the store.

        Returns False (keeping the previous state) if the store fails.
        """
        try:
            triggered = await self._store.list_triggered()
        except Exception:
            logger.error(
                "dedup_store_unavailable",
                extra={
                    "operation": "refresh",
                    "cache_size": len(self._entries),
                    "risk": "reconciliation",
                },
                exc_info=True,
            )
            return False

        entries = dict(triggered)
        self._unconfirmed -= entries.keys()
        for trigger_id in self._unconfirmed:
            entries[trigger_id] = self._entries[trigger_id]

        self._entries = entries
        self._last_refresh = self._clock()
        logger.info(
            "dedup_cache_refreshed",
            extra={"size": len(entries), "unconfirmed": len(self._unconfirmed)},
        )
        return True

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_stale(self) -> bool:
        if self._last_refresh is None:
            return True
        return self._clock() - self._last_refresh > self._ttl

    @property
    def size(self) -> int:
        return len(self._entries)

    @property
    def unconfirmed(self) -> set[str]:
        return set(self._unconfirmed)

    def __contains__(self, trigger_ref: str) -> bool:
        trigger_id = extract_trigger_id(trigger_ref)
        return trigger_id is not None and trigger_id in self._entries
