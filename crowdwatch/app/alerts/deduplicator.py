"""
deduplicator.py — Suppresses repeat congestion alerts for the same zone.

An alert for (event, zone, type) is admitted only if no *active* alert
with the same key was created within the dedup window (default 30 min).

═══════════════════════════════════════════════════════════════════════════
ADMISSION FLOW
═══════════════════════════════════════════════════════════════════════════

    async with dedup.guard(zone_id, event_id, "congestion"):
        if await dedup.should_create(zone_id, event_id, "congestion", now):
            persist alert
            dispatch

``guard`` serializes the check-then-write per key inside one process, so
two concurrent cycles cannot both see "no recent alert" and both write.

When several processes run the engine, an optional distributed claim is
also taken: ``SET dedup:<event>:<zone>:<type> 1 NX EX <window>`` in
Redis. A second process that loses the claim skips the alert even if
the first one has not committed yet. An unreachable Redis never blocks
alerting; the store query remains authoritative.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional, Tuple

from crowdwatch.app.store.base import ALERTS, DocumentStore, where

logger = logging.getLogger(__name__)

DedupKey = Tuple[Optional[str], str, str]
ClaimFn = Callable[[str, int], Awaitable[Optional[bool]]]
ReleaseFn = Callable[[str], Awaitable[bool]]


def claim_key(zone_id: str, event_id: Optional[str], alert_type: str) -> str:
    return f"dedup:{event_id or '-'}:{zone_id}:{alert_type}"


class AlertDeduplicator:
    """
    Decides whether a new alert for a zone is allowed.

    Parameters
    ----------
    store : DocumentStore
        Source of truth for existing alerts.
    window : timedelta
        How far back an active alert suppresses a new one.
    claim : callable, optional
        ``async claim(key, ttl_seconds) -> bool | None``. ``False`` means
        another process already holds the window; ``None`` means the
        claim backend was unavailable.
    """

    def __init__(
        self,
        store: DocumentStore,
        window: timedelta = timedelta(minutes=30),
        *,
        claim: Optional[ClaimFn] = None,
        release: Optional[ReleaseFn] = None,
    ):
        self._store = store
        self._window = window
        self._claim = claim
        self._release = release
        self._locks: Dict[DedupKey, asyncio.Lock] = {}

    @property
    def window(self) -> timedelta:
        return self._window

    def _lock_for(self, key: DedupKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    @asynccontextmanager
    async def guard(
        self,
        zone_id: str,
        event_id: Optional[str],
        alert_type: str,
    ) -> AsyncIterator[None]:
        """Hold the per-key lock for the duration of check + persist."""
        async with self._lock_for((event_id, zone_id, alert_type)):
            yield

    async def should_create(
        self,
        zone_id: str,
        event_id: Optional[str],
        alert_type: str,
        now: datetime,
    ) -> bool:
        """
        True when no active alert for the key exists inside the window.

        Call inside ``guard`` for the same key.
        """
        since = now - self._window
        existing = await self._store.query(
            ALERTS,
            [
                where("eventId", "==", event_id),
                where("zoneId", "==", zone_id),
                where("type", "==", alert_type),
                where("isActive", "==", True),
                where("createdAt", ">=", since),
            ],
            limit=1,
        )
        if existing:
            logger.info(
                "Skipping duplicate %s alert for zone %s (recent alert %s)",
                alert_type, zone_id, existing[0].id,
                extra={"zone_id": zone_id, "event_id": event_id},
            )
            return False

        if self._claim is not None:
            ttl = max(int(self._window.total_seconds()), 1)
            claimed = await self._claim(claim_key(zone_id, event_id, alert_type), ttl)
            if claimed is False:
                logger.info(
                    "Skipping %s alert for zone %s: window claimed by another worker",
                    alert_type, zone_id,
                    extra={"zone_id": zone_id, "event_id": event_id},
                )
                return False
            if claimed is None:
                logger.debug("Dedup claim backend unavailable; relying on store check")

        return True

    async def release(self, zone_id: str, event_id: Optional[str], alert_type: str) -> None:
        """Give back a distributed claim after the guarded write failed."""
        if self._release is None:
            return
        await self._release(claim_key(zone_id, event_id, alert_type))
