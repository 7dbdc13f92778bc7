"""
dispatcher.py — Best-effort fan-out to push topics and per-user records.

One notification event produces:

    1. One push message per unique topic, sent concurrently
    2. One in-app notification record per active user whose role is
       targeted

═══════════════════════════════════════════════════════════════════════════
FAILURE ISOLATION
═══════════════════════════════════════════════════════════════════════════

    Topic sends run under ``asyncio.gather``. Each send is wrapped so
    that a provider error or a timeout becomes a FAILED ``TopicDelivery``
    and is logged; it never cancels sibling sends and never reaches the
    caller. There is no retry: a missed topic stays missed.

    Record persistence is different: a store error propagates, because
    the caller (trigger endpoint or aggregation cycle) must know that
    records were not written.

═══════════════════════════════════════════════════════════════════════════
ROLE QUERIES
═══════════════════════════════════════════════════════════════════════════

    The store caps ``in`` filters at 30 values, so target roles are
    de-duplicated and queried in chunks of at most 30. Each chunk's
    records are committed as one batch; a chunk with more users than a
    batch can hold is split at DEFAULT_BATCH_SIZE writes. A user matches
    at most one chunk because each user has exactly one role.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from crowdwatch.app.alerts.channels.push import DEFAULT_CHANNEL, PushBroadcaster, PushMessage
from crowdwatch.app.alerts.models import (
    DeliveryStatus,
    DispatchReport,
    NotificationRecord,
    TopicDelivery,
    unique,
)
from crowdwatch.app.store.base import (
    DEFAULT_BATCH_SIZE,
    MAX_IN_VALUES,
    NOTIFICATIONS,
    USERS,
    DocumentStore,
    chunked,
    where,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """
    Fans a notification out to topics and user records.

    Parameters
    ----------
    store : DocumentStore
    push : PushBroadcaster
    send_timeout : float
        Upper bound in seconds for a single topic send.
    click_action : str
        Added to every message's data payload.
    """

    def __init__(
        self,
        store: DocumentStore,
        push: PushBroadcaster,
        *,
        send_timeout: float = 10.0,
        click_action: str = "FLUTTER_NOTIFICATION_CLICK",
    ):
        self._store = store
        self._push = push
        self._send_timeout = send_timeout
        self._click_action = click_action

    @property
    def push(self) -> PushBroadcaster:
        return self._push

    # ─────────────────────────────────────────────────────────────────────
    # Topics
    # ─────────────────────────────────────────────────────────────────────

    async def _send_one(self, message: PushMessage) -> TopicDelivery:
        started = time.perf_counter()
        try:
            message_id = await asyncio.wait_for(self._push.send(message), self._send_timeout)
        except asyncio.TimeoutError:
            error = f"timed out after {self._send_timeout:.1f}s"
        except Exception as exc:
            error = str(exc) or type(exc).__name__
        else:
            return TopicDelivery(
                topic=message.topic,
                status=DeliveryStatus.DELIVERED,
                message_id=message_id,
                latency_ms=(time.perf_counter() - started) * 1000,
            )

        logger.error(
            "Push to topic %s failed: %s", message.topic, error,
            extra={"topic": message.topic, "severity": message.severity},
        )
        return TopicDelivery(
            topic=message.topic,
            status=DeliveryStatus.FAILED,
            error_message=error,
            latency_ms=(time.perf_counter() - started) * 1000,
        )

    async def broadcast_to_topics(
        self,
        topics: Sequence[str],
        title: str,
        body: str,
        data: Optional[Dict[str, str]] = None,
        severity: Optional[str] = None,
        channel: str = DEFAULT_CHANNEL,
    ) -> List[TopicDelivery]:
        """
        Send one message per unique topic, concurrently.

        Returns one TopicDelivery per unique topic, in first-seen order.
        Never raises for a topic failure.
        """
        messages = [
            PushMessage(
                topic=topic,
                title=title,
                body=body,
                data=dict(data or {}),
                severity=severity,
                channel=channel,
                click_action=self._click_action,
            )
            for topic in unique(list(topics))
        ]
        if not messages:
            return []

        deliveries = await asyncio.gather(*(self._send_one(m) for m in messages))
        delivered = sum(1 for d in deliveries if d.status == DeliveryStatus.DELIVERED)
        logger.info(
            "Push fan-out '%s': %d/%d topics delivered", title, delivered, len(deliveries),
        )
        return list(deliveries)

    # ─────────────────────────────────────────────────────────────────────
    # Records
    # ─────────────────────────────────────────────────────────────────────

    async def persist_notification_records(
        self,
        title: str,
        body: str,
        notification_type: str,
        reference_id: str,
        roles: Sequence[str],
        *,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Write one notification record per active user holding a role.

        Returns
        -------
        int
            Number of records written.
        """
        role_list = unique(list(roles))
        if not role_list:
            return 0
        created_at = now or datetime.now(timezone.utc)

        written = 0
        for role_chunk in chunked(role_list, MAX_IN_VALUES):
            users = await self._store.query(
                USERS,
                [where("role", "in", list(role_chunk)), where("isActive", "==", True)],
            )
            if not users:
                continue

            for user_chunk in chunked(users, DEFAULT_BATCH_SIZE):
                batch = self._store.batch()
                for user in user_chunk:
                    record = NotificationRecord(
                        user_id=user.id,
                        title=title,
                        body=body,
                        type=notification_type,
                        reference_id=reference_id,
                        created_at=created_at,
                    )
                    batch.create(NOTIFICATIONS, record.to_dict())
                written += await batch.commit()

        logger.info(
            "Wrote %d notification records for %s %s (roles=%s)",
            written, notification_type, reference_id, role_list,
        )
        return written

    # ─────────────────────────────────────────────────────────────────────
    # Combined
    # ─────────────────────────────────────────────────────────────────────

    async def dispatch(
        self,
        *,
        reference_id: str,
        notification_type: str,
        title: str,
        body: str,
        topics: Sequence[str],
        record_roles: Sequence[str],
        data: Optional[Dict[str, str]] = None,
        severity: Optional[str] = None,
        channel: str = DEFAULT_CHANNEL,
        now: Optional[datetime] = None,
    ) -> DispatchReport:
        """
        Topics first, then records.

        Calling this twice for the same reference sends and records twice;
        callers that need at-most-once gate before calling.
        """
        deliveries = await self.broadcast_to_topics(
            topics, title, body, data=data, severity=severity, channel=channel,
        )
        written = await self.persist_notification_records(
            title, body, notification_type, reference_id, record_roles, now=now,
        )
        return DispatchReport(
            reference_id=reference_id,
            notification_type=notification_type,
            title=title,
            deliveries=deliveries,
            records_written=written,
        )
