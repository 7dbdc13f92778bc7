"""
push.py — Topic push messages and the provider interface.

A push message is addressed to a **topic**, never to a user: every
device subscribed to ``security`` receives a message sent to
``security``. Per-user delivery is the job of in-app notification
records, not of this module.

═══════════════════════════════════════════════════════════════════════════
SEVERITY HINTS
═══════════════════════════════════════════════════════════════════════════

    Hint                    critical                 other
    ─────────────────────   ──────────────────────   ──────────────
    android.priority        high                     normal
    android channel id      <channel>_critical       <channel>
    android sound           alarm                    default
    apns sound              alarm.wav                default
    apns badge              1                        1

This module provides a simulation for development / testing that logs
each message and returns a simulated message id, as the other channels
do when no provider credentials are configured.
"""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CHANNEL = "alerts"


@dataclass
class PushMessage:
    """One push notification addressed to one topic."""
    topic: str
    title: str
    body: str
    data: Dict[str, str] = field(default_factory=dict)
    severity: Optional[str] = None
    channel: str = DEFAULT_CHANNEL
    click_action: str = "FLUTTER_NOTIFICATION_CLICK"

    @property
    def is_critical(self) -> bool:
        return self.severity == "critical"

    def to_fcm(self) -> Dict[str, Any]:
        """Render the FCM HTTP v1 ``message`` object."""
        critical = self.is_critical
        data = {k: str(v) for k, v in self.data.items() if v is not None}
        data.setdefault("click_action", self.click_action)
        return {
            "topic": self.topic,
            "notification": {"title": self.title, "body": self.body},
            "data": data,
            "android": {
                "priority": "high" if critical else "normal",
                "notification": {
                    "channel_id": f"{self.channel}_critical" if critical else self.channel,
                    "sound": "alarm" if critical else "default",
                },
            },
            "apns": {
                "payload": {
                    "aps": {
                        "sound": "alarm.wav" if critical else "default",
                        "badge": 1,
                    },
                },
            },
        }


class PushBroadcaster(ABC):
    """Provider interface. Implementations raise on failure; callers isolate."""

    name: str = "push"

    @abstractmethod
    async def send(self, message: PushMessage) -> str:
        """Deliver ``message``; returns the provider's message id."""

    @abstractmethod
    async def subscribe(self, token: str, topic: str) -> None:
        """Subscribe a device token to a topic."""

    @property
    def is_configured(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class SimulatedPushBroadcaster(PushBroadcaster):
    """
    Logs and records messages instead of sending them.

    ``fail_topics`` makes sends to those topics raise, which lets callers
    exercise partial-failure paths without a real provider.

    Only the most recent ``history`` messages and subscriptions are kept.
    """

    name = "simulation"

    def __init__(self, fail_topics: Sequence[str] = (), history: int = 500):
        if history < 1:
            raise ValueError("history must be at least 1")
        self.sent: Deque[PushMessage] = deque(maxlen=history)
        self.subscriptions: Deque[Tuple[str, str]] = deque(maxlen=history)
        self.fail_topics = set(fail_topics)
        self._ids = itertools.count(1)

    async def send(self, message: PushMessage) -> str:
        if message.topic in self.fail_topics:
            raise ConnectionError(f"simulated failure for topic {message.topic}")
        self.sent.append(message)
        message_id = f"sim-{next(self._ids)}"
        logger.info(
            "[PUSH] %s → topic %s: %s",
            message_id, message.topic, message.title,
            extra={"topic": message.topic, "severity": message.severity},
        )
        return message_id

    async def subscribe(self, token: str, topic: str) -> None:
        if topic in self.fail_topics:
            raise ConnectionError(f"simulated subscribe failure for topic {topic}")
        self.subscriptions.append((token, topic))
        logger.debug("[PUSH] token %s... subscribed to %s", token[:8], topic)

    def topics_sent(self) -> List[str]:
        return [m.topic for m in self.sent]
