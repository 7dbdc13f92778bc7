"""
onboarding.py — New-account welcome and topic subscription.

When an account is created, its profile document (``users/<uid>``) is
written by the client app, usually a moment *after* the account-created
event fires. The profile carries the role and the device token, so the
handler waits for it:

═══════════════════════════════════════════════════════════════════════════
PROFILE RESOLUTION
═══════════════════════════════════════════════════════════════════════════

    PENDING_PROFILE ──(document found)──────► PROFILE_RESOLVED
          │
          └──(attempts exhausted)───────────► DEFAULTED  (role = fan)

    Poll delays (exponential):  base × 2^(attempt − 1)
        base = 2 s, 3 attempts  →  read, 2 s, read, 4 s, read

Then:
    1. One welcome notification record for the user
    2. If the profile has an ``fcmToken``: subscribe it to the role topic
       plus the role's broadcast topics. A failed subscription is logged
       and the remaining topics are still attempted.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from crowdwatch.app.alerts.channels.push import PushBroadcaster
from crowdwatch.app.alerts.models import NotificationRecord, unique
from crowdwatch.app.core.thresholds import (
    EngineConfig,
    ROLE_EMERGENCY,
    ROLE_FAN,
    ROLE_ORGANIZER,
    ROLE_SECURITY,
)
from crowdwatch.app.store.base import NOTIFICATIONS, USERS, DocumentStore

logger = logging.getLogger(__name__)

NOTIFICATION_TYPE_WELCOME = "welcome"
WELCOME_TITLE = "Welcome to CrowdWatch!"

_ROLE_LABELS: Dict[str, str] = {
    ROLE_FAN: "a Fan",
    ROLE_ORGANIZER: "an Event Organizer",
    ROLE_SECURITY: "Security Team",
    ROLE_EMERGENCY: "Emergency Services",
}

SleepFn = Callable[[float], Awaitable[None]]


class ProfileState(str, Enum):
    PENDING_PROFILE = "pending_profile"
    PROFILE_RESOLVED = "profile_resolved"
    DEFAULTED = "defaulted"


@dataclass
class ProfileResolution:
    """Outcome of waiting for a user's profile document."""
    state: ProfileState
    role: str
    attempts: int
    profile: Optional[Dict[str, Any]] = None

    @property
    def fcm_token(self) -> Optional[str]:
        if not self.profile:
            return None
        token = self.profile.get("fcmToken")
        return token if isinstance(token, str) and token else None


@dataclass
class OnboardingResult:
    user_id: str
    resolution: ProfileResolution
    notification_id: str
    subscribed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "profile_state": self.resolution.state.value,
            "role": self.resolution.role,
            "attempts": self.resolution.attempts,
            "notification_id": self.notification_id,
            "topics_subscribed": self.subscribed,
            "topics_failed": self.failed,
        }


def format_role(role: str) -> str:
    """Role as it reads in a sentence ("set up as an Event Organizer")."""
    return _ROLE_LABELS.get(role, role)


def topics_for_role(role: str, config: EngineConfig) -> List[str]:
    """The role's own topic followed by its broadcast topics."""
    broadcast = config.role_topics.get(role)
    if broadcast is None:
        broadcast = config.role_topics.get(config.default_role, ())
    return unique([role, *broadcast])


def welcome_body(display_name: str, role: str) -> str:
    return (
        f"Hello {display_name}, your account has been set up as {format_role(role)}. "
        "You will receive important updates and alerts here."
    )


async def resolve_profile(
    store: DocumentStore,
    user_id: str,
    config: EngineConfig,
    *,
    sleep: SleepFn = asyncio.sleep,
) -> ProfileResolution:
    """
    Poll for ``users/<user_id>`` with bounded exponential backoff.

    Parameters
    ----------
    store : DocumentStore
    user_id : str
    config : EngineConfig
        ``profile_poll_attempts`` and ``profile_poll_base_delay``.
    sleep : callable
        Injected for tests.

    Returns
    -------
    ProfileResolution
        PROFILE_RESOLVED with the stored role (default role when the
        document has none), or DEFAULTED with the default role.
    """
    attempts = max(config.profile_poll_attempts, 1)
    for attempt in range(1, attempts + 1):
        doc = await store.get(USERS, user_id)
        if doc is not None:
            role = doc.get("role") or config.default_role
            return ProfileResolution(ProfileState.PROFILE_RESOLVED, role, attempt, doc.data)
        if attempt < attempts:
            delay = config.profile_poll_base_delay * (2 ** (attempt - 1))
            logger.debug("Profile for %s not found yet; retrying in %.1fs", user_id, delay)
            await sleep(delay)

    logger.warning(
        "Profile for %s not found after %d attempts; using role %s",
        user_id, attempts, config.default_role,
    )
    return ProfileResolution(ProfileState.DEFAULTED, config.default_role, attempts)


class OnboardingService:
    """Handles the account-created event."""

    def __init__(
        self,
        store: DocumentStore,
        push: PushBroadcaster,
        config: EngineConfig,
        *,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._store = store
        self._push = push
        self._config = config
        self._sleep = sleep

    async def on_user_created(
        self,
        user_id: str,
        *,
        email: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> OnboardingResult:
        name = display_name or (email.split("@")[0] if email else "") or "New User"
        logger.info("New user created: %s (%s)", user_id, email or "no email")

        resolution = await resolve_profile(self._store, user_id, self._config, sleep=self._sleep)

        record = NotificationRecord(
            user_id=user_id,
            title=WELCOME_TITLE,
            body=welcome_body(name, resolution.role),
            type=NOTIFICATION_TYPE_WELCOME,
            reference_id=user_id,
            created_at=datetime.now(timezone.utc),
        )
        notification_id = await self._store.add(NOTIFICATIONS, record.to_dict())
        logger.info("Welcome notification created for %s (role=%s)", user_id, resolution.role)

        result = OnboardingResult(user_id, resolution, notification_id)
        token = resolution.fcm_token
        if not token:
            logger.info("User %s has no device token; topic subscription skipped", user_id)
            return result

        for topic in topics_for_role(resolution.role, self._config):
            try:
                await self._push.subscribe(token, topic)
            except Exception as e:
                logger.error("Failed to subscribe user %s to topic '%s': %s", user_id, topic, e,
                             extra={"topic": topic})
                result.failed.append(topic)
            else:
                logger.info("Subscribed user %s to topic '%s'", user_id, topic)
                result.subscribed.append(topic)
        return result
