"""
test_onboarding.py — Profile polling, welcome record and topic
subscription.

Run with:
    pytest tests/test_onboarding.py -v
"""

from __future__ import annotations

import asyncio

from crowdwatch.app.accounts.onboarding import (
    OnboardingService,
    ProfileState,
    WELCOME_TITLE,
    resolve_profile,
    topics_for_role,
    welcome_body,
)
from crowdwatch.app.alerts.channels.push import SimulatedPushBroadcaster
from crowdwatch.app.core.thresholds import EngineConfig
from crowdwatch.app.store.base import NOTIFICATIONS, USERS


class _RecordingSleep:
    """Stands in for asyncio.sleep; can write the profile while 'waiting'."""

    def __init__(self, on_sleep=None):
        self.delays = []
        self._on_sleep = on_sleep

    async def __call__(self, delay):
        self.delays.append(delay)
        if self._on_sleep is not None:
            await self._on_sleep(len(self.delays))


class TestResolveProfile:

    def test_found_on_first_read(self, store, config):
        asyncio.run(store.set(USERS, "u1", {"role": "security"}))
        sleep = _RecordingSleep()
        resolution = asyncio.run(resolve_profile(store, "u1", config, sleep=sleep))
        assert resolution.state == ProfileState.PROFILE_RESOLVED
        assert resolution.role == "security"
        assert resolution.attempts == 1
        assert sleep.delays == []

    def test_found_after_backoff(self, store, config):
        async def write_profile(n):
            if n == 1:
                await store.set(USERS, "u1", {"role": "organizer"})

        sleep = _RecordingSleep(write_profile)
        resolution = asyncio.run(resolve_profile(store, "u1", config, sleep=sleep))
        assert resolution.state == ProfileState.PROFILE_RESOLVED
        assert resolution.role == "organizer"
        assert resolution.attempts == 2
        assert sleep.delays == [2.0]

    def test_defaults_after_exhausting_attempts(self, store, config):
        sleep = _RecordingSleep()
        resolution = asyncio.run(resolve_profile(store, "ghost", config, sleep=sleep))
        assert resolution.state == ProfileState.DEFAULTED
        assert resolution.role == "fan"
        assert resolution.attempts == 3
        # No wait after the final read
        assert sleep.delays == [2.0, 4.0]
        assert resolution.fcm_token is None

    def test_profile_without_role_uses_default(self, store, config):
        asyncio.run(store.set(USERS, "u1", {"displayName": "Sam"}))
        resolution = asyncio.run(resolve_profile(store, "u1", config, sleep=_RecordingSleep()))
        assert resolution.state == ProfileState.PROFILE_RESOLVED
        assert resolution.role == "fan"

    def test_custom_poll_settings(self, store):
        config = EngineConfig(profile_poll_attempts=4, profile_poll_base_delay=0.5)
        sleep = _RecordingSleep()
        asyncio.run(resolve_profile(store, "ghost", config, sleep=sleep))
        assert sleep.delays == [0.5, 1.0, 2.0]


class TestTopicsForRole:

    def test_role_tables(self, config):
        assert topics_for_role("fan", config) == ["fan", "general_announcements"]
        assert topics_for_role("organizer", config) == ["organizer", "general_announcements"]
        assert topics_for_role("security", config) == [
            "security", "security_alerts", "general_announcements",
        ]
        assert topics_for_role("emergency", config) == [
            "emergency", "emergency_alerts", "security_alerts", "general_announcements",
        ]

    def test_unknown_role_gets_default_broadcasts(self, config):
        assert topics_for_role("vendor", config) == ["vendor", "general_announcements"]


class TestOnUserCreated:

    def test_welcome_and_subscriptions(self, store, push, config):
        asyncio.run(store.set(USERS, "u1", {"role": "security", "fcmToken": "tok-abcdef123"}))
        service = OnboardingService(store, push, config, sleep=_RecordingSleep())

        result = asyncio.run(service.on_user_created("u1", email="sam@example.com",
                                                     display_name="Sam"))
        assert result.resolution.state == ProfileState.PROFILE_RESOLVED
        assert result.subscribed == ["security", "security_alerts", "general_announcements"]
        assert result.failed == []
        assert list(push.subscriptions) == [
            ("tok-abcdef123", "security"),
            ("tok-abcdef123", "security_alerts"),
            ("tok-abcdef123", "general_announcements"),
        ]

        record = asyncio.run(store.get(NOTIFICATIONS, result.notification_id))
        assert record.get("title") == WELCOME_TITLE
        assert record.get("type") == "welcome"
        assert record.get("referenceId") == "u1"
        assert record.get("userId") == "u1"
        assert record.get("body") == welcome_body("Sam", "security")
        assert "Security Team" in record.get("body")

    def test_failed_subscription_does_not_stop_others(self, store, config):
        push = SimulatedPushBroadcaster(fail_topics=["security_alerts"])
        asyncio.run(store.set(USERS, "u1", {"role": "security", "fcmToken": "tok-abcdef123"}))
        service = OnboardingService(store, push, config, sleep=_RecordingSleep())

        result = asyncio.run(service.on_user_created("u1"))
        assert result.failed == ["security_alerts"]
        assert result.subscribed == ["security", "general_announcements"]

    def test_no_token_means_no_subscriptions(self, store, push, config):
        asyncio.run(store.set(USERS, "u1", {"role": "fan"}))
        service = OnboardingService(store, push, config, sleep=_RecordingSleep())

        result = asyncio.run(service.on_user_created("u1"))
        assert not push.subscriptions
        assert result.subscribed == []
        assert store.count(NOTIFICATIONS) == 1

    def test_missing_profile_still_welcomed(self, store, push, config):
        service = OnboardingService(store, push, config, sleep=_RecordingSleep())
        result = asyncio.run(service.on_user_created("u9", email="kim@example.com"))

        assert result.resolution.state == ProfileState.DEFAULTED
        record = asyncio.run(store.get(NOTIFICATIONS, result.notification_id))
        assert record.get("body").startswith("Hello kim, your account has been set up as a Fan.")
        assert result.to_dict()["profile_state"] == "defaulted"

    def test_name_fallbacks(self):
        assert welcome_body("New User", "organizer").startswith(
            "Hello New User, your account has been set up as an Event Organizer."
        )
        assert "set up as vendor." in welcome_body("Lee", "vendor")
