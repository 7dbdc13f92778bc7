"""
channels — Push delivery backends.

    push   — PushMessage, PushBroadcaster interface, simulated provider
    fcm    — Firebase Cloud Messaging provider (httpx)

Providers deliver one message to one topic and raise on failure.
Concurrency, timeouts and failure isolation live in the dispatcher.
"""

from crowdwatch.app.alerts.channels.push import (
    PushBroadcaster,
    PushMessage,
    SimulatedPushBroadcaster,
)

__all__ = ["PushBroadcaster", "PushMessage", "SimulatedPushBroadcaster", "build_push_broadcaster"]


def build_push_broadcaster(settings) -> PushBroadcaster:
    """Provider selected by ``PUSH_PROVIDER``."""
    if settings.PUSH_PROVIDER.lower() == "fcm":
        from crowdwatch.app.alerts.channels.fcm import FcmPushBroadcaster

        return FcmPushBroadcaster(
            settings.FCM_PROJECT_ID,
            settings.FCM_ACCESS_TOKEN,
            base_url=settings.FCM_BASE_URL,
            iid_url=settings.FCM_IID_URL,
            timeout=settings.PUSH_SEND_TIMEOUT_SECONDS,
        )
    return SimulatedPushBroadcaster()
