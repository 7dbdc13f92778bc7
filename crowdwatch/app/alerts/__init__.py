"""
alerts — Congestion alerting and notification fan-out.

Sub-modules:
    models          — dataclasses shared by the engine
    deduplicator    — one active congestion alert per zone per window
    alert_factory   — alert records, messages, titles, incident text
    dispatcher      — concurrent topic push + per-user records
    alert_service   — alert admission, persistence, dispatch, expiry
    incidents       — incident created / updated notifications
    channels/       — push providers (simulation, FCM)
"""
