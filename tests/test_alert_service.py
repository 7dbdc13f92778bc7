"""
test_alert_service.py — Congestion alert admission, operator alerts and
expiry.

Run with:
    pytest tests/test_alert_service.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from crowdwatch.app.alerts.channels.push import SimulatedPushBroadcaster
from crowdwatch.app.alerts.models import DensityReading
from crowdwatch.app.core.errors import NotFoundError
from crowdwatch.app.density.evaluator import evaluate
from crowdwatch.app.services import build_services
from crowdwatch.app.store.base import ALERTS, NOTIFICATIONS, USERS, where


def _make_reading(evaluation, zone_id="zone-north", event_id="evt-1") -> DensityReading:
    return DensityReading(
        zone_id=zone_id,
        zone_name="North Stand",
        event_id=event_id,
        current_population=evaluation.count,
        capacity=evaluation.capacity,
        density_per_sq_meter=evaluation.density,
        occupancy=evaluation.occupancy,
        status=evaluation.status,
        area_sq_meters=evaluation.area_used,
    )


async def _seed_roles(store, roles):
    for i, role in enumerate(roles):
        await store.set(USERS, f"user-{i}", {"role": role, "isActive": True})


class _CheckingBroadcaster(SimulatedPushBroadcaster):
    """Records whether the alert referenced by a message was already stored."""

    def __init__(self, store):
        super().__init__()
        self.store = store
        self.alert_stored_at_send = []

    async def send(self, message):
        doc = await self.store.get(ALERTS, message.data.get("alertId", ""))
        self.alert_stored_at_send.append(doc is not None)
        return await super().send(message)


# ═══════════════════════════════════════════════════════════════════════════
# Congestion alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestHandleDensityReading:

    def test_critical_zone_raises_and_dispatches(self, services, store, push, config, now):
        evaluation = evaluate(230, 50.0, 100, config)

        async def scenario():
            await _seed_roles(store, ["fan", "security", "emergency", "organizer"])
            return await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now)

        raised = asyncio.run(scenario())
        assert raised is not None
        assert raised.alert.severity == "critical"
        assert raised.alert.message.startswith("CRITICAL: North Stand is at 230% capacity!")

        stored = asyncio.run(store.get(ALERTS, raised.alert.id))
        assert stored is not None
        assert stored.get("createdBy") == "system"
        assert stored.get("isActive") is True

        assert sorted(push.topics_sent()) == ["emergency", "fan", "organizer", "security"]
        assert push.sent[0].title == "CRITICAL ALERT"
        assert push.sent[0].data["alertId"] == raised.alert.id
        assert raised.report.records_written == 4

    def test_alert_is_stored_before_any_push(self, store, test_settings, config, now):
        push = _CheckingBroadcaster(store)
        services = build_services(test_settings, store=store, push=push, config=config)
        evaluation = evaluate(90, 100.0, 100, config)

        asyncio.run(services.alerts.handle_density_reading(
            _make_reading(evaluation), evaluation, now))
        assert push.alert_stored_at_send
        assert all(push.alert_stored_at_send)

    def test_below_thresholds_raises_nothing(self, services, store, push, config, now):
        evaluation = evaluate(50, 100.0, 100, config)
        raised = asyncio.run(services.alerts.handle_density_reading(
            _make_reading(evaluation), evaluation, now))
        assert raised is None
        assert store.count(ALERTS) == 0
        assert not push.sent

    def test_duplicate_within_window_suppressed(self, services, store, push, config, now):
        evaluation = evaluate(96, 100.0, 100, config)

        async def scenario():
            first = await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now)
            second = await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now + timedelta(minutes=10))
            return first, second

        first, second = asyncio.run(scenario())
        assert first is not None
        assert second is None
        assert store.count(ALERTS) == 1

    def test_allowed_again_after_window(self, services, store, config, now):
        evaluation = evaluate(96, 100.0, 100, config)

        async def scenario():
            await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now)
            return await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now + timedelta(minutes=31))

        assert asyncio.run(scenario()) is not None
        assert store.count(ALERTS) == 2

    def test_concurrent_cycles_create_one_alert(self, services, store, config, now):
        evaluation = evaluate(96, 100.0, 100, config)

        async def scenario():
            return await asyncio.gather(*(
                services.alerts.handle_density_reading(_make_reading(evaluation), evaluation, now)
                for _ in range(5)
            ))

        results = asyncio.run(scenario())
        assert sum(1 for r in results if r is not None) == 1
        assert store.count(ALERTS) == 1

    def test_different_zones_alert_independently(self, services, store, config, now):
        evaluation = evaluate(96, 100.0, 100, config)

        async def scenario():
            return await asyncio.gather(
                services.alerts.handle_density_reading(
                    _make_reading(evaluation, zone_id="zone-a"), evaluation, now),
                services.alerts.handle_density_reading(
                    _make_reading(evaluation, zone_id="zone-b"), evaluation, now),
            )

        results = asyncio.run(scenario())
        assert all(r is not None for r in results)
        assert store.count(ALERTS) == 2

    def test_failed_persist_releases_claim(self, store, push, test_settings, config, now):
        services = build_services(test_settings, store=store, push=push, config=config)
        released = []

        async def release(zone_id, event_id, alert_type):
            released.append((zone_id, event_id, alert_type))

        async def broken_add(*args, **kwargs):
            raise RuntimeError("write rejected")

        services.deduplicator.release = release
        store.add = broken_add
        evaluation = evaluate(96, 100.0, 100, config)

        with pytest.raises(RuntimeError):
            asyncio.run(services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now))
        assert released == [("zone-north", "evt-1", "congestion")]
        assert not push.sent


# ═══════════════════════════════════════════════════════════════════════════
# Operator alerts
# ═══════════════════════════════════════════════════════════════════════════

class TestOnAlertCreated:

    def _seed(self, store, alert_id, **fields):
        data = {
            "type": "manual",
            "message": "Gate 3 closed, use gate 5",
            "severity": "warning",
            "targetRoles": ["fan", "security"],
            "isActive": True,
            "createdBy": "organizer-7",
        }
        data.update(fields)
        asyncio.run(store.set(ALERTS, alert_id, data))

    def test_operator_alert_dispatched(self, services, store, push):
        self._seed(store, "manual-1")
        asyncio.run(_seed_roles(store, ["fan", "security", "organizer"]))

        report = asyncio.run(services.alerts.on_alert_created("manual-1"))
        assert report is not None
        assert sorted(push.topics_sent()) == ["fan", "security"]
        assert push.sent[0].title == "Warning Alert"
        assert push.sent[0].body == "Gate 3 closed, use gate 5"
        assert report.records_written == 2

        records = asyncio.run(store.query(NOTIFICATIONS, [where("referenceId", "==", "manual-1")]))
        assert {r.get("type") for r in records} == {"alert"}

    def test_malformed_severity_defaults_to_info(self, services, store, push):
        self._seed(store, "manual-3", severity=["critical"], message=42)
        asyncio.run(_seed_roles(store, ["fan"]))

        report = asyncio.run(services.alerts.on_alert_created("manual-3"))
        assert report is not None
        assert push.sent[0].severity == "info"
        assert push.sent[0].body == ""

    def test_system_alert_skipped(self, services, store, push):
        self._seed(store, "sys-1", createdBy="system")
        assert asyncio.run(services.alerts.on_alert_created("sys-1")) is None
        assert not push.sent

    def test_alert_without_roles_skipped(self, services, store, push):
        self._seed(store, "manual-2", targetRoles=[])
        assert asyncio.run(services.alerts.on_alert_created("manual-2")) is None
        assert not push.sent

    def test_missing_alert(self, services):
        with pytest.raises(NotFoundError):
            asyncio.run(services.alerts.on_alert_created("nope"))


# ═══════════════════════════════════════════════════════════════════════════
# Expiry
# ═══════════════════════════════════════════════════════════════════════════

class TestDeactivateExpired:

    def test_only_expired_active_alerts_flip(self, services, store, now):
        async def scenario():
            await store.set(ALERTS, "old", {"isActive": True, "expiresAt": now - timedelta(minutes=1)})
            await store.set(ALERTS, "edge", {"isActive": True, "expiresAt": now})
            await store.set(ALERTS, "fresh", {"isActive": True, "expiresAt": now + timedelta(hours=1)})
            await store.set(ALERTS, "manual", {"isActive": True, "expiresAt": None})
            count = await services.alerts.deactivate_expired_alerts(now)
            return count, {
                doc_id: (await store.get(ALERTS, doc_id)).get("isActive")
                for doc_id in ("old", "edge", "fresh", "manual")
            }

        count, active = asyncio.run(scenario())
        assert count == 2
        assert active == {"old": False, "edge": False, "fresh": True, "manual": True}

    def test_expired_alert_no_longer_suppresses(self, services, store, config, now):
        evaluation = evaluate(96, 100.0, 100, config)

        async def scenario():
            first = await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now)
            await services.alerts.deactivate_expired_alerts(now + config.alert_ttl)
            return first, await services.alerts.handle_density_reading(
                _make_reading(evaluation), evaluation, now + timedelta(minutes=10))

        first, second = asyncio.run(scenario())
        assert first is not None
        assert second is not None
