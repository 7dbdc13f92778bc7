"""
test_deduplicator.py — Dedup window, active flag, key isolation and the
distributed claim.

Run with:
    pytest tests/test_deduplicator.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

from crowdwatch.app.alerts.deduplicator import AlertDeduplicator, claim_key
from crowdwatch.app.store.base import ALERTS


async def _seed_alert(store, created_at, *, zone_id="zone-a", event_id="evt-1",
                      alert_type="congestion", is_active=True):
    return await store.add(ALERTS, {
        "type": alert_type,
        "zoneId": zone_id,
        "eventId": event_id,
        "isActive": is_active,
        "createdAt": created_at,
        "message": "seeded",
        "severity": "warning",
        "targetRoles": ["fan"],
    })


class TestShouldCreate:

    def test_no_alerts_allows(self, store, now):
        dedup = AlertDeduplicator(store)
        assert asyncio.run(dedup.should_create("zone-a", "evt-1", "congestion", now)) is True

    def test_recent_active_alert_suppresses(self, store, now):
        async def scenario():
            await _seed_alert(store, now - timedelta(minutes=29))
            return await AlertDeduplicator(store).should_create(
                "zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is False

    def test_window_edge_is_inclusive(self, store, now):
        async def scenario():
            await _seed_alert(store, now - timedelta(minutes=30))
            return await AlertDeduplicator(store).should_create(
                "zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is False

    def test_after_window_allows(self, store, now):
        async def scenario():
            await _seed_alert(store, now - timedelta(minutes=31))
            return await AlertDeduplicator(store).should_create(
                "zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is True

    def test_inactive_alert_does_not_suppress(self, store, now):
        async def scenario():
            await _seed_alert(store, now - timedelta(minutes=5), is_active=False)
            return await AlertDeduplicator(store).should_create(
                "zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is True

    def test_other_zone_event_or_type_does_not_suppress(self, store, now):
        async def scenario():
            await _seed_alert(store, now, zone_id="zone-b")
            await _seed_alert(store, now, event_id="evt-2")
            await _seed_alert(store, now, alert_type="manual")
            return await AlertDeduplicator(store).should_create(
                "zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is True

    def test_custom_window(self, store, now):
        async def scenario():
            await _seed_alert(store, now - timedelta(minutes=6))
            dedup = AlertDeduplicator(store, timedelta(minutes=5))
            return await dedup.should_create("zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is True


class TestDistributedClaim:

    def test_lost_claim_suppresses(self, store, now):
        claim = AsyncMock(return_value=False)
        dedup = AlertDeduplicator(store, claim=claim)
        assert asyncio.run(dedup.should_create("zone-a", "evt-1", "congestion", now)) is False
        claim.assert_awaited_once_with("dedup:evt-1:zone-a:congestion", 1800)

    def test_unavailable_backend_falls_back_to_store(self, store, now):
        dedup = AlertDeduplicator(store, claim=AsyncMock(return_value=None))
        assert asyncio.run(dedup.should_create("zone-a", "evt-1", "congestion", now)) is True

    def test_claim_not_taken_when_store_suppresses(self, store, now):
        claim = AsyncMock(return_value=True)

        async def scenario():
            await _seed_alert(store, now)
            dedup = AlertDeduplicator(store, claim=claim)
            return await dedup.should_create("zone-a", "evt-1", "congestion", now)

        assert asyncio.run(scenario()) is False
        claim.assert_not_awaited()

    def test_release(self, store):
        release = AsyncMock(return_value=True)
        dedup = AlertDeduplicator(store, release=release)
        asyncio.run(dedup.release("zone-a", None, "congestion"))
        release.assert_awaited_once_with(claim_key("zone-a", None, "congestion"))
        assert claim_key("zone-a", None, "congestion") == "dedup:-:zone-a:congestion"


class TestGuard:

    def test_guard_serializes_same_key(self, store):
        order = []

        async def worker(name, dedup):
            async with dedup.guard("zone-a", "evt-1", "congestion"):
                order.append(f"{name}:in")
                await asyncio.sleep(0.01)
                order.append(f"{name}:out")

        async def scenario():
            dedup = AlertDeduplicator(store)
            await asyncio.gather(worker("a", dedup), worker("b", dedup))

        asyncio.run(scenario())
        assert order in (["a:in", "a:out", "b:in", "b:out"], ["b:in", "b:out", "a:in", "a:out"])

    def test_guard_does_not_block_other_zones(self, store):
        order = []

        async def worker(zone, dedup):
            async with dedup.guard(zone, "evt-1", "congestion"):
                order.append(f"{zone}:in")
                await asyncio.sleep(0.01)
                order.append(f"{zone}:out")

        async def scenario():
            dedup = AlertDeduplicator(store)
            await asyncio.gather(worker("a", dedup), worker("b", dedup))

        asyncio.run(scenario())
        assert order[:2] == ["a:in", "b:in"]
