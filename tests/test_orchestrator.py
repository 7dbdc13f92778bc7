"""
test_orchestrator.py — Aggregation cycle states, outcomes and cleanup.

Run with:
    pytest tests/test_orchestrator.py -v
"""

from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from crowdwatch.app.aggregation.orchestrator import CycleOutcome, CycleState
from crowdwatch.app.core.errors import AggregationError
from crowdwatch.app.store.base import (
    ALERTS,
    DENSITY_READINGS,
    LOCATION_SAMPLES,
    USERS,
    ZONES,
)

# ~7.07 m square just north-east of (0, 0): area ≈ 49.97 m²
SIDE = 6.35e-5
CENTRE = SIDE / 2
NORTH_STAND = [
    {"lat": 0.0, "lng": 0.0},
    {"lat": 0.0, "lng": SIDE},
    {"lat": SIDE, "lng": SIDE},
    {"lat": SIDE, "lng": 0.0},
]


async def _seed_zone(store, zone_id="zone-north", capacity=100, boundary=None):
    await store.set(ZONES, zone_id, {
        "name": "North Stand",
        "eventId": "evt-final",
        "boundaries": NORTH_STAND if boundary is None else boundary,
        "capacity": capacity,
    })


async def _seed_samples(store, count, timestamp, lat=CENTRE, lng=CENTRE):
    batch = store.batch()
    for _ in range(count):
        batch.create(LOCATION_SAMPLES, {"latitude": lat, "longitude": lng, "timestamp": timestamp})
    await batch.commit()


async def _seed_staff(store):
    for i, role in enumerate(["fan", "organizer", "security", "emergency"]):
        await store.set(USERS, f"user-{i}", {"role": role, "isActive": True})


class TestNoSamples:

    def test_readings_untouched_and_old_samples_cleaned(self, services, store, now):
        async def scenario():
            await _seed_zone(store)
            await store.set(DENSITY_READINGS, "zone-north",
                            {"zoneId": "zone-north", "currentPopulation": 42, "status": "moderate"})
            await _seed_samples(store, 3, now - timedelta(minutes=10))
            report = await services.orchestrator.run_cycle(now)
            reading = await store.get(DENSITY_READINGS, "zone-north")
            return report, reading

        report, reading = asyncio.run(scenario())
        assert report.outcome == CycleOutcome.NO_SAMPLES
        assert report.states == [CycleState.FETCH_SAMPLES, CycleState.CLEANUP, CycleState.IDLE]
        assert reading.data == {"zoneId": "zone-north", "currentPopulation": 42, "status": "moderate"}
        assert report.samples_deleted == 3
        assert store.count(LOCATION_SAMPLES) == 0
        assert store.count(ALERTS) == 0


class TestNoZones:

    def test_samples_ignored_without_zones(self, services, store, push, now):
        async def scenario():
            await _seed_samples(store, 5, now - timedelta(seconds=5))
            return await services.orchestrator.run_cycle(now)

        report = asyncio.run(scenario())
        assert report.outcome == CycleOutcome.NO_ZONES_CONFIGURED
        assert report.samples == 5
        assert CycleState.CLASSIFY not in report.states
        assert report.states[-2:] == [CycleState.CLEANUP, CycleState.IDLE]
        assert store.count(DENSITY_READINGS) == 0
        assert not push.sent
        # Recent samples survive the cleanup
        assert store.count(LOCATION_SAMPLES) == 5


class TestCompletedCycle:

    def test_overcrowded_zone_goes_critical(self, services, store, push, now):
        async def scenario():
            await _seed_zone(store)
            await _seed_staff(store)
            await _seed_samples(store, 230, now - timedelta(seconds=10))
            report = await services.orchestrator.run_cycle(now)
            reading = await store.get(DENSITY_READINGS, "zone-north")
            return report, reading

        report, reading = asyncio.run(scenario())
        assert report.outcome == CycleOutcome.COMPLETED
        assert report.states == [
            CycleState.FETCH_SAMPLES,
            CycleState.FETCH_ZONES,
            CycleState.CLASSIFY,
            CycleState.COMPUTE_DENSITY,
            CycleState.PERSIST,
            CycleState.ALERT_AND_DISPATCH,
            CycleState.CLEANUP,
            CycleState.IDLE,
        ]
        assert services.orchestrator.last_report is report

        assert reading.get("currentPopulation") == 230
        assert reading.get("status") == "critical"
        assert reading.get("occupancy") == pytest.approx(2.3)
        assert reading.get("areaSqMeters") == pytest.approx(49.97, abs=0.05)
        assert reading.get("densityPerSqMeter") == pytest.approx(4.603, abs=0.01)
        assert reading.get("lastUpdated") == now

        assert len(report.alerts) == 1
        alert = report.alerts[0].alert
        assert alert.severity == "critical"
        assert alert.target_roles == ["fan", "organizer", "security", "emergency"]
        assert sorted(push.topics_sent()) == ["emergency", "fan", "organizer", "security"]
        assert report.alerts[0].report.records_written == 4

    def test_empty_zone_gets_zero_reading(self, services, store, now):
        async def scenario():
            await _seed_zone(store, "zone-north")
            await _seed_zone(store, "zone-south", boundary=[
                {"lat": 10.0, "lng": 10.0}, {"lat": 10.0, "lng": 10.001},
                {"lat": 10.001, "lng": 10.001}, {"lat": 10.001, "lng": 10.0},
            ])
            await _seed_samples(store, 10, now - timedelta(seconds=10))
            await services.orchestrator.run_cycle(now)
            return await store.get(DENSITY_READINGS, "zone-south")

        south = asyncio.run(scenario())
        assert south.get("currentPopulation") == 0
        assert south.get("status") == "safe"

    def test_reading_is_merged_not_replaced(self, services, store, now):
        async def scenario():
            await _seed_zone(store)
            await store.set(DENSITY_READINGS, "zone-north", {"pinnedByOrganizer": True})
            await _seed_samples(store, 10, now - timedelta(seconds=10))
            await services.orchestrator.run_cycle(now)
            return await store.get(DENSITY_READINGS, "zone-north")

        reading = asyncio.run(scenario())
        assert reading.get("pinnedByOrganizer") is True
        assert reading.get("currentPopulation") == 10

    def test_samples_outside_lookback_not_counted(self, services, store, now):
        async def scenario():
            await _seed_zone(store)
            await _seed_samples(store, 4, now - timedelta(seconds=10))
            await _seed_samples(store, 6, now - timedelta(seconds=31))
            await _seed_samples(store, 2, now - timedelta(minutes=6))
            report = await services.orchestrator.run_cycle(now)
            reading = await store.get(DENSITY_READINGS, "zone-north")
            return report, reading

        report, reading = asyncio.run(scenario())
        assert report.samples == 4
        assert reading.get("currentPopulation") == 4
        # Only samples past the retention window are removed
        assert report.samples_deleted == 2
        assert store.count(LOCATION_SAMPLES) == 10

    def test_second_cycle_does_not_repeat_alert(self, services, store, push, now):
        async def scenario():
            await _seed_zone(store)
            await _seed_samples(store, 230, now - timedelta(seconds=10))
            first = await services.orchestrator.run_cycle(now)
            await _seed_samples(store, 230, now + timedelta(seconds=50))
            second = await services.orchestrator.run_cycle(now + timedelta(minutes=1))
            return first, second

        first, second = asyncio.run(scenario())
        assert len(first.alerts) == 1
        assert second.alerts == []
        assert store.count(ALERTS) == 1

    def test_report_serializes(self, services, store, now):
        async def scenario():
            await _seed_zone(store)
            await _seed_samples(store, 10, now - timedelta(seconds=10))
            return await services.orchestrator.run_cycle(now)

        data = asyncio.run(scenario()).to_dict()
        assert data["outcome"] == "completed"
        assert data["readings"][0]["lastUpdated"] == now.isoformat()
        assert data["states"][-1] == "idle"


class TestCycleFailure:

    def test_failure_names_state_and_keeps_no_report(self, services, store, now):
        async def exploding(*args, **kwargs):
            raise RuntimeError("push provider exploded")

        services.alerts.handle_density_reading = exploding

        async def scenario():
            await _seed_zone(store)
            await _seed_samples(store, 10, now - timedelta(seconds=10))
            await services.orchestrator.run_cycle(now)

        with pytest.raises(AggregationError) as exc_info:
            asyncio.run(scenario())

        assert exc_info.value.details == {"state": "alert_and_dispatch"}
        assert "push provider exploded" in exc_info.value.message
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        assert services.orchestrator.last_report is None
        # Readings persisted before the failure stay written
        assert store.count(DENSITY_READINGS) == 1

    def test_next_cycle_recovers(self, services, store, now):
        original = services.alerts.handle_density_reading
        calls = {"n": 0}

        async def flaky(*args, **kwargs):
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("transient")
            return await original(*args, **kwargs)

        services.alerts.handle_density_reading = flaky

        async def scenario():
            await _seed_zone(store)
            await _seed_samples(store, 10, now - timedelta(seconds=10))
            try:
                await services.orchestrator.run_cycle(now)
            except AggregationError:
                pass
            return await services.orchestrator.run_cycle(now + timedelta(seconds=5))

        report = asyncio.run(scenario())
        assert report.outcome == CycleOutcome.COMPLETED

    def test_overlapping_cycles_report_their_own_state(self, services, store, now):
        orchestrator = services.orchestrator

        async def slow_failing_zones():
            await asyncio.sleep(0.05)
            raise RuntimeError("zones query failed")

        orchestrator._fetch_zones = slow_failing_zones

        async def scenario():
            await _seed_samples(store, 5, now - timedelta(seconds=10))
            # The second cycle's lookback window is empty, so it finishes
            # while the first is still waiting on its zones query.
            return await asyncio.gather(
                orchestrator.run_cycle(now),
                orchestrator.run_cycle(now + timedelta(hours=1)),
                return_exceptions=True,
            )

        failed, finished = asyncio.run(scenario())
        assert isinstance(failed, AggregationError)
        assert failed.details == {"state": "fetch_zones"}
        assert finished.outcome == CycleOutcome.NO_SAMPLES
        assert finished.state == CycleState.IDLE
        assert orchestrator.last_report is finished
