"""
test_density_evaluator.py — Density, status bands, occupancy and alert
severity under both thresholding bases.

Run with:
    pytest tests/test_density_evaluator.py -v
"""

from __future__ import annotations

import pytest

from crowdwatch.app.alerts.models import AlertSeverity, DensityStatus
from crowdwatch.app.core.config import Settings
from crowdwatch.app.core.thresholds import (
    AlertBasis,
    DensityBreakpoints,
    EngineConfig,
    OccupancyThresholds,
)
from crowdwatch.app.density.evaluator import (
    alert_severity,
    density_status,
    effective_area,
    evaluate,
    evaluate_occupancy,
)

BREAKPOINTS = DensityBreakpoints()


class TestDensityStatus:

    @pytest.mark.parametrize("value, expected", [
        (0.0, DensityStatus.SAFE),
        (1.59, DensityStatus.SAFE),
        (1.6, DensityStatus.MODERATE),
        (3.09, DensityStatus.MODERATE),
        (3.1, DensityStatus.HIGH),
        (4.59, DensityStatus.HIGH),
        (4.6, DensityStatus.CRITICAL),
        (12.0, DensityStatus.CRITICAL),
    ])
    def test_bands_lower_edge_inclusive(self, value, expected):
        assert density_status(value, BREAKPOINTS) == expected

    def test_monotonic_non_decreasing(self):
        values = [i * 0.05 for i in range(0, 200)]
        ranks = [density_status(v, BREAKPOINTS).rank for v in values]
        assert ranks == sorted(ranks)

    def test_same_density_same_status(self):
        assert density_status(3.3, BREAKPOINTS) == density_status(3.3, BREAKPOINTS)

    def test_breakpoints_must_ascend(self):
        with pytest.raises(ValueError):
            DensityBreakpoints(moderate=3.0, high=2.0, critical=4.0)


class TestEvaluate:

    def test_overcrowded_zone_is_critical(self, config):
        result = evaluate(230, 50.0, 100, config)
        assert result.density == pytest.approx(4.6)
        assert result.status == DensityStatus.CRITICAL
        assert result.occupancy == pytest.approx(2.3)

    def test_tiny_area_falls_back_to_capacity(self, config):
        assert effective_area(0.0, 100, config) == 50.0
        assert effective_area(0.4, 100, config) == 50.0
        assert effective_area(120.0, 100, config) == 120.0

        result = evaluate(40, 0.0, 100, config)
        assert result.area_used == 50.0
        assert result.density == pytest.approx(0.8)
        assert result.status == DensityStatus.SAFE

    def test_missing_capacity_treated_as_one(self, config):
        result = evaluate(3, 0.0, 0, config)
        assert result.capacity == 1
        assert result.area_used == 0.5
        assert result.occupancy == 3.0

    def test_empty_zone(self, config):
        result = evaluate(0, 250.0, 100, config)
        assert result.density == 0.0
        assert result.status == DensityStatus.SAFE

    def test_zero_per_person_area_gives_zero_density(self):
        config = EngineConfig(area_per_person_sqm=0.0)
        assert evaluate(10, 0.0, 100, config).density == 0.0


class TestOccupancy:

    @pytest.mark.parametrize("count, expected", [
        (0, None),
        (69, None),
        (70, AlertSeverity.INFO),
        (84, AlertSeverity.INFO),
        (85, AlertSeverity.WARNING),
        (94, AlertSeverity.WARNING),
        (95, AlertSeverity.CRITICAL),
        (230, AlertSeverity.CRITICAL),
    ])
    def test_thresholds(self, count, expected):
        ratio, severity = evaluate_occupancy(count, 100, OccupancyThresholds())
        assert ratio == pytest.approx(count / 100)
        assert severity == expected

    def test_thresholds_must_ascend(self):
        with pytest.raises(ValueError):
            OccupancyThresholds(warning=0.9, high=0.8, critical=0.95)


class TestAlertSeverity:

    def test_occupancy_basis_ignores_density(self, config):
        # Dense but far below capacity
        evaluation = evaluate(60, 10.0, 1000, config)
        assert evaluation.density == pytest.approx(6.0)
        assert alert_severity(evaluation, config) is None

    def test_density_basis(self):
        config = EngineConfig(alert_basis=AlertBasis.DENSITY)
        assert alert_severity(evaluate(29, 10.0, 1000, config), config) is None
        assert alert_severity(evaluate(30, 10.0, 1000, config), config) == AlertSeverity.WARNING
        assert alert_severity(evaluate(45, 10.0, 1000, config), config) == AlertSeverity.CRITICAL

    def test_density_basis_has_no_info_level(self):
        config = EngineConfig(alert_basis=AlertBasis.DENSITY)
        assert config.roles_for_severity("info") == ()

    def test_role_tables_per_basis(self):
        occupancy = EngineConfig()
        density = EngineConfig(alert_basis=AlertBasis.DENSITY)
        assert occupancy.roles_for_severity("critical") == (
            "fan", "organizer", "security", "emergency",
        )
        assert occupancy.roles_for_severity("info") == ("fan",)
        assert density.roles_for_severity("warning") == ("organizer", "security")


class TestEngineConfigFromSettings:

    def test_settings_are_frozen_into_config(self):
        settings = Settings(ALERT_BASIS="DENSITY", DENSITY_CRITICAL=5.0,
                            ALERT_DEDUP_WINDOW_MINUTES=10, SAMPLE_LOOKBACK_SECONDS=45)
        config = EngineConfig.from_settings(settings)
        assert config.alert_basis == AlertBasis.DENSITY
        assert config.density_breakpoints.critical == 5.0
        assert config.dedup_window.total_seconds() == 600
        assert config.sample_lookback.total_seconds() == 45

    def test_config_is_immutable(self, config):
        with pytest.raises(AttributeError):
            config.alert_basis = AlertBasis.DENSITY
