from __future__ import annotations

import itertools

import pytest

from mite_engine.services.risk_service import (
    apply_growth,
    hourly_growth,
    material_multiplier,
    project_risk,
    suitability,
    thickness_multiplier,
)


TEMPERATURES = [-10.0, 0.0, 14.9, 15.0, 19.9, 20.0, 25.0, 30.0, 30.1, 35.0, 35.1, 45.0]
HUMIDITIES = [0.0, 49.9, 50.0, 59.9, 60.0, 69.9, 70.0, 75.0, 80.0, 80.1, 90.0, 90.1, 100.0]


def test_suitability_stays_in_unit_interval():
    for temperature, humidity in itertools.product(TEMPERATURES, HUMIDITIES):
        value = suitability(temperature, humidity)
        assert 0.0 <= value <= 1.0


def test_suitability_peaks_at_warm_humid_conditions():
    peak = suitability(25.0, 75.0)
    assert peak == 1.0
    assert all(
        suitability(temperature, humidity) <= peak
        for temperature, humidity in itertools.product(TEMPERATURES, HUMIDITIES)
    )


def test_suitability_bucket_edges():
    assert suitability(17.0, 75.0) == pytest.approx(0.5)
    assert suitability(25.0, 85.0) == pytest.approx(0.7)
    assert suitability(25.0, 55.0) == pytest.approx(0.3)
    assert suitability(5.0, 40.0) == pytest.approx(0.01)


def test_unknown_material_and_thickness_default_to_one():
    assert material_multiplier("Wool") == 1.0
    assert material_multiplier(None) == 1.0
    assert thickness_multiplier("Quilted") == 1.0
    assert thickness_multiplier(None) == 1.0


def test_silk_thin_hour_at_peak_grows_by_exact_amount():
    growth = hourly_growth(25.0, 75.0, "Silk", "Thin")
    assert growth == 0.27
    assert apply_growth(40.0, growth) == 40.27


def test_cotton_extra_thick_grows_fastest():
    assert hourly_growth(25.0, 75.0, "Cotton", "Extra Thick") == 0.72


def test_apply_growth_clamps_at_hundred():
    assert apply_growth(99.9, 0.72) == 100.0
    assert apply_growth(100.0, 0.5) == 100.0


def test_apply_growth_ignores_negative_growth():
    assert apply_growth(30.0, -5.0) == 30.0


def test_repeated_growth_never_leaves_bounds():
    score = 95.0
    for _ in range(200):
        score = apply_growth(score, hourly_growth(25.0, 75.0, "Cotton", "Extra Thick"))
        assert 0.0 <= score <= 100.0
    assert score == 100.0


def test_project_risk_returns_one_score_per_hour():
    trajectory = project_risk(10.0, [(25.0, 75.0), (25.0, 75.0), (5.0, 30.0)], "Silk", "Thin")
    assert trajectory == [10.27, 10.54, 10.54]


def test_project_risk_is_non_decreasing():
    hours = [(temperature, 75.0) for temperature in TEMPERATURES]
    trajectory = project_risk(50.0, hours, "Down", "Thick")
    assert trajectory == sorted(trajectory)
