from __future__ import annotations

import pytest

from mite_engine.domain.models import Location
from mite_engine.services.pricing_service import floor_surcharge, quote_cost, weight_category


def _location(floor_number=None, has_elevator=None) -> Location:
    return Location(
        location_id=1,
        owner_id="owner",
        latitude=31.23,
        longitude=121.47,
        floor_number=floor_number,
        has_elevator=has_elevator,
    )


@pytest.mark.parametrize(
    ("thickness", "category"),
    [("Thin", "Lightweight"), ("Medium", "Medium"), ("Thick", "Heavy"), ("Extra Thick", "Extra Heavy")],
)
def test_thickness_maps_to_weight_category(thickness, category):
    assert weight_category(thickness) == category


def test_unknown_thickness_is_priced_as_medium():
    assert weight_category("Quilted") == "Medium"
    assert weight_category(None) == "Medium"


@pytest.mark.parametrize(
    ("floor_number", "surcharge"),
    [(1, 0.0), (3, 0.0), (4, 3.0), (7, 3.0), (8, 5.0), (30, 5.0)],
)
def test_elevator_surcharge_tiers(floor_number, surcharge):
    assert floor_surcharge(floor_number, True) == surcharge


def test_stairs_surcharge_grows_per_floor():
    assert floor_surcharge(1, False) == 0.0
    assert floor_surcharge(2, False) == 5.0
    assert floor_surcharge(6, False) == 25.0


def test_quote_with_full_location_has_no_warnings():
    breakdown = quote_cost("Thick", _location(floor_number=5, has_elevator=False))
    assert breakdown.base_cost == 25.0
    assert breakdown.floor_surcharge == 20.0
    assert breakdown.total_cost == 45.0
    assert breakdown.warnings == []


def test_quote_without_floor_data_uses_defaults_and_warns():
    breakdown = quote_cost("Thin", _location())
    assert breakdown.floor_number == 1
    assert breakdown.has_elevator is False
    assert breakdown.total_cost == 15.0
    assert len(breakdown.warnings) == 2


def test_quote_without_location_uses_configured_defaults():
    breakdown = quote_cost("Medium", None, default_floor_number=4, default_has_elevator=True)
    assert breakdown.floor_number == 4
    assert breakdown.total_cost == 23.0
    assert breakdown.warnings
