"""Helper-order pricing from item thickness and the pickup floor."""

from __future__ import annotations

from typing import Optional

from mite_engine.domain.models import CostBreakdown, Location
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

WEIGHT_PRICING: dict[str, float] = {
    "Lightweight": 15.0,
    "Medium": 20.0,
    "Heavy": 25.0,
    "Extra Heavy": 30.0,
}

_THICKNESS_TO_WEIGHT: dict[str, str] = {
    "thin": "Lightweight",
    "light": "Lightweight",
    "medium": "Medium",
    "normal": "Medium",
    "thick": "Heavy",
    "heavy": "Heavy",
    "extra thick": "Extra Heavy",
    "extra heavy": "Extra Heavy",
    "extrathick": "Extra Heavy",
    "extraheavy": "Extra Heavy",
}

ELEVATOR_LOW_SURCHARGE = 0.0  # floors 2-3
ELEVATOR_MID_SURCHARGE = 3.0  # floors 4-7
ELEVATOR_HIGH_SURCHARGE = 5.0  # floors 8+
STAIRS_SURCHARGE_PER_FLOOR = 5.0


def weight_category(thickness: Optional[str]) -> str:
    return _THICKNESS_TO_WEIGHT.get((thickness or "").strip().lower(), "Medium")


def floor_surcharge(floor_number: int, has_elevator: bool) -> float:
    if floor_number <= 1:
        return 0.0
    if has_elevator:
        if floor_number <= 3:
            return ELEVATOR_LOW_SURCHARGE
        if floor_number <= 7:
            return ELEVATOR_MID_SURCHARGE
        return ELEVATOR_HIGH_SURCHARGE
    return (floor_number - 1) * STAIRS_SURCHARGE_PER_FLOOR


def quote_cost(
    thickness: Optional[str],
    location: Optional[Location],
    default_floor_number: int = 1,
    default_has_elevator: bool = False,
) -> CostBreakdown:
    """Price an order; unknown floor or elevator fall back to defaults with a warning."""
    warnings: list[str] = []
    floor_number = location.floor_number if location is not None else None
    has_elevator = location.has_elevator if location is not None else None
    if floor_number is None:
        floor_number = default_floor_number
        warnings.append(f"Floor number unknown; priced as floor {default_floor_number}")
    if has_elevator is None:
        has_elevator = default_has_elevator
        warnings.append(
            "Elevator availability unknown; priced as "
            + ("with elevator" if default_has_elevator else "without elevator")
        )
    for warning in warnings:
        logger.warning(warning)

    category = weight_category(thickness)
    base_cost = WEIGHT_PRICING[category]
    surcharge = floor_surcharge(floor_number, has_elevator)
    return CostBreakdown(
        base_cost=base_cost,
        floor_surcharge=surcharge,
        total_cost=base_cost + surcharge,
        weight_category=category,
        floor_number=floor_number,
        has_elevator=has_elevator,
        warnings=warnings,
    )
