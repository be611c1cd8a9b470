from __future__ import annotations

from datetime import datetime, timezone

import pytest

from mite_engine.domain.models import Coordinates, Location, OrderStatus, ServiceOrder
from mite_engine.services.matching_service import (
    distance_km,
    distances_km,
    filter_nearby_orders,
    navigation_info,
    within_radius,
)


CREATED = datetime(2026, 6, 1, 8, 0, tzinfo=timezone.utc)
HOME = Coordinates(latitude=31.2304, longitude=121.4737)


def _order(order_id: int, location_id: int | None = None) -> ServiceOrder:
    return ServiceOrder(
        order_id=order_id,
        item_id=order_id,
        requester_id=f"requester-{order_id}",
        assignee_id=None,
        location_id=location_id,
        session_id=order_id,
        status=OrderStatus.PENDING,
        cost=20.0,
        is_paid=False,
        created_at=CREATED,
        updated_at=CREATED,
    )


def _location(location_id: int, latitude: float | None, longitude: float | None) -> Location:
    return Location(location_id=location_id, owner_id="owner", latitude=latitude, longitude=longitude)


def test_distance_to_self_is_zero():
    assert distance_km(HOME, HOME) == 0.0


def test_distance_is_symmetric():
    other = Coordinates(latitude=39.9042, longitude=116.4074)
    assert distance_km(HOME, other) == pytest.approx(distance_km(other, HOME))


def test_one_degree_of_latitude_is_about_111_km():
    assert distance_km(Coordinates(0.0, 0.0), Coordinates(1.0, 0.0)) == pytest.approx(111.19, abs=0.01)


def test_vectorised_distances_match_scalar_formula():
    points = [Coordinates(31.24, 121.48), Coordinates(31.30, 121.50), Coordinates(30.0, 120.0)]
    batch = distances_km(HOME, [p.latitude for p in points], [p.longitude for p in points])
    for point, value in zip(points, batch):
        assert float(value) == pytest.approx(distance_km(HOME, point))


def test_within_radius_fails_open_on_missing_coordinates():
    assert within_radius(None, HOME, 1.0) is True
    assert within_radius(HOME, None, 1.0) is True
    assert within_radius(None, None, 1.0) is True


def test_within_radius_rejects_far_orders():
    far = Coordinates(latitude=32.0, longitude=121.4737)
    assert within_radius(far, HOME, 10.0) is False
    assert within_radius(far, HOME, 100.0) is True


def test_requester_without_location_sees_everything():
    open_orders = [
        (_order(1, 1), _location(1, 60.0, 10.0)),
        (_order(2), None),
    ]
    result = filter_nearby_orders(open_orders, None, 5.0)

    assert [nearby.order.order_id for nearby in result.orders] == [1, 2]
    assert result.distance_filter_applied is False
    assert result.warnings


def test_orders_filtered_by_radius_and_sorted_nearest_first():
    open_orders = [
        (_order(1, 1), _location(1, 31.26, 121.4737)),
        (_order(2, 2), _location(2, 31.2310, 121.4740)),
        (_order(3, 3), _location(3, 31.9, 121.4737)),
    ]
    result = filter_nearby_orders(open_orders, HOME, 10.0)

    assert [nearby.order.order_id for nearby in result.orders] == [2, 1]
    assert result.orders[0].distance_km < result.orders[1].distance_km
    assert result.distance_filter_applied is True
    assert result.warnings == []


def test_unresolvable_order_location_stays_visible_with_warning():
    open_orders = [
        (_order(1), None),
        (_order(2, 2), _location(2, None, None)),
        (_order(3, 3), _location(3, 31.2310, 121.4740)),
    ]
    result = filter_nearby_orders(open_orders, HOME, 1.0)

    assert [nearby.order.order_id for nearby in result.orders] == [3, 1, 2]
    assert result.orders[1].distance_km is None
    assert len(result.warnings) == 2


def test_navigation_info_formats_short_and_long_trips():
    short = navigation_info(HOME, Coordinates(31.2350, 121.4737))
    assert short.formatted_distance.endswith("m")
    assert short.walking_minutes >= short.driving_minutes

    long_trip = navigation_info(Coordinates(0.0, 0.0), Coordinates(0.1, 0.0))
    assert long_trip.formatted_distance == "11.1km"
    assert long_trip.walking_minutes == 133
    assert long_trip.formatted_walking_time == "2h 13min"
    assert long_trip.driving_minutes == 22
    assert long_trip.formatted_driving_time == "22min"
