"""Distance-based discovery of open service orders.

Visibility is a pure query over `(open orders, requester location, radius)`.
The policy fails open in both directions: an order whose location cannot be
resolved stays visible (with a warning), and a requester without a location
sees every open order.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Optional, Sequence

import numpy as np

from mite_engine.domain.models import Coordinates, Location, NavigationInfo, ServiceOrder
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

EARTH_RADIUS_KM = 6371.0
WALKING_SPEED_KMH = 5.0
DRIVING_SPEED_KMH = 30.0


@dataclass(frozen=True)
class NearbyOrder:
    order: ServiceOrder
    location: Optional[Location]
    distance_km: Optional[float]


@dataclass(frozen=True)
class NearbyOrdersResult:
    orders: list[NearbyOrder]
    warnings: list[str] = field(default_factory=list)
    distance_filter_applied: bool = True


def distance_km(a: Coordinates, b: Coordinates) -> float:
    """Great-circle distance with the Haversine formula."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    d_lat = lat2 - lat1
    d_lon = math.radians(b.longitude - a.longitude)
    h = math.sin(d_lat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(d_lon / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distances_km(
    origin: Coordinates,
    latitudes: Sequence[float],
    longitudes: Sequence[float],
) -> np.ndarray:
    """Vectorised Haversine from one origin to many points."""
    lat1 = np.radians(origin.latitude)
    lat2 = np.radians(np.asarray(latitudes, dtype=float))
    d_lat = lat2 - lat1
    d_lon = np.radians(np.asarray(longitudes, dtype=float) - origin.longitude)
    h = np.sin(d_lat / 2) ** 2 + np.cos(lat1) * np.cos(lat2) * np.sin(d_lon / 2) ** 2
    h = np.clip(h, 0.0, 1.0)
    return 2 * EARTH_RADIUS_KM * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def within_radius(
    order_coordinates: Optional[Coordinates],
    user_coordinates: Optional[Coordinates],
    radius_km: float,
) -> bool:
    if user_coordinates is None or order_coordinates is None:
        return True
    return distance_km(order_coordinates, user_coordinates) <= radius_km


def filter_nearby_orders(
    open_orders: Sequence[tuple[ServiceOrder, Optional[Location]]],
    requester_coordinates: Optional[Coordinates],
    radius_km: float,
) -> NearbyOrdersResult:
    """Orders visible to a requester: nearest first, unlocated ones after."""
    if requester_coordinates is None:
        return NearbyOrdersResult(
            orders=[
                NearbyOrder(order=order, location=location, distance_km=None)
                for order, location in open_orders
            ],
            warnings=["Requester location unavailable; showing all open orders"],
            distance_filter_applied=False,
        )

    located: list[tuple[ServiceOrder, Location, Coordinates]] = []
    unlocated: list[NearbyOrder] = []
    warnings: list[str] = []
    for order, location in open_orders:
        coordinates = location.coordinates if location is not None else None
        if coordinates is None:
            unlocated.append(NearbyOrder(order=order, location=location, distance_km=None))
            warnings.append(
                f"Order {order.order_id} has no resolvable coordinates; kept visible"
            )
            continue
        located.append((order, location, coordinates))

    visible: list[NearbyOrder] = []
    if located:
        distances = distances_km(
            requester_coordinates,
            [coordinates.latitude for _, _, coordinates in located],
            [coordinates.longitude for _, _, coordinates in located],
        )
        for index in np.argsort(distances, kind="stable"):
            if distances[index] > radius_km:
                continue
            order, location, _ = located[int(index)]
            visible.append(
                NearbyOrder(
                    order=order,
                    location=location,
                    distance_km=round(float(distances[index]), 3),
                )
            )

    for warning in warnings:
        logger.warning(warning)
    return NearbyOrdersResult(orders=visible + unlocated, warnings=warnings)


def _format_minutes(minutes: int) -> str:
    if minutes < 60:
        return f"{minutes}min"
    return f"{minutes // 60}h {minutes % 60}min"


def navigation_info(origin: Coordinates, destination: Coordinates) -> NavigationInfo:
    distance = distance_km(origin, destination)
    walking = round(distance / WALKING_SPEED_KMH * 60)
    driving = round(distance / DRIVING_SPEED_KMH * 60)
    formatted_distance = (
        f"{round(distance * 1000)}m" if distance < 1 else f"{distance:.1f}km"
    )
    return NavigationInfo(
        distance_km=distance,
        walking_minutes=walking,
        driving_minutes=driving,
        formatted_distance=formatted_distance,
        formatted_walking_time=_format_minutes(walking),
        formatted_driving_time=_format_minutes(driving),
    )
