"""Domain models for risk simulation, drying windows and service orders."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional


class ItemStatus(str, Enum):
    NORMAL = "normal"
    WAITING_OPTIMAL_TIME = "waiting_optimal_time"
    SELF_DRYING = "self_drying"
    WAITING_PICKUP = "waiting_pickup"
    HELP_DRYING = "help_drying"


class OrderStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.COMPLETED, OrderStatus.CANCELLED)


class SessionState(str, Enum):
    OPEN = "open"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Location:
    location_id: int
    owner_id: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    country: Optional[str] = None
    state: Optional[str] = None
    city: Optional[str] = None
    district: Optional[str] = None
    road: Optional[str] = None
    house_number: Optional[str] = None
    neighbourhood: Optional[str] = None
    floor_number: Optional[int] = None
    has_elevator: Optional[bool] = None

    @property
    def coordinates(self) -> Optional[Coordinates]:
        if self.latitude is None or self.longitude is None:
            return None
        return Coordinates(latitude=self.latitude, longitude=self.longitude)

    def format_local_address(self) -> str:
        """Short, neighbourhood-level address for order cards."""
        parts: list[str] = []
        if self.district:
            parts.append(self.district)
        if self.road:
            parts.append(f"{self.road} {self.house_number}" if self.house_number else self.road)
        elif self.house_number:
            parts.append(self.house_number)
        if not self.district and self.neighbourhood:
            parts.append(self.neighbourhood)
        if not parts and self.city:
            parts.append(self.city)
        return ", ".join(parts) or "Address not available"


@dataclass(frozen=True)
class Item:
    item_id: int
    owner_id: str
    name: str
    material: str
    thickness: str
    risk_score: float
    status: ItemStatus
    location_id: Optional[int] = None
    active_session_id: Optional[int] = None
    active_order_id: Optional[int] = None
    updated_at: Optional[datetime] = None


@dataclass(frozen=True)
class InterventionSession:
    session_id: int
    item_id: int
    initiator_id: str
    start_time: Optional[datetime]
    end_time: Optional[datetime]
    is_self_service: bool
    before_score: float
    predicted_score: Optional[float]
    after_score: Optional[float]
    state: SessionState
    created_at: datetime
    closed_at: Optional[datetime] = None


@dataclass(frozen=True)
class ServiceOrder:
    order_id: int
    item_id: int
    requester_id: str
    assignee_id: Optional[str]
    location_id: Optional[int]
    session_id: int
    status: OrderStatus
    cost: Optional[float]
    is_paid: bool
    created_at: datetime
    updated_at: datetime
    placed_photo_ref: Optional[str] = None
    execution_photo_ref: Optional[str] = None


@dataclass(frozen=True)
class WeatherInterval:
    start_time: datetime
    temperature: float
    humidity: float
    precipitation_probability: float


@dataclass(frozen=True)
class OptimalWindow:
    start_time: datetime
    end_time: datetime
    avg_temperature: float
    avg_humidity: float
    avg_precipitation_probability: float
    suitability_score: float

    @property
    def duration_hours(self) -> float:
        return (self.end_time - self.start_time) / timedelta(hours=1)


@dataclass(frozen=True)
class OverallConditions:
    average_temperature: float
    average_humidity: float
    rain_intervals: int
    total_intervals: int


@dataclass(frozen=True)
class WeatherAnalysis:
    is_optimal_for_sun_drying: bool
    optimal_windows: list[OptimalWindow]
    reason: str
    overall_conditions: OverallConditions

    @property
    def best_window(self) -> Optional[OptimalWindow]:
        return self.optimal_windows[0] if self.optimal_windows else None


@dataclass(frozen=True)
class PredictedOutcome:
    effectiveness_score: float
    score_reduction: float
    final_score: float
    source: str = "fallback"


@dataclass(frozen=True)
class CostBreakdown:
    base_cost: float
    floor_surcharge: float
    total_cost: float
    weight_category: str
    floor_number: int
    has_elevator: bool
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class NavigationInfo:
    distance_km: float
    walking_minutes: int
    driving_minutes: int
    formatted_distance: str
    formatted_walking_time: str
    formatted_driving_time: str


@dataclass(frozen=True)
class ItemTransition:
    item_id: int
    from_status: ItemStatus
    to_status: ItemStatus
    trigger: str


@dataclass(frozen=True)
class OrderTransition:
    order_id: int
    from_status: OrderStatus
    to_status: OrderStatus
    trigger: str


@dataclass(frozen=True)
class TickReport:
    now: datetime
    item_transitions: list[ItemTransition]
    order_transitions: list[OrderTransition]
    errors: list[str]

    @property
    def transition_count(self) -> int:
        return len(self.item_transitions) + len(self.order_transitions)


@dataclass(frozen=True)
class GrowthTickReport:
    processed: int
    updated: int
    skipped: int
    errors: list[str]
