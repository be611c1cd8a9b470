"""HTTP controller layer for items, drying windows and the scheduler ticks."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field, model_validator

from mite_engine.controllers.dependencies import (
    get_current_user_id,
    get_growth_service,
    get_repository,
    get_scheduling_coordinator,
    require_cron_token,
    to_http_exception,
)
from mite_engine.domain.errors import EngineError
from mite_engine.domain.models import (
    ItemStatus,
    OptimalWindow,
    PredictedOutcome,
    SessionState,
    WeatherInterval,
)
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.risk_service import RiskGrowthService
from mite_engine.services.scheduling_service import SchedulingCoordinator
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

router = APIRouter(tags=["scheduling"])


class WindowPayload(BaseModel):
    """A drying window as returned by the window search."""

    model_config = ConfigDict(from_attributes=True)

    start_time: datetime
    end_time: datetime
    avg_temperature: float
    avg_humidity: float = Field(ge=0.0, le=100.0)
    avg_precipitation_probability: float = Field(ge=0.0, le=100.0)
    suitability_score: float = 0.0

    @model_validator(mode="after")
    def validate_bounds(self) -> "WindowPayload":
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    def to_domain(self) -> OptimalWindow:
        return OptimalWindow(
            start_time=self.start_time,
            end_time=self.end_time,
            avg_temperature=self.avg_temperature,
            avg_humidity=self.avg_humidity,
            avg_precipitation_probability=self.avg_precipitation_probability,
            suitability_score=self.suitability_score,
        )


class OutcomePayload(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    effectiveness_score: float = Field(ge=0.0, le=100.0)
    score_reduction: float = Field(ge=0.0)
    final_score: float
    source: str = "fallback"

    def to_domain(self) -> PredictedOutcome:
        return PredictedOutcome(
            effectiveness_score=self.effectiveness_score,
            score_reduction=self.score_reduction,
            final_score=self.final_score,
            source=self.source,
        )


class WeatherIntervalPayload(BaseModel):
    start_time: datetime
    temperature: float
    humidity: float = Field(ge=0.0, le=100.0)
    precipitation_probability: float = Field(ge=0.0, le=100.0)


class LocationCreateRequest(BaseModel):
    latitude: float | None = Field(default=None, ge=-90.0, le=90.0)
    longitude: float | None = Field(default=None, ge=-180.0, le=180.0)
    country: str | None = None
    state: str | None = None
    city: str | None = None
    district: str | None = None
    road: str | None = None
    house_number: str | None = None
    neighbourhood: str | None = None
    floor_number: int | None = Field(default=None, ge=1)
    has_elevator: bool | None = None


class LocationResponse(LocationCreateRequest):
    model_config = ConfigDict(from_attributes=True)

    location_id: int
    owner_id: str


class ItemCreateRequest(BaseModel):
    name: str = Field(min_length=1)
    material: str = "Unknown"
    thickness: str = "Medium"
    risk_score: float = Field(default=0.0, ge=0.0, le=100.0)
    location_id: int | None = Field(default=None, gt=0)


class ItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: int
    owner_id: str
    name: str
    material: str
    thickness: str
    risk_score: float = Field(ge=0.0, le=100.0)
    status: ItemStatus
    location_id: int | None = None
    active_session_id: int | None = None
    active_order_id: int | None = None


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session_id: int
    item_id: int
    initiator_id: str
    start_time: datetime | None
    end_time: datetime | None
    is_self_service: bool
    before_score: float
    predicted_score: float | None
    after_score: float | None
    state: SessionState
    created_at: datetime
    closed_at: datetime | None = None


class WindowSearchRequest(BaseModel):
    """Optional explicit forecast; the item's location is used otherwise."""

    forecast: list[WeatherIntervalPayload] | None = None


class OverallConditionsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    average_temperature: float
    average_humidity: float
    rain_intervals: int = Field(ge=0)
    total_intervals: int = Field(ge=0)


class WindowSelectionResponse(BaseModel):
    is_optimal_for_sun_drying: bool
    reason: str
    best_window: WindowPayload | None
    optimal_windows: list[WindowPayload]
    overall_conditions: OverallConditionsResponse


class OutcomePredictionRequest(BaseModel):
    window: WindowPayload
    photo_ref: str | None = None
    duration_hours: float | None = Field(default=None, gt=0.0)


class ConfirmInterventionRequest(BaseModel):
    window: WindowPayload
    predicted_outcome: OutcomePayload


class CompleteInterventionRequest(BaseModel):
    outcome: OutcomePayload | None = None


class ItemTransitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    item_id: int
    from_status: ItemStatus
    to_status: ItemStatus
    trigger: str


class TickRequest(BaseModel):
    now: datetime | None = None


class OrderTransitionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: int
    from_status: str
    to_status: str
    trigger: str


class TickResponse(BaseModel):
    now: datetime
    transition_count: int = Field(ge=0)
    item_transitions: list[ItemTransitionResponse]
    order_transitions: list[OrderTransitionResponse]
    errors: list[str]


class GrowthTickResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    processed: int = Field(ge=0)
    updated: int = Field(ge=0)
    skipped: int = Field(ge=0)
    errors: list[str]


@router.post(
    "/locations",
    response_model=LocationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_location(
    payload: LocationCreateRequest,
    user_id: str = Depends(get_current_user_id),
    repository: DataRepository = Depends(get_repository),
) -> LocationResponse:
    location = repository.create_location(user_id, **payload.model_dump())
    return LocationResponse.model_validate(location)


@router.post(
    "/items",
    response_model=ItemResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_item(
    payload: ItemCreateRequest,
    user_id: str = Depends(get_current_user_id),
    repository: DataRepository = Depends(get_repository),
) -> ItemResponse:
    if payload.location_id is not None:
        location = repository.get_location(payload.location_id)
        if location is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=f"Location {payload.location_id} not found",
            )
        if location.owner_id != user_id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Location belongs to another user",
            )
    item = repository.create_item(
        owner_id=user_id,
        name=payload.name,
        material=payload.material,
        thickness=payload.thickness,
        risk_score=payload.risk_score,
        location_id=payload.location_id,
    )
    return ItemResponse.model_validate(item)


@router.get("/items/{item_id}", response_model=ItemResponse)
async def get_item(
    item_id: int,
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> ItemResponse:
    try:
        return ItemResponse.model_validate(coordinator.get_item(item_id))
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.get("/items/{item_id}/history", response_model=list[SessionResponse])
async def get_item_history(
    item_id: int,
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> list[SessionResponse]:
    try:
        sessions = coordinator.item_history(item_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return [SessionResponse.model_validate(session) for session in sessions]


@router.post("/items/{item_id}/windows", response_model=WindowSelectionResponse)
async def select_window(
    item_id: int,
    payload: Optional[WindowSearchRequest] = None,
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> WindowSelectionResponse:
    """Search the next hours for sun-drying windows at the item's location."""
    forecast = None
    if payload is not None and payload.forecast is not None:
        forecast = [
            WeatherInterval(
                start_time=interval.start_time,
                temperature=interval.temperature,
                humidity=interval.humidity,
                precipitation_probability=interval.precipitation_probability,
            )
            for interval in payload.forecast
        ]
    try:
        selection = coordinator.select_window(item_id, forecast)
    except EngineError as exc:
        raise to_http_exception(exc) from exc

    analysis = selection.analysis
    return WindowSelectionResponse(
        is_optimal_for_sun_drying=analysis.is_optimal_for_sun_drying,
        reason=analysis.reason,
        best_window=(
            WindowPayload.model_validate(selection.window)
            if selection.window is not None
            else None
        ),
        optimal_windows=[
            WindowPayload.model_validate(window) for window in analysis.optimal_windows
        ],
        overall_conditions=OverallConditionsResponse.model_validate(
            analysis.overall_conditions
        ),
    )


@router.post("/items/{item_id}/outcome-prediction", response_model=OutcomePayload)
async def predict_outcome(
    item_id: int,
    payload: OutcomePredictionRequest,
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> OutcomePayload:
    try:
        outcome = coordinator.predict_outcome(
            item_id,
            payload.window.to_domain(),
            photo_ref=payload.photo_ref,
            duration_hours=payload.duration_hours,
        )
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return OutcomePayload.model_validate(outcome)


@router.post(
    "/items/{item_id}/interventions",
    response_model=SessionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def confirm_intervention(
    item_id: int,
    payload: ConfirmInterventionRequest,
    user_id: str = Depends(get_current_user_id),
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> SessionResponse:
    try:
        session = coordinator.confirm_intervention(
            item_id,
            user_id,
            payload.window.to_domain(),
            payload.predicted_outcome.to_domain(),
        )
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return SessionResponse.model_validate(session)


@router.post("/items/{item_id}/interventions/complete", response_model=SessionResponse)
async def complete_intervention(
    item_id: int,
    payload: Optional[CompleteInterventionRequest] = None,
    user_id: str = Depends(get_current_user_id),
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> SessionResponse:
    outcome = payload.outcome.to_domain() if payload is not None and payload.outcome else None
    try:
        session = coordinator.complete_intervention(item_id, user_id, outcome=outcome)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return SessionResponse.model_validate(session)


@router.post("/items/{item_id}/interventions/cancel", response_model=ItemTransitionResponse)
async def cancel_intervention(
    item_id: int,
    user_id: str = Depends(get_current_user_id),
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> ItemTransitionResponse:
    try:
        transition = coordinator.cancel_intervention(item_id, user_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return ItemTransitionResponse.model_validate(transition)


@router.post(
    "/tick",
    response_model=TickResponse,
    dependencies=[Depends(require_cron_token)],
)
async def tick(
    payload: Optional[TickRequest] = None,
    coordinator: SchedulingCoordinator = Depends(get_scheduling_coordinator),
) -> TickResponse:
    """Apply time-triggered transitions; safe to call repeatedly."""
    report = coordinator.tick(payload.now if payload is not None else None)
    return TickResponse(
        now=report.now,
        transition_count=report.transition_count,
        item_transitions=[
            ItemTransitionResponse.model_validate(transition)
            for transition in report.item_transitions
        ],
        order_transitions=[
            OrderTransitionResponse(
                order_id=transition.order_id,
                from_status=transition.from_status.value,
                to_status=transition.to_status.value,
                trigger=transition.trigger,
            )
            for transition in report.order_transitions
        ],
        errors=report.errors,
    )


@router.post(
    "/risk/growth-tick",
    response_model=GrowthTickResponse,
    dependencies=[Depends(require_cron_token)],
)
async def growth_tick(
    service: RiskGrowthService = Depends(get_growth_service),
) -> GrowthTickResponse:
    try:
        report = service.run_growth_tick()
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected growth tick failure")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to run growth tick",
        ) from exc
    return GrowthTickResponse.model_validate(report)
