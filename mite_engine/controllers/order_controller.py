"""HTTP controller layer for help-drying orders."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, ConfigDict, Field

from mite_engine.controllers.dependencies import (
    get_current_user_id,
    get_order_service,
    get_repository,
    to_http_exception,
)
from mite_engine.controllers.scheduling_controller import OutcomePayload, WindowPayload
from mite_engine.domain.errors import EngineError
from mite_engine.domain.models import Coordinates, OrderStatus
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.order_service import OrderService
from mite_engine.services.pricing_service import quote_cost
from mite_engine.utils.config import get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(prefix="/orders", tags=["orders"])


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    order_id: int
    item_id: int
    requester_id: str
    assignee_id: str | None
    location_id: int | None
    session_id: int
    status: OrderStatus
    cost: float | None
    is_paid: bool
    created_at: datetime
    updated_at: datetime
    placed_photo_ref: str | None = None
    execution_photo_ref: str | None = None


class CostBreakdownResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    base_cost: float = Field(ge=0.0)
    floor_surcharge: float = Field(ge=0.0)
    total_cost: float = Field(ge=0.0)
    weight_category: str
    floor_number: int
    has_elevator: bool
    warnings: list[str]


class CreateOrderRequest(BaseModel):
    item_id: int = Field(gt=0)
    window: WindowPayload
    predicted_outcome: OutcomePayload
    location_id: int | None = Field(default=None, gt=0)
    placed_photo_ref: str | None = None


class CreateOrderResponse(BaseModel):
    order: OrderResponse
    cost: CostBreakdownResponse
    warnings: list[str]


class NearbyOrderResponse(BaseModel):
    order: OrderResponse
    distance_km: float | None
    address: str | None


class NearbyOrdersResponse(BaseModel):
    orders: list[NearbyOrderResponse]
    warnings: list[str]
    distance_filter_applied: bool


class BeginExecutionRequest(BaseModel):
    photo_ref: str | None = None


class OrderTransitionResponse(BaseModel):
    order_id: int
    from_status: OrderStatus
    to_status: OrderStatus
    trigger: str


@router.get("/quote", response_model=CostBreakdownResponse)
async def quote_order(
    thickness: str = Query(default="Medium"),
    location_id: int | None = Query(default=None, gt=0),
    repository: DataRepository = Depends(get_repository),
) -> CostBreakdownResponse:
    location = repository.get_location(location_id) if location_id is not None else None
    if location_id is not None and location is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Location {location_id} not found",
        )
    breakdown = quote_cost(
        thickness,
        location,
        default_floor_number=settings.location_default_floor_number,
        default_has_elevator=settings.location_default_has_elevator,
    )
    return CostBreakdownResponse.model_validate(breakdown)


@router.post("", response_model=CreateOrderResponse, status_code=status.HTTP_201_CREATED)
async def create_order(
    payload: CreateOrderRequest,
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> CreateOrderResponse:
    try:
        placement = service.create_service_order(
            item_id=payload.item_id,
            requester_id=user_id,
            window=payload.window.to_domain(),
            predicted_outcome=payload.predicted_outcome.to_domain(),
            location_id=payload.location_id,
            placed_photo_ref=payload.placed_photo_ref,
        )
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return CreateOrderResponse(
        order=OrderResponse.model_validate(placement.order),
        cost=CostBreakdownResponse.model_validate(placement.cost),
        warnings=placement.warnings,
    )


@router.get("/nearby", response_model=NearbyOrdersResponse)
async def list_nearby_orders(
    latitude: float | None = Query(default=None, ge=-90.0, le=90.0),
    longitude: float | None = Query(default=None, ge=-180.0, le=180.0),
    location_id: int | None = Query(default=None, gt=0),
    radius_km: float | None = Query(default=None, gt=0.0),
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> NearbyOrdersResponse:
    """Open orders near the caller; callers without a location see every order."""
    coordinates = None
    if latitude is not None and longitude is not None:
        coordinates = Coordinates(latitude=latitude, longitude=longitude)
    result = service.list_nearby_orders(
        user_id,
        coordinates=coordinates,
        location_id=location_id,
        radius_km=radius_km,
    )
    return NearbyOrdersResponse(
        orders=[
            NearbyOrderResponse(
                order=OrderResponse.model_validate(nearby.order),
                distance_km=nearby.distance_km,
                address=(
                    nearby.location.format_local_address()
                    if nearby.location is not None
                    else None
                ),
            )
            for nearby in result.orders
        ],
        warnings=result.warnings,
        distance_filter_applied=result.distance_filter_applied,
    )


@router.get("/mine", response_model=list[OrderResponse])
async def list_my_orders(
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> list[OrderResponse]:
    return [OrderResponse.model_validate(order) for order in service.list_user_orders(user_id)]


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        return OrderResponse.model_validate(service.get_order(order_id))
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{order_id}/accept", response_model=OrderResponse)
async def accept_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        return OrderResponse.model_validate(service.accept_order(order_id, user_id))
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{order_id}/begin", response_model=OrderResponse)
async def begin_execution(
    order_id: int,
    payload: BeginExecutionRequest | None = None,
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    photo_ref = payload.photo_ref if payload is not None else None
    try:
        return OrderResponse.model_validate(
            service.begin_execution(order_id, user_id, photo_ref=photo_ref)
        )
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{order_id}/complete", response_model=OrderResponse)
async def complete_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        return OrderResponse.model_validate(service.complete_order(order_id, user_id))
    except EngineError as exc:
        raise to_http_exception(exc) from exc


@router.post("/{order_id}/cancel", response_model=OrderTransitionResponse)
async def cancel_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> OrderTransitionResponse:
    try:
        transition = service.cancel_order(order_id, user_id)
    except EngineError as exc:
        raise to_http_exception(exc) from exc
    return OrderTransitionResponse(
        order_id=transition.order_id,
        from_status=transition.from_status,
        to_status=transition.to_status,
        trigger=transition.trigger,
    )


@router.post("/{order_id}/pay", response_model=OrderResponse)
async def pay_order(
    order_id: int,
    user_id: str = Depends(get_current_user_id),
    service: OrderService = Depends(get_order_service),
) -> OrderResponse:
    try:
        return OrderResponse.model_validate(service.mark_order_paid(order_id, user_id))
    except EngineError as exc:
        raise to_http_exception(exc) from exc
