"""Two-party service orders for helper-assisted drying.

Each operation re-reads authoritative state, validates the move against the
order and item state machines, then applies order, item and session writes in
one repository transaction. A conditional write that loses a race rolls the
whole transition back and is reported with the state that won.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from mite_engine.domain.errors import (
    InvalidTransitionError,
    NotFoundError,
    OrderConflictError,
    PermissionDeniedError,
    StaleStateError,
)
from mite_engine.domain.lifecycle import ItemLifecycle, OrderLifecycle
from mite_engine.domain.models import (
    Coordinates,
    CostBreakdown,
    InterventionSession,
    Item,
    ItemStatus,
    OptimalWindow,
    OrderStatus,
    OrderTransition,
    PredictedOutcome,
    ServiceOrder,
    SessionState,
)
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.matching_service import NearbyOrdersResult, filter_nearby_orders
from mite_engine.services.notification_service import (
    Notification,
    NotificationSender,
    notify_safely,
)
from mite_engine.services.outcome_service import validate_outcome
from mite_engine.services.pricing_service import quote_cost
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger
from mite_engine.utils.timeutils import to_utc, utc_now


logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderPlacement:
    order: ServiceOrder
    session: InterventionSession
    cost: CostBreakdown

    @property
    def warnings(self) -> list[str]:
        return self.cost.warnings


class OrderService:
    """Orchestrates order transitions and their item/session side effects."""

    def __init__(
        self,
        repository: DataRepository,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationSender] = None,
    ) -> None:
        self._repository = repository
        self._settings = settings or get_settings()
        self._notifier = notifier

    # --- reads -----------------------------------------------------------

    def get_order(self, order_id: int) -> ServiceOrder:
        order = self._repository.get_order(order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order

    def _get_item(self, item_id: int) -> Item:
        item = self._repository.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def _conflict(self, order_id: int, message: str) -> OrderConflictError:
        current = self._repository.get_order(order_id)
        status = current.status.value if current is not None else None
        return OrderConflictError(message, current_status=status)

    # --- creation --------------------------------------------------------

    def create_service_order(
        self,
        item_id: int,
        requester_id: str,
        window: OptimalWindow,
        predicted_outcome: PredictedOutcome,
        location_id: Optional[int] = None,
        placed_photo_ref: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> OrderPlacement:
        item = self._get_item(item_id)
        if item.owner_id != requester_id:
            raise PermissionDeniedError("Only the item owner can request help drying")
        ItemLifecycle.ensure_transition(item.status, ItemStatus.WAITING_PICKUP)
        current_time = to_utc(now) if now is not None else utc_now()
        # Pending orders whose window has started are expired by the sweep.
        if to_utc(window.start_time) <= current_time:
            raise InvalidTransitionError(
                f"Drying window started at {window.start_time.isoformat()}; pick a later window",
                current_status=item.status.value,
            )
        validate_outcome(item.risk_score, predicted_outcome)

        resolved_location_id = location_id if location_id is not None else item.location_id
        location = (
            self._repository.get_location(resolved_location_id)
            if resolved_location_id is not None
            else None
        )
        cost = quote_cost(
            item.thickness,
            location,
            default_floor_number=self._settings.location_default_floor_number,
            default_has_elevator=self._settings.location_default_has_elevator,
        )

        try:
            with self._repository.transaction() as conn:
                if self._repository.count_open_sessions(item_id, conn=conn):
                    raise StaleStateError(f"Item {item_id} already has an open session")
                session = self._repository.create_session(
                    item_id=item_id,
                    initiator_id=requester_id,
                    start_time=window.start_time,
                    end_time=window.end_time,
                    is_self_service=False,
                    before_score=item.risk_score,
                    predicted_score=predicted_outcome.final_score,
                    conn=conn,
                )
                order = self._repository.create_order(
                    item_id=item_id,
                    requester_id=requester_id,
                    location_id=resolved_location_id,
                    session_id=session.session_id,
                    cost=cost.total_cost,
                    placed_photo_ref=placed_photo_ref,
                    conn=conn,
                )
                self._repository.update_item_if_status(
                    item_id,
                    ItemStatus.NORMAL,
                    status=ItemStatus.WAITING_PICKUP,
                    active_session_id=session.session_id,
                    active_order_id=order.order_id,
                    conn=conn,
                )
        except StaleStateError as exc:
            current = self._get_item(item_id)
            raise InvalidTransitionError(
                f"Item {item_id} cannot start an intervention: {exc}",
                current_status=current.status.value,
            ) from exc

        logger.info(
            "Order %s created for item %s (cost %.2f)",
            order.order_id,
            item_id,
            cost.total_cost,
        )
        notify_safely(
            self._notifier,
            Notification(
                event="order_created",
                recipient_id=requester_id,
                subject="Help-drying order placed",
                details={"order_id": order.order_id, "item": item.name, "cost": cost.total_cost},
            ),
        )
        return OrderPlacement(order=order, session=session, cost=cost)

    # --- discovery -------------------------------------------------------

    def list_nearby_orders(
        self,
        user_id: str,
        coordinates: Optional[Coordinates] = None,
        location_id: Optional[int] = None,
        radius_km: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> NearbyOrdersResult:
        self.expire_pending_orders(now)
        if coordinates is None and location_id is not None:
            location = self._repository.get_location(location_id)
            coordinates = location.coordinates if location is not None else None
        radius = self._settings.matching_default_radius_km if radius_km is None else radius_km
        open_orders = self._repository.list_open_orders_with_locations(
            exclude_requester_id=user_id
        )
        return filter_nearby_orders(open_orders, coordinates, radius)

    # --- transitions -----------------------------------------------------

    def accept_order(
        self,
        order_id: int,
        assignee_id: str,
        now: Optional[datetime] = None,
    ) -> ServiceOrder:
        self.expire_pending_orders(now)
        order = self.get_order(order_id)
        if order.requester_id == assignee_id:
            raise PermissionDeniedError("You cannot accept your own order")
        if order.status is not OrderStatus.PENDING:
            raise OrderConflictError(
                "Order is no longer available"
                if order.status is not OrderStatus.ACCEPTED
                else "Order already accepted by someone else",
                current_status=order.status.value,
            )

        try:
            with self._repository.transaction() as conn:
                self._repository.update_order_if_status(
                    order_id,
                    OrderStatus.PENDING,
                    status=OrderStatus.ACCEPTED,
                    assignee_id=assignee_id,
                    require_unassigned=True,
                    conn=conn,
                )
                self._repository.update_item_if_status(
                    order.item_id,
                    ItemStatus.WAITING_PICKUP,
                    status=ItemStatus.HELP_DRYING,
                    conn=conn,
                )
        except StaleStateError as exc:
            raise self._conflict(order_id, "Order already accepted by someone else") from exc

        logger.info("Order %s accepted by %s", order_id, assignee_id)
        notify_safely(
            self._notifier,
            Notification(
                event="order_accepted",
                recipient_id=order.requester_id,
                subject="Your help-drying order was accepted",
                details={"order_id": order_id},
            ),
        )
        return self.get_order(order_id)

    def begin_execution(
        self,
        order_id: int,
        assignee_id: str,
        photo_ref: Optional[str] = None,
    ) -> ServiceOrder:
        order = self.get_order(order_id)
        if order.assignee_id != assignee_id:
            raise PermissionDeniedError("Only the assigned helper can start this order")
        OrderLifecycle.ensure_transition(order.status, OrderStatus.IN_PROGRESS)
        try:
            self._repository.update_order_if_status(
                order_id,
                OrderStatus.ACCEPTED,
                status=OrderStatus.IN_PROGRESS,
                execution_photo_ref=photo_ref,
            )
        except StaleStateError as exc:
            raise self._conflict(order_id, "Order changed before execution could start") from exc
        logger.info("Order %s in progress", order_id)
        return self.get_order(order_id)

    def complete_order(self, order_id: int, assignee_id: str) -> ServiceOrder:
        """Finish the drying and commit the predicted score to the item."""
        order = self.get_order(order_id)
        if order.assignee_id != assignee_id:
            raise PermissionDeniedError("Only the assigned helper can complete this order")
        OrderLifecycle.ensure_transition(order.status, OrderStatus.COMPLETED)
        session = self._repository.get_session(order.session_id)
        if session is None:
            raise NotFoundError(f"Session {order.session_id} not found")
        after_score = (
            session.predicted_score
            if session.predicted_score is not None
            else session.before_score
        )

        try:
            with self._repository.transaction() as conn:
                self._repository.update_order_if_status(
                    order_id,
                    OrderStatus.IN_PROGRESS,
                    status=OrderStatus.COMPLETED,
                    conn=conn,
                )
                self._repository.close_session(
                    session.session_id,
                    state=SessionState.COMPLETED,
                    after_score=after_score,
                    conn=conn,
                )
                self._repository.update_item_if_status(
                    order.item_id,
                    ItemStatus.HELP_DRYING,
                    status=ItemStatus.NORMAL,
                    risk_score=after_score,
                    active_session_id=None,
                    active_order_id=None,
                    conn=conn,
                )
        except StaleStateError as exc:
            raise self._conflict(order_id, "Order changed before it could be completed") from exc

        logger.info(
            "Order %s completed; item %s risk %.2f -> %.2f",
            order_id,
            order.item_id,
            session.before_score,
            after_score,
        )
        notify_safely(
            self._notifier,
            Notification(
                event="order_completed",
                recipient_id=order.requester_id,
                subject="Your item has been dried",
                details={
                    "order_id": order_id,
                    "before_score": session.before_score,
                    "after_score": after_score,
                },
            ),
        )
        return self.get_order(order_id)

    def _cancel(self, order: ServiceOrder, trigger: str) -> OrderTransition:
        item_status = OrderLifecycle.ITEM_STATUS_FOR_ORDER[order.status]
        with self._repository.transaction() as conn:
            self._repository.update_order_if_status(
                order.order_id,
                order.status,
                status=OrderStatus.CANCELLED,
                conn=conn,
            )
            self._repository.close_session(
                order.session_id,
                state=SessionState.CANCELLED,
                conn=conn,
            )
            self._repository.update_item_if_status(
                order.item_id,
                item_status,
                status=ItemStatus.NORMAL,
                active_session_id=None,
                active_order_id=None,
                conn=conn,
            )
        logger.info("Order %s cancelled from %s (%s)", order.order_id, order.status.value, trigger)
        for recipient in {order.requester_id, order.assignee_id} - {None}:
            notify_safely(
                self._notifier,
                Notification(
                    event="order_cancelled",
                    recipient_id=recipient,
                    subject="Help-drying order cancelled",
                    details={"order_id": order.order_id, "reason": trigger},
                ),
            )
        return OrderTransition(
            order_id=order.order_id,
            from_status=order.status,
            to_status=OrderStatus.CANCELLED,
            trigger=trigger,
        )

    def cancel_order(self, order_id: int, actor_id: str) -> OrderTransition:
        order = self.get_order(order_id)
        if actor_id not in (order.requester_id, order.assignee_id):
            raise PermissionDeniedError("Only the requester or the assigned helper can cancel")
        OrderLifecycle.ensure_transition(order.status, OrderStatus.CANCELLED)
        trigger = "requester" if actor_id == order.requester_id else "assignee"
        try:
            return self._cancel(order, f"cancelled by {trigger}")
        except StaleStateError as exc:
            raise self._conflict(order_id, "Order changed before it could be cancelled") from exc

    def expire_pending_orders(self, now: Optional[datetime] = None) -> list[OrderTransition]:
        """Cancel pending orders whose drying window has already started."""
        current_time = to_utc(now) if now is not None else utc_now()
        transitions: list[OrderTransition] = []
        for order in self._repository.list_orders_by_status(OrderStatus.PENDING):
            session = self._repository.get_session(order.session_id)
            if not OrderLifecycle.is_expired(order.status, session, current_time):
                continue
            try:
                transitions.append(self._cancel(order, "expired"))
            except StaleStateError:
                logger.info("Order %s changed during expiry sweep; skipped", order.order_id)
        return transitions

    def mark_order_paid(self, order_id: int, requester_id: str) -> ServiceOrder:
        order = self.get_order(order_id)
        if order.requester_id != requester_id:
            raise PermissionDeniedError("Only the requester can pay for an order")
        if order.status is OrderStatus.CANCELLED:
            raise InvalidTransitionError(
                "Cancelled orders cannot be paid",
                current_status=order.status.value,
            )
        if not order.is_paid:
            self._repository.mark_order_paid(order_id)
            logger.info("Order %s marked paid", order_id)
        return self.get_order(order_id)

    def list_user_orders(self, user_id: str) -> list[ServiceOrder]:
        return self._repository.list_user_orders(user_id)
