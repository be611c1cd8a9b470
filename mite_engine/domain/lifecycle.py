"""Finite-state rules for item disposition and two-party service orders.

Each machine owns only its own status field. The orchestration that keeps an
item and its order consistent lives in the service layer, which applies both
updates in one repository transaction.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from mite_engine.domain.errors import InvalidTransitionError
from mite_engine.domain.models import (
    InterventionSession,
    ItemStatus,
    OrderStatus,
    SessionState,
)


class ItemLifecycle:
    """Allowed moves for `Item.status`."""

    TRANSITIONS: dict[ItemStatus, frozenset[ItemStatus]] = {
        ItemStatus.NORMAL: frozenset(
            {ItemStatus.WAITING_OPTIMAL_TIME, ItemStatus.WAITING_PICKUP}
        ),
        ItemStatus.WAITING_OPTIMAL_TIME: frozenset(
            {ItemStatus.SELF_DRYING, ItemStatus.NORMAL}
        ),
        ItemStatus.SELF_DRYING: frozenset({ItemStatus.NORMAL}),
        ItemStatus.WAITING_PICKUP: frozenset(
            {ItemStatus.HELP_DRYING, ItemStatus.NORMAL}
        ),
        ItemStatus.HELP_DRYING: frozenset({ItemStatus.NORMAL}),
    }

    SELF_SERVICE_STATES = frozenset(
        {ItemStatus.WAITING_OPTIMAL_TIME, ItemStatus.SELF_DRYING}
    )
    HELPER_STATES = frozenset({ItemStatus.WAITING_PICKUP, ItemStatus.HELP_DRYING})

    @classmethod
    def can_transition(cls, current: ItemStatus, target: ItemStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def ensure_transition(cls, current: ItemStatus, target: ItemStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidTransitionError(
                f"Item cannot move from {current.value} to {target.value}",
                current_status=current.value,
            )

    @staticmethod
    def due_transition(
        status: ItemStatus,
        session: Optional[InterventionSession],
        now: datetime,
    ) -> Optional[ItemStatus]:
        """Return the time-triggered target for `status` at `now`, if any.

        Only the self-service branch is clock driven; the helper branch
        follows order status changes.
        """
        if session is None or session.state is not SessionState.OPEN:
            return None
        if status is ItemStatus.WAITING_OPTIMAL_TIME:
            if session.start_time is not None and now >= session.start_time:
                return ItemStatus.SELF_DRYING
            return None
        if status is ItemStatus.SELF_DRYING:
            if session.end_time is not None and now >= session.end_time:
                return ItemStatus.NORMAL
            return None
        return None


class OrderLifecycle:
    """Allowed moves for `ServiceOrder.status`."""

    TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
        OrderStatus.PENDING: frozenset({OrderStatus.ACCEPTED, OrderStatus.CANCELLED}),
        OrderStatus.ACCEPTED: frozenset({OrderStatus.IN_PROGRESS, OrderStatus.CANCELLED}),
        OrderStatus.IN_PROGRESS: frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED}),
        OrderStatus.COMPLETED: frozenset(),
        OrderStatus.CANCELLED: frozenset(),
    }

    # Item status each order status holds the item in.
    ITEM_STATUS_FOR_ORDER: dict[OrderStatus, ItemStatus] = {
        OrderStatus.PENDING: ItemStatus.WAITING_PICKUP,
        OrderStatus.ACCEPTED: ItemStatus.HELP_DRYING,
        OrderStatus.IN_PROGRESS: ItemStatus.HELP_DRYING,
        OrderStatus.COMPLETED: ItemStatus.NORMAL,
        OrderStatus.CANCELLED: ItemStatus.NORMAL,
    }

    @classmethod
    def can_transition(cls, current: OrderStatus, target: OrderStatus) -> bool:
        return target in cls.TRANSITIONS.get(current, frozenset())

    @classmethod
    def ensure_transition(cls, current: OrderStatus, target: OrderStatus) -> None:
        if not cls.can_transition(current, target):
            raise InvalidTransitionError(
                f"Order cannot move from {current.value} to {target.value}",
                current_status=current.value,
            )

    @staticmethod
    def is_expired(
        status: OrderStatus,
        session: Optional[InterventionSession],
        now: datetime,
    ) -> bool:
        """A pending order expires once its session start has passed unaccepted."""
        if status is not OrderStatus.PENDING or session is None:
            return False
        return session.start_time is not None and now >= session.start_time
