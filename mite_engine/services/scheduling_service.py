"""Self-service drying schedule: window selection, confirmation and the tick.

`tick(now)` is the only place clock-driven transitions happen. Every step
checks the persisted status before writing, so calling it twice with the same
clock is a no-op the second time and a crash between items leaves each item in
a valid state.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from mite_engine.domain.errors import (
    ForecastUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    PermissionDeniedError,
    StaleStateError,
)
from mite_engine.domain.lifecycle import ItemLifecycle
from mite_engine.domain.models import (
    InterventionSession,
    Item,
    ItemStatus,
    ItemTransition,
    OptimalWindow,
    OrderTransition,
    PredictedOutcome,
    SessionState,
    TickReport,
    WeatherAnalysis,
    WeatherInterval,
)
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.forecast_service import ForecastProvider
from mite_engine.services.notification_service import (
    Notification,
    NotificationSender,
    notify_safely,
)
from mite_engine.services.order_service import OrderService
from mite_engine.services.outcome_service import OutcomePredictor, validate_outcome
from mite_engine.services.window_service import WindowFinderService
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger
from mite_engine.utils.timeutils import to_utc, utc_now


logger = get_logger(__name__)


@dataclass(frozen=True)
class WindowSelection:
    analysis: WeatherAnalysis

    @property
    def window(self) -> Optional[OptimalWindow]:
        return self.analysis.best_window


class SchedulingCoordinator:
    def __init__(
        self,
        repository: DataRepository,
        order_service: OrderService,
        forecast_provider: Optional[ForecastProvider] = None,
        window_finder: Optional[WindowFinderService] = None,
        outcome_predictor: Optional[OutcomePredictor] = None,
        settings: Optional[Settings] = None,
        notifier: Optional[NotificationSender] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._repository = repository
        self._order_service = order_service
        self._forecast_provider = forecast_provider
        self._window_finder = window_finder or WindowFinderService(self._settings)
        self._outcome_predictor = outcome_predictor or OutcomePredictor(self._settings)
        self._notifier = notifier

    # --- reads -----------------------------------------------------------

    def get_item(self, item_id: int) -> Item:
        item = self._repository.get_item(item_id)
        if item is None:
            raise NotFoundError(f"Item {item_id} not found")
        return item

    def item_history(self, item_id: int) -> list[InterventionSession]:
        self.get_item(item_id)
        return self._repository.list_sessions_for_item(item_id)

    # --- window selection ------------------------------------------------

    def fetch_forecast_for_item(self, item_id: int) -> list[WeatherInterval]:
        item = self.get_item(item_id)
        location = (
            self._repository.get_location(item.location_id)
            if item.location_id is not None
            else None
        )
        coordinates = location.coordinates if location is not None else None
        if coordinates is None:
            raise ForecastUnavailableError(
                f"Item {item_id} has no location coordinates; set a location and try again"
            )
        if self._forecast_provider is None:
            raise ForecastUnavailableError("No forecast provider is configured")
        return self._forecast_provider.fetch(coordinates)

    def select_window(
        self,
        item_id: int,
        forecast: Optional[Sequence[WeatherInterval]] = None,
    ) -> WindowSelection:
        """Analyze a forecast (fetched when not supplied) for the item's location.

        The selection's `window` is None when conditions offer no usable run;
        the analysis `reason` says why.
        """
        intervals = forecast if forecast is not None else self.fetch_forecast_for_item(item_id)
        analysis = self._window_finder.analyze(intervals)
        if analysis is None:
            raise ForecastUnavailableError("Forecast returned no intervals; try again later")
        return WindowSelection(analysis=analysis)

    def predict_outcome(
        self,
        item_id: int,
        window: OptimalWindow,
        photo_ref: Optional[str] = None,
        duration_hours: Optional[float] = None,
    ) -> PredictedOutcome:
        item = self.get_item(item_id)
        return self._outcome_predictor.predict(
            item.risk_score,
            window,
            photo_ref=photo_ref,
            duration_hours=duration_hours,
        )

    # --- self-service intervention ----------------------------------------

    def confirm_intervention(
        self,
        item_id: int,
        initiator_id: str,
        window: OptimalWindow,
        predicted_outcome: PredictedOutcome,
        now: Optional[datetime] = None,
    ) -> InterventionSession:
        item = self.get_item(item_id)
        if item.owner_id != initiator_id:
            raise PermissionDeniedError("Only the item owner can schedule drying")
        ItemLifecycle.ensure_transition(item.status, ItemStatus.WAITING_OPTIMAL_TIME)
        current_time = to_utc(now) if now is not None else utc_now()
        if to_utc(window.end_time) <= current_time:
            raise InvalidTransitionError(
                f"Drying window ended at {window.end_time.isoformat()}; pick a later window",
                current_status=item.status.value,
            )
        validate_outcome(item.risk_score, predicted_outcome)

        try:
            with self._repository.transaction() as conn:
                if self._repository.count_open_sessions(item_id, conn=conn):
                    raise StaleStateError(f"Item {item_id} already has an open session")
                session = self._repository.create_session(
                    item_id=item_id,
                    initiator_id=initiator_id,
                    start_time=window.start_time,
                    end_time=window.end_time,
                    is_self_service=True,
                    before_score=item.risk_score,
                    predicted_score=predicted_outcome.final_score,
                    conn=conn,
                )
                self._repository.update_item_if_status(
                    item_id,
                    ItemStatus.NORMAL,
                    status=ItemStatus.WAITING_OPTIMAL_TIME,
                    active_session_id=session.session_id,
                    conn=conn,
                )
        except StaleStateError as exc:
            current = self.get_item(item_id)
            raise InvalidTransitionError(
                f"Item {item_id} cannot start an intervention: {exc}",
                current_status=current.status.value,
            ) from exc

        logger.info(
            "Item %s scheduled for self-drying %s -> %s",
            item_id,
            window.start_time.isoformat(),
            window.end_time.isoformat(),
        )
        notify_safely(
            self._notifier,
            Notification(
                event="intervention_scheduled",
                recipient_id=initiator_id,
                subject="Sun drying scheduled",
                details={
                    "item": item.name,
                    "start": window.start_time.isoformat(),
                    "end": window.end_time.isoformat(),
                    "predicted_score": predicted_outcome.final_score,
                },
            ),
        )
        return session

    def _commit_self_drying(
        self,
        item: Item,
        session: InterventionSession,
        after_score: float,
        closed_at: datetime,
    ) -> None:
        with self._repository.transaction() as conn:
            self._repository.close_session(
                session.session_id,
                state=SessionState.COMPLETED,
                after_score=after_score,
                closed_at=closed_at,
                conn=conn,
            )
            self._repository.update_item_if_status(
                item.item_id,
                ItemStatus.SELF_DRYING,
                status=ItemStatus.NORMAL,
                risk_score=after_score,
                active_session_id=None,
                conn=conn,
            )
        logger.info(
            "Item %s self-drying finished; risk %.2f -> %.2f",
            item.item_id,
            session.before_score,
            after_score,
        )
        notify_safely(
            self._notifier,
            Notification(
                event="self_drying_completed",
                recipient_id=item.owner_id,
                subject="Sun drying completed",
                details={
                    "item": item.name,
                    "before_score": session.before_score,
                    "after_score": after_score,
                },
            ),
        )

    def _active_session(self, item: Item) -> InterventionSession:
        session = (
            self._repository.get_session(item.active_session_id)
            if item.active_session_id is not None
            else None
        )
        if session is None or session.state is not SessionState.OPEN:
            raise InvalidTransitionError(
                f"Item {item.item_id} has no open intervention",
                current_status=item.status.value,
            )
        return session

    def complete_intervention(
        self,
        item_id: int,
        actor_id: str,
        outcome: Optional[PredictedOutcome] = None,
        now: Optional[datetime] = None,
    ) -> InterventionSession:
        """End self-drying early, committing `outcome` or the stored prediction."""
        item = self.get_item(item_id)
        if item.owner_id != actor_id:
            raise PermissionDeniedError("Only the item owner can finish drying")
        if item.status is not ItemStatus.SELF_DRYING:
            raise InvalidTransitionError(
                "Drying can only be completed while the item is self drying",
                current_status=item.status.value,
            )
        session = self._active_session(item)
        if outcome is not None:
            validate_outcome(session.before_score, outcome)
            after_score = outcome.final_score
        elif session.predicted_score is not None:
            after_score = session.predicted_score
        else:
            after_score = session.before_score

        closed_at = to_utc(now) if now is not None else utc_now()
        try:
            self._commit_self_drying(item, session, after_score, closed_at)
        except StaleStateError as exc:
            current = self.get_item(item_id)
            raise InvalidTransitionError(
                "Item changed before drying could be completed",
                current_status=current.status.value,
            ) from exc
        return self._repository.get_session(session.session_id)

    def cancel_intervention(self, item_id: int, actor_id: str) -> ItemTransition:
        item = self.get_item(item_id)
        if item.active_order_id is not None:
            transition = self._order_service.cancel_order(item.active_order_id, actor_id)
            return ItemTransition(
                item_id=item_id,
                from_status=item.status,
                to_status=ItemStatus.NORMAL,
                trigger=transition.trigger,
            )

        if item.owner_id != actor_id:
            raise PermissionDeniedError("Only the item owner can cancel drying")
        if item.status not in ItemLifecycle.SELF_SERVICE_STATES:
            raise InvalidTransitionError(
                "Item has no intervention to cancel",
                current_status=item.status.value,
            )
        ItemLifecycle.ensure_transition(item.status, ItemStatus.NORMAL)
        session = self._active_session(item)
        try:
            with self._repository.transaction() as conn:
                self._repository.close_session(
                    session.session_id,
                    state=SessionState.CANCELLED,
                    conn=conn,
                )
                self._repository.update_item_if_status(
                    item_id,
                    item.status,
                    status=ItemStatus.NORMAL,
                    active_session_id=None,
                    conn=conn,
                )
        except StaleStateError as exc:
            current = self.get_item(item_id)
            raise InvalidTransitionError(
                "Item changed before drying could be cancelled",
                current_status=current.status.value,
            ) from exc
        logger.info("Item %s self-drying cancelled from %s", item_id, item.status.value)
        return ItemTransition(
            item_id=item_id,
            from_status=item.status,
            to_status=ItemStatus.NORMAL,
            trigger="cancelled by owner",
        )

    # --- clock ------------------------------------------------------------

    def _advance_item(self, item: Item, now: datetime) -> list[ItemTransition]:
        if item.active_session_id is None:
            logger.warning(
                "Item %s is %s without an active session; skipped",
                item.item_id,
                item.status.value,
            )
            return []
        session = self._repository.get_session(item.active_session_id)
        transitions: list[ItemTransition] = []
        status = item.status
        while True:
            target = ItemLifecycle.due_transition(status, session, now)
            if target is None:
                return transitions
            if target is ItemStatus.SELF_DRYING:
                self._repository.update_item_if_status(
                    item.item_id,
                    ItemStatus.WAITING_OPTIMAL_TIME,
                    status=ItemStatus.SELF_DRYING,
                )
                logger.info("Item %s drying window started", item.item_id)
                trigger = "window started"
            else:
                after_score = (
                    session.predicted_score
                    if session.predicted_score is not None
                    else session.before_score
                )
                self._commit_self_drying(item, session, after_score, now)
                session = self._repository.get_session(session.session_id)
                trigger = "window ended"
            transitions.append(
                ItemTransition(
                    item_id=item.item_id,
                    from_status=status,
                    to_status=target,
                    trigger=trigger,
                )
            )
            status = target

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        """Apply every time-triggered transition that is due at `now`."""
        current_time = to_utc(now) if now is not None else utc_now()
        errors: list[str] = []

        order_transitions: list[OrderTransition] = []
        try:
            order_transitions = self._order_service.expire_pending_orders(current_time)
        except Exception as exc:
            message = f"Error expiring pending orders: {exc}"
            logger.exception(message)
            errors.append(message)

        item_transitions: list[ItemTransition] = []
        for item in self._repository.list_items_by_status(ItemLifecycle.SELF_SERVICE_STATES):
            try:
                item_transitions.extend(self._advance_item(item, current_time))
            except StaleStateError:
                logger.info("Item %s changed during tick; skipped", item.item_id)
            except Exception as exc:
                message = f"Error advancing item {item.item_id}: {exc}"
                logger.exception(message)
                errors.append(message)

        report = TickReport(
            now=current_time,
            item_transitions=item_transitions,
            order_transitions=order_transitions,
            errors=errors,
        )
        logger.info(
            "Tick at %s applied %s transitions (%s errors)",
            current_time.isoformat(),
            report.transition_count,
            len(errors),
        )
        return report
