"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from mite_engine.controllers.order_controller import router as order_router
from mite_engine.controllers.scheduling_controller import router as scheduling_router
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.auth_service import AuthService
from mite_engine.services.forecast_service import TimelinesForecastProvider
from mite_engine.services.notification_service import RecipientResolver, build_notifier
from mite_engine.services.order_service import OrderService
from mite_engine.services.outcome_service import OutcomePredictor
from mite_engine.services.risk_service import RiskGrowthService
from mite_engine.services.scheduling_service import SchedulingCoordinator
from mite_engine.services.window_service import WindowFinderService
from mite_engine.utils.config import Settings, get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    recipient_resolver: Optional[RecipientResolver] = None,
) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Instantiates all services with explicit dependency injection via app.state.
    Tests pass their own `settings` to point the repository at a temp database.
    `recipient_resolver` maps user ids to email addresses when email
    notifications are configured.
    """
    settings = settings or get_settings()

    # --- Repository (single SQLite connection factory) ---
    repository = DataRepository(settings)

    # --- External collaborators ---
    forecast_provider = TimelinesForecastProvider(settings)
    outcome_predictor = OutcomePredictor(settings)
    notifier = build_notifier(settings, recipient_resolver)

    # --- Services ---
    order_service = OrderService(
        repository=repository,
        settings=settings,
        notifier=notifier,
    )
    scheduling_coordinator = SchedulingCoordinator(
        repository=repository,
        order_service=order_service,
        forecast_provider=forecast_provider,
        window_finder=WindowFinderService(settings),
        outcome_predictor=outcome_predictor,
        settings=settings,
        notifier=notifier,
    )
    growth_service = RiskGrowthService(
        repository=repository,
        forecast_provider=forecast_provider,
        settings=settings,
    )
    auth_service = AuthService(settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    # --- Routers ---
    app.include_router(scheduling_router)
    app.include_router(order_router)

    # --- Inject services into app.state for dependency resolution ---
    app.state.settings = settings
    app.state.repository = repository
    app.state.notifier = notifier
    app.state.order_service = order_service
    app.state.scheduling_coordinator = scheduling_coordinator
    app.state.growth_service = growth_service
    app.state.auth_service = auth_service

    return app


def _startup(app: FastAPI) -> None:
    """Idempotent startup sequence. Safe to re-run on server restarts."""
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    logger.info("Startup complete, system ready")


# Module-level app object for uvicorn
app = create_app()
