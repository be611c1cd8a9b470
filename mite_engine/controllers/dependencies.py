"""Shared FastAPI dependency providers for controller layer."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from mite_engine.domain.errors import (
    EngineError,
    ExternalUnavailableError,
    InvariantViolationError,
    NotFoundError,
    PermissionDeniedError,
    PreconditionViolatedError,
)
from mite_engine.repository.data_repository import DataRepository
from mite_engine.services.auth_service import (
    AuthService,
    CronTokenNotConfiguredError,
    InvalidCronTokenError,
)
from mite_engine.services.order_service import OrderService
from mite_engine.services.risk_service import RiskGrowthService
from mite_engine.services.scheduling_service import SchedulingCoordinator
from mite_engine.utils.config import get_settings
from mite_engine.utils.logger import get_logger


logger = get_logger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


def _state_service(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} is not initialized",
        )
    return service


def get_repository(request: Request) -> DataRepository:
    return _state_service(request, "repository", "Repository")


def get_order_service(request: Request) -> OrderService:
    return _state_service(request, "order_service", "Order service")


def get_scheduling_coordinator(request: Request) -> SchedulingCoordinator:
    return _state_service(request, "scheduling_coordinator", "Scheduling coordinator")


def get_growth_service(request: Request) -> RiskGrowthService:
    return _state_service(request, "growth_service", "Risk growth service")


def get_auth_service(request: Request) -> AuthService:
    service = getattr(request.app.state, "auth_service", None)
    if service is None:
        service = AuthService(settings=get_settings())
        request.app.state.auth_service = service
    return service


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    """Identity is asserted by the fronting application via `X-User-Id`."""
    if x_user_id is None or not x_user_id.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-Id header is required",
        )
    return x_user_id.strip()


async def require_cron_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    auth_service: AuthService = Depends(get_auth_service),
) -> None:
    if not auth_service.auth_enabled:
        return
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header with Bearer token is required",
        )
    try:
        auth_service.validate_bearer_token(credentials.credentials)
    except (CronTokenNotConfiguredError, InvalidCronTokenError) as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(exc),
        ) from exc


def to_http_exception(exc: EngineError) -> HTTPException:
    """Map the engine error taxonomy onto HTTP status codes."""
    if isinstance(exc, ExternalUnavailableError):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{exc} Please try again.",
        )
    if isinstance(exc, PreconditionViolatedError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "current_status": exc.current_status},
        )
    if isinstance(exc, InvariantViolationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(exc),
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    logger.error("Unmapped engine error: %s", exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )
