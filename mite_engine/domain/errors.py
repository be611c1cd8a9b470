"""Exception taxonomy shared by lifecycle rules, services and controllers."""

from __future__ import annotations


class EngineError(Exception):
    """Base exception for drying-engine failures."""


class ExternalUnavailableError(EngineError):
    """Raised when a collaborator (forecast, AI, geocoding) cannot answer.

    Always retryable; never a statement about drying conditions.
    """


class ForecastUnavailableError(ExternalUnavailableError):
    """Raised when no forecast could be obtained for a location."""


class OutcomeUnavailableError(ExternalUnavailableError):
    """Raised when the AI outcome path fails and no fallback was requested."""


class PreconditionViolatedError(EngineError):
    """Raised when a transition's precondition no longer holds.

    Carries the authoritative state read at rejection time.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        super().__init__(message)
        self.current_status = current_status


class InvalidTransitionError(PreconditionViolatedError):
    """Raised when a state machine has no edge for the requested move."""


class OrderConflictError(PreconditionViolatedError):
    """Raised when another actor changed the order first."""


class InvariantViolationError(EngineError):
    """Raised when a write would break a data invariant; nothing is persisted."""


class NotFoundError(EngineError):
    """Raised when a referenced record does not exist."""


class PermissionDeniedError(EngineError):
    """Raised when an actor may not perform the requested action."""


class StaleStateError(EngineError):
    """Raised inside a transaction when a conditional update matched no row."""
