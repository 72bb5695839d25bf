"""Engine error taxonomy.

Four families are kept distinct so callers can tell "your input was bad"
from "this session can't accept that right now":

- :class:`ValidationFailure` — client-caused, carries a field-level error list
- :class:`SessionStateError` — unknown session, duplicate feedback, cooldown
- :class:`ConfigurationError` — catalog defects, answered with a safe default
- :class:`DependencyError` — persistence unavailable, never retried here
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from skane_engine.models import FeedbackOutcome, PrimaryState


class FieldError(BaseModel):
    """A single field-level validation problem."""

    field: str
    message: str


class SkaneError(Exception):
    """Base class for every error raised by the engine."""

    code = "skane_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": str(self)}


# ── Validation ────────────────────────────────────────────────


class ValidationFailure(SkaneError):
    code = "validation_failed"

    def __init__(self, message: str, errors: list[FieldError] | None = None) -> None:
        super().__init__(message)
        self.errors: list[FieldError] = errors or []

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["errors"] = [e.model_dump() for e in self.errors]
        return data


class InvalidSignalError(ValidationFailure):
    """A snapshot value is missing, non-numeric or outside the catalog bounds."""

    code = "invalid_signal"


class InvalidFeedbackError(ValidationFailure):
    """Raised for unrecognised feedback only under the ``reject`` policy."""

    code = "invalid_feedback"


# ── Session state ─────────────────────────────────────────────


class SessionStateError(SkaneError):
    code = "session_state_error"


class UnknownSessionError(SessionStateError):
    code = "unknown_session"

    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session {session_id!r} not found.")
        self.session_id = session_id


class AlreadyCompletedError(SessionStateError):
    """Feedback was already recorded; ``result`` holds the committed outcome."""

    code = "already_completed"

    def __init__(self, session_id: str, result: FeedbackOutcome) -> None:
        super().__init__(f"Session {session_id!r} already has feedback.")
        self.session_id = session_id
        self.result = result


class InvalidTransitionError(SessionStateError):
    code = "invalid_transition"


class CooldownActiveError(SessionStateError):
    code = "cooldown_active"

    def __init__(self, owner_ref: str, hours_until_reset: int) -> None:
        super().__init__(
            f"Owner {owner_ref!r} must wait {hours_until_reset}h before a new skane."
        )
        self.owner_ref = owner_ref
        self.hours_until_reset = hours_until_reset

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["hours_until_reset"] = self.hours_until_reset
        return data


# ── Configuration ─────────────────────────────────────────────


class ConfigurationError(SkaneError):
    code = "configuration_error"


class NoEligibleActionError(ConfigurationError):
    code = "no_eligible_action"

    def __init__(self, state: PrimaryState) -> None:
        super().__init__(f"No catalog action is tagged for state {state.value}.")
        self.state = state


# ── Dependencies ──────────────────────────────────────────────


class DependencyError(SkaneError):
    code = "dependency_error"


class PersistenceUnavailableError(DependencyError):
    code = "persistence_unavailable"
