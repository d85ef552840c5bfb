from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from furniture_genai.models import VariationError


class GenerationError(Exception):
    """Base class for everything the orchestration core raises on purpose."""

    kind = "generation_error"

    def __init__(self, message: str, detail: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class ConfigurationError(GenerationError):
    # Missing credentials or unusable wiring. Never retried.
    kind = "configuration"


class ValidationError(GenerationError):
    kind = "validation"


class BackendError(GenerationError):
    kind = "backend"

    def __init__(self, message: str, status_code: int | None = None, detail: str | None = None) -> None:
        super().__init__(message, detail=detail)
        self.status_code = status_code


class TransientBackendError(BackendError):
    # 5xx-class responses, dropped connections, request timeouts.
    kind = "transient_backend"


class TerminalBackendError(BackendError):
    # 4xx-class responses or an explicit failure reported by the backend.
    kind = "terminal_backend"


class JobTimeoutError(GenerationError, TimeoutError):
    """The job ran out of polling budget. It may still finish server-side."""

    kind = "timeout"


class JobCancelledError(GenerationError):
    kind = "cancelled"


class InvalidTransitionError(GenerationError):
    kind = "invalid_transition"


class BatchFailedError(GenerationError):
    """Raised when not a single variation of a batch succeeded."""

    kind = "batch_failed"

    def __init__(self, errors: list[VariationError], requested: int) -> None:
        causes = "; ".join(f"#{e.variation_index} {e.kind}: {e.message}" for e in errors) or "no attempts made"
        super().__init__(f"all {requested} variations failed: {causes}")
        self.errors = list(errors)
        self.requested = requested


def transient_for_status(status_code: int) -> bool:
    return status_code >= 500
