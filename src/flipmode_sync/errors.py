"""Error taxonomy for Flipmode sync."""

from typing import Optional


class FlipmodeError(Exception):
    """Base error. ``message`` is short and safe to show to the user."""

    def __init__(self, message: str, *, detail: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.detail = detail

    def __str__(self) -> str:
        return self.message


class TransportError(FlipmodeError):
    """Network or HTTP failure reaching a remote service or the store."""


class AuthError(FlipmodeError):
    """The service rejected our credentials."""


class DomainError(FlipmodeError):
    """A business rule refused the request (already claimed, limits, ...)."""


class PartialCompletionError(FlipmodeError):
    """First step of a multi-step operation failed; later steps still ran."""


class ConsistencyError(FlipmodeError):
    """An artifact is missing a marker or a link cannot be resolved."""


class ServiceUnavailable(TransportError):
    """The dialogue service could not be reached."""


class SubmissionFailed(FlipmodeError):
    """A query could not be submitted to the queue service."""

    def __init__(self, message: str, *, cause: Optional[FlipmodeError] = None):
        super().__init__(message, detail=str(cause) if cause else None)
        self.cause = cause
