"""
Centralized error types for the delivery pipeline and their HTTP mapping.
Services raise these; routes stay thin and call notify_error_to_http.
"""
from __future__ import annotations

from typing import Callable

from fastapi import HTTPException


class NotificationError(Exception):
    """Base class for errors raised by the notification pipeline."""


class TransportError(NotificationError):
    """The outbound provider rejected the message or could not be reached."""


class TransportTimeoutError(TransportError):
    """The outbound provider did not answer within the configured timeout."""


class TransportConfigurationError(NotificationError):
    """No usable transport: unknown provider or missing credentials."""


class JobNotFoundError(NotificationError):
    pass


class InvalidJobTransitionError(NotificationError):
    """Requested admin action is not allowed from the job's current status."""


class StaleJobStateError(NotificationError):
    """A conditional status update matched no row; someone else moved the job first."""

    def __init__(self, job_id: int, expected: str):
        super().__init__(f"Delivery job {job_id} is no longer {expected!r}")
        self.job_id = job_id
        self.expected = expected


class UnknownNotificationTypeError(NotificationError):
    pass


class NotificationNotFoundError(NotificationError):
    pass


class PreferenceValidationError(NotificationError):
    pass


class EmailTemplateNotFoundError(NotificationError):
    pass


class TemplatePreviewError(NotificationError):
    """Preview data did not validate, or the template failed while rendering it."""


# ---------------------------------------------------------------------------
# HTTP status codes for known error categories
# ---------------------------------------------------------------------------

STATUS_BAD_REQUEST = 400
STATUS_NOT_FOUND = 404
STATUS_CONFLICT = 409
STATUS_INTERNAL_ERROR = 500
STATUS_SERVICE_UNAVAILABLE = 503  # transport not configured or provider down


# ---------------------------------------------------------------------------
# Error rules: (predicate, status_code). First match wins; detail is str(exc).
# Add new rules here instead of scattering checks in routes.
# ---------------------------------------------------------------------------

def _is(*types: type[Exception]) -> Callable[[Exception], bool]:
    return lambda exc: isinstance(exc, types)


NOTIFY_ERROR_RULES: list[tuple[Callable[[Exception], bool], int]] = [
    (_is(JobNotFoundError, NotificationNotFoundError, EmailTemplateNotFoundError), STATUS_NOT_FOUND),
    (_is(StaleJobStateError), STATUS_CONFLICT),
    (
        _is(InvalidJobTransitionError, UnknownNotificationTypeError, PreferenceValidationError, TemplatePreviewError),
        STATUS_BAD_REQUEST,
    ),
    (_is(TransportConfigurationError, TransportError), STATUS_SERVICE_UNAVAILABLE),
]


def notify_error_to_http(exc: Exception) -> HTTPException:
    """
    Map an exception from a notification/delivery service call into an HTTPException.
    Uses NOTIFY_ERROR_RULES for known error types; otherwise returns 500 with the exception message.
    """
    for predicate, status_code in NOTIFY_ERROR_RULES:
        if predicate(exc):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=STATUS_INTERNAL_ERROR, detail=str(exc))
