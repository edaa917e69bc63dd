"""Exception hierarchy for the alert submission subsystem.

Every failure the core can report derives from :class:`FireAlertError`, which
carries a stable ``error_code`` and a ``details`` dict for structured logging::

    try:
        receipt = await client.submit(draft)
    except SubmissionRejectedError as exc:
        logger.warning("alert.rejected", **exc.details)

Kinds map onto recovery behaviour:

* ``PermissionDeniedError`` / ``LocationUnavailableError`` are shown to the
  user with a retry option and never retried automatically.
* ``ConnectivityLostError`` is recovered locally by queueing the draft.
* ``SubmissionRejectedError`` / ``TransportFailureError`` surface as a failed
  send with a manual retry that reuses the same draft.
"""

from __future__ import annotations

from typing import Any


class FireAlertError(Exception):
    """Base exception for all client-core errors."""

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        *,
        error_code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class PermissionDeniedError(FireAlertError):
    """The user refused a location, camera or microphone permission."""

    def __init__(self, permission: str) -> None:
        super().__init__(
            f"Permission denied: {permission}",
            error_code="PERMISSION_DENIED",
            details={"permission": permission},
        )
        self.permission = permission


class LocationUnavailableError(FireAlertError):
    """No location fix could be obtained (timeout or provider failure)."""

    def __init__(self, message: str = "Location unavailable", **details: Any) -> None:
        super().__init__(message, error_code="LOCATION_UNAVAILABLE", details=details)


class ConnectivityLostError(FireAlertError):
    """The network was unreachable before a send was attempted."""

    def __init__(self, message: str = "No network connectivity") -> None:
        super().__init__(message, error_code="CONNECTIVITY_LOST")


class SubmissionError(FireAlertError):
    """Base for failures of a single submission attempt."""


class SubmissionRejectedError(SubmissionError):
    """The server answered, but not with a usable success response."""

    def __init__(self, message: str, *, status_code: int, body: str) -> None:
        super().__init__(
            message,
            error_code="SUBMISSION_REJECTED",
            details={"status_code": status_code, "body": body},
        )
        self.status_code = status_code
        self.body = body


class TransportFailureError(SubmissionError):
    """The request never produced an HTTP response."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, error_code="TRANSPORT_FAILURE", details=details)


class MediaUnavailableError(SubmissionError):
    """An attached media file could not be read."""

    def __init__(self, kind: str, uri: str) -> None:
        super().__init__(
            f"Could not read {kind} at {uri}",
            error_code="MEDIA_UNAVAILABLE",
            details={"kind": kind, "uri": uri},
        )


class HistoryUnavailableError(FireAlertError):
    """The alert history could not be fetched."""

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message, error_code="HISTORY_UNAVAILABLE", details=details)


class InvalidDraftError(FireAlertError, ValueError):
    """The draft is missing fields required for submission."""

    def __init__(self, missing: list[str]) -> None:
        super().__init__(
            f"Alert draft is missing required fields: {', '.join(missing)}",
            error_code="INVALID_DRAFT",
            details={"missing": missing},
        )
        self.missing = missing


class InvalidTransitionError(FireAlertError, ValueError):
    """A delivery-state change that the draft lifecycle does not allow."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(
            f"Cannot move alert draft from {current} to {target}",
            error_code="INVALID_TRANSITION",
            details={"current": current, "target": target},
        )
