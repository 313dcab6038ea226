"""
Domain error taxonomy for the telemetry core.

Every error raised by the service layer derives from TelemetryError and
carries an optional ``field`` and ``identifier`` so callers can tell which
input or which record the failure refers to. The HTTP layer maps each class
to a status code in ``solarmon.api.main``.

CHANGELOG:
- 2026-10-17: Initial creation
"""

from __future__ import annotations


class TelemetryError(Exception):
    """Base class for all domain errors raised by the service layer.

    Attributes:
        message: Human-readable description of the failure.
        field: Name of the offending input field, if any.
        identifier: Identifier (name or id) of the record concerned, if any.
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        identifier: str | int | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.field = field
        self.identifier = identifier

    def to_dict(self) -> dict:
        """Serialise the error for an API response body."""
        body: dict = {"detail": self.message, "error": type(self).__name__}
        if self.field is not None:
            body["field"] = self.field
        if self.identifier is not None:
            body["identifier"] = self.identifier
        return body


class ValidationError(TelemetryError):
    """Malformed or missing required input. Nothing was persisted."""

    status_code = 422


class NotFoundError(TelemetryError):
    """Unknown (or out-of-scope) device, sensor, organization or setting."""

    status_code = 404


class ConflictError(TelemetryError):
    """Duplicate unique key on create or rename."""

    status_code = 409


class ConfigurationError(TelemetryError):
    """Invalid decoding encoding, register kind or parameters."""

    status_code = 400


class StorageError(TelemetryError):
    """Persistence layer failure. The transaction was rolled back."""

    status_code = 503
