"""Domain exceptions. The API layer maps each to an HTTP status."""
from __future__ import annotations


class RakuadoError(Exception):
    """Base class for errors reported to callers."""
    status_code = 500
    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(RakuadoError):
    """Bad date, period, or identifier. Never retried, no state change."""
    status_code = 400
    code = "validation_error"


class NotFoundError(RakuadoError):
    status_code = 404
    code = "not_found"


class ConflictError(RakuadoError):
    """The entity's current state forbids the operation (e.g. draft already sent)."""
    status_code = 400
    code = "invalid_state"


class DeliveryError(RakuadoError):
    """The email provider rejected or failed a send."""
    status_code = 502
    code = "delivery_failed"
