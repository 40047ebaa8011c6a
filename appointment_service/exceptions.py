"""Error kinds raised by the appointment service.

Stores raise StoreUnavailable/Conflict, the engine raises ValidationError and
NotFound, and the API layer maps each kind to an HTTP status.
"""


class AppointmentServiceError(Exception):
    """Base class for every error the service surfaces to callers."""

    error_code = "APPOINTMENT_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(AppointmentServiceError):
    """Caller input failed a precondition (empty keyword, empty reasons, ...)."""

    error_code = "VALIDATION_ERROR"


class StoreUnavailable(AppointmentServiceError):
    """The patient or appointment store could not complete an operation."""

    error_code = "STORE_UNAVAILABLE"

    def __init__(self, operation: str, reason: str = ""):
        self.operation = operation
        self.reason = reason
        message = f"Store unavailable during '{operation}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class Conflict(AppointmentServiceError):
    """A uniqueness constraint was violated, e.g. two patients with one SSN."""

    error_code = "CONFLICT"


class NotFound(AppointmentServiceError):
    """A lookup that must find something (e.g. a patient by SSN) found nothing."""

    error_code = "NOT_FOUND"
