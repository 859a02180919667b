"""
Error taxonomy shared by the relay server and the poll client.

Every error carries the HTTP status it is surfaced with, so the API
layer can render any of them without a lookup table.
"""


class HiveError(Exception):
    """Base class for relay errors."""

    http_status = 500
    error_type = "HiveError"

    def __init__(self, message: str, metadata: dict = None):
        super().__init__(message)
        self.message = message
        self.metadata = metadata or {}


class ValidationError(HiveError):
    """Malformed request, e.g. missing locator fields. Never retried."""

    http_status = 400
    error_type = "ValidationError"


class NotFound(HiveError):
    """Unknown connection/update id."""

    http_status = 404
    error_type = "NotFound"


class ConstraintViolation(HiveError):
    """A write would break a uniqueness or foreign-key constraint."""

    http_status = 409
    error_type = "ConstraintViolation"


class TransientIOError(HiveError):
    """Network or store unavailable; retried with backoff up to a bound."""

    http_status = 503
    error_type = "TransientIOError"


class FatalError(HiveError):
    """Stops the affected loop but not the process."""

    http_status = 500
    error_type = "FatalError"
