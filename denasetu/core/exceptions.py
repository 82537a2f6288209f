"""
Domain errors raised by the service layer.

Routers translate these into HTTP responses; anything else falls through to
the global exception handler in ``denasetu.main``.
"""


class DenaSetuError(Exception):
    """Base class for all domain errors"""
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(DenaSetuError):
    status_code = 404


class NotAuthenticated(DenaSetuError):
    status_code = 401


class Forbidden(DenaSetuError):
    status_code = 403


class InvalidTransition(DenaSetuError):
    """Requested status change is not an edge of the donation state machine"""
    status_code = 409


class ConcurrencyConflict(DenaSetuError):
    """Conditional update matched no row: someone else changed it first"""
    status_code = 409


class IdempotencyConflict(DenaSetuError):
    """Idempotency key reused with a different request body"""
    status_code = 409


class GatewayError(DenaSetuError):
    """Payment gateway call failed; the message is shown to the client"""
    status_code = 500


class SignatureError(DenaSetuError):
    status_code = 400


class ValidationFailed(DenaSetuError):
    status_code = 422


class StoreError(DenaSetuError):
    status_code = 500


class DuplicateRecord(StoreError):
    """Unique constraint violated"""
    status_code = 409
