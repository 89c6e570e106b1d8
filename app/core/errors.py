"""Domain errors raised by the service layer.

Each carries the HTTP status the API renders it with; the handler in
app.main turns them into {"detail": ..., "kind": ...} responses.
"""


class BookingError(Exception):
    """Base class for user-visible booking errors."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(BookingError):
    status_code = 400


class NotFoundError(BookingError):
    status_code = 404


class ForbiddenError(BookingError):
    status_code = 403


class ConflictError(BookingError):
    status_code = 409


class ProviderUnavailableError(ConflictError):
    pass


class SlotTakenError(ConflictError):
    pass


class InvalidTransitionError(BookingError):
    status_code = 409


class PolicyViolationError(BookingError):
    status_code = 400


class PaymentError(BookingError):
    status_code = 402
