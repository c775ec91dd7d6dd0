from __future__ import annotations


class ReservationError(Exception):
    """Base class for every error the reservation engine raises."""


class ValidationError(ReservationError):
    """Raise to map to HTTP 400. Raised before any store is touched."""


class NotFoundError(ReservationError):
    """Raise to map to HTTP 404."""


class SlotNotFound(NotFoundError):
    pass


class BookingNotFound(NotFoundError):
    pass


class ConflictError(ReservationError):
    """Raise to map to HTTP 409 (state-transition precondition failed)."""


class SlotUnavailable(ConflictError):
    pass


class NotLocked(ConflictError):
    pass


class AlreadyTerminalOrElapsed(ConflictError):
    pass


class ForbiddenError(ReservationError):
    """Raise to map to HTTP 403."""


class OwnershipMismatch(ForbiddenError):
    pass


class GatewayError(ReservationError):
    """Payment gateway unreachable or answered with an unexpected shape."""


class SignatureInvalid(ReservationError):
    """Webhook authenticity check failed."""
