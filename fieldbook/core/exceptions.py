# fieldbook/core/exceptions.py
"""
Domain-specific exceptions for the reservation engine.

These exceptions carry a stable code and structured details so they can be
caught and surfaced appropriately at the API layer.
"""

from typing import Any, Dict, List, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class InvalidIntervalException(DomainException):
    """Raised for a malformed or non-chronological booking interval."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_INTERVAL", details=details)


class ResourceNotFoundException(DomainException):
    """Raised when a field, booking or payment does not exist."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} {identifier} not found",
            code="RESOURCE_NOT_FOUND",
            details={"resource": resource, "id": str(identifier)},
        )


class FieldUnavailableException(InvalidIntervalException):
    """Raised when the field is closed or under maintenance."""

    def __init__(self, field_id: int, field_status: str):
        super().__init__(
            f"Field {field_id} is not bookable (status: {field_status})",
            details={"field_id": field_id, "field_status": field_status},
        )


class SlotConflictException(DomainException):
    """Raised when the requested interval overlaps an active booking."""

    status_code = status.HTTP_409_CONFLICT

    def __init__(self, field_id: int, booking_date: str, conflicts: List[Dict[str, str]]):
        ranges = ", ".join(f"{c['start_time']}-{c['end_time']}" for c in conflicts)
        super().__init__(
            message=f"Field {field_id} on {booking_date} is already booked for {ranges}",
            code="SLOT_CONFLICT",
            details={"field_id": field_id, "date": booking_date, "conflicts": conflicts},
        )
        self.conflicts = conflicts


class IllegalTransitionException(DomainException):
    """Raised when a booking state change is not allowed from its current state."""

    status_code = HTTP_422_UNPROCESSABLE

    def __init__(
        self,
        booking_id: str,
        current_status: str,
        target_status: str,
        message: Optional[str] = None,
    ):
        super().__init__(
            message=message
            or f"Booking {booking_id} cannot move from {current_status} to {target_status}",
            code="ILLEGAL_TRANSITION",
            details={
                "booking_id": booking_id,
                "current_status": current_status,
                "target_status": target_status,
            },
        )
        self.current_status = current_status
        self.target_status = target_status


class NotYetExpirableException(IllegalTransitionException):
    """Raised by the expiry guard for a booking that must not expire (yet)."""

    def __init__(self, booking_id: str, current_status: str, deadline: Optional[str] = None):
        reason = (
            f"payment deadline {deadline} has not elapsed"
            if current_status == "pending"
            else f"booking is {current_status}"
        )
        super().__init__(
            booking_id,
            current_status,
            "expired",
            message=f"Booking {booking_id} is not expirable: {reason}",
        )
        self.code = "NOT_YET_EXPIRABLE"
        self.details["payment_deadline"] = deadline


class UnknownTransactionException(DomainException):
    """Raised when a gateway callback references no known payment."""

    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, external_transaction_id: str):
        super().__init__(
            message=f"No payment matches transaction {external_transaction_id}",
            code="UNKNOWN_TRANSACTION",
            details={"external_transaction_id": external_transaction_id},
        )


class InvalidSignatureException(DomainException):
    """Raised when a gateway notification fails signature verification."""

    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, order_id: str):
        super().__init__(
            message="Gateway notification signature mismatch",
            code="INVALID_SIGNATURE",
            details={"order_id": order_id},
        )


class ServiceException(DomainException):
    """Raised when a service operation fails."""


class StoreUnavailableException(ServiceException):
    """Raised when the persistent store keeps failing after bounded retries."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(
            message=f"Persistent store unavailable during {operation}",
            code="STORE_UNAVAILABLE",
            details={"operation": operation, "cause": type(cause).__name__ if cause else None},
        )


class StoreTimeoutException(StoreUnavailableException):
    """Raised when store operations keep timing out after bounded retries."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        super().__init__(operation, cause)
        self.message = f"Persistent store timed out during {operation}"
        self.code = "STORE_TIMEOUT"
        self.args = (self.message,)


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as query failures or
    constraint violations. The original SQLAlchemy error is chained.
    """
