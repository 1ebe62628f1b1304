"""
Custom application exceptions
"""

from typing import Optional, Dict, Any, List


class BoxOfficeException(Exception):
    """Base exception for the box office service"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class AuthenticationError(BoxOfficeException):
    """Authentication related errors"""

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="AUTH_ERROR",
            status_code=401,
            details=details
        )


class NotFoundError(BoxOfficeException):
    """Resource not found errors"""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id {identifier} not found"
        super().__init__(
            message=message,
            code="NOT_FOUND",
            status_code=404
        )


class ValidationError(BoxOfficeException):
    """Validation errors"""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=400,
            details=details
        )


class ConflictError(BoxOfficeException):
    """Resource conflict errors"""

    def __init__(self, message: str, code: str = "CONFLICT", details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details=details
        )


class UnitsUnavailableError(ConflictError):
    """One or more inventory units are not available for a hold"""

    def __init__(self, unit_ids: Optional[List[str]] = None):
        details = {"unavailable_units": unit_ids} if unit_ids else {}
        super().__init__(
            message="Selected seats are no longer available",
            code="UNITS_UNAVAILABLE",
            details=details
        )


class HoldNotFoundError(BoxOfficeException):
    """Hold does not exist or belongs to another session"""

    def __init__(self, hold_id: str):
        super().__init__(
            message="Hold not found",
            code="HOLD_NOT_FOUND",
            status_code=404,
            details={"hold_id": hold_id}
        )


class HoldExpiredError(BoxOfficeException):
    """Hold is no longer active"""

    def __init__(self, hold_id: str, status: str = "expired"):
        super().__init__(
            message="Hold has expired, please select your seats again",
            code="HOLD_EXPIRED",
            status_code=410,
            details={"hold_id": hold_id, "status": status}
        )


class HoldExtensionLimitError(ConflictError):
    """Hold was extended too many times"""

    def __init__(self, hold_id: str, limit: int):
        super().__init__(
            message=f"Hold cannot be extended more than {limit} times",
            code="HOLD_EXTENSION_LIMIT",
            details={"hold_id": hold_id, "limit": limit}
        )


class PaymentError(BoxOfficeException):
    """Payment related errors"""

    def __init__(
        self,
        message: str = "Payment processing failed",
        code: str = "PAYMENT_FAILED",
        details: Optional[Dict] = None
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=402,
            details=details
        )


class RateLimitError(BoxOfficeException):
    """Rate limit exceeded error"""

    def __init__(self, limit: int, window: int, retry_after: int):
        super().__init__(
            message=f"Rate limit exceeded. Max {limit} requests per {window} seconds",
            code="RATE_LIMITED",
            status_code=429,
            details={"limit": limit, "window": window, "retry_after": retry_after}
        )


class ExternalServiceError(BoxOfficeException):
    """External service error"""

    def __init__(self, service: str, message: str = None):
        super().__init__(
            message=message or f"External service {service} is unavailable",
            code="EXTERNAL_SERVICE_ERROR",
            status_code=503,
            details={"service": service}
        )


class TicketIssuanceError(BoxOfficeException):
    """Tickets could not be issued after money was taken"""

    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(
            message=message,
            code="TICKET_ISSUANCE_FAILURE",
            status_code=500,
            details=details
        )


class InsufficientInventoryError(ConflictError):
    """Requested quantities exceed what can be sold right now"""

    def __init__(self, items: Optional[List[Dict[str, Any]]] = None):
        super().__init__(
            message="Not enough tickets available for this order",
            code="INSUFFICIENT_INVENTORY",
            details={"items": items or []}
        )
