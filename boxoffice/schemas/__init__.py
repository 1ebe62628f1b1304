"""
Pydantic schemas for request and response validation
"""

from boxoffice.schemas.holds import HoldCreate, HoldExtend, HoldResponse, SessionReleaseResponse
from boxoffice.schemas.events import EventAvailabilityResponse, TicketTypeAvailabilitySchema
from boxoffice.schemas.cart import CartItemSchema, CartValidateRequest, CartValidationResponse
from boxoffice.schemas.orders import (
    OrderCreate,
    OrderResponse,
    OrderResultResponse,
    CancelRequest,
    CashConfirmRequest,
    RefundRequest
)
from boxoffice.schemas.checkin import (
    CredentialRequest,
    CheckInRequest,
    BulkValidateRequest,
    ValidationResponse,
    CheckInResponse,
    BulkValidationResponse
)
from boxoffice.schemas.response import (
    ErrorResponse,
    HealthResponse
)

__all__ = [
    "HoldCreate",
    "HoldExtend",
    "HoldResponse",
    "SessionReleaseResponse",
    "EventAvailabilityResponse",
    "TicketTypeAvailabilitySchema",
    "CartItemSchema",
    "CartValidateRequest",
    "CartValidationResponse",
    "OrderCreate",
    "OrderResponse",
    "OrderResultResponse",
    "CancelRequest",
    "CashConfirmRequest",
    "RefundRequest",
    "CredentialRequest",
    "CheckInRequest",
    "BulkValidateRequest",
    "ValidationResponse",
    "CheckInResponse",
    "BulkValidationResponse",
    "ErrorResponse",
    "HealthResponse"
]
