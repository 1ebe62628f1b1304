"""
Order schemas
"""

from pydantic import EmailStr, Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from decimal import Decimal
from uuid import UUID

from boxoffice.models.order import OrderStatus, PaymentMethod, PaymentStatus
from boxoffice.schemas.base import BaseSchema, RequestSchema
from boxoffice.schemas.cart import CartItemSchema


class CustomerSchema(RequestSchema):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr


class PaymentSchema(RequestSchema):
    method: PaymentMethod
    token: Optional[str] = Field(None, max_length=512)


class OrderCreate(RequestSchema):
    customer: CustomerSchema
    payment: PaymentSchema
    items: List[CartItemSchema] = Field(..., min_length=1)
    hold_id: Optional[UUID] = None


class OrderResultResponse(BaseSchema):
    success: bool
    message: str
    order_id: Optional[str] = None
    ticket_ids: List[str] = []
    error_code: Optional[str] = None
    availability_errors: List[Dict[str, Any]] = []
    verification_code: Optional[str] = None
    payment_status: Optional[str] = None
    total_amount: Optional[str] = None
    replayed: bool = False


class OrderItemResponse(BaseSchema):
    unit_id: UUID
    ticket_type_id: UUID
    unit_price: Decimal
    quantity: int


class OrderResponse(BaseSchema):
    id: UUID
    event_id: UUID
    customer_name: str
    customer_email: str
    subtotal: Decimal
    fees: Decimal
    total_amount: Decimal
    currency: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: OrderStatus
    items: List[OrderItemResponse]
    ticket_ids: List[str] = []
    verification_code: Optional[str] = None
    created_at: datetime
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    refunded_at: Optional[datetime] = None


class CashConfirmRequest(RequestSchema):
    code: str = Field(..., min_length=4, max_length=16)


class RefundRequest(RequestSchema):
    reason: str = Field("requested_by_customer", max_length=500)


class CancelRequest(RequestSchema):
    """Customers cancel with the verification code issued for their cash order"""
    verification_code: Optional[str] = Field(None, min_length=4, max_length=16)
