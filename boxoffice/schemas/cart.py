"""
Cart schemas
"""

from pydantic import Field
from typing import List, Optional
from uuid import UUID

from boxoffice.schemas.base import BaseSchema, RequestSchema


class CartItemSchema(RequestSchema):
    ticket_type_id: UUID
    quantity: int


class CartValidateRequest(RequestSchema):
    items: List[CartItemSchema] = Field(..., min_length=1)
    hold_id: Optional[UUID] = None


class AvailabilityErrorSchema(BaseSchema):
    ticket_type_id: str
    requested: int
    available: int
    message: str = ""


class CartValidationResponse(BaseSchema):
    valid: bool
    errors: List[AvailabilityErrorSchema] = []
