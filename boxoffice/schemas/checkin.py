"""
Check-in schemas
"""

from pydantic import Field
from typing import Any, Dict, List, Optional
from datetime import datetime
from uuid import UUID

from boxoffice.models.ticket import TicketStatus
from boxoffice.schemas.base import BaseSchema, RequestSchema


class CredentialRequest(RequestSchema):
    """Raw scanned data: ``QR_<id>``, a ticket id, or the JSON credential"""
    credential: str = Field(..., min_length=1, max_length=4096)


class CheckInRequest(RequestSchema):
    ticket_id: UUID


class BulkValidateRequest(RequestSchema):
    credentials: List[str] = Field(..., min_length=1, max_length=100)


class TicketSummarySchema(BaseSchema):
    ticket_id: str
    order_id: str
    event_id: str
    ticket_type_id: str
    holder_name: str
    status: str
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None


class ValidationResponse(BaseSchema):
    valid: bool
    message: str
    error: Optional[str] = None
    ticket: Optional[TicketSummarySchema] = None
    retry_after: Optional[int] = None


class CheckInResponse(BaseSchema):
    success: bool
    message: str
    error: Optional[str] = None
    ticket: Optional[TicketSummarySchema] = None
    retry_after: Optional[int] = None


class BulkValidationResponse(BaseSchema):
    results: List[ValidationResponse]
    summary: Dict[str, Any]


class TicketResponse(BaseSchema):
    id: UUID
    order_id: UUID
    event_id: UUID
    ticket_type_id: UUID
    holder_name: str
    status: TicketStatus
    credential: str
    checked_in_at: Optional[datetime] = None
