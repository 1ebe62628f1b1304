"""
Event schemas
"""

from decimal import Decimal
from typing import List
from uuid import UUID

from boxoffice.schemas.base import BaseSchema


class TicketTypeAvailabilitySchema(BaseSchema):
    ticket_type_id: UUID
    name: str
    price: Decimal
    capacity: int
    available: int


class EventAvailabilityResponse(BaseSchema):
    event_id: UUID
    ticket_types: List[TicketTypeAvailabilitySchema]
