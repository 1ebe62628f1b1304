"""
Hold schemas
"""

from pydantic import Field
from typing import List, Optional
from datetime import datetime
from uuid import UUID

from boxoffice.models.hold import HoldStatus
from boxoffice.schemas.base import BaseSchema, RequestSchema


class HoldCreate(RequestSchema):
    """Place a hold on specific units"""
    unit_ids: List[UUID] = Field(..., min_length=1)
    session_id: str = Field(..., min_length=1, max_length=255)
    duration_minutes: Optional[int] = Field(None, ge=1)


class HoldExtend(RequestSchema):
    """Extend a hold; zero releases it"""
    additional_minutes: int = Field(..., ge=0)
    session_id: Optional[str] = Field(None, max_length=255)


class HoldResponse(BaseSchema):
    hold_id: UUID
    session_id: str
    status: HoldStatus
    unit_ids: List[UUID]
    event_id: Optional[UUID] = None
    created_at: datetime
    expires_at: datetime
    extension_count: int
    seconds_remaining: int


class SessionReleaseResponse(BaseSchema):
    session_id: str
    released: int
