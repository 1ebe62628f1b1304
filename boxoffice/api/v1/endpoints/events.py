"""
Event availability endpoint
"""

from typing import Any
from fastapi import APIRouter, Depends
from uuid import UUID

from boxoffice.api.v1.deps import get_container
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.events import EventAvailabilityResponse, TicketTypeAvailabilitySchema

router = APIRouter()


@router.get("/{event_id}/availability", response_model=EventAvailabilityResponse)
async def get_availability(
    event_id: UUID,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    """
    Units still available per ticket type; held and sold units are not counted
    """
    summary = await container.validation_gate.availability_summary(event_id)
    return EventAvailabilityResponse(
        event_id=event_id,
        ticket_types=[TicketTypeAvailabilitySchema.model_validate(item) for item in summary]
    )
