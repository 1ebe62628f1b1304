"""
Ticket endpoints
"""

from typing import Any
from fastapi import APIRouter, Depends, Query, Response
from uuid import UUID

from boxoffice.api.v1.deps import get_container
from boxoffice.core.container import ServiceContainer
from boxoffice.schemas.checkin import TicketResponse

router = APIRouter()


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(
    ticket_id: UUID,
    container: ServiceContainer = Depends(get_container)
) -> Any:
    return await container.tickets.get_ticket(ticket_id)


@router.get("/{ticket_id}/qr")
async def get_ticket_qr(
    ticket_id: UUID,
    size: int = Query(300, ge=100, le=1000),
    container: ServiceContainer = Depends(get_container)
) -> Response:
    """
    Render the ticket credential as a PNG QR code
    """
    ticket = await container.tickets.get_ticket(ticket_id)
    return Response(
        content=container.tickets.render_qr_png(ticket, size=size),
        media_type="image/png",
        headers={"Cache-Control": "private, max-age=3600"}
    )
