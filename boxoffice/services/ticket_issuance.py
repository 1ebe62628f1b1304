"""
Ticket Issuance
Creates tamper-evident credentials for sold units and renders them as QR codes
"""

import hashlib
import hmac
import json
import logging
import uuid
from io import BytesIO
from typing import Dict, Optional

import qrcode
from PIL import Image as PILImage
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.config import Settings
from boxoffice.core.database import DatabaseManager
from boxoffice.core.exceptions import NotFoundError
from boxoffice.models.event import Event, TicketType
from boxoffice.models.inventory import InventoryUnit
from boxoffice.models.order import Order
from boxoffice.models.ticket import Ticket, TicketStatus

logger = logging.getLogger(__name__)

VALIDATION_HASH_LENGTH = 32


def compute_validation_hash(secret: str, ticket_id, event_id, order_id) -> str:
    """First 32 hex chars of HMAC-SHA256 over the ticket identity"""
    message = f"{ticket_id}:{event_id}:{order_id}:validation"
    digest = hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()
    return digest[:VALIDATION_HASH_LENGTH]


def build_credential(ticket_id, order: Order, event: Event, ticket_type: TicketType, holder_name: str, validation_hash: str) -> Dict:
    return {
        "ticketId": str(ticket_id),
        "eventId": str(event.id),
        "orderId": str(order.id),
        "holderName": holder_name,
        "ticketType": ticket_type.name,
        "eventDate": event.start_time.isoformat(),
        "venue": event.venue_name,
        "validationHash": validation_hash,
    }


class TicketIssuer:
    """Issues one ticket per sold unit; no email delivery"""

    def __init__(self, settings: Settings, session_factory: Optional[async_sessionmaker] = None):
        self.settings = settings
        self.db = DatabaseManager(session_factory) if session_factory is not None else None

    def validation_hash(self, ticket_id, event_id, order_id) -> str:
        return compute_validation_hash(self.settings.ticket_signing_secret, ticket_id, event_id, order_id)

    async def issue_ticket(
        self,
        session: AsyncSession,
        order: Order,
        unit: InventoryUnit,
        holder_name: str,
        holder_email: str,
        event: Optional[Event] = None,
        ticket_type: Optional[TicketType] = None,
    ) -> Ticket:
        """
        Create the ticket inside the caller's transaction; the order must be paid
        """
        event = event or await session.get(Event, unit.event_id)
        ticket_type = ticket_type or await session.get(TicketType, unit.ticket_type_id)
        if event is None or ticket_type is None:
            raise NotFoundError("Event or ticket type", unit.event_id)

        ticket_id = uuid.uuid4()
        validation_hash = self.validation_hash(ticket_id, event.id, order.id)
        credential = build_credential(ticket_id, order, event, ticket_type, holder_name, validation_hash)

        ticket = Ticket(
            id=ticket_id,
            order_id=order.id,
            unit_id=unit.id,
            event_id=event.id,
            ticket_type_id=ticket_type.id,
            holder_name=holder_name,
            holder_email=holder_email,
            status=TicketStatus.ACTIVE,
            credential=json.dumps(credential),
            validation_hash=validation_hash,
        )
        session.add(ticket)
        logger.debug(f"Issued ticket {ticket_id} for order {order.id}")
        return ticket

    async def get_ticket(self, ticket_id) -> Ticket:
        if self.db is None:
            raise RuntimeError("TicketIssuer was built without a session factory")
        try:
            ticket_uuid = uuid.UUID(str(ticket_id))
        except ValueError:
            raise NotFoundError("Ticket", ticket_id)
        async with self.db.read_session() as session:
            ticket = await session.scalar(select(Ticket).where(Ticket.id == ticket_uuid))
        if ticket is None:
            raise NotFoundError("Ticket", ticket_id)
        return ticket

    @staticmethod
    def render_qr_png(ticket: Ticket, size: int = 300, border: int = 4) -> bytes:
        """Render the ticket credential as a PNG QR code"""
        qr = qrcode.QRCode(
            version=None,
            error_correction=qrcode.constants.ERROR_CORRECT_M,
            box_size=10,
            border=border,
        )
        qr.add_data(ticket.credential)
        qr.make(fit=True)

        img = qr.make_image(fill_color="black", back_color="white").get_image()
        if size != img.size[0]:
            img = img.resize((size, size), PILImage.Resampling.LANCZOS)

        buffer = BytesIO()
        img.save(buffer, format="PNG")
        return buffer.getvalue()
