"""
Ticket model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Text, Uuid
import enum

from boxoffice.models.base import BaseModel, UTCDateTime


class TicketStatus(str, enum.Enum):
    ACTIVE = "active"
    USED = "used"
    CANCELLED = "cancelled"


class Ticket(BaseModel):
    """
    Admission credential for one sold unit
    """
    __tablename__ = "tickets"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    unit_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_units.id"), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    ticket_type_id = Column(Uuid(as_uuid=True), ForeignKey("ticket_types.id"), nullable=False)
    holder_name = Column(String(255), nullable=False)
    holder_email = Column(String(255), nullable=False)
    status = Column(
        Enum(TicketStatus),
        default=TicketStatus.ACTIVE,
        nullable=False,
        index=True
    )
    credential = Column(Text, nullable=False)
    validation_hash = Column(String(64), nullable=False)
    checked_in_at = Column(UTCDateTime, nullable=True)
    checked_in_by = Column(String(255), nullable=True)

    def __repr__(self):
        return f"<Ticket(id={self.id}, order_id={self.order_id}, status={self.status})>"
