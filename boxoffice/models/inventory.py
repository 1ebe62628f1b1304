"""
Inventory unit model
"""

from sqlalchemy import Column, String, ForeignKey, Enum, Numeric, Uuid, UniqueConstraint, Index
import enum

from boxoffice.models.base import BaseModel, UTCDateTime


class UnitStatus(str, enum.Enum):
    AVAILABLE = "available"
    HELD = "held"
    RESERVED = "reserved"
    SOLD = "sold"


class InventoryUnit(BaseModel):
    """
    One sellable unit: a numbered seat, or one admission of a ticket type

    Status is only changed through conditional updates in the inventory store.
    """
    __tablename__ = "inventory_units"
    __table_args__ = (
        UniqueConstraint('event_id', 'section', 'row', 'seat_number', name='uq_event_unit_seat'),
        Index('ix_inventory_units_type_status', 'ticket_type_id', 'status'),
    )

    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    ticket_type_id = Column(Uuid(as_uuid=True), ForeignKey("ticket_types.id"), nullable=False, index=True)
    section = Column(String(50))
    row = Column(String(10))
    seat_number = Column(String(10))
    price = Column(Numeric(10, 2), nullable=False)
    status = Column(
        Enum(UnitStatus),
        default=UnitStatus.AVAILABLE,
        nullable=False,
        index=True
    )
    hold_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    order_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    status_changed_at = Column(UTCDateTime, nullable=True)

    @property
    def label(self) -> str:
        if self.seat_number:
            return f"{self.section or ''} {self.row or ''}-{self.seat_number}".strip()
        return str(self.id)

    def __repr__(self):
        return f"<InventoryUnit(id={self.id}, ticket_type_id={self.ticket_type_id}, status={self.status})>"
