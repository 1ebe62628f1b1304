"""
Event and TicketType models
"""

from sqlalchemy import Column, String, Integer, Text, ForeignKey, Enum, Numeric, Uuid
from sqlalchemy.orm import relationship
import enum

from boxoffice.models.base import BaseModel, UTCDateTime


class EventStatus(str, enum.Enum):
    UPCOMING = "upcoming"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Event(BaseModel):
    """
    Event model for concerts, shows, classes, etc.
    """
    __tablename__ = "events"

    name = Column(String(255), nullable=False, index=True)
    description = Column(Text)
    venue_name = Column(String(255), nullable=False)
    start_time = Column(UTCDateTime, nullable=False, index=True)
    status = Column(
        Enum(EventStatus),
        default=EventStatus.UPCOMING,
        nullable=False,
        index=True
    )

    ticket_types = relationship("TicketType", back_populates="event", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Event(id={self.id}, name={self.name}, status={self.status})>"


class TicketType(BaseModel):
    """
    Priced category of admission for an event; capacity is the number of units
    """
    __tablename__ = "ticket_types"

    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    capacity = Column(Integer, nullable=False)

    event = relationship("Event", back_populates="ticket_types")

    def __repr__(self):
        return f"<TicketType(id={self.id}, name={self.name}, price={self.price})>"
