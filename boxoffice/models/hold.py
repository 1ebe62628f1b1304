"""
Hold model
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Uuid, Table
import enum

from boxoffice.core.database import Base
from boxoffice.models.base import BaseModel, UTCDateTime


class HoldStatus(str, enum.Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CONSUMED = "consumed"
    RELEASED = "released"


hold_units = Table(
    "hold_units",
    Base.metadata,
    Column("hold_id", Uuid(as_uuid=True), ForeignKey("holds.id"), primary_key=True),
    Column("unit_id", Uuid(as_uuid=True), ForeignKey("inventory_units.id"), primary_key=True),
)


class Hold(BaseModel):
    """
    Time-bounded reservation of inventory units for one customer session
    """
    __tablename__ = "holds"

    session_id = Column(String(255), nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=True, index=True)
    status = Column(
        Enum(HoldStatus),
        default=HoldStatus.ACTIVE,
        nullable=False,
        index=True
    )
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    extension_count = Column(Integer, default=0, nullable=False)
    closed_at = Column(UTCDateTime, nullable=True)
    order_id = Column(Uuid(as_uuid=True), nullable=True)

    def __repr__(self):
        return f"<Hold(id={self.id}, session_id={self.session_id}, status={self.status}, expires_at={self.expires_at})>"
