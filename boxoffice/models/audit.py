"""
Append-only ticket audit log
"""

from sqlalchemy import Column, String, Text, JSON, Uuid

from boxoffice.models.base import BaseModel


class TicketAuditLog(BaseModel):
    __tablename__ = "ticket_audit_logs"

    level = Column(String(10), nullable=False)
    event_type = Column(String(50), nullable=False, index=True)
    ticket_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    event_id = Column(Uuid(as_uuid=True), nullable=True, index=True)
    actor = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    message = Column(Text, nullable=False)
    details = Column("metadata", JSON, nullable=True)

    def __repr__(self):
        return f"<TicketAuditLog(event_type={self.event_type}, ticket_id={self.ticket_id})>"
