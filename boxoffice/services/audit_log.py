"""
Ticket audit log
Append-only record of every validation and check-in attempt
"""

import logging
import uuid
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from boxoffice.core.database import DatabaseManager
from boxoffice.models.audit import TicketAuditLog

logger = logging.getLogger(__name__)

VALIDATION_SUCCESS = "validation_success"
VALIDATION_FAILED = "validation_failed"
VALIDATION_RATE_LIMITED = "validation_rate_limited"
VALIDATION_HASH_MISMATCH = "validation_hash_mismatch"
CHECKIN_SUCCESS = "checkin_success"
CHECKIN_FAILED = "checkin_failed"
CHECKIN_DUPLICATE = "checkin_duplicate"
SUSPICIOUS_ACTIVITY = "suspicious_activity"

_LEVELS = {
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}


def _as_uuid(value) -> Optional[uuid.UUID]:
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class TicketAuditLogger:

    def __init__(self, session_factory: async_sessionmaker):
        self.db = DatabaseManager(session_factory)

    async def log(
        self,
        level: str,
        event_type: str,
        message: str,
        ticket_id=None,
        event_id=None,
        actor: Optional[str] = None,
        ip_address: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        logger.log(
            _LEVELS.get(level, logging.INFO),
            message,
            extra={
                "audit_event": event_type,
                "ticket_id": str(ticket_id) if ticket_id else None,
                "actor": actor,
                "ip_address": ip_address,
            }
        )
        try:
            async with self.db.atomic_transaction() as session:
                session.add(TicketAuditLog(
                    level=level,
                    event_type=event_type,
                    ticket_id=_as_uuid(ticket_id),
                    event_id=_as_uuid(event_id),
                    actor=actor,
                    ip_address=ip_address,
                    message=message,
                    details=metadata or {},
                ))
        except SQLAlchemyError as e:
            # The audited state change has already committed
            logger.error(f"Audit write failed for {event_type}: {e}", exc_info=True)

    async def validation_success(self, ticket_id, event_id, actor=None, ip_address=None):
        await self.log("info", VALIDATION_SUCCESS, f"Ticket {ticket_id} validated",
                       ticket_id=ticket_id, event_id=event_id, actor=actor, ip_address=ip_address)

    async def validation_failed(self, reason: str, ticket_id=None, actor=None, ip_address=None, metadata=None):
        await self.log("warn", VALIDATION_FAILED, f"Ticket validation failed: {reason}",
                       ticket_id=ticket_id, actor=actor, ip_address=ip_address,
                       metadata={"reason": reason, **(metadata or {})})

    async def rate_limited(self, ticket_id, ip_address, retry_after: int, actor=None):
        await self.log("warn", VALIDATION_RATE_LIMITED, f"Validation rate limited for ticket {ticket_id}",
                       ticket_id=ticket_id, actor=actor, ip_address=ip_address,
                       metadata={"retry_after": retry_after})

    async def hash_mismatch(self, ticket_id, ip_address, actor=None, metadata=None):
        await self.log("error", VALIDATION_HASH_MISMATCH, f"Tampered credential presented for ticket {ticket_id}",
                       ticket_id=ticket_id, actor=actor, ip_address=ip_address, metadata=metadata)

    async def suspicious_activity(self, ticket_id, ip_address, violations: int, actor=None):
        await self.log("error", SUSPICIOUS_ACTIVITY,
                       f"Repeated rate limit violations ({violations}) for ticket {ticket_id} from {ip_address}",
                       ticket_id=ticket_id, actor=actor, ip_address=ip_address,
                       metadata={"violations": violations})

    async def checkin_success(self, ticket_id, event_id, actor, ip_address=None):
        await self.log("info", CHECKIN_SUCCESS, f"Ticket {ticket_id} checked in by {actor}",
                       ticket_id=ticket_id, event_id=event_id, actor=actor, ip_address=ip_address)

    async def checkin_duplicate(self, ticket_id, actor, ip_address=None, metadata=None):
        await self.log("warn", CHECKIN_DUPLICATE, f"Ticket {ticket_id} was already checked in",
                       ticket_id=ticket_id, actor=actor, ip_address=ip_address, metadata=metadata)

    async def checkin_failed(self, ticket_id, reason: str, actor, ip_address=None):
        await self.log("warn", CHECKIN_FAILED, f"Check-in failed for ticket {ticket_id}: {reason}",
                       ticket_id=ticket_id, actor=actor, ip_address=ip_address, metadata={"reason": reason})

    async def entries(self, ticket_id=None, event_type: Optional[str] = None, limit: int = 100) -> List[TicketAuditLog]:
        stmt = select(TicketAuditLog).order_by(TicketAuditLog.created_at, TicketAuditLog.id).limit(limit)
        if ticket_id is not None:
            stmt = stmt.where(TicketAuditLog.ticket_id == _as_uuid(ticket_id))
        if event_type is not None:
            stmt = stmt.where(TicketAuditLog.event_type == event_type)
        async with self.db.read_session() as session:
            return list((await session.execute(stmt)).scalars().all())
