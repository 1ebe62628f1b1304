"""
QR / Check-in Validation
Verifies presented credentials and admits each ticket exactly once
"""

import hmac
import json
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from boxoffice.config import Settings
from boxoffice.core.clock import SystemClock
from boxoffice.core.database import DatabaseManager
from boxoffice.core.metrics import CHECKINS_TOTAL
from boxoffice.core.rate_limit import RateLimiter
from boxoffice.models.ticket import Ticket, TicketStatus
from boxoffice.services.audit_log import TicketAuditLogger
from boxoffice.services.ticket_issuance import compute_validation_hash

logger = logging.getLogger(__name__)

INVALID_FORMAT = "INVALID_FORMAT"
RATE_LIMITED = "RATE_LIMITED"
TAMPER_DETECTED = "TAMPER_DETECTED"
NOT_FOUND = "NOT_FOUND"
ALREADY_USED = "ALREADY_USED"
TICKET_CANCELLED = "TICKET_CANCELLED"

LEGACY_PREFIX = "QR_"

_STRUCTURED_FIELDS = {
    "ticketId": "ticket_id",
    "eventId": "event_id",
    "orderId": "order_id",
    "holderName": "holder_name",
    "ticketType": "ticket_type",
    "eventDate": "event_date",
    "venue": "venue",
    "validationHash": "validation_hash",
}


class CredentialFormatError(ValueError):
    """Raised when scanned data is not a ticket credential"""


@dataclass(frozen=True)
class LegacyCredential:
    ticket_id: str


@dataclass(frozen=True)
class StructuredCredential:
    ticket_id: str
    event_id: str
    order_id: str
    holder_name: str
    ticket_type: str
    event_date: str
    venue: str
    validation_hash: str


Credential = Union[LegacyCredential, StructuredCredential]


def _canonical_uuid(value: Any) -> str:
    try:
        return str(uuid.UUID(str(value)))
    except ValueError:
        raise CredentialFormatError(f"Not a ticket id: {value!r}")


def parse_credential(raw: str) -> Credential:
    """
    ``QR_<ticketId>`` and bare UUIDs are legacy credentials; JSON objects
    carrying every structured field are structured credentials
    """
    if not isinstance(raw, str) or not raw.strip():
        raise CredentialFormatError("Empty credential")
    data = raw.strip()

    if data.startswith(LEGACY_PREFIX):
        return LegacyCredential(ticket_id=_canonical_uuid(data[len(LEGACY_PREFIX):]))

    if not data.startswith("{"):
        return LegacyCredential(ticket_id=_canonical_uuid(data))

    try:
        payload = json.loads(data)
    except json.JSONDecodeError:
        raise CredentialFormatError("Malformed credential JSON")

    if not isinstance(payload, dict):
        raise CredentialFormatError("Credential JSON must be an object")
    missing = [name for name in _STRUCTURED_FIELDS if not isinstance(payload.get(name), str)]
    if missing:
        raise CredentialFormatError(f"Credential missing fields: {', '.join(missing)}")

    values = {attr: payload[name] for name, attr in _STRUCTURED_FIELDS.items()}
    values["ticket_id"] = _canonical_uuid(values["ticket_id"])
    return StructuredCredential(**values)


@dataclass
class TicketSummary:
    ticket_id: str
    order_id: str
    event_id: str
    ticket_type_id: str
    holder_name: str
    status: str
    checked_in_at: Optional[datetime] = None
    checked_in_by: Optional[str] = None

    @classmethod
    def from_ticket(cls, ticket: Ticket) -> "TicketSummary":
        return cls(
            ticket_id=str(ticket.id),
            order_id=str(ticket.order_id),
            event_id=str(ticket.event_id),
            ticket_type_id=str(ticket.ticket_type_id),
            holder_name=ticket.holder_name,
            status=ticket.status.value,
            checked_in_at=ticket.checked_in_at,
            checked_in_by=ticket.checked_in_by,
        )


@dataclass
class ValidationOutcome:
    valid: bool
    message: str
    error: Optional[str] = None
    ticket: Optional[TicketSummary] = None
    retry_after: Optional[int] = None


@dataclass
class CheckInOutcome:
    success: bool
    message: str
    error: Optional[str] = None
    ticket: Optional[TicketSummary] = None
    retry_after: Optional[int] = None


@dataclass
class BulkValidationReport:
    results: List[ValidationOutcome] = field(default_factory=list)

    @property
    def summary(self) -> Dict[str, Any]:
        errors = Counter(result.error for result in self.results if not result.valid)
        return {
            "total": len(self.results),
            "valid": sum(1 for result in self.results if result.valid),
            "invalid": sum(1 for result in self.results if not result.valid),
            "errors": dict(errors),
        }


class CheckInService:
    """
    Validation is read-only; admission is a single conditional update
    ``active -> used`` whose row count decides which scanner wins
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        rate_limiter: RateLimiter,
        audit: TicketAuditLogger,
        clock=None,
    ):
        self.db = DatabaseManager(session_factory)
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.audit = audit
        self.clock = clock or SystemClock()

    @staticmethod
    def rate_limit_key(ticket_id: str, client_ip: Optional[str]) -> str:
        return f"qr_validation:{ticket_id}:{client_ip or 'unknown'}"

    async def validate(self, raw: str, client_ip: Optional[str], actor: Optional[str] = None) -> ValidationOutcome:
        outcome = await self._validate(raw, client_ip, actor)
        CHECKINS_TOTAL.labels(operation="validate", result="valid" if outcome.valid else outcome.error).inc()
        return outcome

    async def _validate(self, raw: str, client_ip: Optional[str], actor: Optional[str]) -> ValidationOutcome:
        try:
            credential = parse_credential(raw)
        except CredentialFormatError as e:
            await self.audit.validation_failed(INVALID_FORMAT, actor=actor, ip_address=client_ip,
                                               metadata={"detail": str(e)})
            return ValidationOutcome(valid=False, error=INVALID_FORMAT, message="Invalid ticket format")

        ticket_id = credential.ticket_id
        decision = await self.rate_limiter.hit(self.rate_limit_key(ticket_id, client_ip))
        if not decision.allowed:
            await self.audit.rate_limited(ticket_id, client_ip, decision.retry_after, actor=actor)
            if decision.violations >= self.settings.SUSPICIOUS_ACTIVITY_THRESHOLD:
                logger.warning(
                    f"Suspicious validation activity for ticket {ticket_id} from {client_ip}",
                    extra={"ticket_id": ticket_id, "ip_address": client_ip, "violations": decision.violations}
                )
                await self.audit.suspicious_activity(ticket_id, client_ip, decision.violations, actor=actor)
            return ValidationOutcome(
                valid=False,
                error=RATE_LIMITED,
                message="Too many validation attempts. Please try again later.",
                retry_after=decision.retry_after,
            )

        if isinstance(credential, StructuredCredential):
            expected = compute_validation_hash(
                self.settings.ticket_signing_secret, credential.ticket_id, credential.event_id, credential.order_id
            )
            if not hmac.compare_digest(expected, credential.validation_hash):
                await self.audit.hash_mismatch(ticket_id, client_ip, actor=actor)
                return ValidationOutcome(valid=False, error=TAMPER_DETECTED, message="Ticket validation failed - possible tampering")

        async with self.db.read_session() as session:
            ticket = await session.scalar(select(Ticket).where(Ticket.id == uuid.UUID(ticket_id)))

        if ticket is None:
            await self.audit.validation_failed(NOT_FOUND, ticket_id=ticket_id, actor=actor, ip_address=client_ip)
            return ValidationOutcome(valid=False, error=NOT_FOUND, message="Ticket not found")

        if isinstance(credential, StructuredCredential) and (
            credential.event_id != str(ticket.event_id)
            or credential.order_id != str(ticket.order_id)
            or not hmac.compare_digest(credential.validation_hash, ticket.validation_hash)
        ):
            await self.audit.hash_mismatch(ticket_id, client_ip, actor=actor, metadata={"reason": "payload_mismatch"})
            return ValidationOutcome(valid=False, error=TAMPER_DETECTED, message="Ticket validation failed - possible tampering")

        summary = TicketSummary.from_ticket(ticket)
        if ticket.status == TicketStatus.USED:
            await self.audit.validation_failed(ALREADY_USED, ticket_id=ticket_id, actor=actor, ip_address=client_ip)
            return ValidationOutcome(valid=False, error=ALREADY_USED, message="Ticket has already been used", ticket=summary)
        if ticket.status == TicketStatus.CANCELLED:
            await self.audit.validation_failed(TICKET_CANCELLED, ticket_id=ticket_id, actor=actor, ip_address=client_ip)
            return ValidationOutcome(valid=False, error=TICKET_CANCELLED, message="Ticket has been cancelled", ticket=summary)

        await self.audit.validation_success(ticket_id, ticket.event_id, actor=actor, ip_address=client_ip)
        return ValidationOutcome(valid=True, message="Ticket is valid", ticket=summary)

    async def check_in(self, ticket_id, checked_in_by: str, client_ip: Optional[str] = None) -> CheckInOutcome:
        outcome = await self._check_in(ticket_id, checked_in_by, client_ip)
        CHECKINS_TOTAL.labels(operation="check_in", result="success" if outcome.success else outcome.error).inc()
        return outcome

    async def _check_in(self, ticket_id, checked_in_by: str, client_ip: Optional[str]) -> CheckInOutcome:
        try:
            ticket_uuid = uuid.UUID(str(ticket_id))
        except ValueError:
            await self.audit.checkin_failed(ticket_id, NOT_FOUND, checked_in_by, client_ip)
            return CheckInOutcome(success=False, error=NOT_FOUND, message="Ticket not found")

        now = self.clock.now()
        async with self.db.atomic_transaction() as session:
            result = await session.execute(
                update(Ticket)
                .where(Ticket.id == ticket_uuid, Ticket.status == TicketStatus.ACTIVE)
                .values(status=TicketStatus.USED, checked_in_at=now, checked_in_by=checked_in_by, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            admitted = result.rowcount == 1
            ticket = await session.scalar(select(Ticket).where(Ticket.id == ticket_uuid))

        if admitted:
            await self.audit.checkin_success(ticket_uuid, ticket.event_id, checked_in_by, client_ip)
            logger.info(f"Ticket {ticket_uuid} checked in by {checked_in_by}")
            return CheckInOutcome(success=True, message="Check-in successful", ticket=TicketSummary.from_ticket(ticket))

        if ticket is None:
            await self.audit.checkin_failed(ticket_uuid, NOT_FOUND, checked_in_by, client_ip)
            return CheckInOutcome(success=False, error=NOT_FOUND, message="Ticket not found")

        summary = TicketSummary.from_ticket(ticket)
        if ticket.status == TicketStatus.CANCELLED:
            await self.audit.checkin_failed(ticket_uuid, TICKET_CANCELLED, checked_in_by, client_ip)
            return CheckInOutcome(success=False, error=TICKET_CANCELLED, message="Ticket has been cancelled", ticket=summary)

        await self.audit.checkin_duplicate(
            ticket_uuid, checked_in_by, client_ip,
            metadata={
                "first_checked_in_at": ticket.checked_in_at.isoformat() if ticket.checked_in_at else None,
                "first_checked_in_by": ticket.checked_in_by,
            }
        )
        return CheckInOutcome(success=False, error=ALREADY_USED, message="Ticket has already been used", ticket=summary)

    async def validate_and_check_in(self, raw: str, checked_in_by: str, client_ip: Optional[str]) -> CheckInOutcome:
        validation = await self.validate(raw, client_ip, actor=checked_in_by)
        if not validation.valid:
            return CheckInOutcome(
                success=False,
                error=validation.error,
                message=validation.message,
                ticket=validation.ticket,
                retry_after=validation.retry_after,
            )
        return await self.check_in(validation.ticket.ticket_id, checked_in_by, client_ip)

    async def bulk_validate(self, raws: List[str], client_ip: Optional[str], actor: Optional[str] = None) -> BulkValidationReport:
        report = BulkValidationReport()
        for raw in raws:
            report.results.append(await self.validate(raw, client_ip, actor=actor))
        logger.info(f"Bulk validation of {len(raws)} credentials: {report.summary}")
        return report
