"""
Atomic Order Service
Turns a validated cart (optionally backed by a hold) into a paid order with tickets

Order creation runs as a persisted saga keyed by the idempotency key:

    validate_cart -> claim_inventory -> charge (pivot) -> persist_order

Failures before the charge roll reserved units back to available. Once the
charge succeeds nothing is compensated: a failure while persisting the order is
reported as TICKET_ISSUANCE_FAILURE for manual reconciliation.
"""

import logging
import secrets
import string
import time
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from boxoffice.config import Settings
from boxoffice.core.clock import SystemClock
from boxoffice.core.database import DatabaseManager
from boxoffice.core.exceptions import (
    AuthenticationError,
    BoxOfficeException,
    ConflictError,
    HoldExpiredError,
    HoldNotFoundError,
    InsufficientInventoryError,
    NotFoundError,
    PaymentError,
    TicketIssuanceError,
    ValidationError,
)
from boxoffice.core.metrics import ORDER_DURATION, ORDERS_TOTAL
from boxoffice.core.saga import SagaOrchestrator, SagaStatus, SagaTransaction
from boxoffice.models.event import TicketType
from boxoffice.models.hold import Hold, HoldStatus
from boxoffice.models.inventory import InventoryUnit, UnitStatus
from boxoffice.models.order import (
    CashPaymentCode,
    Order,
    OrderItem,
    OrderStatus,
    PaymentMethod,
    PaymentStatus,
)
from boxoffice.models.ticket import Ticket, TicketStatus
from boxoffice.services.inventory_store import InventoryStore
from boxoffice.services.payments import PaymentAdapter
from boxoffice.services.ticket_issuance import TicketIssuer
from boxoffice.services.validation_gate import CartItem, ValidationGate, merge_items

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
VERIFICATION_CODE_ALPHABET = string.ascii_uppercase + string.digits
VERIFICATION_CODE_LENGTH = 8


@dataclass
class Customer:
    name: str
    email: str


@dataclass
class PaymentDetails:
    method: str
    token: Optional[str] = None


@dataclass
class OrderResult:
    success: bool
    message: str
    order_id: Optional[str] = None
    ticket_ids: List[str] = field(default_factory=list)
    error_code: Optional[str] = None
    availability_errors: List[Dict[str, Any]] = field(default_factory=list)
    verification_code: Optional[str] = None
    payment_status: Optional[str] = None
    total_amount: Optional[str] = None
    replayed: bool = False


@dataclass
class OrderDetails:
    order: Order
    ticket_ids: List[str]
    verification_code: Optional[str] = None


class OrderService:
    """
    Orchestrates order creation, cash confirmation, cancellation and refunds
    """

    SAGA_NAME = "order_creation"

    def __init__(
        self,
        session_factory: async_sessionmaker,
        settings: Settings,
        payment_adapter: PaymentAdapter,
        ticket_issuer: TicketIssuer,
        validation_gate: Optional[ValidationGate] = None,
        clock=None,
        store: Optional[InventoryStore] = None,
    ):
        self.db = DatabaseManager(session_factory)
        self.settings = settings
        self.payments = payment_adapter
        self.issuer = ticket_issuer
        self.clock = clock or SystemClock()
        self.store = store or InventoryStore(self.clock)
        self.gate = validation_gate or ValidationGate(session_factory, clock=self.clock, store=self.store)
        self.orchestrator = SagaOrchestrator(session_factory)

    def compute_fees(self, subtotal: Decimal) -> Decimal:
        fees = max(subtotal * self.settings.PROCESSING_FEE_RATE, self.settings.PROCESSING_FEE_MINIMUM)
        return fees.quantize(CENT, rounding=ROUND_HALF_UP)

    async def create_order(
        self,
        customer: Customer,
        payment: PaymentDetails,
        items: Sequence[CartItem],
        idempotency_key: str,
        hold_id=None,
    ) -> OrderResult:
        """
        Create an order exactly once per idempotency key
        """
        self._validate_request(customer, items, idempotency_key)
        method = getattr(payment.method, "value", payment.method)

        saga = self.orchestrator.create_saga(
            name=self.SAGA_NAME,
            saga_id=idempotency_key,
            context={
                "idempotency_key": idempotency_key,
                "customer": {"name": customer.name, "email": customer.email},
                "payment_method": method,
                "items": [
                    {"ticket_type_id": str(type_id), "quantity": quantity}
                    for type_id, quantity in merge_items(items).items()
                ],
                "hold_id": str(hold_id) if hold_id else None,
            },
        )

        existing = await self.orchestrator.claim(saga)
        if existing is not None:
            ORDERS_TOTAL.labels(outcome="replayed", payment_method=method).inc()
            return self._replay(existing)

        self.orchestrator.add_step(saga, "validate_cart", self._validate_cart_step)
        self.orchestrator.add_step(
            saga, "claim_inventory", self._claim_inventory_step, compensation=self._release_claim
        )
        self.orchestrator.add_step(
            saga, "charge", lambda context: self._charge_step(context, payment.token), pivot=True
        )
        self.orchestrator.add_step(saga, "persist_order", self._persist_order_step)

        started = time.time()
        success = await self.orchestrator.execute_saga(saga)
        ORDER_DURATION.labels(payment_method=method).observe(time.time() - started)

        result = self._result_from_saga(saga, success)
        ORDERS_TOTAL.labels(
            outcome="success" if result.success else (result.error_code or "failed"),
            payment_method=method
        ).inc()
        return result

    def _validate_request(self, customer: Customer, items: Sequence[CartItem], idempotency_key: str):
        if not idempotency_key or len(idempotency_key) > 100:
            raise ValidationError("Idempotency key must be 1-100 characters", field="idempotency_key")
        if not customer.name or not customer.email:
            raise ValidationError("Customer name and email are required", field="customer")
        if not items:
            raise ValidationError("Order must contain at least one item", field="items")
        total_quantity = sum(item.quantity for item in items)
        if total_quantity > self.settings.MAX_ITEMS_PER_ORDER:
            raise ValidationError(
                f"An order may contain at most {self.settings.MAX_ITEMS_PER_ORDER} tickets",
                field="items"
            )

    # Saga steps

    @staticmethod
    def _cart_items(context: Dict[str, Any]) -> List[CartItem]:
        return [
            CartItem(ticket_type_id=uuid.UUID(item["ticket_type_id"]), quantity=item["quantity"])
            for item in context["items"]
        ]

    async def _validate_cart_step(self, context: Dict[str, Any]):
        if context["hold_id"]:
            await self._check_hold(uuid.UUID(context["hold_id"]))
        validation = await self.gate.validate_cart(self._cart_items(context), context["hold_id"])
        if not validation.valid:
            context["availability_errors"] = validation.errors_as_dicts()
            raise InsufficientInventoryError(context["availability_errors"])

    async def _check_hold(self, hold_uuid: uuid.UUID):
        async with self.db.read_session() as session:
            hold = await session.scalar(select(Hold).where(Hold.id == hold_uuid))
        if hold is None:
            raise HoldNotFoundError(str(hold_uuid))
        if hold.status != HoldStatus.ACTIVE:
            raise HoldExpiredError(str(hold_uuid), hold.status.value)
        if hold.expires_at <= self.clock.now():
            raise HoldExpiredError(str(hold_uuid))

    async def _claim_inventory_step(self, context: Dict[str, Any]):
        requested = {item.ticket_type_id: item.quantity for item in self._cart_items(context)}

        async with self.db.atomic_transaction() as session:
            ticket_types = await self._ticket_types(session, requested)
            claimed: List[InventoryUnit] = []

            if context["hold_id"]:
                claimed.extend(await self._consume_hold(session, uuid.UUID(context["hold_id"]), requested))

            taken = InventoryStore.count_by_type(claimed)
            shortfalls = []
            for type_id, quantity in requested.items():
                missing = quantity - taken.get(type_id, 0)
                if missing <= 0:
                    continue
                units = await self.store.find_available(session, type_id, missing)
                if len(units) < missing:
                    shortfalls.append({
                        "ticket_type_id": str(type_id),
                        "requested": quantity,
                        "available": taken.get(type_id, 0) + len(units),
                    })
                    continue
                changed = await self.store.set_status_if(
                    session, [u.id for u in units], UnitStatus.AVAILABLE, UnitStatus.RESERVED
                )
                if changed != len(units):
                    shortfalls.append({
                        "ticket_type_id": str(type_id),
                        "requested": quantity,
                        "available": taken.get(type_id, 0) + changed,
                    })
                    continue
                claimed.extend(units)

            if shortfalls:
                context["availability_errors"] = shortfalls
                raise InsufficientInventoryError(shortfalls)

            event_ids = {ticket_type.event_id for ticket_type in ticket_types.values()}
            subtotal = sum((Decimal(unit.price) for unit in claimed), Decimal("0")).quantize(CENT)
            fees = self.compute_fees(subtotal)

        context["event_id"] = str(event_ids.pop())
        context["units"] = [
            {"id": str(unit.id), "ticket_type_id": str(unit.ticket_type_id), "price": str(Decimal(unit.price).quantize(CENT))}
            for unit in sorted(claimed, key=lambda u: u.id)
        ]
        context["subtotal"] = str(subtotal)
        context["fees"] = str(fees)
        context["total"] = str(subtotal + fees)
        logger.info(
            f"Reserved {len(claimed)} units for order attempt",
            extra={"idempotency_key": context.get("idempotency_key")}
        )

    async def _ticket_types(self, session: AsyncSession, requested: Dict[uuid.UUID, int]) -> Dict[uuid.UUID, TicketType]:
        result = await session.execute(select(TicketType).where(TicketType.id.in_(list(requested))))
        ticket_types = {ticket_type.id: ticket_type for ticket_type in result.scalars().all()}
        missing = [str(type_id) for type_id in requested if type_id not in ticket_types]
        if missing:
            raise InsufficientInventoryError([
                {"ticket_type_id": type_id, "requested": requested[uuid.UUID(type_id)], "available": 0}
                for type_id in missing
            ])
        if len({ticket_type.event_id for ticket_type in ticket_types.values()}) > 1:
            raise ValidationError("All items in an order must belong to one event", field="items")
        return ticket_types

    async def _consume_hold(
        self,
        session: AsyncSession,
        hold_uuid: uuid.UUID,
        requested: Dict[uuid.UUID, int],
    ) -> List[InventoryUnit]:
        """Flip the hold to consumed and reserve the units the cart needs"""
        now = self.clock.now()
        result = await session.execute(
            update(Hold)
            .where(Hold.id == hold_uuid, Hold.status == HoldStatus.ACTIVE, Hold.expires_at > now)
            .values(status=HoldStatus.CONSUMED, closed_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            status = await session.scalar(select(Hold.status).where(Hold.id == hold_uuid))
            if status is None:
                raise HoldNotFoundError(str(hold_uuid))
            raise HoldExpiredError(str(hold_uuid), "expired" if status == HoldStatus.ACTIVE else status.value)

        remaining = dict(requested)
        keep: List[InventoryUnit] = []
        surplus: List[InventoryUnit] = []
        for unit in await self.store.held_by(session, hold_uuid):
            if remaining.get(unit.ticket_type_id, 0) > 0:
                remaining[unit.ticket_type_id] -= 1
                keep.append(unit)
            else:
                surplus.append(unit)

        if keep:
            changed = await self.store.set_status_if(
                session, [u.id for u in keep], UnitStatus.HELD, UnitStatus.RESERVED
            )
            if changed != len(keep):
                raise InsufficientInventoryError()
        if surplus:
            await self.store.set_status_if(
                session, [u.id for u in surplus], UnitStatus.HELD, UnitStatus.AVAILABLE, hold_id=None
            )
        return keep

    async def _release_claim(self, context: Dict[str, Any]):
        unit_ids = [unit["id"] for unit in context.get("units", [])]
        if not unit_ids:
            return
        async with self.db.atomic_transaction() as session:
            released = await self.store.set_status_if(
                session, unit_ids, UnitStatus.RESERVED, UnitStatus.AVAILABLE, hold_id=None, order_id=None
            )
        logger.info(f"Released {released} reserved units after failed order attempt")

    async def _charge_step(self, context: Dict[str, Any], token: Optional[str]):
        result = await self.payments.charge(
            amount=Decimal(context["total"]),
            method=context["payment_method"],
            idempotency_key=context["idempotency_key"],
            token=token,
        )
        if not result.success:
            raise PaymentError(message=result.message or "Payment failed", code=result.error_code)
        context["charge_id"] = result.charge_id
        context["pending_verification"] = result.pending_verification

    async def _persist_order_step(self, context: Dict[str, Any]):
        try:
            await self._persist_order(context)
        except BoxOfficeException as e:
            raise TicketIssuanceError(
                f"Order could not be recorded after charge {context.get('charge_id')}: {e.message}",
                details={"charge_id": context.get("charge_id"), "cause": e.code}
            ) from e
        except Exception as e:
            raise TicketIssuanceError(
                f"Order could not be recorded after charge {context.get('charge_id')}: {e}",
                details={"charge_id": context.get("charge_id")}
            ) from e

    async def _persist_order(self, context: Dict[str, Any]):
        pending = bool(context.get("pending_verification"))
        now = self.clock.now()
        unit_ids = [uuid.UUID(unit["id"]) for unit in context["units"]]

        async with self.db.atomic_transaction() as session:
            order = Order(
                id=uuid.uuid4(),
                idempotency_key=context["idempotency_key"],
                event_id=uuid.UUID(context["event_id"]),
                customer_name=context["customer"]["name"],
                customer_email=context["customer"]["email"],
                subtotal=Decimal(context["subtotal"]),
                fees=Decimal(context["fees"]),
                total_amount=Decimal(context["total"]),
                currency=self.settings.CURRENCY,
                payment_method=PaymentMethod(context["payment_method"]),
                charge_id=context.get("charge_id"),
                payment_status=PaymentStatus.PENDING if pending else PaymentStatus.PAID,
                status=OrderStatus.PENDING if pending else OrderStatus.COMPLETED,
                paid_at=None if pending else now,
            )
            session.add(order)
            for unit in context["units"]:
                session.add(OrderItem(
                    order_id=order.id,
                    unit_id=uuid.UUID(unit["id"]),
                    ticket_type_id=uuid.UUID(unit["ticket_type_id"]),
                    unit_price=Decimal(unit["price"]),
                    quantity=1,
                ))
            await session.flush()

            if pending:
                changed = await self.store.set_status_if(
                    session, unit_ids, UnitStatus.RESERVED, UnitStatus.RESERVED, order_id=order.id
                )
                if changed != len(unit_ids):
                    raise ConflictError("Reserved units changed before the order was recorded")
                code = self._new_verification_code()
                session.add(CashPaymentCode(
                    order_id=order.id,
                    code=code,
                    expires_at=now + timedelta(minutes=self.settings.CASH_PAYMENT_WINDOW_MINUTES),
                ))
                context["verification_code"] = code
                ticket_ids: List[str] = []
            else:
                ticket_ids = await self._sell_and_issue(session, order, unit_ids)

        context["order_id"] = str(order.id)
        context["ticket_ids"] = ticket_ids
        context["payment_status"] = order.payment_status.value
        logger.info(
            f"Order {order.id} recorded ({order.payment_status.value})",
            extra={"order_id": str(order.id), "idempotency_key": order.idempotency_key}
        )

    async def _sell_and_issue(self, session: AsyncSession, order: Order, unit_ids: List[uuid.UUID]) -> List[str]:
        changed = await self.store.set_status_if(
            session, unit_ids, UnitStatus.RESERVED, UnitStatus.SOLD, order_id=order.id
        )
        if changed != len(unit_ids):
            raise ConflictError("Reserved units changed before the order was recorded")

        units = await self.store.lock_units(session, unit_ids)
        tickets = [
            await self.issuer.issue_ticket(session, order, unit, order.customer_name, order.customer_email)
            for unit in units
        ]
        await session.flush()
        return [str(ticket.id) for ticket in tickets]

    @staticmethod
    def _new_verification_code() -> str:
        return "".join(secrets.choice(VERIFICATION_CODE_ALPHABET) for _ in range(VERIFICATION_CODE_LENGTH))

    # Results

    def _result_from_saga(self, saga: SagaTransaction, success: bool) -> OrderResult:
        context = saga.context
        if success:
            pending = bool(context.get("pending_verification"))
            return OrderResult(
                success=True,
                message="Awaiting cash payment at the box office" if pending else "Order completed",
                order_id=context["order_id"],
                ticket_ids=context.get("ticket_ids", []),
                verification_code=context.get("verification_code"),
                payment_status=context.get("payment_status"),
                total_amount=context.get("total"),
            )

        error = saga.error
        return OrderResult(
            success=False,
            message=getattr(error, "message", None) or "Order could not be completed",
            error_code=self._error_code(saga.error_code),
            availability_errors=context.get("availability_errors", []),
            total_amount=context.get("total"),
        )

    @staticmethod
    def _error_code(code: Optional[str]) -> str:
        if code is None or code == "SAGA_STEP_FAILED":
            return "ORDER_FAILED"
        return code

    def _replay(self, snapshot: Dict[str, Any]) -> OrderResult:
        status = snapshot["status"]
        context = snapshot.get("context") or {}
        logger.info(f"Replaying order attempt {snapshot['saga_id']} ({status})")

        if status == SagaStatus.COMPLETED.value:
            pending = bool(context.get("pending_verification"))
            return OrderResult(
                success=True,
                message="Awaiting cash payment at the box office" if pending else "Order completed",
                order_id=context.get("order_id"),
                ticket_ids=context.get("ticket_ids", []),
                verification_code=context.get("verification_code"),
                payment_status=context.get("payment_status"),
                total_amount=context.get("total"),
                replayed=True,
            )
        if status in (SagaStatus.FAILED.value, SagaStatus.COMPENSATED.value):
            return OrderResult(
                success=False,
                message=snapshot.get("error_message") or "Order could not be completed",
                error_code=self._error_code(snapshot.get("error_code")),
                availability_errors=context.get("availability_errors", []),
                total_amount=context.get("total"),
                replayed=True,
            )
        return OrderResult(
            success=False,
            message="An order with this idempotency key is still being processed",
            error_code="ORDER_IN_PROGRESS",
            replayed=True,
        )

    # Cash payments

    async def confirm_cash_payment(self, code: str, confirmed_by: str) -> OrderResult:
        """
        Mark a cash order paid once the operator has collected the money
        """
        normalized = (code or "").strip().upper()
        now = self.clock.now()

        async with self.db.atomic_transaction() as session:
            cash = await session.scalar(
                InventoryStore.lock_for_update(
                    session, select(CashPaymentCode).where(CashPaymentCode.code == normalized)
                )
            )
            if cash is None:
                raise NotFoundError("Verification code")
            if cash.used_at is not None:
                raise ConflictError("Verification code has already been used", code="CODE_ALREADY_USED")
            if cash.expires_at <= now:
                raise ConflictError("Verification code has expired", code="CODE_EXPIRED")

            used = await session.execute(
                update(CashPaymentCode)
                .where(CashPaymentCode.id == cash.id, CashPaymentCode.used_at.is_(None))
                .values(used_at=now, confirmed_by=confirmed_by, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if used.rowcount != 1:
                raise ConflictError("Verification code has already been used", code="CODE_ALREADY_USED")

            paid = await session.execute(
                update(Order)
                .where(
                    Order.id == cash.order_id,
                    Order.status == OrderStatus.PENDING,
                    Order.payment_status == PaymentStatus.PENDING
                )
                .values(
                    payment_status=PaymentStatus.PAID,
                    status=OrderStatus.COMPLETED,
                    paid_at=now,
                    updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if paid.rowcount != 1:
                raise ConflictError("Order is no longer awaiting payment", code="ORDER_NOT_PENDING")

            order = await session.scalar(select(Order).where(Order.id == cash.order_id))
            unit_ids = [item.unit_id for item in order.items]
            ticket_ids = await self._sell_and_issue(session, order, unit_ids)

        logger.info(
            f"Cash payment confirmed for order {order.id} by {confirmed_by}",
            extra={"order_id": str(order.id), "actor": confirmed_by}
        )
        ORDERS_TOTAL.labels(outcome="cash_confirmed", payment_method=PaymentMethod.CASH.value).inc()
        return OrderResult(
            success=True,
            message="Cash payment confirmed",
            order_id=str(order.id),
            ticket_ids=ticket_ids,
            payment_status=PaymentStatus.PAID.value,
            total_amount=str(order.total_amount),
        )

    async def cancel_pending_order(
        self,
        order_id,
        reason: str = "cancelled",
        verification_code: Optional[str] = None,
    ) -> OrderDetails:
        """
        Cancel an order still awaiting cash payment and return its units to sale

        When ``verification_code`` is given it must be the code issued for this
        order; customers cancel with it, staff cancel without it.
        """
        order_uuid = self._parse_order_id(order_id)
        async with self.db.atomic_transaction() as session:
            order = await session.scalar(select(Order).where(Order.id == order_uuid))
            if order is None:
                raise NotFoundError("Order", order_id)
            if verification_code is not None:
                issued = await session.scalar(
                    select(CashPaymentCode.code).where(CashPaymentCode.order_id == order_uuid)
                )
                if issued is None or not secrets.compare_digest(issued, verification_code.strip().upper()):
                    raise AuthenticationError("Verification code does not match this order")
            if order.status != OrderStatus.PENDING:
                raise ConflictError("Only pending orders can be cancelled", code="ORDER_NOT_PENDING")
            await self._cancel_pending(session, order)

        logger.info(f"Pending order {order_uuid} {reason}")
        return await self.get_order(order_uuid)

    async def expire_pending_cash_orders(self) -> int:
        """
        Cancel cash orders whose verification code lapsed; returns how many
        """
        now = self.clock.now()
        async with self.db.read_session() as session:
            result = await session.execute(
                select(CashPaymentCode.order_id)
                .join(Order, Order.id == CashPaymentCode.order_id)
                .where(
                    CashPaymentCode.used_at.is_(None),
                    CashPaymentCode.expires_at <= now,
                    Order.status == OrderStatus.PENDING
                )
            )
            candidates = list(result.scalars().all())

        expired = 0
        for order_uuid in candidates:
            try:
                async with self.db.atomic_transaction() as session:
                    order = await session.scalar(select(Order).where(Order.id == order_uuid))
                    await self._cancel_pending(session, order)
                expired += 1
            except ConflictError:
                # Confirmed or cancelled since the scan
                continue

        if expired:
            logger.info(f"Expired {expired} unconfirmed cash orders")
        return expired

    async def _cancel_pending(self, session: AsyncSession, order: Order):
        now = self.clock.now()
        result = await session.execute(
            update(Order)
            .where(
                Order.id == order.id,
                Order.status == OrderStatus.PENDING,
                Order.payment_status == PaymentStatus.PENDING
            )
            .values(
                status=OrderStatus.CANCELLED,
                payment_status=PaymentStatus.FAILED,
                cancelled_at=now,
                updated_at=now
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError("Order is no longer awaiting payment", code="ORDER_NOT_PENDING")

        unit_ids = [item.unit_id for item in order.items]
        await self.store.set_status_if(
            session, unit_ids, UnitStatus.RESERVED, UnitStatus.AVAILABLE, order_id=None, hold_id=None
        )

    # Reads and refunds

    async def get_order(self, order_id) -> OrderDetails:
        order_uuid = self._parse_order_id(order_id)
        async with self.db.read_session() as session:
            order = await session.scalar(select(Order).where(Order.id == order_uuid))
            if order is None:
                raise NotFoundError("Order", order_id)
            ticket_ids = (await session.execute(
                select(Ticket.id).where(Ticket.order_id == order_uuid).order_by(Ticket.id)
            )).scalars().all()
            code = None
            if order.status == OrderStatus.PENDING:
                code = await session.scalar(
                    select(CashPaymentCode.code).where(CashPaymentCode.order_id == order_uuid)
                )
        return OrderDetails(order=order, ticket_ids=[str(t) for t in ticket_ids], verification_code=code)

    async def refund_order(self, order_id, reason: str) -> OrderDetails:
        """
        Refund a paid order through its gateway and return the units to sale
        """
        details = await self.get_order(order_id)
        order = details.order
        if order.payment_status != PaymentStatus.PAID:
            raise ConflictError("Only paid orders can be refunded", code="ORDER_NOT_REFUNDABLE")

        refund = await self.payments.refund(order.charge_id, Decimal(order.total_amount), order.payment_method)
        if not refund.success:
            raise PaymentError(
                message=refund.message or "Refund failed",
                code=refund.error_code or "REFUND_FAILED",
                details={"order_id": str(order.id)}
            )

        now = self.clock.now()
        async with self.db.atomic_transaction() as session:
            result = await session.execute(
                update(Order)
                .where(Order.id == order.id, Order.payment_status == PaymentStatus.PAID)
                .values(
                    payment_status=PaymentStatus.REFUNDED,
                    status=OrderStatus.REFUNDED,
                    refunded_at=now,
                    refund_id=refund.refund_id,
                    refund_reason=reason,
                    updated_at=now
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError("Order was refunded concurrently", code="ORDER_NOT_REFUNDABLE")

            await session.execute(
                update(Ticket)
                .where(Ticket.order_id == order.id, Ticket.status != TicketStatus.CANCELLED)
                .values(status=TicketStatus.CANCELLED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            await self.store.set_status_if(
                session,
                [item.unit_id for item in order.items],
                UnitStatus.SOLD,
                UnitStatus.AVAILABLE,
                order_id=None,
                hold_id=None
            )

        logger.info(
            f"Order {order.id} refunded ({refund.refund_id})",
            extra={"order_id": str(order.id), "reason": reason}
        )
        ORDERS_TOTAL.labels(outcome="refunded", payment_method=order.payment_method.value).inc()
        return await self.get_order(order.id)

    async def recover_incomplete_orders(self) -> int:
        return await self.orchestrator.recover_incomplete_sagas()

    @staticmethod
    def _parse_order_id(order_id) -> uuid.UUID:
        try:
            return uuid.UUID(str(order_id))
        except ValueError:
            raise NotFoundError("Order", order_id)
