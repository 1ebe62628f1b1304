"""
Order, OrderItem and CashPaymentCode models
"""

from sqlalchemy import Column, String, Integer, ForeignKey, Enum, Numeric, Text, Uuid
from sqlalchemy.orm import relationship
import enum

from boxoffice.models.base import BaseModel, UTCDateTime


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    REDIRECT = "redirect"
    CASH = "cash"
    MOCK = "mock"


class Order(BaseModel):
    """
    Purchase of one or more inventory units; immutable once paid except for refund
    """
    __tablename__ = "orders"

    idempotency_key = Column(String(100), unique=True, nullable=False, index=True)
    event_id = Column(Uuid(as_uuid=True), ForeignKey("events.id"), nullable=False, index=True)
    customer_name = Column(String(255), nullable=False)
    customer_email = Column(String(255), nullable=False, index=True)

    subtotal = Column(Numeric(10, 2), nullable=False)
    fees = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD", nullable=False)

    payment_method = Column(Enum(PaymentMethod), nullable=False)
    charge_id = Column(String(255), nullable=True, index=True)
    payment_status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.PENDING,
        nullable=False,
        index=True
    )
    status = Column(
        Enum(OrderStatus),
        default=OrderStatus.PENDING,
        nullable=False,
        index=True
    )

    paid_at = Column(UTCDateTime, nullable=True)
    cancelled_at = Column(UTCDateTime, nullable=True)
    refunded_at = Column(UTCDateTime, nullable=True)
    refund_id = Column(String(255), nullable=True)
    refund_reason = Column(Text, nullable=True)

    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", lazy="selectin")

    def __repr__(self):
        return f"<Order(id={self.id}, status={self.status}, payment_status={self.payment_status}, total={self.total_amount})>"


class OrderItem(BaseModel):
    """
    One purchased unit at its price at the time of sale
    """
    __tablename__ = "order_items"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, index=True)
    unit_id = Column(Uuid(as_uuid=True), ForeignKey("inventory_units.id"), nullable=False, index=True)
    ticket_type_id = Column(Uuid(as_uuid=True), ForeignKey("ticket_types.id"), nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)

    order = relationship("Order", back_populates="items")

    @property
    def line_total(self):
        return self.unit_price * self.quantity


class CashPaymentCode(BaseModel):
    """
    Verification code a box office operator confirms when cash is collected
    """
    __tablename__ = "cash_payment_codes"

    order_id = Column(Uuid(as_uuid=True), ForeignKey("orders.id"), nullable=False, unique=True)
    code = Column(String(16), unique=True, nullable=False, index=True)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    used_at = Column(UTCDateTime, nullable=True)
    confirmed_by = Column(String(255), nullable=True)
