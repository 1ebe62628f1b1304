"""
Database models
"""

from boxoffice.models.event import Event, TicketType
from boxoffice.models.inventory import InventoryUnit
from boxoffice.models.hold import Hold, hold_units
from boxoffice.models.order import Order, OrderItem, CashPaymentCode
from boxoffice.models.ticket import Ticket
from boxoffice.models.audit import TicketAuditLog
from boxoffice.models.saga_state import SagaState

__all__ = [
    "Event",
    "TicketType",
    "InventoryUnit",
    "Hold",
    "hold_units",
    "Order",
    "OrderItem",
    "CashPaymentCode",
    "Ticket",
    "TicketAuditLog",
    "SagaState"
]
