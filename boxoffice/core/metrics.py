"""
Prometheus metrics for the box office flows
"""

import logging
from prometheus_client import Counter, Histogram, REGISTRY

logger = logging.getLogger(__name__)


def _collector(factory, name: str, documentation: str, labels=()):
    # Re-importing the module (reload, test collection) must not register twice
    try:
        return factory(name, documentation, list(labels))
    except ValueError:
        return REGISTRY._names_to_collectors[name]


REQUEST_COUNT = _collector(
    Counter,
    "boxoffice_requests_total",
    "Total requests",
    ["method", "endpoint", "status"]
)
REQUEST_DURATION = _collector(
    Histogram,
    "boxoffice_request_duration_seconds",
    "Request duration",
    ["method", "endpoint"]
)

HOLDS_TOTAL = _collector(
    Counter,
    "boxoffice_holds_total",
    "Hold transitions",
    ["outcome"]
)
HOLDS_EXPIRED = _collector(
    Counter,
    "boxoffice_holds_expired_total",
    "Holds released by the expiry sweep"
)

ORDERS_TOTAL = _collector(
    Counter,
    "boxoffice_orders_total",
    "Order creation attempts by outcome",
    ["outcome", "payment_method"]
)
ORDER_DURATION = _collector(
    Histogram,
    "boxoffice_order_duration_seconds",
    "Time spent creating an order",
    ["payment_method"]
)

PAYMENT_CHARGES = _collector(
    Counter,
    "boxoffice_payment_charges_total",
    "Gateway charge results",
    ["method", "result"]
)

CHECKINS_TOTAL = _collector(
    Counter,
    "boxoffice_checkins_total",
    "Ticket validation and check-in results",
    ["operation", "result"]
)
