"""
API endpoints module
"""

from . import holds, cart, events, orders, checkin, tickets, health, websocket

__all__ = [
    "holds",
    "cart",
    "events",
    "orders",
    "checkin",
    "tickets",
    "health",
    "websocket"
]
