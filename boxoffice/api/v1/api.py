"""
Main API Router
Aggregates all API endpoints for v1
"""

from fastapi import APIRouter

from boxoffice.api.v1.endpoints import (
    holds,
    cart,
    events,
    orders,
    checkin,
    tickets,
    health
)
from boxoffice.schemas.response import ErrorResponse

# Error envelope shared by every route that raises BoxOfficeException
ERROR_RESPONSES = {
    401: {"model": ErrorResponse},
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    410: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}

api_router = APIRouter(responses=ERROR_RESPONSES)

api_router.include_router(holds.router, prefix="/holds", tags=["holds"])
api_router.include_router(cart.router, prefix="/cart", tags=["cart"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
api_router.include_router(orders.router, prefix="/orders", tags=["orders"])
api_router.include_router(checkin.router, prefix="/checkin", tags=["checkin"])
api_router.include_router(tickets.router, prefix="/tickets", tags=["tickets"])
api_router.include_router(health.router, prefix="/health", tags=["health"])
