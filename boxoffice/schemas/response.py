"""
Generic response schemas
"""

from pydantic import BaseModel, Field
from typing import Any, Optional, Dict
from datetime import datetime, timezone


def _now() -> datetime:
    return datetime.now(timezone.utc)


class ErrorDetail(BaseModel):
    """Error detail schema"""
    code: str
    message: str
    details: Optional[Dict[str, Any]] = {}


class ErrorResponse(BaseModel):
    """Envelope rendered for every BoxOfficeException"""
    success: bool = False
    error: ErrorDetail


class HealthResponse(BaseModel):
    """Health check response"""
    status: str
    timestamp: datetime = Field(default_factory=_now)
    checks: Optional[Dict[str, bool]] = None
    version: Optional[str] = None
