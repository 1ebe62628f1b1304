"""
Saga state persistence model
"""

from sqlalchemy import Column, String, Text, Enum, Integer, JSON
import enum

from boxoffice.models.base import BaseModel, UTCDateTime, _utcnow


class SagaStateStatus(str, enum.Enum):
    STARTED = "started"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    COMPENSATING = "compensating"
    COMPENSATED = "compensated"


class SagaState(BaseModel):
    """
    Persistent storage for Saga transaction state
    Enables idempotent replay and recovery of incomplete transactions
    """
    __tablename__ = "saga_states"

    saga_id = Column(String(100), unique=True, nullable=False, index=True)
    saga_name = Column(String(255), nullable=False)
    status = Column(Enum(SagaStateStatus), nullable=False, index=True)

    # Serialized context and step data
    context = Column(JSON)
    steps_data = Column(JSON)

    completed_steps = Column(Integer, default=0)

    started_at = Column(UTCDateTime, default=_utcnow)
    completed_at = Column(UTCDateTime)

    error_code = Column(String(50))
    error_message = Column(Text)

    def __repr__(self):
        return f"<SagaState(saga_id={self.saga_id}, name={self.saga_name}, status={self.status})>"
