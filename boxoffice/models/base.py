"""
Base model class with common fields
"""

from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Uuid
from sqlalchemy.types import TypeDecorator
import uuid

from boxoffice.core.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware datetime stored as UTC

    SQLite drops tzinfo on round trip; values are normalized to UTC on the way
    in and tagged as UTC on the way out.
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class BaseModel(Base):
    """
    Abstract base model with common fields
    """
    __abstract__ = True

    id = Column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        nullable=False
    )
    created_at = Column(
        UTCDateTime,
        default=_utcnow,
        nullable=False
    )
    updated_at = Column(
        UTCDateTime,
        default=_utcnow,
        onupdate=_utcnow,
        nullable=False
    )

    def dict(self):
        """Convert model to dictionary"""
        return {
            column.name: getattr(self, column.name)
            for column in self.__table__.columns
        }
