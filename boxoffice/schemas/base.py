"""
Base Pydantic schemas
"""

from pydantic import BaseModel, ConfigDict


class BaseSchema(BaseModel):
    """Base schema for responses built from ORM objects and dataclasses"""
    model_config = ConfigDict(
        from_attributes=True,
        use_enum_values=True,
    )


class RequestSchema(BaseModel):
    """Base schema for request bodies; unknown fields are rejected"""
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)
