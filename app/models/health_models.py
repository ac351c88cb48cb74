"""
Health Check Models
-------------------
Response schemas of the health endpoints.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Health(Enum):
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    def __str__(self):
        return self.value


class HealthStatus(BaseModel):
    """
    Health check response schema.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "healthy",
                "timestamp": "2026-10-13T10:30:00Z",
                "version": "1.0.0",
            }
        }
    )

    status: str = Field(..., description="Service health status")
    version: Optional[str] = Field(default=None, description="Application version")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Health check timestamp",
    )

    @field_validator("status")
    @classmethod
    def validate_status(cls, value: str) -> str:
        valid_values = [member.value for member in Health]
        if value not in valid_values:
            raise ValueError(f"Status must be one of: {', '.join(valid_values)}")
        return value


class DependencyHealth(BaseModel):
    """
    Dependency health response model.

    Each component is represented as a boolean indicating if it's operational:
    - PostgreSQL database
    - Field encryption (the configured AES key round-trips a check value)
    - Token signing (the JWT key signs and verifies a check token)
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "postgresql": True,
                "field_encryption": True,
                "token_signing": True,
                "status": "healthy",
                "timestamp": "2026-10-13T10:30:00Z",
            }
        }
    )

    postgresql: bool = Field(..., description="PostgreSQL database health status")
    field_encryption: bool = Field(..., description="Field encryption health status")
    token_signing: bool = Field(..., description="JWT signing key health status")
    status: str = Field(
        ..., description="Overall health status: 'healthy' or 'unhealthy'"
    )
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Health check timestamp",
    )
