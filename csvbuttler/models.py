"""
Pydantic Models for csvbuttler

This module defines all data models used in the application:
- Record: one indexed CSV row, served as JSON
- AuthenticatedUser: identity reconstructed from a verified session
- Request/Response models for API endpoints
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


# =============================================================================
# RECORD MODELS
# =============================================================================

# Column order used when the CSV source has no header row
RECORD_FIELDS = ("id", "title", "description", "brand", "price")


class Record(BaseModel):
    """
    One parsed CSV row.

    Attributes:
        id: Positive numeric identifier (0 is the invalid sentinel)
        title: Product title
        description: Optional description (empty CSV field -> None)
        brand: Brand name
        price: Price as text, not numerically validated
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "id": 1,
                "title": "Widget",
                "description": None,
                "brand": "Acme",
                "price": "9.99",
            }
        },
    )

    id: int = Field(..., ge=0, description="Numeric record identifier")
    title: str = Field(..., description="Product title")
    description: Optional[str] = Field(None, description="Product description")
    brand: str = Field(..., description="Brand name")
    price: str = Field(..., description="Price, kept as text")


def sentinel_record() -> Record:
    """Placeholder substituted for rows that fail to parse; never indexed."""
    return Record(id=0, title="", description=None, brand="", price="")


# =============================================================================
# AUTH MODELS
# =============================================================================

class AuthenticatedUser(BaseModel):
    """Identity of the caller, rebuilt from session claims on every request."""
    model_config = ConfigDict(frozen=True)

    email: str = Field(..., description="Session subject")
    company: str = Field(..., description="Company the user belongs to")


class LoginRequest(BaseModel):
    """
    Request model for POST /auth.

    The password is accepted but never checked; login is a demonstration stub.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {"email": "foo@bar.com", "password": "secret"}
        }
    )

    email: str = Field(..., max_length=320)
    password: str = Field(..., max_length=1024)


# =============================================================================
# API RESPONSE MODELS
# =============================================================================

class HealthResponse(BaseModel):
    """
    Health check response model.

    Attributes:
        status: Service status
        records_loaded: Number of indexed records
        timestamp: Current server timestamp
    """
    status: str = Field(..., description="Service health status")
    records_loaded: int = Field(..., description="Number of indexed records")
    timestamp: str = Field(..., description="Server timestamp")
