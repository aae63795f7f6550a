"""
Pydantic schemas for FX Quote Aggregator Service.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Currency(str, Enum):
    """Currencies quoted against USD."""
    BRL = "BRL"
    ARS = "ARS"

    @classmethod
    def parse(cls, value: Optional[str]) -> Optional["Currency"]:
        """Case-insensitive lookup; returns None for missing or unknown values."""
        if not value or not value.strip():
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


class Quote(BaseModel):
    """One provider's exchange-rate snapshot for a currency."""
    model_config = ConfigDict(frozen=True)

    buy_price: float = Field(..., gt=0, description="Price paid for one USD")
    sell_price: float = Field(..., gt=0, description="Price asked for one USD")
    source: str = Field(..., min_length=1, description="Source identifier (provider URL)")

    @field_validator("source")
    @classmethod
    def validate_source(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("source cannot be blank")
        return v.strip()


class AverageResponse(BaseModel):
    """Cross-source average of buy and sell prices."""
    average_buy_price: Optional[float] = Field(None, description="Mean buy price")
    average_sell_price: Optional[float] = Field(None, description="Mean sell price")


class SlippageEntry(BaseModel):
    """Percentage deviation of one source from the cross-source average."""
    buy_price_slippage: float = Field(..., description="Buy price deviation in percent")
    sell_price_slippage: float = Field(..., description="Sell price deviation in percent")
    source: str = Field(..., description="Source identifier")


class HealthResponse(BaseModel):
    """Model for health check response."""
    status: Literal["healthy", "unhealthy"] = Field(..., description="Service status")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Health check timestamp")
    version: str = Field(..., description="Service version")


class ErrorResponse(BaseModel):
    """Model for error responses."""
    error: str = Field(..., description="Error message")
    message: Optional[str] = Field(None, description="Additional detail")
    usage: Optional[str] = Field(None, description="Correct usage hint")


class ApiDescription(BaseModel):
    """Payload served at the root path."""
    message: str
    endpoints: Dict[str, str]
    supported_currencies: List[str]
