"""Payment schemas for request/response validation."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from slotbook.core.timeutils import as_utc


class PaymentStatus(str, Enum):
    """Payment status enumeration."""

    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class PaymentPeriod(str, Enum):
    """Creation-date window for payment listings."""

    TODAY = "today"
    WEEK = "week"
    MONTH = "month"
    ALL = "all"


class PaymentCreate(BaseModel):
    """Schema for recording a payment against an appointment."""

    appointment_id: int = Field(..., ge=1)
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    method: str | None = Field(None, max_length=50)
    transaction_ref: str | None = Field(None, max_length=255)
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: datetime | None = None

    @field_validator("method", "transaction_ref")
    @classmethod
    def strip_optional(cls, v: str | None) -> str | None:
        """Trim text; blank becomes null."""
        if v is None:
            return None
        return v.strip() or None


class PaymentResponse(BaseModel):
    """Schema for payment response."""

    id: int
    amount: Decimal
    method: str | None = None
    status: PaymentStatus
    transaction_ref: str | None = None
    paid_at: datetime | None = None
    appointment_id: int | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @field_validator("paid_at", "created_at")
    @classmethod
    def normalize_utc(cls, v: datetime | None) -> datetime | None:
        """Stored timestamps are UTC."""
        return as_utc(v) if v else None


class PaymentFilters(BaseModel):
    """Schema for payment filtering."""

    search: str | None = None
    status: PaymentStatus | None = None
    period: PaymentPeriod = PaymentPeriod.ALL
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)


class PaymentListResponse(BaseModel):
    """Schema for paginated payment list response."""

    total: int
    page: int
    page_size: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool
    items: list[PaymentResponse]
