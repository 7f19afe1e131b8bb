"""Pydantic models for cached orders, statistics and the list view payloads."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrderStatus(str, Enum):
    """Known lifecycle states. Any other status string is kept as-is."""

    PENDING = "pending"
    AWAITING_PAYMENT = "awaiting_payment"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class SortKey(str, Enum):
    """Remote ordering of the list: newest first, or largest amount first."""

    DATE = "date"
    AMOUNT = "amount"


class Order(BaseModel):
    """One order as returned by the remote store. Never mutated client-side."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., examples=["5f0c2a4e-9d7b-4e43-8a57-2b1f6f6e2c11"])
    user_id: str = Field(..., description="Owning caller identity")
    store: str = Field(..., description="Store name shown on the order card", examples=["Corner Bakery"])
    unit_price: Decimal = Field(..., ge=0, examples=["12.50"])
    quantity: int = Field(..., ge=0, examples=[3])
    status: str = Field(..., examples=["pending"])
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class Statistics(BaseModel):
    """Summary figures derived from the first page of orders."""

    model_config = ConfigDict(frozen=True)

    today_orders: int = 0
    pending_orders: int = 0
    pending_payment: int = 0
    month_sales: Decimal = Decimal("0")


class OrderCreate(BaseModel):
    """Create-order request body."""

    store: str = Field(..., min_length=1, examples=["Corner Bakery"])
    unit_price: Decimal = Field(..., ge=0, examples=["12.50"])
    quantity: int = Field(..., ge=0, le=10000, examples=[3])
    status: str = Field(default=OrderStatus.PENDING.value, examples=["pending"])


class CacheSnapshot(BaseModel):
    """Consistent read of the cache entry."""

    records: list[Order] = Field(default_factory=list)
    statistics: Statistics = Field(default_factory=Statistics)
    owner: str | None = None
    sort_key: SortKey | None = None
    last_synced_at: datetime | None = None
    stale: bool = False
    page_cursor: int = 0
    exhausted: bool = False


class OrderView(Order):
    """Order card as rendered by the list screen."""

    line_total: Decimal
    status_label: str


class SortChange(BaseModel):
    sort: SortKey


class OrderListResponse(BaseModel):
    """List screen payload: cached orders, statistics and sync state."""

    outcome: str
    error: str | None = None
    last_error: str | None = Field(None, description="Set while the latest fetch attempt has failed")
    sort: SortKey | None = None
    orders: list[OrderView] = Field(default_factory=list)
    statistics: Statistics = Field(default_factory=Statistics)
    has_more: bool = False
    stale: bool = False
    last_synced_at: datetime | None = None
