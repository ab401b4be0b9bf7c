"""Value types shared by the pricing, return and status services.

Everything here is immutable. Services return updated copies
(``model_copy(update=...)``) instead of mutating their inputs, so the same
order snapshot can be handed to several calculations safely.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict


class ReturnStatus(str, Enum):
    NOT_YET_RETURNED = "not_yet_returned"
    RETURNED = "returned"
    MISSING = "missing"

    @classmethod
    def parse(cls, raw: str | None) -> "ReturnStatus":
        if not raw:
            return cls.NOT_YET_RETURNED
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.NOT_YET_RETURNED


class OrderStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    PENDING_RETURN = "pending_return"
    COMPLETED = "completed"
    COMPLETED_WITH_ISSUES = "completed_with_issues"
    CANCELLED = "cancelled"
    PARTIALLY_RETURNED = "partially_returned"
    FLAGGED = "flagged"


ZERO = Decimal("0")


class GstConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    rate: Decimal = ZERO
    included: bool = False


class OrderItemState(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    product_name: Optional[str] = None
    quantity: int
    price_per_day: Decimal
    rental_days: int = 1
    line_total: Decimal = ZERO
    # None means the store never recorded a count for this item.
    returned_quantity: Optional[int] = 0
    return_status: ReturnStatus = ReturnStatus.NOT_YET_RETURNED
    actual_return_date: Optional[datetime] = None
    late_return: Optional[bool] = None
    missing_note: Optional[str] = None
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None

    @property
    def already_returned_quantity(self) -> int:
        if self.return_status is ReturnStatus.RETURNED and self.returned_quantity is None:
            return self.quantity
        return self.returned_quantity or 0

    @property
    def pending_quantity(self) -> int:
        pending = self.quantity - self.already_returned_quantity
        return max(0, min(pending, self.quantity))

    @property
    def has_damage(self) -> bool:
        return bool(self.damage_cost and self.damage_cost > 0)

    @property
    def has_issue(self) -> bool:
        return self.has_damage or self.return_status is ReturnStatus.MISSING

    @property
    def is_fully_returned(self) -> bool:
        return self.return_status is ReturnStatus.RETURNED and self.pending_quantity == 0

    @property
    def is_accounted_for(self) -> bool:
        # Missing items are settled: nothing more is expected back.
        return self.is_fully_returned or self.return_status is ReturnStatus.MISSING

    @property
    def is_touched(self) -> bool:
        return self.already_returned_quantity > 0 or self.return_status is not ReturnStatus.NOT_YET_RETURNED


class OrderState(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[int] = None
    start_date: datetime
    end_date: datetime
    rental_days: Optional[int] = None
    items: Tuple[OrderItemState, ...] = ()
    gst: GstConfig = GstConfig()
    security_deposit: Optional[Decimal] = None
    late_fee: Decimal = ZERO
    cancelled: bool = False

    def item_by_id(self, item_id: int) -> OrderItemState | None:
        for item in self.items:
            if item.id == item_id:
                return item
        return None


class ReturnReport(BaseModel):
    """Cumulative return state of one item at the time it was recorded."""

    model_config = ConfigDict(frozen=True)

    item_id: Optional[int] = None
    returned_quantity: int = 0
    actual_return_date: datetime
    damage_cost: Optional[Decimal] = None
    damage_description: Optional[str] = None
    missing_note: Optional[str] = None
    # Undo an earlier return instead of recording one.
    reset: bool = False


class OrderTotals(BaseModel):
    model_config = ConfigDict(frozen=True)

    subtotal: Decimal = ZERO
    gst_amount: Decimal = ZERO
    grand_total: Decimal = ZERO
    damage_fee_total: Decimal = ZERO
    late_fee: Decimal = ZERO
    total_amount: Decimal = ZERO
