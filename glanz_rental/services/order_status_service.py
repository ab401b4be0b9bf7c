from __future__ import annotations

from datetime import datetime

from models.rental_domain import OrderState, OrderStatus, ReturnStatus
from services.errors import ValidationError


RETURN_LOCKED_STATUSES = {OrderStatus.SCHEDULED, OrderStatus.CANCELLED}


def resolve_order_status(order: OrderState, now: datetime) -> OrderStatus:
    """Derive the order status from its items and dates; first match wins.

    ``OrderStatus.FLAGGED`` is never produced here. It is reserved for the
    caller when a reconciled status could not be persisted.
    """
    if order.cancelled:
        return OrderStatus.CANCELLED
    if not order.items:
        raise ValidationError("Order has no items.")

    items = order.items
    all_accounted = all(item.is_accounted_for for item in items)
    if all_accounted and any(item.has_issue for item in items):
        return OrderStatus.COMPLETED_WITH_ISSUES
    if all(item.is_fully_returned for item in items):
        return OrderStatus.COMPLETED
    if any(item.is_touched for item in items):
        return OrderStatus.PARTIALLY_RETURNED

    if now < order.start_date:
        return OrderStatus.SCHEDULED
    if now <= order.end_date:
        return OrderStatus.ACTIVE
    return OrderStatus.PENDING_RETURN


def is_order_overdue(order: OrderState, now: datetime) -> bool:
    if order.cancelled or now <= order.end_date:
        return False
    return any(item.pending_quantity > 0 and item.return_status is not ReturnStatus.MISSING for item in order.items)


def can_record_returns(status: OrderStatus) -> bool:
    return status not in RETURN_LOCKED_STATUSES
