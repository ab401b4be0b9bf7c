from __future__ import annotations

from datetime import date, datetime, time, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.order_models import Order
from models.rental_domain import ZERO, OrderStatus
from services.errors import ValidationError
from services.pricing_service import to_decimal


COLLECTED_STATUSES = [OrderStatus.COMPLETED.value, OrderStatus.COMPLETED_WITH_ISSUES.value]
# Settled, or already being handled at the counter.
NOT_LATE_STATUSES = [
    OrderStatus.COMPLETED.value,
    OrderStatus.COMPLETED_WITH_ISSUES.value,
    OrderStatus.CANCELLED.value,
    OrderStatus.PARTIALLY_RETURNED.value,
]


def _order_filters(branch_id: str | None, start_date: date | None, end_date: date | None) -> list:
    filters = []
    if branch_id:
        filters.append(Order.branch_id == branch_id)
    if start_date is not None and end_date is not None:
        if end_date < start_date:
            raise ValidationError("endDate must be on or after startDate.")
        filters.append(Order.created_at >= datetime.combine(start_date, time.min))
        filters.append(Order.created_at < datetime.combine(end_date + timedelta(days=1), time.min))
    return filters


def compute_dashboard_stats(
    db: Session,
    *,
    branch_id: str | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    now: datetime | None = None,
) -> dict:
    """Order counts per status, money collected and overdue orders.

    Without a date range every order counts; with one, orders are picked by
    their creation day, both ends inclusive.
    """
    current = now or datetime.now()
    filters = _order_filters(branch_id, start_date, end_date)

    by_status = dict(
        db.execute(select(Order.status, func.count(Order.id)).where(*filters).group_by(Order.status)).all()
    )
    collected = db.execute(
        select(func.sum(Order.total_amount)).where(Order.status.in_(COLLECTED_STATUSES), *filters)
    ).scalar()
    late = db.execute(
        select(func.count(Order.id)).where(
            Order.end_date < current,
            Order.status.not_in(NOT_LATE_STATUSES),
            *filters,
        )
    ).scalar()

    return {
        "active": by_status.get(OrderStatus.ACTIVE.value, 0),
        "pendingReturn": by_status.get(OrderStatus.PENDING_RETURN.value, 0),
        "completed": by_status.get(OrderStatus.COMPLETED.value, 0),
        "completedWithIssues": by_status.get(OrderStatus.COMPLETED_WITH_ISSUES.value, 0),
        "scheduled": by_status.get(OrderStatus.SCHEDULED.value, 0),
        "partiallyReturned": by_status.get(OrderStatus.PARTIALLY_RETURNED.value, 0),
        "cancelled": by_status.get(OrderStatus.CANCELLED.value, 0),
        "totalOrders": sum(by_status.values()),
        "collection": to_decimal(collected, "collection") if collected is not None else ZERO,
        "lateReturn": int(late or 0),
    }
