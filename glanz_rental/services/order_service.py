from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from models.order_models import Order, OrderAuditLog, OrderItem
from models.rental_domain import (
    ZERO,
    GstConfig,
    OrderItemState,
    OrderState,
    OrderStatus,
    ReturnReport,
    ReturnStatus,
)
from services.errors import PersistenceRejected, ValidationError
from services.order_status_service import can_record_returns, is_order_overdue, resolve_order_status
from services.pricing_service import price_order, summarize_order, to_decimal
from services.return_service import (
    apply_item_damage,
    has_late_return,
    reconcile_order_returns,
    strip_issue_reconciliation,
)


RETURN_LOGGER = logging.getLogger("glanz_rental.returns")
ORDER_LOGGER = logging.getLogger("glanz_rental.orders")


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


# Mirrors the orders_status_check constraint of the backing store.
ALLOWED_ORDER_STATUSES = {
    value.lower()
    for value in _parse_csv_env("ALLOWED_ORDER_STATUSES", ",".join(status.value for status in OrderStatus))
}
INVOICE_PREFIX = (os.environ.get("INVOICE_PREFIX") or "GLAORD").strip().upper()
CANCELLABLE_STATUSES = {OrderStatus.SCHEDULED, OrderStatus.ACTIVE, OrderStatus.PENDING_RETURN}


@dataclass
class ReturnOutcome:
    order: Order
    status: OrderStatus
    flagged: bool = False
    warnings: list[str] = field(default_factory=list)
    skipped_item_ids: list[int] = field(default_factory=list)


def ensure_status_persistable(status: OrderStatus | str) -> None:
    value = status.value if isinstance(status, OrderStatus) else str(status)
    if value not in ALLOWED_ORDER_STATUSES:
        raise PersistenceRejected(f"Order status '{value}' is not accepted by the order store.", value)


def as_local_naive(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone().replace(tzinfo=None)


def generate_invoice_number(db: Session, now: datetime | None = None) -> str:
    current = now or datetime.now()
    prefix = f"{INVOICE_PREFIX}-{current:%Y%m%d}-"
    existing = db.execute(
        select(Order.invoice_number).where(Order.invoice_number.startswith(prefix))
    ).scalars().all()

    max_seq = 0
    for number in existing:
        suffix = (number or "")[len(prefix):]
        if suffix.isdigit() and int(suffix) > max_seq:
            max_seq = int(suffix)
    return f"{prefix}{max_seq + 1:04d}"


def load_order(db: Session, order_id: int) -> Order | None:
    stmt = select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
    return db.execute(stmt).scalars().first()


def gst_config_of(order: Order) -> GstConfig:
    return GstConfig(
        enabled=bool(order.gst_enabled),
        rate=to_decimal(order.gst_rate, "gstRate"),
        included=bool(order.gst_included),
    )


def to_item_state(row: OrderItem) -> OrderItemState:
    return OrderItemState(
        id=row.id,
        product_name=row.product_name,
        quantity=int(row.quantity or 0),
        price_per_day=to_decimal(row.price_per_day, "pricePerDay"),
        rental_days=int(row.days or 1),
        line_total=to_decimal(row.line_total, "lineTotal"),
        returned_quantity=row.returned_quantity,
        return_status=ReturnStatus.parse(row.return_status),
        actual_return_date=row.actual_return_date,
        late_return=row.late_return,
        missing_note=row.missing_note,
        damage_cost=to_decimal(row.damage_fee, "damageCost") if row.damage_fee is not None else None,
        damage_description=row.damage_description,
    )


def to_order_state(order: Order) -> OrderState:
    return OrderState(
        id=order.id,
        start_date=order.start_date,
        end_date=order.end_date,
        rental_days=order.rental_days,
        items=tuple(to_item_state(row) for row in order.items),
        gst=gst_config_of(order),
        security_deposit=order.security_deposit,
        late_fee=to_decimal(order.late_fee, "lateFee"),
        cancelled=order.status == OrderStatus.CANCELLED.value,
    )


def write_item_state(row: OrderItem, state: OrderItemState) -> None:
    row.quantity = state.quantity
    row.price_per_day = state.price_per_day
    row.days = state.rental_days
    row.line_total = state.line_total
    row.returned_quantity = state.returned_quantity
    row.return_status = state.return_status.value
    row.actual_return_date = state.actual_return_date
    row.late_return = state.late_return
    row.missing_note = state.missing_note
    row.damage_fee = state.damage_cost
    row.damage_description = state.damage_description


def recalc_order(order: Order, now: datetime | None = None) -> OrderStatus:
    """Recompute every derived column of an order from its source fields."""
    current = now or datetime.now()
    priced = price_order(to_order_state(order))
    for row, item in zip(order.items, priced.items):
        row.days = item.rental_days
        row.line_total = item.line_total

    totals = summarize_order(priced)
    order.subtotal = totals.subtotal
    order.gst_amount = totals.gst_amount
    order.late_fee = totals.late_fee
    order.damage_fee_total = totals.damage_fee_total
    order.total_amount = totals.total_amount

    status = resolve_order_status(priced, current)
    order.status = status.value
    return status


def commit_order(db: Session, order: Order) -> None:
    status = order.status
    order_id = order.id
    try:
        ensure_status_persistable(status)
    except PersistenceRejected:
        db.rollback()
        raise
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise PersistenceRejected(f"Order store rejected order {order_id}: {exc.orig}", status) from exc


def log_order_event(
    order: Order,
    action: str,
    *,
    previous_status: str | None = None,
    details: str | None = None,
    user_id: str | None = None,
    order_item_id: int | None = None,
) -> None:
    order.audit_logs.append(
        OrderAuditLog(
            order_item_id=order_item_id,
            action=action,
            previous_status=previous_status,
            new_status=order.status,
            details=details,
            user_id=user_id,
            created_at=datetime.now(),
        )
    )


def refresh_runtime_status(order: Order, now: datetime | None = None) -> bool:
    """Re-resolve a stored status that time alone may have moved (e.g. active -> pending_return)."""
    if not order.items:
        return False
    status = resolve_order_status(to_order_state(order), now or datetime.now())
    if status.value == order.status or status.value not in ALLOWED_ORDER_STATUSES:
        return False
    ORDER_LOGGER.info("Order %s status %s -> %s", order.id, order.status, status.value)
    order.status = status.value
    return True


def _write_reconciliation(
    db: Session,
    order: Order,
    reconciled: OrderState,
    *,
    now: datetime,
    prior_status: OrderStatus,
    late_fee: Decimal | None,
    operator_user_id: str | None,
    keep_status: bool = False,
) -> OrderStatus:
    for row in order.items:
        item = reconciled.item_by_id(row.id)
        if item is not None:
            write_item_state(row, item)
    if late_fee is not None:
        order.late_fee = late_fee

    status = recalc_order(order, now)
    if keep_status:
        status = prior_status
        order.status = prior_status.value
    order.updated_at = now

    summary = [
        {
            "itemID": item.id,
            "returnedQuantity": item.returned_quantity,
            "returnStatus": item.return_status.value,
            "lateReturn": item.late_return,
        }
        for item in reconciled.items
    ]
    log_order_event(
        order,
        "ReturnFlagged" if keep_status else "Return",
        previous_status=prior_status.value,
        details=json.dumps(summary),
        user_id=operator_user_id,
    )
    commit_order(db, order)
    return status


def process_order_return(
    db: Session,
    order: Order,
    reports: list[ReturnReport],
    *,
    now: datetime | None = None,
    late_fee=None,
    operator_user_id: str | None = None,
) -> ReturnOutcome:
    current = now or datetime.now()
    prior_status = OrderStatus(order.status)
    if not can_record_returns(prior_status):
        raise ValidationError(f"Returns cannot be recorded for a {prior_status.value} order.")

    fee = None
    if late_fee is not None:
        fee = to_decimal(late_fee, "lateFee")
        if fee < 0:
            raise ValidationError("lateFee must be zero or greater.")

    before = to_order_state(order)
    reconciled = reconcile_order_returns(before, reports)

    try:
        status = _write_reconciliation(
            db,
            order,
            reconciled,
            now=current,
            prior_status=prior_status,
            late_fee=fee,
            operator_user_id=operator_user_id,
        )
        return ReturnOutcome(order=order, status=status)
    except PersistenceRejected as exc:
        rejected = exc

    RETURN_LOGGER.warning(
        "Order %s: store rejected status '%s'; recording returned quantities only.",
        order.id,
        rejected.status,
    )
    degraded, skipped = strip_issue_reconciliation(before, reconciled)
    status = _write_reconciliation(
        db,
        order,
        degraded,
        now=current,
        prior_status=prior_status,
        late_fee=fee,
        operator_user_id=operator_user_id,
        keep_status=True,
    )
    warnings = [f"Order status '{rejected.status}' could not be saved; the order keeps status '{status.value}'."]
    if skipped:
        warnings.append(
            "Damage/missing details were not applied for items "
            + ", ".join(str(item_id) for item_id in skipped)
            + "; they remain not yet returned."
        )
    return ReturnOutcome(order=order, status=status, flagged=True, warnings=warnings, skipped_item_ids=skipped)


def update_item_quantity(db: Session, order: Order, item: OrderItem, quantity: int, now: datetime | None = None) -> None:
    if quantity < 1:
        raise ValidationError("quantity must be at least 1.")
    already_returned = to_item_state(item).already_returned_quantity
    if quantity < already_returned:
        raise ValidationError("quantity cannot be lower than the quantity already returned.")
    previous_status = order.status
    item.quantity = quantity
    item.returned_quantity = already_returned
    if item.return_status == ReturnStatus.RETURNED.value and already_returned < quantity:
        item.return_status = ReturnStatus.NOT_YET_RETURNED.value
    elif already_returned and already_returned == quantity:
        item.return_status = ReturnStatus.RETURNED.value
    recalc_order(order, now)
    log_order_event(
        order,
        "UpdateItemQuantity",
        previous_status=previous_status,
        details=f"Quantity set to {quantity}",
        order_item_id=item.id,
    )
    commit_order(db, order)


def update_item_damage(
    db: Session,
    order: Order,
    item: OrderItem,
    damage_cost,
    description: str | None,
    now: datetime | None = None,
) -> None:
    cost = to_decimal(damage_cost, "damageCost") if damage_cost is not None else None
    previous_status = order.status
    write_item_state(item, apply_item_damage(to_item_state(item), cost, description))
    recalc_order(order, now)
    log_order_event(
        order,
        "UpdateItemDamage",
        previous_status=previous_status,
        details=f"Damage fee {item.damage_fee or ZERO}",
        order_item_id=item.id,
    )
    commit_order(db, order)


def update_late_fee(db: Session, order: Order, late_fee, now: datetime | None = None) -> None:
    fee = to_decimal(late_fee, "lateFee")
    if fee < 0:
        raise ValidationError("lateFee must be zero or greater.")
    previous_status = order.status
    order.late_fee = fee
    recalc_order(order, now)
    log_order_event(order, "UpdateLateFee", previous_status=previous_status, details=f"Late fee {fee}")
    commit_order(db, order)


def start_rental(db: Session, order: Order, now: datetime | None = None) -> None:
    current = now or datetime.now()
    if order.status != OrderStatus.SCHEDULED.value:
        raise ValidationError("Only scheduled orders can be started.")
    previous_status = order.status
    order.start_date = current
    recalc_order(order, current)
    log_order_event(order, "StartRental", previous_status=previous_status)
    commit_order(db, order)


def cancel_order(db: Session, order: Order, reason: str | None = None) -> None:
    if OrderStatus(order.status) not in CANCELLABLE_STATUSES:
        raise ValidationError(f"A {order.status} order cannot be cancelled.")
    if any(int(item.returned_quantity or 0) > 0 for item in order.items):
        raise ValidationError("Orders with returned items cannot be cancelled.")
    previous_status = order.status
    order.status = OrderStatus.CANCELLED.value
    log_order_event(order, "Cancel", previous_status=previous_status, details=reason)
    commit_order(db, order)


def serialize_item(item: OrderItem) -> dict:
    state = to_item_state(item)
    return {
        "id": item.id,
        "orderID": item.order_id,
        "productName": item.product_name,
        "photoUrl": item.photo_url,
        "quantity": item.quantity,
        "pricePerDay": item.price_per_day,
        "days": item.days,
        "lineTotal": item.line_total,
        "returnedQuantity": state.already_returned_quantity,
        "pendingQuantity": state.pending_quantity,
        "returnStatus": state.return_status.value,
        "actualReturnDate": item.actual_return_date,
        "lateReturn": item.late_return,
        "missingNote": item.missing_note,
        "damageCost": item.damage_fee,
        "damageDescription": item.damage_description,
    }


def serialize_order(order: Order, now: datetime | None = None) -> dict:
    current = now or datetime.now()
    state = to_order_state(order)
    return {
        "id": order.id,
        "invoiceNumber": order.invoice_number,
        "branchID": order.branch_id,
        "staffID": order.staff_id,
        "customerID": order.customer_id,
        "status": order.status,
        "startDate": order.start_date,
        "endDate": order.end_date,
        "rentalDays": order.rental_days,
        "gst": {
            "enabled": bool(order.gst_enabled),
            "rate": order.gst_rate,
            "included": bool(order.gst_included),
        },
        "subtotal": order.subtotal,
        "gstAmount": order.gst_amount,
        "grandTotal": order.subtotal if order.gst_included else (order.subtotal or ZERO) + (order.gst_amount or ZERO),
        "lateFee": order.late_fee,
        "lateFeeApplied": has_late_return(state.items) or bool(order.late_fee and order.late_fee > 0),
        "damageFeeTotal": order.damage_fee_total,
        "totalAmount": order.total_amount,
        "securityDeposit": order.security_deposit,
        "isOverdue": is_order_overdue(state, current),
        "createdAt": order.created_at,
        "updatedAt": order.updated_at,
        "items": [serialize_item(item) for item in order.items],
    }


def serialize_timeline(db: Session, order_id: int) -> list[dict]:
    rows = db.execute(
        select(OrderAuditLog)
        .where(OrderAuditLog.order_id == order_id)
        .order_by(OrderAuditLog.created_at.asc(), OrderAuditLog.id.asc())
    ).scalars().all()
    return [
        {
            "id": row.id,
            "orderID": row.order_id,
            "orderItemID": row.order_item_id,
            "action": row.action,
            "previousStatus": row.previous_status,
            "newStatus": row.new_status,
            "details": row.details,
            "userID": row.user_id,
            "createdAt": row.created_at,
        }
        for row in rows
    ]
