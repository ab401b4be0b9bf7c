from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence

from models.rental_domain import ZERO, OrderItemState, OrderState, ReturnReport, ReturnStatus
from services.errors import ValidationError


def _clean_text(value: str | None) -> str | None:
    if value is None:
        return None
    cleaned = value.strip()
    return cleaned or None


def _validate_damage_cost(value: Decimal | None) -> None:
    if value is not None and value < 0:
        raise ValidationError("damageCost must be zero or greater.")


def is_late(actual_return_date: datetime | None, due_at: datetime) -> bool:
    if actual_return_date is None:
        return False
    return actual_return_date > due_at


def apply_return(item: OrderItemState, report: ReturnReport, due_at: datetime) -> OrderItemState:
    """Record a return report against one item.

    ``report.returned_quantity`` is the cumulative quantity back at the time
    of recording. It replaces the stored value; applying the same report
    twice leaves the item unchanged.
    """
    returned = report.returned_quantity
    if returned < 0 or returned > item.quantity:
        raise ValidationError(
            f"returnedQuantity must be between 0 and {item.quantity} for item {item.id}."
        )
    _validate_damage_cost(report.damage_cost)

    missing_note = _clean_text(report.missing_note)
    damage_description = _clean_text(report.damage_description)

    if returned == item.quantity:
        status = ReturnStatus.RETURNED
    elif returned == 0 and (missing_note or damage_description):
        status = ReturnStatus.MISSING
    else:
        # Partial (or nothing reported): the order resolver sees the pending quantity.
        status = ReturnStatus.NOT_YET_RETURNED

    update = {
        "returned_quantity": returned,
        "return_status": status,
        "actual_return_date": report.actual_return_date if returned > 0 else None,
        "late_return": is_late(report.actual_return_date, due_at) if returned > 0 else None,
    }
    if status is not ReturnStatus.MISSING or missing_note is not None:
        # A report without a note clears an earlier missing reason.
        update["missing_note"] = missing_note
    if report.damage_cost is not None:
        update["damage_cost"] = report.damage_cost
    if damage_description is not None:
        update["damage_description"] = damage_description
    return item.model_copy(update=update)


def clear_return(item: OrderItemState) -> OrderItemState:
    return item.model_copy(
        update={
            "returned_quantity": 0,
            "return_status": ReturnStatus.NOT_YET_RETURNED,
            "actual_return_date": None,
            "late_return": None,
            "missing_note": None,
        }
    )


def apply_item_damage(item: OrderItemState, damage_cost: Decimal | None, description: str | None) -> OrderItemState:
    _validate_damage_cost(damage_cost)
    cost = damage_cost if damage_cost is not None and damage_cost > 0 else None
    return item.model_copy(
        update={
            "damage_cost": cost,
            "damage_description": _clean_text(description),
        }
    )


def reconcile_order_returns(
    order: OrderState,
    reports: Sequence[ReturnReport],
    due_at: datetime | None = None,
) -> OrderState:
    if not reports:
        raise ValidationError("No item returns supplied.")

    deadline = due_at or order.end_date
    by_item: dict[int, ReturnReport] = {}
    for report in reports:
        if report.item_id is None or order.item_by_id(report.item_id) is None:
            raise ValidationError(f"Order item {report.item_id} not found in order.")
        if report.item_id in by_item:
            raise ValidationError(f"Duplicate return report for item {report.item_id}.")
        by_item[report.item_id] = report

    # Build every item first so one bad report leaves the order untouched.
    items = []
    for item in order.items:
        report = by_item.get(item.id)
        if report is None:
            items.append(item)
        elif report.reset:
            items.append(clear_return(item))
        else:
            items.append(apply_return(item, report, deadline))
    return order.model_copy(update={"items": tuple(items)})


def total_damage_cost(items: Iterable[OrderItemState]) -> Decimal:
    total = ZERO
    for item in items:
        if item.damage_cost:
            total += item.damage_cost
    return total


def has_late_return(items: Iterable[OrderItemState]) -> bool:
    return any(item.late_return for item in items)


def strip_issue_reconciliation(before: OrderState, after: OrderState) -> tuple[OrderState, list[int]]:
    """Keep the quantity side of a reconciliation and drop its damage/missing side.

    Used when the order store cannot hold the status the full reconciliation
    produces. Affected items keep their returned quantity but stay
    ``not_yet_returned`` with their previous damage and missing fields.
    """
    skipped: list[int] = []
    items = []
    for item in after.items:
        previous = before.item_by_id(item.id) if item.id is not None else None
        if previous is None or not item.has_issue or item == previous:
            items.append(item)
            continue
        skipped.append(item.id)
        items.append(
            previous.model_copy(
                update={
                    "returned_quantity": item.returned_quantity,
                    "return_status": ReturnStatus.NOT_YET_RETURNED,
                    "actual_return_date": item.actual_return_date,
                    "late_return": item.late_return,
                }
            )
        )
    return after.model_copy(update={"items": tuple(items)}), skipped
