from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable

from models.rental_domain import ZERO, GstConfig, OrderItemState, OrderState, OrderTotals
from services.errors import ValidationError
from services.return_service import total_damage_cost


CENT = Decimal("0.01")
HUNDRED = Decimal("100")
DEFAULT_GST_RATE = Decimal("5")


def to_decimal(value, field: str = "value") -> Decimal:
    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number.")
    try:
        # str() first so floats keep their printed value instead of binary noise.
        return Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number.") from exc


def quantize_money(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def compute_line_total(quantity: int, price_per_day, rental_days: int) -> Decimal:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be a whole number.")
    if quantity < 0:
        raise ValidationError("quantity must be zero or greater.")
    if isinstance(rental_days, bool) or not isinstance(rental_days, int) or rental_days < 1:
        raise ValidationError("rentalDays must be at least 1.")
    price = to_decimal(price_per_day, "pricePerDay")
    if price < 0:
        raise ValidationError("pricePerDay must be zero or greater.")
    return quantity * price * rental_days


def compute_rental_days(start: date | datetime, end: date | datetime) -> int:
    start_day = start.date() if isinstance(start, datetime) else start
    end_day = end.date() if isinstance(end, datetime) else end
    if end_day < start_day:
        raise ValidationError("endDate must be on or after startDate.")
    # Same day and overnight both bill as one day.
    return max((end_day - start_day).days, 1)


def effective_rental_days(order: OrderState) -> int:
    if order.rental_days is not None:
        if order.rental_days < 1:
            raise ValidationError("rentalDays must be at least 1.")
        return order.rental_days
    return compute_rental_days(order.start_date, order.end_date)


def resolve_gst_config(
    enabled: bool | None,
    rate=None,
    included: bool | None = False,
    gst_number: str | None = None,
    default_rate: Decimal = DEFAULT_GST_RATE,
) -> GstConfig:
    """Build the GST snapshot stored on an order when it is created.

    ``enabled=None`` means the branch never set the flag explicitly; GST is
    then considered on when a positive rate or a GST number is configured.
    """
    rate_value = to_decimal(rate, "gstRate") if rate is not None else None
    if rate_value is not None and rate_value < 0:
        raise ValidationError("gstRate must be zero or greater.")

    if enabled is None:
        enabled = (rate_value is not None and rate_value > 0) or bool((gst_number or "").strip())

    if rate_value is None:
        rate_value = to_decimal(default_rate, "gstRate")
    return GstConfig(enabled=bool(enabled), rate=rate_value, included=bool(included))


def compute_gst_amount(subtotal: Decimal, gst: GstConfig) -> Decimal:
    if not gst.enabled or gst.rate <= 0:
        return ZERO
    if gst.included:
        return quantize_money(subtotal * gst.rate / (HUNDRED + gst.rate))
    return quantize_money(subtotal * gst.rate / HUNDRED)


def compute_order_totals(items: Iterable[OrderItemState], gst: GstConfig) -> OrderTotals:
    subtotal = ZERO
    for item in items:
        subtotal += compute_line_total(item.quantity, item.price_per_day, item.rental_days)

    gst_amount = compute_gst_amount(subtotal, gst)
    grand_total = subtotal if gst.included or not gst.enabled else subtotal + gst_amount
    return OrderTotals(subtotal=subtotal, gst_amount=gst_amount, grand_total=grand_total, total_amount=grand_total)


def compute_amount_due(totals: OrderTotals, late_fee=None, damage_fee_total=None) -> OrderTotals:
    late = to_decimal(late_fee, "lateFee")
    damage = to_decimal(damage_fee_total, "damageFeeTotal")
    if late < 0:
        raise ValidationError("lateFee must be zero or greater.")
    if damage < 0:
        raise ValidationError("damageFeeTotal must be zero or greater.")
    return totals.model_copy(
        update={
            "late_fee": late,
            "damage_fee_total": damage,
            "total_amount": totals.grand_total + late + damage,
        }
    )


def reprice_item(item: OrderItemState, rental_days: int) -> OrderItemState:
    return item.model_copy(
        update={
            "rental_days": rental_days,
            "line_total": compute_line_total(item.quantity, item.price_per_day, rental_days),
        }
    )


def price_order(order: OrderState) -> OrderState:
    days = effective_rental_days(order)
    return order.model_copy(update={"items": tuple(reprice_item(item, days) for item in order.items)})


def summarize_order(order: OrderState) -> OrderTotals:
    priced = price_order(order)
    totals = compute_order_totals(priced.items, priced.gst)
    return compute_amount_due(totals, priced.late_fee, total_damage_cost(priced.items))
