import sys
import unittest
from datetime import datetime
from decimal import Decimal
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.rental_domain import GstConfig, OrderItemState, OrderState
from services.errors import ValidationError
from services.pricing_service import (
    compute_amount_due,
    compute_line_total,
    compute_order_totals,
    compute_rental_days,
    effective_rental_days,
    price_order,
    resolve_gst_config,
    summarize_order,
)


def _item(quantity, price, days=1, **extra):
    return OrderItemState(quantity=quantity, price_per_day=Decimal(str(price)), rental_days=days, **extra)


class LineTotalTests(unittest.TestCase):
    def test_line_total_multiplies_quantity_price_and_days(self):
        self.assertEqual(compute_line_total(5, Decimal("100"), 3), Decimal("1500"))

    def test_float_price_does_not_drift(self):
        self.assertEqual(compute_line_total(3, 0.1, 1), Decimal("0.3"))

    def test_zero_quantity_and_price_are_allowed(self):
        self.assertEqual(compute_line_total(0, Decimal("100"), 2), Decimal("0"))
        self.assertEqual(compute_line_total(4, Decimal("0"), 2), Decimal("0"))

    def test_rejects_negative_quantity(self):
        with self.assertRaises(ValidationError):
            compute_line_total(-1, Decimal("10"), 1)

    def test_rejects_negative_price(self):
        with self.assertRaises(ValidationError):
            compute_line_total(1, Decimal("-0.01"), 1)

    def test_rejects_rental_days_below_one(self):
        with self.assertRaises(ValidationError):
            compute_line_total(1, Decimal("10"), 0)

    def test_validation_error_is_a_value_error(self):
        with self.assertRaises(ValueError):
            compute_line_total(1, "abc", 1)


class RentalDaysTests(unittest.TestCase):
    def test_same_day_bills_one_day(self):
        self.assertEqual(compute_rental_days(datetime(2026, 3, 8, 9), datetime(2026, 3, 8, 18)), 1)

    def test_overnight_bills_one_day(self):
        self.assertEqual(compute_rental_days(datetime(2026, 3, 8, 18), datetime(2026, 3, 9, 9)), 1)

    def test_two_calendar_days(self):
        self.assertEqual(compute_rental_days(datetime(2026, 3, 8, 10), datetime(2026, 3, 10, 10)), 2)

    def test_end_before_start_is_rejected(self):
        with self.assertRaises(ValidationError):
            compute_rental_days(datetime(2026, 3, 10), datetime(2026, 3, 8))

    def test_explicit_rental_days_override_dates(self):
        order = OrderState(start_date=datetime(2026, 3, 8), end_date=datetime(2026, 3, 9), rental_days=4)
        self.assertEqual(effective_rental_days(order), 4)


class OrderTotalsTests(unittest.TestCase):
    def test_gst_disabled(self):
        totals = compute_order_totals([_item(5, 100, 3)], GstConfig(enabled=False, rate=Decimal("18")))
        self.assertEqual(totals.subtotal, Decimal("1500"))
        self.assertEqual(totals.gst_amount, Decimal("0"))
        self.assertEqual(totals.grand_total, Decimal("1500"))

    def test_gst_added_on_top(self):
        totals = compute_order_totals([_item(5, 100, 3)], GstConfig(enabled=True, rate=Decimal("18")))
        self.assertEqual(totals.gst_amount, Decimal("270"))
        self.assertEqual(totals.grand_total, Decimal("1770"))

    def test_gst_included_in_subtotal(self):
        totals = compute_order_totals(
            [_item(5, 100, 3)],
            GstConfig(enabled=True, rate=Decimal("18"), included=True),
        )
        self.assertEqual(totals.gst_amount, Decimal("228.81"))
        self.assertEqual(totals.grand_total, totals.subtotal)
        self.assertEqual(totals.gst_amount + (totals.subtotal - totals.gst_amount), totals.subtotal)

    def test_many_small_items_sum_exactly(self):
        items = [_item(1, "0.10") for _ in range(1000)]
        totals = compute_order_totals(items, GstConfig())
        self.assertEqual(totals.subtotal, Decimal("100.00"))

    def test_line_totals_are_recomputed_from_source_fields(self):
        stale = _item(2, 50, 2, line_total=Decimal("1"))
        totals = compute_order_totals([stale], GstConfig())
        self.assertEqual(totals.subtotal, Decimal("200"))

    def test_amount_due_adds_late_fee_and_damage(self):
        totals = compute_order_totals([_item(5, 100, 3)], GstConfig(enabled=True, rate=Decimal("18")))
        due = compute_amount_due(totals, Decimal("200"), Decimal("50"))
        self.assertEqual(due.total_amount, Decimal("2020"))
        self.assertEqual(due.grand_total, Decimal("1770"))

    def test_amount_due_rejects_negative_late_fee(self):
        with self.assertRaises(ValidationError):
            compute_amount_due(compute_order_totals([_item(1, 10)], GstConfig()), Decimal("-1"))


class GstConfigTests(unittest.TestCase):
    def test_enabled_inferred_from_rate(self):
        config = resolve_gst_config(None, Decimal("12"))
        self.assertTrue(config.enabled)
        self.assertEqual(config.rate, Decimal("12"))

    def test_enabled_inferred_from_gst_number_uses_default_rate(self):
        config = resolve_gst_config(None, None, gst_number="29ABCDE1234F1Z5")
        self.assertTrue(config.enabled)
        self.assertEqual(config.rate, Decimal("5"))

    def test_nothing_configured_means_disabled(self):
        self.assertFalse(resolve_gst_config(None).enabled)

    def test_explicit_flag_wins(self):
        self.assertFalse(resolve_gst_config(False, Decimal("18")).enabled)

    def test_negative_rate_rejected(self):
        with self.assertRaises(ValidationError):
            resolve_gst_config(True, Decimal("-5"))


class OrderSummaryTests(unittest.TestCase):
    def test_price_order_sets_shared_rental_days(self):
        order = OrderState(
            start_date=datetime(2026, 3, 8, 10),
            end_date=datetime(2026, 3, 11, 10),
            items=(_item(5, 100), _item(1, 40)),
        )
        priced = price_order(order)
        self.assertEqual([item.rental_days for item in priced.items], [3, 3])
        self.assertEqual([item.line_total for item in priced.items], [Decimal("1500"), Decimal("120")])

    def test_summary_includes_damage_and_late_fee(self):
        order = OrderState(
            start_date=datetime(2026, 3, 8, 10),
            end_date=datetime(2026, 3, 11, 10),
            items=(_item(5, 100, damage_cost=Decimal("50")),),
            gst=GstConfig(enabled=True, rate=Decimal("18")),
            late_fee=Decimal("100"),
        )
        totals = summarize_order(order)
        self.assertEqual(totals.subtotal, Decimal("1500"))
        self.assertEqual(totals.damage_fee_total, Decimal("50"))
        self.assertEqual(totals.total_amount, Decimal("1920"))


if __name__ == "__main__":
    unittest.main()
