import sys
import unittest
from datetime import datetime, timedelta
from decimal import Decimal
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.rental_domain import OrderItemState, OrderState, OrderStatus, ReturnStatus
from services.errors import ValidationError
from services.order_status_service import can_record_returns, is_order_overdue, resolve_order_status


START = datetime(2026, 3, 8, 10, 0)
END = datetime(2026, 3, 11, 10, 0)


def _item(item_id, quantity=2, **extra):
    return OrderItemState(id=item_id, quantity=quantity, price_per_day=Decimal("10"), **extra)


def _order(*items, **extra):
    return OrderState(start_date=START, end_date=END, items=items, **extra)


class ResolveOrderStatusTests(unittest.TestCase):
    def test_date_driven_statuses_for_untouched_items(self):
        order = _order(_item(1), _item(2))
        self.assertEqual(resolve_order_status(order, START - timedelta(hours=1)), OrderStatus.SCHEDULED)
        self.assertEqual(resolve_order_status(order, START), OrderStatus.ACTIVE)
        self.assertEqual(resolve_order_status(order, END), OrderStatus.ACTIVE)
        self.assertEqual(resolve_order_status(order, END + timedelta(minutes=1)), OrderStatus.PENDING_RETURN)

    def test_returned_and_missing_with_note_is_completed_with_issues(self):
        order = _order(
            _item(1, returned_quantity=2, return_status=ReturnStatus.RETURNED),
            _item(2, return_status=ReturnStatus.MISSING, missing_note="Lost in transit"),
        )
        self.assertEqual(resolve_order_status(order, END), OrderStatus.COMPLETED_WITH_ISSUES)

    def test_all_returned_with_damage_is_completed_with_issues(self):
        order = _order(
            _item(1, returned_quantity=2, return_status=ReturnStatus.RETURNED, damage_cost=Decimal("50")),
            _item(2, returned_quantity=2, return_status=ReturnStatus.RETURNED),
        )
        self.assertEqual(resolve_order_status(order, END), OrderStatus.COMPLETED_WITH_ISSUES)

    def test_all_returned_clean_is_completed(self):
        order = _order(
            _item(1, returned_quantity=2, return_status=ReturnStatus.RETURNED),
            _item(2, returned_quantity=2, return_status=ReturnStatus.RETURNED),
        )
        self.assertEqual(resolve_order_status(order, END + timedelta(days=3)), OrderStatus.COMPLETED)

    def test_any_progress_is_partially_returned(self):
        order = _order(_item(1, returned_quantity=1), _item(2))
        self.assertEqual(resolve_order_status(order, START - timedelta(days=1)), OrderStatus.PARTIALLY_RETURNED)

    def test_damage_with_pending_quantity_is_not_completed(self):
        order = _order(
            _item(1, returned_quantity=2, return_status=ReturnStatus.RETURNED, damage_cost=Decimal("5")),
            _item(2, returned_quantity=1),
        )
        self.assertEqual(resolve_order_status(order, END), OrderStatus.PARTIALLY_RETURNED)

    def test_cancelled_wins(self):
        order = _order(_item(1, returned_quantity=2, return_status=ReturnStatus.RETURNED), cancelled=True)
        self.assertEqual(resolve_order_status(order, END), OrderStatus.CANCELLED)

    def test_empty_order_rejected(self):
        with self.assertRaises(ValidationError):
            resolve_order_status(_order(), END)

    def test_never_resolves_to_flagged(self):
        samples = [
            _order(_item(1)),
            _order(_item(1, return_status=ReturnStatus.MISSING)),
            _order(_item(1, returned_quantity=2, return_status=ReturnStatus.RETURNED)),
        ]
        for order in samples:
            self.assertNotEqual(resolve_order_status(order, END), OrderStatus.FLAGGED)


class OverdueTests(unittest.TestCase):
    def test_overdue_when_items_pending_after_end(self):
        self.assertTrue(is_order_overdue(_order(_item(1)), END + timedelta(hours=1)))

    def test_not_overdue_before_end(self):
        self.assertFalse(is_order_overdue(_order(_item(1)), END))

    def test_missing_items_do_not_count_as_overdue(self):
        order = _order(_item(1, return_status=ReturnStatus.MISSING))
        self.assertFalse(is_order_overdue(order, END + timedelta(days=2)))

    def test_returns_blocked_for_scheduled_and_cancelled(self):
        self.assertFalse(can_record_returns(OrderStatus.SCHEDULED))
        self.assertFalse(can_record_returns(OrderStatus.CANCELLED))
        self.assertTrue(can_record_returns(OrderStatus.PENDING_RETURN))


if __name__ == "__main__":
    unittest.main()
