#!/usr/bin/env python3
"""Recompute derived order fields and report rows that drifted from them.

Covers order totals, status and each item's line total. Returns saved as
flagged lost their damage and missing details when they were stored, so
``--apply`` can only move their status and totals; the details have to be
resubmitted through the return endpoint.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from pathlib import Path

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, selectinload, sessionmaker

APP_DIR = Path(__file__).resolve().parents[1]
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from models.order_models import Order
from services.errors import PersistenceRejected, ValidationError
from services.order_service import commit_order, log_order_event, recalc_order


TRACKED_FIELDS = ["subtotal", "gst_amount", "late_fee", "damage_fee_total", "total_amount", "status"]


@dataclass
class OrderDrift:
    order_id: int
    invoice_number: str
    changes: dict[str, tuple]
    error: str | None = None


def _normalize(value):
    if isinstance(value, Decimal):
        return value.quantize(Decimal("0.01"))
    if isinstance(value, (int, float)):
        return Decimal(str(value)).quantize(Decimal("0.01"))
    return value


def _snapshot(order: Order) -> dict:
    values = {name: _normalize(getattr(order, name)) for name in TRACKED_FIELDS}
    for row in order.items:
        values[f"item {row.id} line_total"] = _normalize(row.line_total)
    return values


def check_order(order: Order, now: datetime) -> OrderDrift:
    before = _snapshot(order)
    try:
        recalc_order(order, now)
    except ValidationError as exc:
        return OrderDrift(order.id, order.invoice_number, {}, error=str(exc))
    after = _snapshot(order)
    changes = {name: (before.get(name), value) for name, value in after.items() if before.get(name) != value}
    return OrderDrift(order.id, order.invoice_number, changes)


def reconcile_all(db: Session, apply: bool, now: datetime | None = None) -> list[OrderDrift]:
    current = now or datetime.now()
    order_ids = db.execute(select(Order.id).order_by(Order.id)).scalars().all()
    results: list[OrderDrift] = []
    for order_id in order_ids:
        order = db.execute(
            select(Order).options(selectinload(Order.items)).where(Order.id == order_id)
        ).scalars().first()
        previous_status = order.status
        drift = check_order(order, current)
        if not drift.changes or drift.error or not apply:
            db.rollback()
            results.append(drift)
            continue
        log_order_event(order, "Reconcile", previous_status=previous_status, details="Derived fields recomputed")
        try:
            commit_order(db, order)
        except PersistenceRejected as exc:
            drift.error = str(exc)
        results.append(drift)
    return results


def _print_report(results: list[OrderDrift], apply: bool) -> int:
    drifted = [item for item in results if item.changes or item.error]
    print(f"Checked {len(results)} orders, {len(drifted)} need attention.")
    for item in drifted:
        label = f"#{item.order_id} {item.invoice_number}"
        if item.error:
            print(f"  [ERROR] {label}: {item.error}")
            continue
        for name, (old, new) in item.changes.items():
            marker = "FIXED" if apply else "DRIFT"
            print(f"  [{marker}] {label}: {name} {old} -> {new}")
    return 1 if any(item.error for item in results) else 0


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recompute order totals and statuses.")
    parser.add_argument(
        "--db-url",
        default=os.environ.get("RENTAL_DB_URL", "").strip(),
        help="SQLAlchemy DB URL; defaults to RENTAL_DB_URL env var.",
    )
    parser.add_argument("--apply", action="store_true", help="Write recomputed values back.")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    if not args.db_url:
        print("Missing DB URL. Pass --db-url or set RENTAL_DB_URL.", file=sys.stderr)
        return 2
    engine = create_engine(args.db_url, pool_pre_ping=True, future=True)
    session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
    with session_factory() as db:
        results = reconcile_all(db, apply=args.apply)
    return _print_report(results, args.apply)


if __name__ == "__main__":
    raise SystemExit(main())
