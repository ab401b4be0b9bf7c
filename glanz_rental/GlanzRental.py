import logging
import os
from datetime import date, datetime
from decimal import Decimal

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, text
from sqlalchemy.orm import Session, selectinload

load_dotenv()

from db.deps import get_rental_db
from models.order_models import Order, OrderItem
from models.rental_domain import ZERO, OrderItemState, OrderState, OrderStatus, ReturnReport, ReturnStatus
from schemas.orders import (
    CancelOrderRequest,
    CreateOrderDto,
    CreateOrderItemDto,
    GstSettingsDto,
    LateFeeRequest,
    ProcessReturnRequest,
    QuoteRequest,
    UpdateItemDamageRequest,
    UpdateItemQuantityRequest,
    UpdateOrderDto,
)
from services.dashboard_service import compute_dashboard_stats
from services.errors import PersistenceRejected, ValidationError
from services.order_service import (
    as_local_naive,
    cancel_order,
    commit_order,
    generate_invoice_number,
    load_order,
    log_order_event,
    process_order_return,
    recalc_order,
    refresh_runtime_status,
    serialize_order,
    serialize_timeline,
    start_rental,
    update_item_damage,
    update_item_quantity,
    update_late_fee,
)
from services.pricing_service import price_order, resolve_gst_config, summarize_order

app = FastAPI()


def _parse_csv_env(name: str, default: str) -> list[str]:
    raw = os.environ.get(name, default)
    return [item.strip() for item in str(raw).split(",") if item.strip()]


_CORS_ALLOW_ORIGINS = _parse_csv_env(
    "CORS_ALLOW_ORIGINS",
    "http://127.0.0.1,http://localhost,http://127.0.0.1:5001,http://localhost:5001",
)
_CORS_ALLOW_CREDENTIALS = str(os.environ.get("CORS_ALLOW_CREDENTIALS", "true")).strip().lower() in {"1", "true", "yes", "on"}
if "*" in _CORS_ALLOW_ORIGINS:
    # Browsers reject wildcard origins with credentials.
    _CORS_ALLOW_CREDENTIALS = False

app.add_middleware(
    CORSMiddleware,
    allow_origins=_CORS_ALLOW_ORIGINS,
    allow_credentials=_CORS_ALLOW_CREDENTIALS,
    allow_methods=["*"],
    allow_headers=["*"]
)

DEFAULT_GST_RATE = Decimal(os.environ.get("DEFAULT_GST_RATE") or "5")
API_LOGGER = logging.getLogger("glanz_rental.api")


def _bad_request(exc: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(exc))


def _conflict(exc: PersistenceRejected) -> HTTPException:
    return HTTPException(status_code=409, detail=str(exc))


def _get_order_or_404(db: Session, order_id: int) -> Order:
    order = load_order(db, order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")
    return order


def _get_item_or_404(db: Session, item_id: int) -> OrderItem:
    item = db.get(OrderItem, item_id)
    if not item:
        raise HTTPException(status_code=404, detail="Order item not found")
    return item


def _validate_window(start: datetime, end: datetime) -> None:
    if end < start:
        raise HTTPException(status_code=400, detail="endDate must be on or after startDate.")


def _validate_deposit(value: Decimal | None) -> None:
    if value is not None and value < 0:
        raise HTTPException(status_code=400, detail="securityDeposit must be zero or greater.")


def _build_items(items: list[CreateOrderItemDto]) -> list[OrderItem]:
    if not items:
        raise HTTPException(status_code=400, detail="No order items supplied.")
    rows = []
    for item in items:
        if item.quantity < 1:
            raise HTTPException(status_code=400, detail="quantity must be at least 1.")
        if item.pricePerDay < 0:
            raise HTTPException(status_code=400, detail="pricePerDay must be zero or greater.")
        rows.append(
            OrderItem(
                product_name=(item.productName or "").strip() or None,
                photo_url=item.photoUrl,
                quantity=item.quantity,
                price_per_day=item.pricePerDay,
                days=1,
                returned_quantity=0,
                return_status=ReturnStatus.NOT_YET_RETURNED.value,
            )
        )
    return rows


def _resolve_gst(settings: GstSettingsDto | None):
    settings = settings or GstSettingsDto()
    return resolve_gst_config(
        settings.gstEnabled,
        settings.gstRate,
        settings.gstIncluded,
        settings.gstNumber,
        default_rate=DEFAULT_GST_RATE,
    )


@app.get("/healthz")
def healthcheck():
    return {"status": "ok"}


@app.get("/api/healthz")
def healthcheck_api(db: Session = Depends(get_rental_db)):
    try:
        db.execute(text("SELECT 1"))
    except Exception as exc:
        raise HTTPException(status_code=503, detail=f"db_unavailable: {exc}") from exc
    return {"status": "ok", "db": "ok"}


@app.post("/api/pricing/quote")
def quote_order(payload: QuoteRequest):
    start = as_local_naive(payload.startDate)
    end = as_local_naive(payload.endDate)
    _validate_window(start, end)
    if not payload.items:
        raise HTTPException(status_code=400, detail="No order items supplied.")
    try:
        state = OrderState(
            start_date=start,
            end_date=end,
            rental_days=payload.rentalDays,
            gst=_resolve_gst(payload.gst),
            items=tuple(
                OrderItemState(product_name=item.productName, quantity=item.quantity, price_per_day=item.pricePerDay)
                for item in payload.items
            ),
        )
        priced = price_order(state)
        totals = summarize_order(priced)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    return {
        "rentalDays": priced.items[0].rental_days,
        "gst": {"enabled": priced.gst.enabled, "rate": priced.gst.rate, "included": priced.gst.included},
        "items": [
            {
                "productName": item.product_name,
                "quantity": item.quantity,
                "pricePerDay": item.price_per_day,
                "lineTotal": item.line_total,
            }
            for item in priced.items
        ],
        "subtotal": totals.subtotal,
        "gstAmount": totals.gst_amount,
        "grandTotal": totals.grand_total,
    }


@app.get("/api/orders")
def get_orders(
    branch_id: str | None = Query(None, alias="branchId"),
    status: str | None = Query(None),
    db: Session = Depends(get_rental_db),
):
    stmt = select(Order).options(selectinload(Order.items)).order_by(Order.created_at.desc(), Order.id.desc())
    if branch_id:
        stmt = stmt.where(Order.branch_id == branch_id)
    orders = db.execute(stmt).scalars().all()
    now = datetime.now()
    for order in orders:
        refresh_runtime_status(order, now)
    db.commit()
    if status:
        orders = [order for order in orders if order.status == status]
    return [serialize_order(order, now) for order in orders]


@app.get("/api/orders/{order_id}")
def get_order(order_id: int, db: Session = Depends(get_rental_db)):
    order = _get_order_or_404(db, order_id)
    now = datetime.now()
    refresh_runtime_status(order, now)
    db.commit()
    return serialize_order(order, now)


@app.post("/api/orders")
def create_order(payload: CreateOrderDto, db: Session = Depends(get_rental_db)):
    start = as_local_naive(payload.startDate)
    end = as_local_naive(payload.endDate)
    _validate_window(start, end)
    _validate_deposit(payload.securityDeposit)
    rows = _build_items(payload.items)
    try:
        gst = _resolve_gst(payload.gst)
    except ValidationError as exc:
        raise _bad_request(exc) from exc

    now = datetime.now()
    order = Order(
        customer_id=payload.customerID,
        branch_id=payload.branchID,
        staff_id=payload.staffID,
        invoice_number=(payload.invoiceNumber or "").strip() or generate_invoice_number(db, now),
        booking_date=now,
        start_date=start,
        end_date=end,
        rental_days=payload.rentalDays,
        gst_enabled=gst.enabled,
        gst_rate=gst.rate,
        gst_included=gst.included,
        security_deposit=payload.securityDeposit,
        late_fee=ZERO,
        created_at=now,
        updated_at=now,
    )
    order.items = rows
    try:
        recalc_order(order, now)
    except ValidationError as exc:
        raise _bad_request(exc) from exc

    db.add(order)
    log_order_event(order, "Create", details=f"Invoice {order.invoice_number}", user_id=payload.staffID)
    try:
        commit_order(db, order)
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return serialize_order(order, now)


@app.put("/api/orders/{order_id}")
def update_order(order_id: int, payload: UpdateOrderDto, db: Session = Depends(get_rental_db)):
    order = _get_order_or_404(db, order_id)
    if order.status == OrderStatus.CANCELLED.value:
        raise HTTPException(status_code=400, detail="Cancelled orders cannot be edited.")
    if any(int(item.returned_quantity or 0) > 0 or item.return_status != ReturnStatus.NOT_YET_RETURNED.value for item in order.items):
        raise HTTPException(
            status_code=400,
            detail="Orders with recorded returns cannot be re-itemised; adjust item quantities instead.",
        )
    start = as_local_naive(payload.startDate)
    end = as_local_naive(payload.endDate)
    _validate_window(start, end)
    _validate_deposit(payload.securityDeposit)
    rows = _build_items(payload.items)

    now = datetime.now()
    previous_status = order.status
    if payload.customerID:
        order.customer_id = payload.customerID
    if payload.invoiceNumber and payload.invoiceNumber.strip():
        order.invoice_number = payload.invoiceNumber.strip()
    order.start_date = start
    order.end_date = end
    order.rental_days = payload.rentalDays
    order.security_deposit = payload.securityDeposit
    order.items = rows
    order.updated_at = now
    try:
        recalc_order(order, now)
    except ValidationError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    log_order_event(order, "Update", previous_status=previous_status)
    try:
        commit_order(db, order)
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return serialize_order(order, now)


@app.post("/api/orders/{order_id}/start")
def start_order(order_id: int, db: Session = Depends(get_rental_db)):
    order = _get_order_or_404(db, order_id)
    try:
        start_rental(db, order)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return serialize_order(order)


@app.post("/api/orders/{order_id}/cancel")
def cancel_order_endpoint(order_id: int, payload: CancelOrderRequest | None = None, db: Session = Depends(get_rental_db)):
    order = _get_order_or_404(db, order_id)
    try:
        cancel_order(db, order, payload.reason if payload else None)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return {"message": "Order cancelled", "status": order.status}


@app.post("/api/orders/{order_id}/return")
def return_order_items(order_id: int, payload: ProcessReturnRequest, db: Session = Depends(get_rental_db)):
    order = _get_order_or_404(db, order_id)
    if not payload.items:
        raise HTTPException(status_code=400, detail="No item returns supplied.")

    now = datetime.now()
    default_return_date = as_local_naive(payload.actualReturnDate) or now
    reports = [
        ReturnReport(
            item_id=item.itemID,
            returned_quantity=item.returnedQuantity,
            actual_return_date=as_local_naive(item.actualReturnDate) or default_return_date,
            damage_cost=item.damageCost,
            damage_description=item.damageDescription,
            missing_note=item.missingNote,
            reset=item.undo,
        )
        for item in payload.items
    ]
    try:
        outcome = process_order_return(
            db,
            order,
            reports,
            now=now,
            late_fee=payload.lateFee,
            operator_user_id=payload.operatorUserID,
        )
    except ValidationError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc

    if outcome.flagged:
        API_LOGGER.warning("Order %s return saved partially: %s", order_id, "; ".join(outcome.warnings))
    body = serialize_order(outcome.order, now)
    body["reconciliation"] = "flagged" if outcome.flagged else "committed"
    body["warnings"] = outcome.warnings
    body["skippedItemIDs"] = outcome.skipped_item_ids
    return body


@app.put("/api/orders/{order_id}/late-fee")
def set_late_fee(order_id: int, payload: LateFeeRequest, db: Session = Depends(get_rental_db)):
    order = _get_order_or_404(db, order_id)
    try:
        update_late_fee(db, order, payload.lateFee)
    except ValidationError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return serialize_order(order)


@app.put("/api/orders/items/{item_id}/quantity")
def set_item_quantity(item_id: int, payload: UpdateItemQuantityRequest, db: Session = Depends(get_rental_db)):
    item = _get_item_or_404(db, item_id)
    order = item.order
    try:
        update_item_quantity(db, order, item, payload.quantity)
    except ValidationError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return serialize_order(order)


@app.put("/api/orders/items/{item_id}/damage")
def set_item_damage(item_id: int, payload: UpdateItemDamageRequest, db: Session = Depends(get_rental_db)):
    item = _get_item_or_404(db, item_id)
    order = item.order
    try:
        update_item_damage(db, order, item, payload.damageCost, payload.damageDescription)
    except ValidationError as exc:
        db.rollback()
        raise _bad_request(exc) from exc
    except PersistenceRejected as exc:
        raise _conflict(exc) from exc
    return serialize_order(order)


@app.get("/api/orders/{order_id}/timeline")
def get_order_timeline(order_id: int, db: Session = Depends(get_rental_db)):
    _get_order_or_404(db, order_id)
    return serialize_timeline(db, order_id)


@app.get("/api/dashboard/stats")
def get_dashboard_stats(
    branch_id: str | None = Query(None, alias="branchId"),
    start_date: date | None = Query(None, alias="startDate"),
    end_date: date | None = Query(None, alias="endDate"),
    db: Session = Depends(get_rental_db),
):
    try:
        return compute_dashboard_stats(db, branch_id=branch_id, start_date=start_date, end_date=end_date)
    except ValidationError as exc:
        raise _bad_request(exc) from exc
