from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, ForeignKey, Integer, Numeric, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from db.base import Base
from models.rental_domain import OrderStatus, ReturnStatus


def _in_clause(column: str, values) -> str:
    quoted = ", ".join(f"'{value.value}'" for value in values)
    return f"{column} IN ({quoted})"


class Order(Base):
    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint(_in_clause("status", OrderStatus), name="orders_status_check"),
    )

    id = Column(Integer, primary_key=True)
    branch_id = Column(String(64))
    staff_id = Column(String(64))
    customer_id = Column(String(64), nullable=False)
    invoice_number = Column(String(50), nullable=False)
    booking_date = Column(DateTime, server_default=func.now())
    start_date = Column(DateTime, nullable=False)
    end_date = Column(DateTime, nullable=False)
    rental_days = Column(Integer)
    status = Column(String(30), nullable=False, default=OrderStatus.ACTIVE.value)
    gst_enabled = Column(Boolean, default=False)
    gst_rate = Column(Numeric(5, 2))
    gst_included = Column(Boolean, default=False)
    subtotal = Column(Numeric(10, 2))
    gst_amount = Column(Numeric(10, 2))
    late_fee = Column(Numeric(10, 2))
    damage_fee_total = Column(Numeric(10, 2))
    total_amount = Column(Numeric(10, 2))
    security_deposit = Column(Numeric(10, 2))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now())

    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        order_by="OrderItem.id",
    )
    audit_logs = relationship("OrderAuditLog", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint(_in_clause("return_status", ReturnStatus), name="order_items_return_status_check"),
    )

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    photo_url = Column(String(1000))
    product_name = Column(String(255))
    quantity = Column(Integer, nullable=False, default=1)
    price_per_day = Column(Numeric(10, 2), nullable=False)
    days = Column(Integer, nullable=False, default=1)
    line_total = Column(Numeric(12, 2))
    returned_quantity = Column(Integer)
    return_status = Column(String(30), default=ReturnStatus.NOT_YET_RETURNED.value)
    actual_return_date = Column(DateTime)
    late_return = Column(Boolean)
    missing_note = Column(String(1000))
    damage_fee = Column(Numeric(10, 2))
    damage_description = Column(String(1000))

    order = relationship("Order", back_populates="items")


class OrderAuditLog(Base):
    __tablename__ = "order_audit_logs"

    id = Column(Integer, primary_key=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    order_item_id = Column(Integer)
    action = Column(String(100), nullable=False)
    previous_status = Column(String(30))
    new_status = Column(String(30))
    details = Column(String(2000))
    user_id = Column(String(64))
    created_at = Column(DateTime, server_default=func.now())

    order = relationship("Order", back_populates="audit_logs")
