# models.py
from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Numeric, DateTime, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from database import Base


class Table(Base):
    __tablename__ = "tables"

    id = Column(Integer, primary_key=True, index=True)
    number = Column(Integer, unique=True, index=True, nullable=False)
    name = Column(String(50), nullable=True)
    capacity = Column(Integer, nullable=False, default=4)
    is_active = Column(Boolean, default=True)

    sessions = relationship("CustomerSession", back_populates="table")


class CustomerSession(Base):
    __tablename__ = "customer_sessions"

    id = Column(Integer, primary_key=True, index=True)
    customer_name = Column(String(100), nullable=True)
    customer_phone = Column(String(30), nullable=True)
    notes = Column(Text, nullable=True)
    party_size = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False, default="WAITING", index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True, index=True)
    check_in_time = Column(DateTime(timezone=True), server_default=func.now())
    seated_time = Column(DateTime(timezone=True), nullable=True)
    check_out_time = Column(DateTime(timezone=True), nullable=True)
    seated_by = Column(String(50), nullable=True)

    table = relationship("Table", back_populates="sessions")
    orders = relationship("Order", back_populates="session", order_by="Order.id")
    payments = relationship("Payment", back_populates="session", order_by="Payment.id")
    splits = relationship("BillSplit", back_populates="session", order_by="BillSplit.id")


class Department(Base):
    __tablename__ = "departments"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, index=True, nullable=False)


class MenuItem(Base):
    __tablename__ = "menu_items"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text)
    price = Column(Numeric(10, 2), nullable=False)
    available = Column(Boolean, default=True)
    department_id = Column(Integer, ForeignKey("departments.id"), nullable=True)

    department = relationship("Department")


class Order(Base):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(40), index=True, nullable=False)
    session_id = Column(Integer, ForeignKey("customer_sessions.id"), nullable=False, index=True)
    table_id = Column(Integer, ForeignKey("tables.id"), nullable=True)
    parent_order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    status = Column(String(20), default="PENDING", nullable=False, index=True)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    waiter = Column(String(50), nullable=True)
    cook = Column(String(50), nullable=True)
    served_by = Column(String(50), nullable=True)
    ordered_at = Column(DateTime(timezone=True), server_default=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    preparing_at = Column(DateTime(timezone=True), nullable=True)
    ready_at = Column(DateTime(timezone=True), nullable=True)
    served_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)

    session = relationship("CustomerSession", back_populates="orders")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan",
                         order_by="OrderItem.id")
    sub_orders = relationship("Order", back_populates="parent", order_by="Order.id")
    parent = relationship("Order", back_populates="sub_orders", remote_side=[id])
    events = relationship("OrderStatusEvent", back_populates="order", cascade="all, delete-orphan",
                          order_by="OrderStatusEvent.id")


class OrderItem(Base):
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False)
    menu_item_id = Column(Integer, ForeignKey("menu_items.id"), nullable=False)
    menu_item_name = Column(String(100), nullable=False)
    department = Column(String(50), nullable=True, index=True)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)
    selections = Column(Text, nullable=True)

    order = relationship("Order", back_populates="items")


class OrderStatusEvent(Base):
    __tablename__ = "order_status_events"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=False, index=True)
    from_status = Column(String(20), nullable=False)
    to_status = Column(String(20), nullable=False)
    actor = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    order = relationship("Order", back_populates="events")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    payment_number = Column(String(40), unique=True, index=True, nullable=False)
    session_id = Column(Integer, ForeignKey("customer_sessions.id"), nullable=False, index=True)
    payment_method = Column(String(20), nullable=False)
    subtotal_amount = Column(Numeric(10, 2), nullable=False)
    extra_charges_amount = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    final_amount = Column(Numeric(10, 2), nullable=False)
    received_amount = Column(Numeric(10, 2), nullable=True)
    change_amount = Column(Numeric(10, 2), nullable=False, default=0)
    extra_charges = Column(JSON, nullable=True)
    notes = Column(Text, nullable=True)
    processed_by = Column(String(50), nullable=True)

    customer_name = Column(String(100), nullable=True)
    party_size = Column(Integer, nullable=False)
    table_number = Column(Integer, nullable=True)
    check_in_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("CustomerSession", back_populates="payments")
    items = relationship("PaymentItem", back_populates="payment", cascade="all, delete-orphan",
                         order_by="PaymentItem.id")


class PaymentItem(Base):
    __tablename__ = "payment_items"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False)
    order_item_id = Column(Integer, nullable=False)
    menu_item_name = Column(String(100), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    notes = Column(Text, nullable=True)
    selections = Column(Text, nullable=True)

    payment = relationship("Payment", back_populates="items")


class BillSplit(Base):
    __tablename__ = "bill_splits"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("customer_sessions.id"), nullable=False, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=True)
    strategy = Column(String(20), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    variance = Column(Numeric(10, 2), nullable=False, default=0)
    created_by = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    session = relationship("CustomerSession", back_populates="splits")
    shares = relationship("BillShare", back_populates="split", cascade="all, delete-orphan",
                          order_by="BillShare.position")


class BillShare(Base):
    __tablename__ = "bill_shares"

    id = Column(Integer, primary_key=True, index=True)
    split_id = Column(Integer, ForeignKey("bill_splits.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    label = Column(String(100), nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    paid_amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String(20), nullable=False, default="UNPAID")
    item_ids = Column(JSON, nullable=True)

    split = relationship("BillSplit", back_populates="shares")
