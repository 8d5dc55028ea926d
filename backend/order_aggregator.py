"""
Order aggregator: order submission, item removal, status transitions and
the consolidated per-session / per-department views.

Order totals are only ever written here, under the session lock, and are
always recomputed from the order's current items.
"""
import json
import logging
import random
import string
import time
from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

import models
from billing import line_total, sum_money, to_decimal, to_money
from catalog import MenuCatalog
from errors import (
    ConflictError,
    InvalidStateError,
    LifecycleError,
    NotFoundError,
    ValidationError,
)
from order_status import (
    DELETABLE_STATUSES,
    DEPARTMENT_PENDING_STATUSES,
    OrderStatus,
    allowed_transitions,
    apply_timestamp,
    can_transition,
    is_terminal,
    most_urgent_status,
)
from redis_client import RedisClient, redis_client
from table_sessions import SessionStatus, TableSessionManager

logger = logging.getLogger(__name__)

UNASSIGNED_DEPARTMENT = "Unassigned"

# Session status reached when one of its orders enters an order status
SESSION_STATUS_FOR_ORDER = {
    OrderStatus.CONFIRMED: SessionStatus.ORDERED,
    OrderStatus.PREPARING: SessionStatus.ORDERED,
    OrderStatus.READY: SessionStatus.DINING,
    OrderStatus.SERVING: SessionStatus.DINING,
    OrderStatus.DELIVERED: SessionStatus.DINING,
    OrderStatus.COMPLETED: SessionStatus.DINING,
}


def session_status_for(status) -> Optional[SessionStatus]:
    return SESSION_STATUS_FOR_ORDER.get(OrderStatus(status))


class OrderGroup:
    """One order number: the main order plus the later rounds attached to it"""

    def __init__(self, order_number: str, orders: List[models.Order]):
        self.order_number = order_number
        self.orders = orders
        self.main = next((o for o in orders if o.parent_order_id is None), orders[0])
        live = [o for o in orders if o.status != OrderStatus.CANCELLED.value]
        self.items: List[models.OrderItem] = [item for o in live for item in o.items]
        self.total_amount: Decimal = to_money(sum_money(o.total_amount for o in live))
        self.status = most_urgent_status(o.status for o in orders)

    @property
    def order_id(self) -> int:
        return self.main.id

    @property
    def order_ids(self) -> List[int]:
        return [o.id for o in self.orders]

    @property
    def submission_count(self) -> int:
        return len(self.orders)


class StatusUpdateResult:
    def __init__(self, order_id: int, ok: bool, status: Optional[str] = None,
                 error: Optional[LifecycleError] = None):
        self.order_id = order_id
        self.ok = ok
        self.status = status
        self.error = error

    def to_dict(self) -> Dict:
        return {
            "order_id": self.order_id,
            "ok": self.ok,
            "status": self.status,
            "error": self.error.kind if self.error else None,
            "detail": self.error.message if self.error else None,
        }


def group_orders(orders: Iterable[models.Order]) -> List[OrderGroup]:
    """Group orders sharing an order number, keeping first-seen order"""
    grouped: Dict[str, List[models.Order]] = {}
    for order in orders:
        grouped.setdefault(order.order_number, []).append(order)
    return [OrderGroup(number, members) for number, members in grouped.items()]


def order_total(order: models.Order) -> Decimal:
    return sum_money(line_total(i.unit_price, i.quantity) for i in order.items)


def generate_order_number(db: Session) -> str:
    # the count is read without a global lock, the suffix keeps numbers apart
    count = db.query(models.Order).filter(models.Order.parent_order_id.is_(None)).count()
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"ORD-{int(time.time() * 1000)}-{count + 1:03d}-{suffix}"


class OrderAggregator:
    def __init__(self, db: Session, cache: Optional[RedisClient] = None,
                 catalog: Optional[MenuCatalog] = None):
        self.db = db
        self.cache = cache or redis_client
        self.catalog = catalog or MenuCatalog(db)
        self.sessions = TableSessionManager(db, self.cache)

    def get_order(self, order_id: int) -> models.Order:
        order = self.db.query(models.Order).filter(models.Order.id == order_id).first()
        if not order:
            raise NotFoundError("order", order_id)
        return order

    # ---- submission ----

    def submit_order(self, session_id: int, table_id: int, items: List,
                     notes: Optional[str] = None, parent_order_id: Optional[int] = None,
                     actor: Optional[str] = None) -> models.Order:
        """
        Create a PENDING order from cart items.

        Each item is priced once, now: the given unit price (or the catalog
        price) plus its selection add-ons. ``parent_order_id`` attaches the
        order as a later round of an existing order.
        """
        if not items:
            raise ValidationError("Order must have at least one item", session_id=session_id)
        for index, item in enumerate(items):
            if item.quantity is None or item.quantity < 1:
                raise ValidationError("Item quantity must be at least 1", item=index)

        session = self.sessions.get(session_id)
        if session.table_id != table_id:
            raise ValidationError(
                f"Session {session_id} is not seated at table {table_id}",
                session_id=session_id, table_id=table_id,
            )

        with self.cache.session_lock(session_id):
            self.db.refresh(session)
            self.sessions.ensure_can_order(session)

            parent = self._resolve_parent(session_id, parent_order_id) if parent_order_id else None
            order = models.Order(
                order_number=parent.order_number if parent else generate_order_number(self.db),
                session_id=session_id,
                table_id=table_id,
                parent_order_id=parent.id if parent else None,
                status=OrderStatus.PENDING.value,
                notes=notes,
                waiter=actor,
            )
            for item in items:
                order.items.append(self._build_item(item))
            order.total_amount = to_money(order_total(order))

            self.db.add(order)
            self.db.flush()
            self.sessions.advance(session_id, SessionStatus.ORDERING)
            self.db.commit()

        self.db.refresh(order)
        self.cache.invalidate_department_views()
        logger.info(f"Order {order.order_number} (#{order.id}) submitted for session {session_id}, "
                    f"{len(order.items)} items, total {order.total_amount}")
        return order

    def _resolve_parent(self, session_id: int, parent_order_id: int) -> models.Order:
        parent = self.get_order(parent_order_id)
        # rounds attach to the root order, never to another round
        while parent.parent is not None:
            parent = parent.parent
        if parent.session_id != session_id:
            raise ValidationError("Parent order belongs to another session",
                                  order_id=parent_order_id, session_id=session_id)
        if parent.status == OrderStatus.CANCELLED.value:
            raise InvalidStateError("Cannot add a round to a cancelled order",
                                    order_id=parent.id, from_status=parent.status)
        return parent

    def _build_item(self, item) -> models.OrderItem:
        entry = self.catalog.lookup(item.menu_item_id)
        base_price = to_decimal(item.unit_price) if item.unit_price is not None else entry.price
        selections = list(item.selections or [])
        add_ons = sum_money(_field(s, "price_add", 0) for s in selections)
        return models.OrderItem(
            menu_item_id=entry.menu_item_id,
            menu_item_name=entry.name,
            department=entry.department,
            quantity=item.quantity,
            unit_price=to_money(base_price + add_ons),
            notes=item.notes or None,
            selections=json.dumps([_selection_dict(s) for s in selections], default=str) if selections else None,
        )

    # ---- item removal ----

    def remove_item(self, order_id: int, item_id: int, actor: Optional[str] = None) -> models.Order:
        """Remove one item and recompute the total; an emptied order is cancelled"""
        order = self.get_order(order_id)
        with self.cache.session_lock(order.session_id):
            self.db.refresh(order)
            self._ensure_session_open(order)
            if OrderStatus(order.status) not in DELETABLE_STATUSES:
                raise InvalidStateError(
                    f"Cannot remove items from a {order.status.lower()} order",
                    order_id=order_id, from_status=order.status,
                )
            if order.payment_id is not None:
                raise InvalidStateError("Order has already been paid", order_id=order_id,
                                        payment_id=order.payment_id)

            item = next((i for i in order.items if i.id == item_id), None)
            if item is None:
                raise NotFoundError("order item", item_id,
                                    f"Item {item_id} not found in order {order_id}")

            order.items.remove(item)
            order.total_amount = to_money(order_total(order))
            if not order.items:
                self._set_status(order, OrderStatus.CANCELLED, actor, reason="All items removed")
            self.db.commit()

        self.db.refresh(order)
        self.cache.invalidate_department_views()
        logger.info(f"Item {item_id} removed from order {order_id}, total now {order.total_amount}")
        return order

    # ---- status transitions ----

    def change_status(self, order_id: int, new_status, actor: Optional[str] = None,
                      reason: Optional[str] = None) -> models.Order:
        """
        Move one order along the state machine.

        Orders are owned independently, so this takes no session lock; the
        status write is a compare-and-set on the current status instead.
        """
        try:
            new_status = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(f"Invalid order status {new_status}", order_id=order_id)

        order = self.get_order(order_id)
        current = OrderStatus(order.status)
        if current == new_status:
            return order
        self._ensure_session_open(order)
        if is_terminal(current):
            raise InvalidStateError(
                f"Order {order_id} is {current.value} and can no longer change",
                order_id=order_id, from_status=current.value, to_status=new_status.value,
            )
        if not can_transition(current, new_status):
            raise InvalidStateError(
                f"Cannot move order {order_id} from {current.value} to {new_status.value}",
                order_id=order_id, from_status=current.value, to_status=new_status.value,
                allowed=[s.value for s in allowed_transitions(current)],
            )

        updated = self.db.query(models.Order).filter(
            models.Order.id == order_id,
            models.Order.status == current.value,
        ).update({models.Order.status: new_status.value}, synchronize_session=False)
        if not updated:
            self.db.rollback()
            raise ConflictError(f"Order {order_id} was changed by someone else",
                                order_id=order_id, from_status=current.value, to_status=new_status.value)

        self._set_status(order, new_status, actor, reason, previous=current)
        target = session_status_for(new_status)
        if target:
            self.sessions.advance(order.session_id, target)
        self.db.commit()

        self.db.refresh(order)
        self.cache.invalidate_department_views()
        logger.info(f"Order {order_id} {current.value} -> {new_status.value} by {actor or 'unknown'}")
        return order

    def update_statuses(self, order_ids: List[int], new_status, actor: Optional[str] = None,
                        reason: Optional[str] = None) -> List[StatusUpdateResult]:
        """Apply one transition to several orders, reporting each outcome"""
        results = []
        for order_id in order_ids:
            try:
                order = self.change_status(order_id, new_status, actor, reason)
                results.append(StatusUpdateResult(order_id, True, order.status))
            except LifecycleError as e:
                self.db.rollback()
                logger.warning(f"Status update of order {order_id} failed: {e.message}")
                current = self.db.query(models.Order.status).filter(models.Order.id == order_id).scalar()
                results.append(StatusUpdateResult(order_id, False, current, e))
        return results

    def _ensure_session_open(self, order: models.Order) -> None:
        """Orders of a checked-out session are archived"""
        session_status = order.session.status if order.session else None
        if session_status == SessionStatus.COMPLETED.value:
            raise InvalidStateError(
                f"Session {order.session_id} is checked out, order {order.id} can no longer change",
                order_id=order.id, session_id=order.session_id, from_status=order.status,
            )

    def _set_status(self, order: models.Order, new_status: OrderStatus, actor: Optional[str],
                    reason: Optional[str] = None, previous: Optional[OrderStatus] = None) -> None:
        previous = previous or OrderStatus(order.status)
        now = datetime.utcnow()
        order.status = new_status.value
        apply_timestamp(order, new_status, now)
        if new_status == OrderStatus.PREPARING:
            order.cook = actor
        elif new_status in (OrderStatus.SERVING, OrderStatus.DELIVERED) and not order.served_by:
            order.served_by = actor
        elif new_status == OrderStatus.CANCELLED and reason:
            order.cancellation_reason = reason
        order.events.append(models.OrderStatusEvent(
            from_status=previous.value, to_status=new_status.value, actor=actor,
        ))

    # ---- views ----

    def session_orders(self, session_id: int) -> List[models.Order]:
        self.sessions.get(session_id)
        return self.db.query(models.Order).filter(
            models.Order.session_id == session_id
        ).order_by(models.Order.id).all()

    def consolidate(self, session_id: int, unsettled_only: bool = False) -> List[OrderGroup]:
        """
        Top-level orders of a session, each carrying its rounds' items and
        summed total. Cancelled submissions add nothing to the total.
        ``unsettled_only`` leaves out orders already covered by a payment.
        """
        orders = self.session_orders(session_id)
        if unsettled_only:
            orders = [o for o in orders if o.payment_id is None]
        return group_orders(orders)

    def running_total(self, session_id: int, unsettled_only: bool = False) -> Decimal:
        return to_money(sum_money(g.total_amount for g in self.consolidate(session_id, unsettled_only)))

    def order_groups(self, status: Optional[str] = None) -> List[OrderGroup]:
        """All orders grouped by order number, newest first"""
        wanted = None
        if status:
            try:
                wanted = OrderStatus(status)
            except ValueError:
                raise ValidationError(f"Invalid order status {status}", status=status)
        orders = self.db.query(models.Order).order_by(models.Order.id.desc()).all()
        groups = group_orders(orders)
        if wanted:
            groups = [g for g in groups if g.status == wanted]
        return groups

    def pending_for_department(self, department: str) -> List[models.Order]:
        """Orders still to be worked on that hold at least one item for ``department``"""
        query = self.db.query(models.Order).join(models.OrderItem).filter(
            models.Order.status.in_([s.value for s in DEPARTMENT_PENDING_STATUSES]),
        )
        if department == UNASSIGNED_DEPARTMENT:
            query = query.filter(models.OrderItem.department.is_(None))
        else:
            query = query.filter(models.OrderItem.department == department)
        return query.distinct().order_by(models.Order.ordered_at, models.Order.id).all()

    def department_load(self) -> Dict[str, int]:
        """Pending item quantities per department"""
        load: Dict[str, int] = {}
        orders = self.db.query(models.Order).filter(
            models.Order.status.in_([s.value for s in DEPARTMENT_PENDING_STATUSES])
        ).all()
        for order in orders:
            for item in order.items:
                name = item.department or UNASSIGNED_DEPARTMENT
                load[name] = load.get(name, 0) + item.quantity
        return load


def _field(obj, name, default=None):
    if isinstance(obj, dict):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _selection_dict(selection) -> Dict:
    return {
        "selection": _field(selection, "selection"),
        "option": _field(selection, "option"),
        "price_add": str(to_decimal(_field(selection, "price_add", 0))),
    }
