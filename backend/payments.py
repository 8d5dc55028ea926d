"""
Payment processing and bill splits for a session.

Both work on the session's unsettled order groups: orders linked to a
payment are left out of any later bill of the same session.
"""
import json
import logging
import random
import string
import time
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.orm import Session

import models
from bill_splitter import (
    Share,
    SplitItem,
    SplitStrategy,
    apply_share_payment,
    split_by_item,
    split_by_person,
    split_equal,
)
from billing import (
    ZERO,
    Discount,
    ExtraCharge,
    Number,
    calculate_bill,
    calculate_change,
    line_total,
    sum_money,
    to_money,
    validate_collectable,
)
from errors import InvalidStateError, NotFoundError, ValidationError
from order_aggregator import OrderAggregator
from redis_client import RedisClient, redis_client
from table_sessions import ACTIVE_STATUSES, SessionStatus, TableSessionManager

logger = logging.getLogger(__name__)

CASH = "CASH"


def generate_payment_number() -> str:
    suffix = "".join(random.choices(string.ascii_uppercase + string.digits, k=4))
    return f"PAY-{int(time.time() * 1000)}-{suffix}"


class PaymentService:
    def __init__(self, db: Session, cache: Optional[RedisClient] = None):
        self.db = db
        self.cache = cache or redis_client
        self.sessions = TableSessionManager(db, self.cache)
        self.orders = OrderAggregator(db, self.cache)

    # ---- reads ----

    def get_payment(self, payment_id: int) -> models.Payment:
        payment = self.db.query(models.Payment).filter(models.Payment.id == payment_id).first()
        if not payment:
            raise NotFoundError("payment", payment_id)
        return payment

    def get_split(self, split_id: int) -> models.BillSplit:
        split = self.db.query(models.BillSplit).filter(models.BillSplit.id == split_id).first()
        if not split:
            raise NotFoundError("bill split", split_id)
        return split

    def session_payments(self, session_id: int) -> List[models.Payment]:
        return self.sessions.get(session_id).payments

    # ---- payment ----

    def process_payment(self, session_id: int, payment_method: str,
                        extra_charges: Iterable[ExtraCharge] = (),
                        discount: Optional[Discount] = None,
                        received_amount: Optional[Number] = None,
                        notes: Optional[str] = None,
                        actor: Optional[str] = None) -> models.Payment:
        """
        Bill every unsettled order of the session in one payment.

        Cash payments need ``received_amount`` >= final amount and get the
        change computed; other methods ignore the received amount.
        """
        session = self.sessions.get(session_id)
        extra_charges = list(extra_charges)
        cash = str(payment_method).upper() == CASH

        with self.cache.session_lock(session_id):
            self.db.refresh(session)
            self._ensure_billable(session)

            groups = self.orders.consolidate(session_id, unsettled_only=True)
            subtotal = sum_money(g.total_amount for g in groups)
            breakdown = calculate_bill(subtotal, extra_charges, discount)
            validate_collectable(breakdown.final_amount, cash, received_amount)

            rounded = breakdown.rounded()
            change = to_money(calculate_change(received_amount, rounded.final_amount)) if cash else ZERO

            payment = models.Payment(
                payment_number=generate_payment_number(),
                session_id=session_id,
                payment_method=str(payment_method).upper(),
                subtotal_amount=rounded.subtotal,
                extra_charges_amount=rounded.extra_total,
                discount_amount=rounded.discount_total,
                final_amount=rounded.final_amount,
                received_amount=to_money(received_amount) if cash else None,
                change_amount=change,
                extra_charges=[c.to_dict() for c in extra_charges] or None,
                notes=notes,
                processed_by=actor,
                customer_name=session.customer_name,
                party_size=session.party_size,
                table_number=session.table.number if session.table else None,
                check_in_time=session.check_in_time,
            )
            for group in groups:
                for item in group.items:
                    payment.items.append(models.PaymentItem(
                        order_item_id=item.id,
                        menu_item_name=item.menu_item_name,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        total_price=to_money(line_total(item.unit_price, item.quantity)),
                        notes=item.notes,
                        selections=item.selections,
                    ))

            self.db.add(payment)
            self.db.flush()
            for group in groups:
                for order in group.orders:
                    order.payment_id = payment.id
            self.sessions.advance(session_id, SessionStatus.BILLING)
            self.db.commit()

        self.db.refresh(payment)
        logger.info(f"Payment {payment.payment_number} for session {session_id}: "
                    f"{payment.payment_method} {payment.final_amount} "
                    f"(subtotal {payment.subtotal_amount}, change {payment.change_amount})")
        return payment

    # ---- splits ----

    def create_split(self, session_id: int, strategy, number_of_people: Optional[int] = None,
                     people: Optional[Sequence[Tuple[Optional[str], Number]]] = None,
                     assignments: Optional[Dict[int, int]] = None,
                     number_of_payers: Optional[int] = None,
                     labels: Optional[Sequence[str]] = None,
                     payment_id: Optional[int] = None,
                     actor: Optional[str] = None) -> models.BillSplit:
        """
        Split the session's bill among several payers.

        Without ``payment_id`` the unsettled order total is split; with it,
        the final amount of that payment (charges and discount included).
        """
        try:
            strategy = SplitStrategy(strategy)
        except ValueError:
            raise ValidationError(f"Unknown split strategy {strategy}", session_id=session_id)

        session = self.sessions.get(session_id)
        with self.cache.session_lock(session_id):
            self.db.refresh(session)
            self._ensure_billable(session)

            total, items = self._split_basis(session_id, payment_id)
            if total <= 0:
                raise ValidationError("Nothing to split: total must be greater than 0",
                                      session_id=session_id, total=str(total))

            if strategy == SplitStrategy.EQUAL:
                shares = split_equal(total, number_of_people, labels)
            elif strategy == SplitStrategy.BY_PERSON:
                shares, _ = split_by_person(total, people or [])
            else:
                shares = split_by_item(items, assignments or {}, number_of_payers, labels)
            variance = to_money(total) - sum_money(s.amount for s in shares)
            if variance:
                logger.warning(f"Split of session {session_id} ({strategy.value}) "
                               f"differs from the total by {variance}")

            split = models.BillSplit(
                session_id=session_id,
                payment_id=payment_id,
                strategy=strategy.value,
                total_amount=to_money(total),
                variance=variance,
                created_by=actor,
            )
            for position, share in enumerate(shares):
                split.shares.append(_persist_share(position, share))

            self.db.add(split)
            self.sessions.advance(session_id, SessionStatus.BILLING)
            self.db.commit()

        self.db.refresh(split)
        logger.info(f"Split {split.id} for session {session_id}: {strategy.value} "
                    f"{split.total_amount} over {len(split.shares)} shares")
        return split

    def record_share_payment(self, split_id: int, share_index: int, amount: Number) -> models.BillShare:
        """Add a (partial) payment to one share. Paying more than owed is accepted."""
        split = self.get_split(split_id)
        with self.cache.session_lock(split.session_id):
            self.db.refresh(split)
            share = next((s for s in split.shares if s.position == share_index), None)
            if share is None:
                raise NotFoundError("bill share", share_index,
                                    f"Share {share_index} not found in split {split_id}")
            apply_share_payment(share, amount)
            self.db.commit()

        self.db.refresh(share)
        logger.info(f"Split {split_id} share {share_index} ({share.label}): "
                    f"paid {share.paid_amount} of {share.amount}, {share.status}")
        return share

    def _split_basis(self, session_id: int, payment_id: Optional[int]) -> Tuple[Decimal, List[SplitItem]]:
        if payment_id is not None:
            payment = self.get_payment(payment_id)
            if payment.session_id != session_id:
                raise ValidationError("Payment belongs to another session",
                                      payment_id=payment_id, session_id=session_id)
            items = [SplitItem(i.order_item_id, i.unit_price, i.quantity) for i in payment.items]
            return Decimal(str(payment.final_amount)), items

        groups = self.orders.consolidate(session_id, unsettled_only=True)
        items = [SplitItem(i.id, i.unit_price, i.quantity) for g in groups for i in g.items]
        return sum_money(g.total_amount for g in groups), items

    def _ensure_billable(self, session: models.CustomerSession) -> None:
        if session.status not in [s.value for s in ACTIVE_STATUSES]:
            raise InvalidStateError(
                f"Session {session.id} is {session.status} and cannot be billed",
                session_id=session.id, from_status=session.status,
            )


def _persist_share(position: int, share: Share) -> models.BillShare:
    return models.BillShare(
        position=position,
        label=share.label,
        amount=to_money(share.amount),
        paid_amount=to_money(share.paid_amount),
        status=share.status,
        item_ids=share.item_ids or None,
    )


def share_item_ids(share: models.BillShare) -> List[int]:
    ids = share.item_ids or []
    if isinstance(ids, str):
        ids = json.loads(ids)
    return [int(i) for i in ids]
