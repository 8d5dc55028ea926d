"""
Bill splitter: total + strategy -> list of shares.

The functions here are pure; ``payments.PaymentService`` persists their
result as a BillSplit. Share amounts are fixed once created, only the paid
amount moves afterwards.
"""
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from billing import CENT, ZERO, Number, to_decimal, to_money
from errors import ValidationError


class SplitStrategy(str, Enum):
    EQUAL = "EQUAL"
    BY_PERSON = "BY_PERSON"
    BY_ITEM = "BY_ITEM"


class ShareStatus(str, Enum):
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"
    PAID = "PAID"


class Share:
    def __init__(self, label: str, amount: Number, paid_amount: Number = ZERO,
                 status: str = ShareStatus.UNPAID.value, item_ids: Optional[List[int]] = None):
        self.label = label
        self.amount = to_decimal(amount)
        self.paid_amount = to_decimal(paid_amount)
        self.status = status
        self.item_ids = item_ids or []

    @property
    def remaining(self) -> Decimal:
        return max(ZERO, self.amount - self.paid_amount)

    def __repr__(self):
        return f"Share({self.label!r}, {self.amount}, paid={self.paid_amount}, {self.status})"


class SplitItem:
    """An order item as seen by the BY_ITEM strategy"""

    def __init__(self, item_id: int, unit_price: Number, quantity: int):
        self.item_id = item_id
        self.unit_price = to_decimal(unit_price)
        self.quantity = quantity

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


def default_labels(count: int) -> List[str]:
    return [f"Person {i + 1}" for i in range(count)]


def _labels_for(count: int, labels: Optional[Sequence[str]]) -> List[str]:
    if not labels:
        return default_labels(count)
    if len(labels) != count:
        raise ValidationError("Number of labels does not match number of payers",
                              labels=len(labels), payers=count)
    return [label or f"Person {i + 1}" for i, label in enumerate(labels)]


def split_equal(total: Number, number_of_people: int,
                labels: Optional[Sequence[str]] = None) -> List[Share]:
    """
    Divide ``total`` into ``number_of_people`` shares of whole cents.

    The remainder cents go to the first share so the shares always add up
    to the total exactly.
    """
    if number_of_people is None or number_of_people < 2:
        raise ValidationError("An equal split needs at least 2 people",
                              number_of_people=number_of_people)
    total = to_money(total)
    if total < 0:
        raise ValidationError("Cannot split a negative total")

    base = (total / number_of_people).quantize(CENT, rounding=ROUND_DOWN)
    remainder = total - base * number_of_people

    shares = [Share(label, base) for label in _labels_for(number_of_people, labels)]
    shares[0].amount += remainder
    return shares


def split_by_person(total: Number, people: Iterable[Tuple[str, Number]]) -> Tuple[List[Share], Decimal]:
    """
    Explicit (label, amount) shares chosen by staff.

    The amounts are not forced to add up to the total (tips, discretion);
    the difference ``total - sum(amounts)`` is returned as the variance.
    """
    shares = []
    for index, (label, amount) in enumerate(people):
        amount = to_money(amount)
        if amount < 0:
            raise ValidationError("Share amount cannot be negative", share=index)
        shares.append(Share(label or f"Person {index + 1}", amount))
    if not shares:
        raise ValidationError("A by-person split needs at least one person")

    variance = to_money(total) - sum((s.amount for s in shares), ZERO)
    return shares, variance


def split_by_item(items: Iterable[SplitItem], assignments: Dict[int, int],
                  number_of_payers: Optional[int] = None,
                  labels: Optional[Sequence[str]] = None) -> List[Share]:
    """
    Each payer owes the sum of price * quantity of the items assigned to them.

    Unassigned items go to payer 0. Payers without items still get a zero
    share so staff can assign items to them afterwards.
    """
    items = list(items)
    known_ids = {item.item_id for item in items}
    unknown = sorted(set(assignments) - known_ids)
    if unknown:
        raise ValidationError("Assignment refers to unknown order items", item_ids=unknown)

    highest = max(assignments.values(), default=0)
    if number_of_payers is None:
        number_of_payers = max(2, highest + 1)
    if number_of_payers < 1:
        raise ValidationError("A by-item split needs at least one payer")
    if highest >= number_of_payers or min(assignments.values(), default=0) < 0:
        raise ValidationError("Payer index out of range",
                              number_of_payers=number_of_payers)

    shares = [Share(label, ZERO) for label in _labels_for(number_of_payers, labels)]
    for item in items:
        share = shares[assignments.get(item.item_id, 0)]
        share.amount += item.total
        share.item_ids.append(item.item_id)

    for share in shares:
        share.amount = to_money(share.amount)
    return shares


def share_status(amount: Decimal, paid_amount: Decimal) -> ShareStatus:
    if paid_amount <= 0:
        return ShareStatus.UNPAID
    if paid_amount < amount:
        return ShareStatus.PARTIAL
    return ShareStatus.PAID


def apply_share_payment(share, amount: Number):
    """
    Add ``amount`` to the share's paid amount and refresh its status.

    Works on any object with ``amount``, ``paid_amount`` and ``status``
    attributes (pure ``Share`` or the persisted ``BillShare``).
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValidationError("Payment amount must be greater than 0")
    share.paid_amount = to_money(to_decimal(share.paid_amount) + amount)
    share.status = share_status(to_decimal(share.amount), share.paid_amount).value
    return share
