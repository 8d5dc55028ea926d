"""
Billing calculator: subtotal, extra charges and discount -> final amount and change.

All arithmetic is done on Decimal values and is left unrounded while
accumulating; ``to_money`` rounds to cents when a value is persisted or shown.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple, Optional, Union

from errors import ValidationError

CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")

Number = Union[Decimal, int, float, str]


def to_decimal(value: Number) -> Decimal:
    if isinstance(value, Decimal):
        return value
    # str() keeps 0.1 as "0.1" instead of its binary float expansion
    return Decimal(str(value))


def to_money(value: Number) -> Decimal:
    """Round to two decimals, half up"""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class ExtraCharge:
    """Additive fee (service charge, delivery) applied before the discount"""

    def __init__(self, description: str, amount: Number, is_percentage: bool = False):
        if not description or not description.strip():
            raise ValidationError("Extra charge description is required")
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("Extra charge amount must be greater than 0",
                                  charge=description)
        self.description = description.strip()
        self.amount = amount
        self.is_percentage = is_percentage

    def value_for(self, subtotal: Decimal) -> Decimal:
        if self.is_percentage:
            return subtotal * self.amount / HUNDRED
        return self.amount

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "amount": str(self.amount),
            "is_percentage": self.is_percentage,
        }


class Discount:
    """
    At most one active discount, either a percentage or a fixed amount.

    Setting one kind clears the other.
    """

    def __init__(self, percent: Optional[Number] = None, fixed_amount: Optional[Number] = None):
        if percent is not None and fixed_amount is not None:
            raise ValidationError("Discount is either a percentage or a fixed amount, not both")
        self.percent: Optional[Decimal] = None
        self.fixed_amount: Optional[Decimal] = None
        if percent is not None:
            self.set_percent(percent)
        elif fixed_amount is not None:
            self.set_fixed_amount(fixed_amount)

    @classmethod
    def percentage(cls, percent: Number) -> "Discount":
        return cls(percent=percent)

    @classmethod
    def fixed(cls, amount: Number) -> "Discount":
        return cls(fixed_amount=amount)

    def set_percent(self, percent: Number) -> None:
        percent = to_decimal(percent)
        if percent <= 0 or percent > HUNDRED:
            raise ValidationError("Discount percentage must be between 0 and 100")
        self.percent = percent
        self.fixed_amount = None

    def set_fixed_amount(self, amount: Number) -> None:
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("Discount amount must be greater than 0")
        self.fixed_amount = amount
        self.percent = None

    @property
    def is_percentage(self) -> bool:
        return self.percent is not None

    def value_for(self, subtotal: Decimal) -> Decimal:
        if self.percent is not None:
            return subtotal * self.percent / HUNDRED
        if self.fixed_amount is not None:
            return self.fixed_amount
        return ZERO


class BillBreakdown(NamedTuple):
    subtotal: Decimal
    extra_total: Decimal
    discount_total: Decimal
    final_amount: Decimal

    def rounded(self) -> "BillBreakdown":
        return BillBreakdown(*(to_money(v) for v in self))


def calculate_bill(subtotal: Number,
                   extra_charges: Iterable[ExtraCharge] = (),
                   discount: Optional[Discount] = None) -> BillBreakdown:
    """
    extra_total = sum of charges (percentages taken of the subtotal)
    discount_total = percentage of the subtotal or the fixed amount
    final_amount = max(0, subtotal + extra_total - discount_total)
    """
    subtotal = to_decimal(subtotal)
    if subtotal < 0:
        raise ValidationError("Subtotal cannot be negative")

    extra_total = sum((charge.value_for(subtotal) for charge in extra_charges), ZERO)
    discount_total = discount.value_for(subtotal) if discount else ZERO
    final_amount = max(ZERO, subtotal + extra_total - discount_total)
    return BillBreakdown(subtotal, extra_total, discount_total, final_amount)


def calculate_change(received_amount: Number, final_amount: Number) -> Decimal:
    return max(ZERO, to_decimal(received_amount) - to_decimal(final_amount))


def validate_collectable(final_amount: Decimal, cash: bool,
                         received_amount: Optional[Number] = None) -> None:
    """Raise ValidationError when a payment for ``final_amount`` cannot be processed"""
    final_amount = to_money(final_amount)
    if final_amount <= 0:
        raise ValidationError("Nothing to collect: final amount must be greater than 0",
                              final_amount=str(final_amount))
    if not cash:
        return
    if received_amount is None:
        raise ValidationError("Received amount is required for cash payments")
    if to_decimal(received_amount) < final_amount:
        raise ValidationError("Received amount is less than the amount due",
                              received_amount=str(received_amount),
                              final_amount=str(final_amount))


def sum_money(values: Iterable[Number]) -> Decimal:
    return sum((to_decimal(v) for v in values), ZERO)


def line_total(unit_price: Number, quantity: int) -> Decimal:
    return to_decimal(unit_price) * quantity
