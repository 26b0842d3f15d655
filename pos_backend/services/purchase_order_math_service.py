from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Iterable, Protocol

from pos_backend.errors import ValidationError

MONEY_QUANT = Decimal('0.01')
ZERO = Decimal('0.00')


class LineAmountsLike(Protocol):
    quantity_ordered: int
    unit_cost: Decimal
    tax_amount: Decimal


@dataclass(frozen=True)
class LineAmounts:
    quantity_ordered: int
    unit_cost: Decimal
    tax_amount: Decimal = ZERO


@dataclass(frozen=True)
class OrderCharges:
    shipping_cost: Decimal = ZERO
    other_charges: Decimal = ZERO
    discount_amount: Decimal = ZERO


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    shipping_cost: Decimal
    other_charges: Decimal
    discount_amount: Decimal
    total: Decimal


def money(value) -> Decimal:
    if value is None:
        return ZERO
    try:
        return Decimal(str(value)).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)
    except InvalidOperation as exc:
        raise ValidationError(f'Invalid amount {value!r}') from exc


def line_total(quantity_ordered: int, unit_cost, tax_amount=None) -> Decimal:
    return money(Decimal(int(quantity_ordered)) * money(unit_cost) + money(tax_amount))


def validate_line_amounts(line: LineAmountsLike, *, label: str = 'Line') -> None:
    if line.quantity_ordered is None or int(line.quantity_ordered) <= 0:
        raise ValidationError(f'{label}: quantity ordered must be greater than zero')
    if line.unit_cost is None or money(line.unit_cost) < 0:
        raise ValidationError(f'{label}: unit cost cannot be negative')
    if money(line.tax_amount) < 0:
        raise ValidationError(f'{label}: tax amount cannot be negative')


def validate_charges(charges: OrderCharges) -> None:
    for field in ('shipping_cost', 'other_charges', 'discount_amount'):
        if money(getattr(charges, field)) < 0:
            raise ValidationError(f'{field.replace("_", " ").capitalize()} cannot be negative')


def recalculate_totals(lines: Iterable[LineAmountsLike], charges: OrderCharges | None = None) -> OrderTotals:
    """Subtotal is the pre-tax line sum and tax the sum of line taxes.

    ``subtotal + tax`` therefore always equals the sum of the line totals.
    """
    charges = charges or OrderCharges()
    subtotal = ZERO
    tax = ZERO
    for line in lines:
        subtotal += money(Decimal(int(line.quantity_ordered)) * money(line.unit_cost))
        tax += money(line.tax_amount)

    shipping = money(charges.shipping_cost)
    other = money(charges.other_charges)
    discount = money(charges.discount_amount)
    return OrderTotals(
        subtotal=money(subtotal),
        tax=money(tax),
        shipping_cost=shipping,
        other_charges=other,
        discount_amount=discount,
        total=money(subtotal + tax + shipping + other - discount),
    )
