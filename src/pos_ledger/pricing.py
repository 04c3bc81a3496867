"""Line-item pricing with optional box tiers.

Amounts are :class:`~decimal.Decimal` throughout. Intermediate values are
kept exact; only the figures that get stored or displayed pass through
:func:`round2`.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

CENT = Decimal("0.01")
ZERO = Decimal("0")

MoneyLike = Union[Decimal, int, str, float]


def to_money(value: Optional[MoneyLike]) -> Decimal:
    """Coerce user or worksheet input into a ``Decimal``.

    ``None`` becomes zero. Floats go through ``str`` so ``0.1`` stays ``0.1``.
    """

    if value is None:
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round2(amount: Decimal) -> Decimal:
    """Round a currency amount to cents, half away from zero."""

    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def has_box_tier(quantity_per_box: Optional[int], box_price: Optional[Decimal]) -> bool:
    """Return ``True`` when a usable box tier is configured."""

    if quantity_per_box is None or box_price is None:
        return False
    return quantity_per_box > 0 and box_price > ZERO


def line_total(
    quantity: int,
    unit_price: Decimal,
    quantity_per_box: Optional[int] = None,
    box_price: Optional[Decimal] = None,
) -> Decimal:
    """Compute the monetary total of a line item.

    Full boxes are charged at ``box_price`` and the remainder at
    ``unit_price``. A missing, zero or negative box configuration silently
    falls back to plain unit pricing. The result is not rounded.

    Args:
        quantity (int): Units sold on the line.
        unit_price (Decimal): Price of a single unit.
        quantity_per_box (int | None): Units in one box.
        box_price (Decimal | None): Price of one full box.

    Returns:
        Decimal: Exact line total.
    """

    if has_box_tier(quantity_per_box, box_price):
        boxes, remainder = divmod(quantity, quantity_per_box)
        return boxes * box_price + remainder * unit_price
    return quantity * unit_price


__all__ = ["CENT", "ZERO", "to_money", "round2", "has_box_tier", "line_total"]
