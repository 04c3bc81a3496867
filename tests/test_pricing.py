"""Unit tests for the pricing calculator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pos_ledger import pricing


UNIT = Decimal("1.00")
BOX = Decimal("5.00")


def test_line_total_without_box_tier_is_quantity_times_price():
    """Plain unit pricing applies when no box tier is configured."""

    assert pricing.line_total(3, Decimal("2.50")) == Decimal("7.50")


def test_line_total_exactly_one_box():
    """A quantity equal to the box size is charged the box price."""

    assert pricing.line_total(6, UNIT, 6, BOX) == BOX


def test_line_total_one_box_plus_one_unit():
    """One unit past a full box adds a single unit price."""

    assert pricing.line_total(7, UNIT, 6, BOX) == BOX + UNIT


def test_line_total_one_short_of_a_box():
    """One unit short of a box is charged entirely at the unit price."""

    assert pricing.line_total(5, UNIT, 6, BOX) == 5 * UNIT


def test_line_total_several_boxes_and_remainder():
    assert pricing.line_total(20, UNIT, 6, BOX) == 3 * BOX + 2 * UNIT


@pytest.mark.parametrize(
    ("quantity_per_box", "box_price"),
    [(None, BOX), (6, None), (0, BOX), (6, Decimal("0")), (-6, BOX), (6, Decimal("-1"))],
)
def test_line_total_ignores_unusable_box_tier(quantity_per_box, box_price):
    """Missing, zero or negative box settings fall back to unit pricing."""

    assert pricing.line_total(12, UNIT, quantity_per_box, box_price) == 12 * UNIT


def test_line_total_is_not_rounded():
    assert pricing.line_total(3, Decimal("0.333")) == Decimal("0.999")


def test_round2_rounds_half_up():
    assert pricing.round2(Decimal("2.005")) == Decimal("2.01")
    assert pricing.round2(Decimal("2.004")) == Decimal("2.00")


def test_to_money_coerces_inputs():
    """None becomes zero and floats keep their decimal text."""

    assert pricing.to_money(None) == Decimal("0")
    assert pricing.to_money(0.1) == Decimal("0.1")
    assert pricing.to_money("3.20") == Decimal("3.20")
    assert pricing.to_money(4) == Decimal("4")
