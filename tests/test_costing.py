"""Unit tests for the inventory costing engine."""

from __future__ import annotations

from decimal import Decimal

import pytest

from pos_ledger import costing
from pos_ledger.constants import CostingPolicy
from pos_ledger.data_manager import ProductRow


def _product(product_id: str = "P1", *, stock: int = 10, cost: str = "2.00", **extra) -> ProductRow:
    return ProductRow(
        product_id=product_id,
        name=f"Product {product_id}",
        category="General",
        unit_price=Decimal("9.99"),
        purchase_price=Decimal(cost),
        stock=stock,
        **extra,
    )


def _line(product_id: str = "P1", quantity: int = 10, cost: str = "4.00", **extra) -> costing.IncomingLine:
    return costing.IncomingLine(product_id=product_id, quantity=quantity, unit_cost=Decimal(cost), **extra)


def test_weighted_average_blends_costs():
    """Ten units at 2.00 plus ten at 4.00 average to 3.00."""

    [result] = costing.revalue([_product()], [_line()], CostingPolicy.WEIGHTED_AVERAGE)

    assert result.purchase_price == Decimal("3.00")
    assert result.stock == 20


def test_master_override_takes_incoming_cost():
    [result] = costing.revalue([_product()], [_line()], CostingPolicy.MASTER_OVERRIDE)

    assert result.purchase_price == Decimal("4.00")
    assert result.stock == 20


def test_none_policy_only_changes_stock():
    [result] = costing.revalue([_product()], [_line()], CostingPolicy.NONE)

    assert result.purchase_price == Decimal("2.00")
    assert result.stock == 20


def test_negative_stock_is_excluded_from_weighting():
    """Stock of -5 carries no value, so the incoming cost wins outright."""

    [result] = costing.revalue([_product(stock=-5)], [_line()], CostingPolicy.WEIGHTED_AVERAGE)

    assert result.purchase_price == Decimal("4.00")
    assert result.stock == 5


def test_weighted_average_rounds_to_cents():
    assert costing.weighted_average_cost(1, Decimal("1.00"), 2, Decimal("2.00")) == Decimal("1.67")


def test_master_override_replaces_box_tier_when_provided():
    product = _product(quantity_per_box=6, box_price=Decimal("10.00"))
    line = _line(quantity_per_box=12, box_price=Decimal("18.00"))

    [result] = costing.revalue([product], [line], CostingPolicy.MASTER_OVERRIDE)

    assert result.quantity_per_box == 12
    assert result.box_price == Decimal("18.00")


def test_weighted_average_keeps_box_tier():
    product = _product(quantity_per_box=6, box_price=Decimal("10.00"))
    line = _line(quantity_per_box=12, box_price=Decimal("18.00"))

    [result] = costing.revalue([product], [line], CostingPolicy.WEIGHTED_AVERAGE)

    assert result.quantity_per_box == 6
    assert result.box_price == Decimal("10.00")


def test_repeated_lines_compound_in_order():
    """A second line for the same product starts from the first line's result."""

    lines = [_line(quantity=10, cost="4.00"), _line(quantity=20, cost="6.00")]

    [result] = costing.revalue([_product()], lines, CostingPolicy.WEIGHTED_AVERAGE)

    # 10 @ 2.00 + 10 @ 4.00 -> 20 @ 3.00; then + 20 @ 6.00 -> 40 @ 4.50
    assert result.stock == 40
    assert result.purchase_price == Decimal("4.50")


def test_revalue_does_not_mutate_snapshot_and_keeps_order():
    products = [_product("P1"), _product("P2", stock=3)]
    snapshot = list(products)

    result = costing.revalue(products, [_line("P2")], CostingPolicy.WEIGHTED_AVERAGE)

    assert products == snapshot
    assert result is not products
    assert [product.product_id for product in result] == ["P1", "P2"]
    assert result[0] is products[0]
    assert result[1].stock == 13


def test_revalue_skips_unknown_products():
    result = costing.revalue([_product()], [_line("GHOST")], CostingPolicy.WEIGHTED_AVERAGE)

    assert result == [_product()]


def test_revalue_accepts_policy_value_string():
    [result] = costing.revalue([_product()], [_line()], "masterOverride")

    assert result.purchase_price == Decimal("4.00")


@pytest.mark.parametrize("line", [_line(quantity=0), _line(quantity=-1), _line(cost="-0.01")])
def test_revalue_rejects_invalid_lines(line):
    with pytest.raises(ValueError):
        costing.revalue([_product()], [line], CostingPolicy.WEIGHTED_AVERAGE)
