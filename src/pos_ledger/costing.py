"""Inventory costing for incoming supplier stock.

:func:`revalue` derives new stock levels and cost bases from a snapshot of
products and the lines of one supplier invoice. The snapshot is never
mutated; a fresh list of :class:`~pos_ledger.data_manager.ProductRow` values
is returned instead.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from . import log
from .constants import CostingPolicy
from .data_manager import ProductRow
from .pricing import ZERO, round2


@dataclass(frozen=True)
class IncomingLine:
    """Quantity of a product received at a given unit cost."""

    product_id: str
    quantity: int
    unit_cost: Decimal
    quantity_per_box: Optional[int] = None
    box_price: Optional[Decimal] = None


def weighted_average_cost(stock: int, cost: Decimal, quantity: int, unit_cost: Decimal) -> Decimal:
    """Blend the current cost basis with an incoming batch.

    Negative stock carries no value, so it is clamped to zero before
    weighting. When nothing positive remains to weight, the incoming cost wins.
    """

    valued_stock = max(stock, 0)
    total_units = valued_stock + quantity
    if total_units <= 0:
        return unit_cost
    return round2((valued_stock * cost + quantity * unit_cost) / total_units)


def revalue_product(product: ProductRow, line: IncomingLine, policy: CostingPolicy) -> ProductRow:
    """Apply one incoming line to one product under ``policy``."""

    new_stock = product.stock + line.quantity
    if policy is CostingPolicy.MASTER_OVERRIDE:
        changes = {"stock": new_stock, "purchase_price": line.unit_cost}
        if line.box_price is not None:
            changes["box_price"] = line.box_price
        if line.quantity_per_box is not None:
            changes["quantity_per_box"] = line.quantity_per_box
        return replace(product, **changes)
    if policy is CostingPolicy.WEIGHTED_AVERAGE:
        new_cost = weighted_average_cost(product.stock, product.purchase_price, line.quantity, line.unit_cost)
        return replace(product, stock=new_stock, purchase_price=new_cost)
    return replace(product, stock=new_stock)


def revalue(
    products: Sequence[ProductRow],
    lines: Sequence[IncomingLine],
    policy: CostingPolicy,
) -> List[ProductRow]:
    """Compute updated stock and cost basis for every product on an invoice.

    Lines are applied in input order. When several lines reference the same
    product, each one starts from the result of the previous line. Products
    not referenced by any line are returned unchanged, in their original
    position.

    Args:
        products (Sequence[ProductRow]): Pre-transaction product snapshot.
        lines (Sequence[IncomingLine]): Invoice lines being received.
        policy (CostingPolicy): Rule used to revalue the cost basis.

    Returns:
        list[ProductRow]: A new product list reflecting the invoice.

    Raises:
        ValueError: If a line carries a non-positive quantity or a negative
            unit cost, which could otherwise drive a cost basis below zero.
    """

    policy = CostingPolicy(policy)
    current: Dict[str, ProductRow] = {product.product_id: product for product in products}

    for line in lines:
        if line.quantity <= 0:
            raise ValueError(f"Incoming quantity must be positive for '{line.product_id}'")
        if line.unit_cost < ZERO:
            raise ValueError(f"Incoming unit cost must not be negative for '{line.product_id}'")
        product = current.get(line.product_id)
        if product is None:
            log.debug("Skipping costing for unknown product '%s'", line.product_id)
            continue
        current[line.product_id] = revalue_product(product, line, policy)

    log.debug("Revalued %d invoice lines under policy '%s'", len(lines), policy.value)
    return [current[product.product_id] for product in products]


__all__ = ["IncomingLine", "weighted_average_cost", "revalue_product", "revalue"]
