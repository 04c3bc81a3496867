"""Ledger transaction applier.

Each ``apply_*`` function validates a proposed sale, payment or supplier
invoice against entity snapshots and, only when every precondition holds,
plans the complete set of mutations into a
:class:`~pos_ledger.data_manager.UnitOfWork`. Nothing is written here: the
caller commits the unit of work in one step, so a rejected operation leaves
no trace and an accepted one lands as a whole.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Dict, Mapping, Optional, Sequence

from . import log
from .constants import CostingPolicy, EntryKind, SheetName
from .costing import IncomingLine, revalue
from .data_manager import (
    CustomerRow,
    InvoiceLineRow,
    ProductRow,
    SaleLineRow,
    SaleRecordRow,
    SupplierInvoiceRow,
    SupplierRow,
    UnitOfWork,
    format_money,
    serialize_invoice_line,
    serialize_sale,
    serialize_sale_line,
    serialize_supplier_invoice,
)
from .pricing import ZERO, has_box_tier, line_total, round2


class LedgerError(Exception):
    """Base class for business-rule failures raised by the ledger engine."""


class InsufficientStock(LedgerError):
    """Raised when a sale would drive a product's stock below zero."""

    def __init__(self, product_id: str, product_name: str, available: int, requested: int) -> None:
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        self.requested = requested
        super().__init__(
            f"Not enough stock for '{product_name}'. Available: {available}, Requested: {requested}."
        )

    @property
    def shortfall(self) -> int:
        return self.requested - self.available


class NoContext(LedgerError):
    """Raised when the scope or counterparty needed to locate data is missing."""


class InvalidAmount(LedgerError):
    """Raised when a monetary amount or quantity is out of range."""

    def __init__(self, amount: object, message: Optional[str] = None) -> None:
        self.amount = amount
        super().__init__(message or f"Amount must be greater than zero: {amount}")


class ReferentialConflict(LedgerError):
    """Raised when deleting an entity that transaction history still references."""

    def __init__(self, entity: str, entity_id: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"Cannot delete {entity} '{entity_id}': it is referenced by transaction history")


class MissingReferenceError(LedgerError, KeyError):
    """Raised when a referenced product, customer or supplier is unknown."""


@dataclass(frozen=True)
class CartLine:
    """A product snapshot taken when it was put in the cart, plus a quantity."""

    product: ProductRow
    quantity: int

    @property
    def amount(self) -> Decimal:
        return line_total(
            self.quantity,
            self.product.unit_price,
            self.product.quantity_per_box,
            self.product.box_price,
        )


@dataclass(frozen=True)
class SaleTotals:
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_delta: Decimal


def compute_sale_totals(lines: Sequence[CartLine], discount: Decimal, amount_paid: Decimal) -> SaleTotals:
    """Price a cart.

    ``total`` never goes below zero. ``balance_delta`` is ``total`` minus what
    was paid and turns negative on overpayment; that case is accepted.
    """

    subtotal = round2(sum((line.amount for line in lines), ZERO))
    total = max(ZERO, subtotal - discount)
    return SaleTotals(
        subtotal=subtotal,
        discount=round2(discount),
        total=round2(total),
        amount_paid=round2(amount_paid),
        balance_delta=round2(total - amount_paid),
    )


def require_positive_amount(amount: Decimal) -> None:
    if amount <= ZERO:
        log.error("Payment amount validation failed: %s", amount)
        raise InvalidAmount(amount)


def require_nonnegative_amount(amount: Decimal, label: str) -> None:
    if amount < ZERO:
        log.error("%s validation failed: %s", label, amount)
        raise InvalidAmount(amount, f"{label} must be zero or positive: {amount}")


def validate_box_tier(quantity_per_box: Optional[int], box_price: Optional[Decimal]) -> None:
    """Require ``quantity_per_box`` and ``box_price`` to be set together.

    Raises:
        ValueError: If exactly one of the two is provided.
        InvalidAmount: If the box size is not positive or the box price is
            negative.
    """

    if (quantity_per_box is None) != (box_price is None):
        log.error("Incomplete box tier: quantity_per_box=%s box_price=%s", quantity_per_box, box_price)
        raise ValueError("QuantityPerBox and BoxPrice must be provided together")
    if quantity_per_box is None:
        return
    if quantity_per_box <= 0:
        raise InvalidAmount(quantity_per_box, f"Quantity per box must be greater than zero: {quantity_per_box}")
    require_nonnegative_amount(box_price, "Box price")


def requested_quantities(lines: Sequence[CartLine]) -> "OrderedDict[str, int]":
    """Sum requested units per product, keeping first-seen order."""

    totals: "OrderedDict[str, int]" = OrderedDict()
    for line in lines:
        if line.quantity <= 0:
            log.error("Cart quantity validation failed for '%s': %s", line.product.product_id, line.quantity)
            raise InvalidAmount(line.quantity, f"Quantity must be greater than zero for '{line.product.name}'")
        totals[line.product.product_id] = totals.get(line.product.product_id, 0) + line.quantity
    return totals


def check_stock(lines: Sequence[CartLine], products: Mapping[str, ProductRow]) -> "OrderedDict[str, int]":
    """Ensure current stock covers every line of the cart.

    Stock is read from ``products`` (the store's current state), not from the
    cart snapshot. Several lines for the same product are checked against the
    product's stock together.

    Returns:
        OrderedDict[str, int]: Requested units per product id.

    Raises:
        MissingReferenceError: If a cart product no longer exists.
        InsufficientStock: For the first product whose stock falls short.
    """

    requested = requested_quantities(lines)
    for product_id, quantity in requested.items():
        product = products.get(product_id)
        if product is None:
            raise MissingReferenceError(f"Unknown product id: {product_id}")
        if product.stock < quantity:
            log.warning(
                "Rejected sale: product '%s' has %d in stock, %d requested",
                product_id,
                product.stock,
                quantity,
            )
            raise InsufficientStock(product_id, product.name, product.stock, quantity)
    return requested


def _snapshot_line(sale_id: str, line: CartLine) -> SaleLineRow:
    product = line.product
    tiered = has_box_tier(product.quantity_per_box, product.box_price)
    return SaleLineRow(
        sale_id=sale_id,
        product_id=product.product_id,
        product_name=product.name,
        quantity=line.quantity,
        unit_price=product.unit_price,
        purchase_price=product.purchase_price,
        quantity_per_box=product.quantity_per_box if tiered else None,
        box_price=product.box_price if tiered else None,
    )


def apply_sale(
    unit: UnitOfWork,
    *,
    sale_id: str,
    timestamp: datetime,
    lines: Sequence[CartLine],
    products: Mapping[str, ProductRow],
    customer: Optional[CustomerRow] = None,
    discount: Decimal = ZERO,
    amount_paid: Decimal = ZERO,
) -> SaleRecordRow:
    """Plan a sale: the record, the stock decrements and the customer update.

    Args:
        unit (UnitOfWork): Receives the planned mutations.
        sale_id (str): Identifier for the new record.
        timestamp (datetime): Moment the sale happened.
        lines (Sequence[CartLine]): Cart contents with price snapshots.
        products (Mapping[str, ProductRow]): Current product state by id.
        customer (CustomerRow | None): Buyer, ``None`` for walk-in sales.
        discount (Decimal): Amount taken off the subtotal.
        amount_paid (Decimal): Amount tendered now.

    Returns:
        SaleRecordRow: The record that will be created on commit.

    Raises:
        InvalidAmount: On empty carts, non-positive quantities, or negative
            discount or payment.
        InsufficientStock: If any product lacks stock; nothing is planned.
        MissingReferenceError: If a cart product is unknown.
    """

    if not lines:
        raise InvalidAmount(0, "A sale needs at least one line")
    require_nonnegative_amount(discount, "Discount")
    require_nonnegative_amount(amount_paid, "Amount paid")
    requested = check_stock(lines, products)
    totals = compute_sale_totals(lines, discount, amount_paid)

    sale_lines = tuple(_snapshot_line(sale_id, line) for line in lines)
    record = SaleRecordRow(
        sale_id=sale_id,
        timestamp_iso=timestamp.isoformat(),
        kind=EntryKind.SALE,
        customer_id=customer.customer_id if customer is not None else None,
        subtotal=totals.subtotal,
        discount=totals.discount,
        total=totals.total,
        amount_paid=totals.amount_paid,
        balance_delta=totals.balance_delta,
        lines=sale_lines,
    )

    unit.create(SheetName.SALES.value, serialize_sale(record))
    for sale_line in sale_lines:
        unit.create(SheetName.SALE_LINES.value, serialize_sale_line(sale_line))
    for product_id, quantity in requested.items():
        unit.update(
            SheetName.PRODUCTS.value,
            product_id,
            {"Stock": products[product_id].stock - quantity},
        )
    if customer is not None:
        unit.update(
            SheetName.CUSTOMERS.value,
            customer.customer_id,
            {
                "Spent": format_money(customer.spent + totals.total),
                "Balance": format_money(customer.balance + totals.balance_delta),
            },
        )
    log.debug("Planned sale '%s' with %d lines", sale_id, len(sale_lines))
    return record


def apply_customer_payment(
    unit: UnitOfWork,
    *,
    payment_id: str,
    timestamp: datetime,
    customer: CustomerRow,
    amount: Decimal,
) -> SaleRecordRow:
    """Plan a customer paying down their balance.

    The payment is stored in the sales history as a line-less record tagged
    ``PAYMENT`` whose balance delta is ``-amount``. Paying more than the
    outstanding balance is the caller's concern.
    """

    if customer is None:
        raise NoContext("A customer payment requires a customer")
    require_positive_amount(amount)
    amount = round2(amount)
    record = SaleRecordRow(
        sale_id=payment_id,
        timestamp_iso=timestamp.isoformat(),
        kind=EntryKind.PAYMENT,
        customer_id=customer.customer_id,
        subtotal=ZERO,
        discount=ZERO,
        total=amount,
        amount_paid=amount,
        balance_delta=-amount,
    )
    unit.create(SheetName.SALES.value, serialize_sale(record))
    unit.update(
        SheetName.CUSTOMERS.value,
        customer.customer_id,
        {"Balance": format_money(customer.balance - amount)},
    )
    return record


def apply_supplier_payment(
    unit: UnitOfWork,
    *,
    payment_id: str,
    timestamp: datetime,
    supplier: SupplierRow,
    amount: Decimal,
) -> SupplierInvoiceRow:
    """Plan the business paying a supplier."""

    if supplier is None:
        raise NoContext("A supplier payment requires a supplier")
    require_positive_amount(amount)
    amount = round2(amount)
    record = SupplierInvoiceRow(
        invoice_id=payment_id,
        timestamp_iso=timestamp.isoformat(),
        supplier_id=supplier.supplier_id,
        is_payment=True,
        total_amount=amount,
        amount_paid=amount,
    )
    unit.create(SheetName.SUPPLIER_INVOICES.value, serialize_supplier_invoice(record))
    unit.update(
        SheetName.SUPPLIERS.value,
        supplier.supplier_id,
        {"Balance": format_money(supplier.balance - amount)},
    )
    return record


def apply_supplier_invoice(
    unit: UnitOfWork,
    *,
    invoice_id: str,
    timestamp: datetime,
    supplier: SupplierRow,
    lines: Sequence[IncomingLine],
    products: Mapping[str, ProductRow],
    policy: CostingPolicy,
    amount_paid: Decimal = ZERO,
) -> SupplierInvoiceRow:
    """Plan receiving a supplier invoice.

    The invoice total is ``quantity * unit cost`` summed over the lines, with
    no box tiering. Stock and cost basis of every referenced product come from
    :func:`~pos_ledger.costing.revalue`; the supplier balance grows by the
    unpaid part of the total.

    Raises:
        NoContext: If ``supplier`` is missing.
        InvalidAmount: On an empty invoice, a non-positive quantity, a negative
            unit cost, or a negative amount paid.
        ValueError: If a line carries only half of a box tier.
        MissingReferenceError: If a line references an unknown product.
    """

    if supplier is None:
        raise NoContext("A supplier invoice requires a supplier")
    if not lines:
        raise InvalidAmount(0, "A supplier invoice needs at least one line")
    require_nonnegative_amount(amount_paid, "Amount paid")
    for line in lines:
        if line.quantity <= 0:
            raise InvalidAmount(line.quantity, f"Quantity must be greater than zero for '{line.product_id}'")
        require_nonnegative_amount(line.unit_cost, "Purchase price")
        validate_box_tier(line.quantity_per_box, line.box_price)
        if line.product_id not in products:
            raise MissingReferenceError(f"Unknown product id: {line.product_id}")

    policy = CostingPolicy(policy)
    total_amount = round2(sum((line.quantity * line.unit_cost for line in lines), ZERO))
    amount_paid = round2(amount_paid)

    affected_ids = list(OrderedDict.fromkeys(line.product_id for line in lines))
    updated = revalue([products[product_id] for product_id in affected_ids], lines, policy)

    invoice_lines = tuple(
        InvoiceLineRow(
            invoice_id=invoice_id,
            product_id=line.product_id,
            product_name=products[line.product_id].name,
            quantity=line.quantity,
            purchase_price=line.unit_cost,
            quantity_per_box=line.quantity_per_box,
            box_price=line.box_price,
        )
        for line in lines
    )
    record = SupplierInvoiceRow(
        invoice_id=invoice_id,
        timestamp_iso=timestamp.isoformat(),
        supplier_id=supplier.supplier_id,
        is_payment=False,
        total_amount=total_amount,
        amount_paid=amount_paid,
        costing_policy=policy,
        lines=invoice_lines,
    )

    unit.create(SheetName.SUPPLIER_INVOICES.value, serialize_supplier_invoice(record))
    for invoice_line in invoice_lines:
        unit.create(SheetName.INVOICE_LINES.value, serialize_invoice_line(invoice_line))
    for product in updated:
        changes: Dict[str, object] = {
            "Stock": product.stock,
            "PurchasePrice": format_money(product.purchase_price),
        }
        if policy is CostingPolicy.MASTER_OVERRIDE:
            changes["QuantityPerBox"] = product.quantity_per_box
            changes["BoxPrice"] = format_money(product.box_price)
        unit.update(SheetName.PRODUCTS.value, product.product_id, changes)
    unit.update(
        SheetName.SUPPLIERS.value,
        supplier.supplier_id,
        {"Balance": format_money(supplier.balance + total_amount - amount_paid)},
    )
    log.debug("Planned supplier invoice '%s' (total=%s, policy=%s)", invoice_id, total_amount, policy.value)
    return record


__all__ = [
    "LedgerError",
    "InsufficientStock",
    "NoContext",
    "InvalidAmount",
    "ReferentialConflict",
    "MissingReferenceError",
    "CartLine",
    "SaleTotals",
    "compute_sale_totals",
    "check_stock",
    "validate_box_tier",
    "apply_sale",
    "apply_customer_payment",
    "apply_supplier_payment",
    "apply_supplier_invoice",
]
