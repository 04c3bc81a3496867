"""Business logic layer for the POS ledger.

This module orchestrates the pure engine modules (:mod:`pos_ledger.ledger`,
:mod:`pos_ledger.costing`, :mod:`pos_ledger.statements`) against one scope's
workbook. Every write follows the same shape: read current snapshots, let the
engine plan a :class:`~pos_ledger.data_manager.UnitOfWork`, then commit it
through :func:`commit_unit_of_work` in a single step.
"""

from __future__ import annotations

import re
from collections import defaultdict
from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, SHEET_COLUMNS, CostingPolicy, SheetName
from .costing import IncomingLine
from .ledger import (
    CartLine,
    InvalidAmount,
    LedgerError,
    MissingReferenceError,
    NoContext,
    ReferentialConflict,
    apply_customer_payment,
    apply_sale,
    apply_supplier_invoice,
    apply_supplier_payment,
    require_nonnegative_amount,
    validate_box_tier,
)
from .pricing import ZERO
from .statements import (
    DebtStatus,
    LedgerEntry,
    Statement,
    debt_alerts,
    entries_from_invoices,
    entries_from_sales,
    low_stock_products,
    reconstruct_balances,
    resolve_debt_status,
    sales_profit_summary,
)


_SCOPE_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")

ALL_CACHE_BUCKETS = ("products", "customers", "suppliers", "sales", "invoices")

# ProductRow fields that may be edited by hand, mapped to their sheet columns.
EDITABLE_PRODUCT_FIELDS: Mapping[str, str] = {
    "name": "Name",
    "category": "Category",
    "unit_price": "UnitPrice",
    "purchase_price": "PurchasePrice",
    "stock": "Stock",
    "min_stock": "MinStock",
    "quantity_per_box": "QuantityPerBox",
    "box_price": "BoxPrice",
}


@dataclass
class RuntimeContext:
    """Configuration, scope and live workbook used by every operation.

    The workbook handle is swapped for a fresh copy from disk whenever a
    commit fails, which is why this container is not frozen.
    """

    settings: data_manager.ConfigSettings
    scope: str
    workbook: Workbook
    workbook_path: Path
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


@dataclass(frozen=True)
class SaleItem:
    """A product id and the number of units put in the cart."""

    product_id: str
    quantity: int


@dataclass(frozen=True)
class SaleCommand:
    """User intent for selling a cart, to a customer or to a walk-in buyer."""

    items: Tuple[SaleItem, ...]
    customer_id: Optional[str] = None
    discount: Decimal = ZERO
    amount_paid: Decimal = ZERO
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class CustomerPaymentCommand:
    """User intent for a customer paying down their balance."""

    customer_id: str
    amount: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierPaymentCommand:
    """User intent for paying a supplier."""

    supplier_id: str
    amount: Decimal
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class SupplierInvoiceCommand:
    """User intent for receiving stock on a supplier invoice.

    ``policy`` falls back to the configured default costing policy.
    """

    supplier_id: str
    lines: Tuple[IncomingLine, ...]
    amount_paid: Decimal = ZERO
    policy: Optional[CostingPolicy] = None
    timestamp: Optional[datetime] = None


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` in UTC or, when it is ``None``, the current UTC time.

    Naive timestamps are taken to be UTC already.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None:
        return candidate.replace(tzinfo=UTC)
    return candidate.astimezone(UTC)


def _resolve_today(candidate: Optional[date]) -> date:
    return candidate if candidate is not None else _resolve_timestamp(None).date()


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are plain dictionaries holding precomputed query results so
    repeated reads do not rescan the workbook.

    Args:
        context (RuntimeContext): Runtime state carrying the shared cache
            dictionary.
        name (str): Logical bucket name to fetch or create.

    Returns:
        dict[str, Any]: Mutable mapping for ``name``.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict cache buckets after the workbook changed.

    Missing buckets are ignored so callers can invalidate without checking.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket with ``all`` and ``by_id`` views."""

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        bucket["all"] = all_products
        bucket["by_id"] = {product.product_id: product for product in all_products}
        log.debug("Populated products cache with %d entries", len(all_products))
    return bucket


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "customers")
    if "all" not in bucket:
        all_customers = list(data_manager.iter_customers(context.workbook))
        bucket["all"] = all_customers
        bucket["by_id"] = {customer.customer_id: customer for customer in all_customers}
        log.debug("Populated customers cache with %d entries", len(all_customers))
    return bucket


def _ensure_suppliers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "suppliers")
    if "all" not in bucket:
        all_suppliers = list(data_manager.iter_suppliers(context.workbook))
        bucket["all"] = all_suppliers
        bucket["by_id"] = {supplier.supplier_id: supplier for supplier in all_suppliers}
        log.debug("Populated suppliers cache with %d entries", len(all_suppliers))
    return bucket


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the sales cache: every record plus a per-customer grouping.

    Walk-in sales have no customer and only appear under ``all``.
    """

    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = list(data_manager.iter_sales(context.workbook))
        by_customer: Dict[str, List[data_manager.SaleRecordRow]] = defaultdict(list)
        for record in all_sales:
            if record.customer_id is not None:
                by_customer[record.customer_id].append(record)
        bucket["all"] = all_sales
        bucket["by_customer"] = dict(by_customer)
        log.debug("Populated sales cache with %d entries", len(all_sales))
    return bucket


def _ensure_invoices_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "invoices")
    if "all" not in bucket:
        all_invoices = list(data_manager.iter_supplier_invoices(context.workbook))
        by_supplier: Dict[str, List[data_manager.SupplierInvoiceRow]] = defaultdict(list)
        for record in all_invoices:
            by_supplier[record.supplier_id].append(record)
        bucket["all"] = all_invoices
        bucket["by_supplier"] = dict(by_supplier)
        log.debug("Populated supplier invoices cache with %d entries", len(all_invoices))
    return bucket


def validate_scope(scope: Optional[str]) -> str:
    """Check that ``scope`` can safely name a workbook file.

    Raises:
        NoContext: If ``scope`` is empty or contains path separators or other
            characters outside ``[A-Za-z0-9_.-]``.
    """

    if not scope or not _SCOPE_PATTERN.match(scope):
        log.error("Rejected ledger scope: %r", scope)
        raise NoContext(f"A valid scope is required to locate ledger data, got {scope!r}")
    return scope


def load_runtime_context(config_path: Optional[Path] = None, *, scope: Optional[str]) -> RuntimeContext:
    """Load configuration settings and the workbook that holds ``scope``.

    Args:
        config_path (Path | None): Optional override path for the
            configuration file. When omitted the data layer searches upwards
            from the current working directory.
        scope (str | None): Name of the data partition (one operator or
            store) to work on. Each scope has its own workbook.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        NoContext: If ``scope`` is missing or malformed.
        FileNotFoundError: If the configuration file or the scope workbook
            cannot be located.
        KeyError: When mandatory configuration options are missing.
    """

    scope = validate_scope(scope)
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook_path = data_manager.scope_workbook_path(settings.data_dir, scope)
    workbook = data_manager.open_workbook(workbook_path)
    log.info("Loaded runtime context for scope '%s' from '%s'", scope, workbook_path)
    return RuntimeContext(settings=settings, scope=scope, workbook=workbook, workbook_path=workbook_path)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Refuse to write when ``config.ini`` declares an unexpected schema.

    Raises:
        RuntimeError: If the configured schema version does not match
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def generate_record_id(*, prefix: str, when: Optional[datetime] = None) -> str:
    """Generate a sortable identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.

    A caller supplied ``when`` makes them deterministic in tests. Uniqueness
    within a sheet is handled by :func:`_next_record_id`.
    """

    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def _next_record_id(
    context: RuntimeContext, sheet: SheetName, *, prefix: str, when: Optional[datetime] = None
) -> str:
    """Generate a record id not yet used in ``sheet``.

    Records committed with the same timestamp get a ``-2``, ``-3``... suffix.
    """

    base = generate_record_id(prefix=prefix, when=when)
    key_column = SHEET_COLUMNS[sheet.value][0]
    candidate, counter = base, 1
    while data_manager.locate_row(context.workbook, sheet.value, key_column, candidate) is not None:
        counter += 1
        candidate = f"{base}-{counter}"
    if counter > 1:
        log.debug("Record id '%s' taken in %s, using '%s'", base, sheet.value, candidate)
    return candidate


# ----------------------------------------------------------------------------
# Reads
# ----------------------------------------------------------------------------


def list_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return a copy of the cached products in sheet order."""

    return list(_ensure_products_cache(context)["all"])


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    return list(_ensure_customers_cache(context)["all"])


def list_suppliers(context: RuntimeContext) -> List[data_manager.SupplierRow]:
    return list(_ensure_suppliers_cache(context)["all"])


def list_sales(context: RuntimeContext) -> List[data_manager.SaleRecordRow]:
    """Return every sale and customer payment in sheet order, lines attached."""

    return list(_ensure_sales_cache(context)["all"])


def list_supplier_invoices(context: RuntimeContext) -> List[data_manager.SupplierInvoiceRow]:
    return list(_ensure_invoices_cache(context)["all"])


def get_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product record by its identifier.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the workbook.
    """

    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_customer(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Resolve a customer record by its identifier.

    Raises:
        MissingReferenceError: If ``customer_id`` is absent from the workbook.
    """

    cache = _ensure_customers_cache(context)
    try:
        return cache["by_id"][customer_id]
    except KeyError as exc:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}") from exc


def get_supplier(context: RuntimeContext, supplier_id: str) -> data_manager.SupplierRow:
    """Resolve a supplier record by its identifier.

    Raises:
        MissingReferenceError: If ``supplier_id`` is absent from the workbook.
    """

    cache = _ensure_suppliers_cache(context)
    try:
        return cache["by_id"][supplier_id]
    except KeyError as exc:
        log.warning("Supplier lookup failed for id '%s'", supplier_id)
        raise MissingReferenceError(f"Unknown supplier id: {supplier_id}") from exc


def customer_history(context: RuntimeContext, customer_id: str) -> List[data_manager.SaleRecordRow]:
    """Return the sales and payments of one customer in sheet order."""

    get_customer(context, customer_id)
    return list(_ensure_sales_cache(context)["by_customer"].get(customer_id, ()))


def supplier_history(context: RuntimeContext, supplier_id: str) -> List[data_manager.SupplierInvoiceRow]:
    """Return the invoices and payments of one supplier in sheet order."""

    get_supplier(context, supplier_id)
    return list(_ensure_invoices_cache(context)["by_supplier"].get(supplier_id, ()))


# ----------------------------------------------------------------------------
# Commit
# ----------------------------------------------------------------------------


def commit_unit_of_work(context: RuntimeContext, unit: data_manager.UnitOfWork) -> None:
    """Apply ``unit`` to the workbook and persist it as one atomic step.

    The mutations are applied in memory and the workbook is then saved over
    the scope file atomically. If either step fails, the in-memory workbook
    is replaced by a fresh copy from disk before the error propagates, so the
    context never exposes a half-applied group.

    Args:
        context (RuntimeContext): Context whose workbook receives the changes.
        unit (data_manager.UnitOfWork): Mutations planned by the ledger engine.

    Raises:
        RuntimeError: If the configured schema version is unexpected.
        Exception: Any storage failure, re-raised unchanged after the reload.
    """

    ensure_schema_version(context)
    if not len(unit):
        log.debug("Nothing to commit for scope '%s'", context.scope)
        return

    try:
        data_manager.apply_unit_of_work(context.workbook, unit)
        data_manager.save_workbook(context.workbook, destination=context.workbook_path)
    except Exception:
        log.error("Commit failed for scope '%s'; reloading workbook from disk", context.scope)
        context.workbook = data_manager.refresh_workbook(context.workbook_path)
        _invalidate_cache(context, *ALL_CACHE_BUCKETS)
        raise

    _invalidate_cache(context, *ALL_CACHE_BUCKETS)
    log.debug("Committed %d mutations to '%s'", len(unit), context.workbook_path)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook, discarding unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """

    workbook = data_manager.refresh_workbook(context.workbook_path)
    log.info("Reloaded workbook '%s'", context.workbook_path)
    return RuntimeContext(
        settings=context.settings,
        scope=context.scope,
        workbook=workbook,
        workbook_path=context.workbook_path,
    )


# ----------------------------------------------------------------------------
# Ledger operations
# ----------------------------------------------------------------------------


def build_cart(context: RuntimeContext, items: Sequence[SaleItem]) -> List[CartLine]:
    """Snapshot the current product record for every cart item.

    Raises:
        MissingReferenceError: If an item references an unknown product.
    """

    return [CartLine(product=get_product(context, item.product_id), quantity=item.quantity) for item in items]


def record_sale(context: RuntimeContext, command: SaleCommand) -> data_manager.SaleRecordRow:
    """Validate and commit a sale.

    The cart is priced from current product snapshots, checked against
    current stock, and committed together with the stock decrements and,
    when a customer is named, the customer's spent and balance updates.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        command (SaleCommand): Structured intent describing the sale.

    Returns:
        data_manager.SaleRecordRow: The committed sale with its lines.

    Raises:
        InsufficientStock: If any product lacks stock. Nothing is written.
        InvalidAmount: On an empty cart, a non-positive quantity, or a
            negative discount or payment.
        MissingReferenceError: If the customer or a product is unknown.
    """

    customer = get_customer(context, command.customer_id) if command.customer_id is not None else None
    lines = build_cart(context, command.items)
    timestamp = _resolve_timestamp(command.timestamp)
    sale_id = _next_record_id(context, SheetName.SALES, prefix="S", when=timestamp)

    unit = data_manager.UnitOfWork()
    record = apply_sale(
        unit,
        sale_id=sale_id,
        timestamp=timestamp,
        lines=lines,
        products=_ensure_products_cache(context)["by_id"],
        customer=customer,
        discount=command.discount,
        amount_paid=command.amount_paid,
    )
    commit_unit_of_work(context, unit)
    log.info(
        "Recorded sale '%s' for %s (total=%s, paid=%s, delta=%s)",
        record.sale_id,
        f"customer '{record.customer_id}'" if record.customer_id else "walk-in buyer",
        record.total,
        record.amount_paid,
        record.balance_delta,
    )
    return record


def record_customer_payment(context: RuntimeContext, command: CustomerPaymentCommand) -> data_manager.SaleRecordRow:
    """Validate and commit a customer payment.

    Raises:
        InvalidAmount: If the amount is not positive.
        MissingReferenceError: If the customer is unknown.
    """

    customer = get_customer(context, command.customer_id)
    timestamp = _resolve_timestamp(command.timestamp)

    unit = data_manager.UnitOfWork()
    record = apply_customer_payment(
        unit,
        payment_id=_next_record_id(context, SheetName.SALES, prefix="P", when=timestamp),
        timestamp=timestamp,
        customer=customer,
        amount=command.amount,
    )
    commit_unit_of_work(context, unit)
    log.info("Recorded payment '%s' from customer '%s' (amount=%s)", record.sale_id, customer.customer_id, record.total)
    return record


def record_supplier_payment(context: RuntimeContext, command: SupplierPaymentCommand) -> data_manager.SupplierInvoiceRow:
    """Validate and commit a payment to a supplier."""

    supplier = get_supplier(context, command.supplier_id)
    timestamp = _resolve_timestamp(command.timestamp)

    unit = data_manager.UnitOfWork()
    record = apply_supplier_payment(
        unit,
        payment_id=_next_record_id(context, SheetName.SUPPLIER_INVOICES, prefix="SP", when=timestamp),
        timestamp=timestamp,
        supplier=supplier,
        amount=command.amount,
    )
    commit_unit_of_work(context, unit)
    log.info(
        "Recorded payment '%s' to supplier '%s' (amount=%s)",
        record.invoice_id,
        supplier.supplier_id,
        record.amount_paid,
    )
    return record


def record_supplier_invoice(
    context: RuntimeContext, command: SupplierInvoiceCommand
) -> data_manager.SupplierInvoiceRow:
    """Validate and commit a supplier invoice.

    Stock and cost basis of every referenced product are revalued under the
    command's costing policy, or the configured default when none is given.

    Returns:
        data_manager.SupplierInvoiceRow: The committed invoice with its lines.

    Raises:
        InvalidAmount: On an empty invoice, a non-positive quantity, or a
            negative cost or payment.
        MissingReferenceError: If the supplier or a product is unknown.
    """

    supplier = get_supplier(context, command.supplier_id)
    policy = command.policy or context.settings.default_costing_policy
    timestamp = _resolve_timestamp(command.timestamp)

    unit = data_manager.UnitOfWork()
    record = apply_supplier_invoice(
        unit,
        invoice_id=_next_record_id(context, SheetName.SUPPLIER_INVOICES, prefix="I", when=timestamp),
        timestamp=timestamp,
        supplier=supplier,
        lines=command.lines,
        products=_ensure_products_cache(context)["by_id"],
        policy=policy,
        amount_paid=command.amount_paid,
    )
    commit_unit_of_work(context, unit)
    log.info(
        "Recorded invoice '%s' from supplier '%s' (total=%s, paid=%s, policy=%s)",
        record.invoice_id,
        supplier.supplier_id,
        record.total_amount,
        record.amount_paid,
        record.costing_policy.value,
    )
    return record


# ----------------------------------------------------------------------------
# Catalog and counterparty maintenance
# ----------------------------------------------------------------------------


def _validate_product(product: data_manager.ProductRow) -> None:
    if not product.name:
        raise ValueError("Product name must not be empty")
    require_nonnegative_amount(product.unit_price, "Unit price")
    require_nonnegative_amount(product.purchase_price, "Purchase price")
    if product.min_stock < 0:
        raise InvalidAmount(product.min_stock, f"Minimum stock must be zero or positive: {product.min_stock}")
    validate_box_tier(product.quantity_per_box, product.box_price)


def _require_new_id(context: RuntimeContext, sheet: SheetName, key: str) -> None:
    key_column = SHEET_COLUMNS[sheet.value][0]
    if data_manager.locate_row(context.workbook, sheet.value, key_column, key) is not None:
        raise ValueError(f"{sheet.value} already contains id '{key}'")


def add_product(
    context: RuntimeContext,
    *,
    name: str,
    unit_price: Decimal,
    purchase_price: Decimal = ZERO,
    category: str = "",
    stock: int = 0,
    min_stock: int = 0,
    quantity_per_box: Optional[int] = None,
    box_price: Optional[Decimal] = None,
    product_id: Optional[str] = None,
) -> data_manager.ProductRow:
    """Add a product to the catalog.

    Returns:
        data_manager.ProductRow: The committed product.

    Raises:
        ValueError: If the name is empty, the id is taken, or the box tier is
            incomplete.
        InvalidAmount: If a price or the minimum stock is negative.
    """

    product = data_manager.ProductRow(
        product_id=product_id or _next_record_id(context, SheetName.PRODUCTS, prefix="PRD"),
        name=name,
        category=category,
        unit_price=unit_price,
        purchase_price=purchase_price,
        stock=stock,
        min_stock=min_stock,
        quantity_per_box=quantity_per_box,
        box_price=box_price,
    )
    _validate_product(product)
    _require_new_id(context, SheetName.PRODUCTS, product.product_id)

    unit = data_manager.UnitOfWork()
    unit.create(SheetName.PRODUCTS.value, data_manager.serialize_product(product))
    commit_unit_of_work(context, unit)
    log.info("Added product '%s' (%s)", product.product_id, product.name)
    return product


def update_product(context: RuntimeContext, product_id: str, changes: Mapping[str, Any]) -> data_manager.ProductRow:
    """Edit a product by hand.

    Args:
        context (RuntimeContext): Runtime context providing workbook access.
        product_id (str): Product to edit.
        changes (Mapping[str, Any]): New values keyed by
            :class:`~pos_ledger.data_manager.ProductRow` field name. Only the
            keys of ``EDITABLE_PRODUCT_FIELDS`` are accepted.

    Returns:
        data_manager.ProductRow: The product as committed.

    Raises:
        KeyError: If ``changes`` names a field that cannot be edited.
        MissingReferenceError: If the product is unknown.
        ValueError: If the resulting box tier is incomplete.
    """

    unknown = set(changes) - set(EDITABLE_PRODUCT_FIELDS)
    if unknown:
        raise KeyError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

    updated = replace(get_product(context, product_id), **changes)
    _validate_product(updated)

    columns = dict(zip(SHEET_COLUMNS[SheetName.PRODUCTS.value], data_manager.serialize_product(updated)))
    unit = data_manager.UnitOfWork()
    unit.update(
        SheetName.PRODUCTS.value,
        product_id,
        {EDITABLE_PRODUCT_FIELDS[name]: columns[EDITABLE_PRODUCT_FIELDS[name]] for name in changes},
    )
    commit_unit_of_work(context, unit)
    log.info("Updated product '%s' (%s)", product_id, ", ".join(sorted(changes)))
    return updated


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    settlement_day: Optional[int] = None,
    customer_id: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Add a customer with a zero balance.

    Raises:
        ValueError: If the name is empty, the id is taken, or the settlement
            day is outside 1-31.
    """

    if not name:
        raise ValueError("Customer name must not be empty")
    if settlement_day is not None and not 1 <= settlement_day <= 31:
        raise ValueError(f"Settlement day must be between 1 and 31: {settlement_day}")

    customer = data_manager.CustomerRow(
        customer_id=customer_id or _next_record_id(context, SheetName.CUSTOMERS, prefix="C"),
        name=name,
        phone=phone,
        settlement_day=settlement_day,
    )
    _require_new_id(context, SheetName.CUSTOMERS, customer.customer_id)

    unit = data_manager.UnitOfWork()
    unit.create(SheetName.CUSTOMERS.value, data_manager.serialize_customer(customer))
    commit_unit_of_work(context, unit)
    log.info("Added customer '%s' (%s)", customer.customer_id, customer.name)
    return customer


def add_supplier(
    context: RuntimeContext,
    *,
    name: str,
    phone: Optional[str] = None,
    supplier_id: Optional[str] = None,
) -> data_manager.SupplierRow:
    """Add a supplier with a zero balance."""

    if not name:
        raise ValueError("Supplier name must not be empty")

    supplier = data_manager.SupplierRow(
        supplier_id=supplier_id or _next_record_id(context, SheetName.SUPPLIERS, prefix="SUP"),
        name=name,
        phone=phone,
    )
    _require_new_id(context, SheetName.SUPPLIERS, supplier.supplier_id)

    unit = data_manager.UnitOfWork()
    unit.create(SheetName.SUPPLIERS.value, data_manager.serialize_supplier(supplier))
    commit_unit_of_work(context, unit)
    log.info("Added supplier '%s' (%s)", supplier.supplier_id, supplier.name)
    return supplier


def delete_product(context: RuntimeContext, product_id: str) -> None:
    """Remove a product that no sale or invoice line references.

    Raises:
        MissingReferenceError: If the product is unknown.
        ReferentialConflict: If transaction history references the product.
    """

    get_product(context, product_id)
    referenced = any(
        line.product_id == product_id for record in list_sales(context) for line in record.lines
    ) or any(line.product_id == product_id for record in list_supplier_invoices(context) for line in record.lines)
    if referenced:
        log.warning("Rejected delete of product '%s': referenced by history", product_id)
        raise ReferentialConflict("product", product_id)

    unit = data_manager.UnitOfWork()
    unit.delete(SheetName.PRODUCTS.value, product_id)
    commit_unit_of_work(context, unit)
    log.info("Deleted product '%s'", product_id)


def delete_customer(context: RuntimeContext, customer_id: str) -> None:
    """Remove a customer without sale or payment history.

    Raises:
        MissingReferenceError: If the customer is unknown.
        ReferentialConflict: If any sale record references the customer.
    """

    if customer_history(context, customer_id):
        log.warning("Rejected delete of customer '%s': referenced by history", customer_id)
        raise ReferentialConflict("customer", customer_id)

    unit = data_manager.UnitOfWork()
    unit.delete(SheetName.CUSTOMERS.value, customer_id)
    commit_unit_of_work(context, unit)
    log.info("Deleted customer '%s'", customer_id)


def delete_supplier(context: RuntimeContext, supplier_id: str) -> None:
    """Remove a supplier without invoice or payment history."""

    if supplier_history(context, supplier_id):
        log.warning("Rejected delete of supplier '%s': referenced by history", supplier_id)
        raise ReferentialConflict("supplier", supplier_id)

    unit = data_manager.UnitOfWork()
    unit.delete(SheetName.SUPPLIERS.value, supplier_id)
    commit_unit_of_work(context, unit)
    log.info("Deleted supplier '%s'", supplier_id)


# ----------------------------------------------------------------------------
# Statements and reports
# ----------------------------------------------------------------------------


def customer_statement(context: RuntimeContext, customer_id: str) -> Statement:
    """Reconstruct the running balance of a customer after every transaction."""

    customer = get_customer(context, customer_id)
    return reconstruct_balances(customer.balance, entries_from_sales(customer_history(context, customer_id)))


def supplier_statement(context: RuntimeContext, supplier_id: str) -> Statement:
    """Reconstruct the running balance owed to a supplier, with debit and credit per line."""

    supplier = get_supplier(context, supplier_id)
    return reconstruct_balances(supplier.balance, entries_from_invoices(supplier_history(context, supplier_id)))


def customer_debt_status(
    context: RuntimeContext, customer_id: str, *, today: Optional[date] = None
) -> Optional[DebtStatus]:
    """Date the oldest unpaid debt of one customer.

    Returns:
        DebtStatus | None: ``None`` when the customer owes nothing traceable.
    """

    customer = get_customer(context, customer_id)
    return resolve_debt_status(
        customer.customer_id,
        customer.balance,
        entries_from_sales(customer_history(context, customer_id)),
        payment_terms_days=context.settings.payment_terms_days,
        today=_resolve_today(today),
        settlement_day=customer.settlement_day,
    )


def debt_alert_report(context: RuntimeContext, *, today: Optional[date] = None) -> List[DebtStatus]:
    """List customers whose debt is due within a day or overdue, most overdue first."""

    by_customer = _ensure_sales_cache(context)["by_customer"]
    entries: Dict[str, List[LedgerEntry]] = {
        customer_id: entries_from_sales(records) for customer_id, records in by_customer.items()
    }
    return debt_alerts(
        list_customers(context),
        entries,
        payment_terms_days=context.settings.payment_terms_days,
        today=_resolve_today(today),
    )


def low_stock_report(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Products at or below their minimum stock, emptiest first."""

    return low_stock_products(list_products(context))


def calculate_profit_summary(
    context: RuntimeContext,
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Decimal]:
    """Produce revenue, cost of goods and gross profit for sales in a date range.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        start (date | None): First day included, unbounded when ``None``.
        end (date | None): Last day included, unbounded when ``None``.

    Returns:
        dict[str, Decimal]: ``total_revenue``, ``cost_of_goods`` and
            ``gross_profit``.
    """

    summary = sales_profit_summary(list_sales(context), start=start, end=end)
    log.debug(
        "Calculated profit summary: revenue=%s cost=%s profit=%s",
        summary["total_revenue"],
        summary["cost_of_goods"],
        summary["gross_profit"],
    )
    return summary


__all__ = [
    "LedgerError",
    "RuntimeContext",
    "SaleItem",
    "SaleCommand",
    "CustomerPaymentCommand",
    "SupplierPaymentCommand",
    "SupplierInvoiceCommand",
    "load_runtime_context",
    "ensure_schema_version",
    "generate_record_id",
    "list_products",
    "list_customers",
    "list_suppliers",
    "list_sales",
    "list_supplier_invoices",
    "get_product",
    "get_customer",
    "get_supplier",
    "customer_history",
    "supplier_history",
    "commit_unit_of_work",
    "refresh_context",
    "build_cart",
    "record_sale",
    "record_customer_payment",
    "record_supplier_payment",
    "record_supplier_invoice",
    "add_product",
    "update_product",
    "add_customer",
    "add_supplier",
    "delete_product",
    "delete_customer",
    "delete_supplier",
    "customer_statement",
    "supplier_statement",
    "customer_debt_status",
    "debt_alert_report",
    "low_stock_report",
    "calculate_profit_summary",
]
