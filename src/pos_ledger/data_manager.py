"""Data access layer for the POS ledger.

This module provides the low-level helpers that read from and write to the
per-scope ledger workbooks. Business rules belong elsewhere.

The public API is designed around four responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and atomically persisting the
   Excel file that holds one scope's data.
3. Sheet operations: loading structured records and serializing them back
   into worksheet rows.
4. Units of work: collecting create/update/delete mutations and applying
   them to a workbook as one group.
"""


from __future__ import annotations

import configparser
import os
import tempfile
from collections import defaultdict
from dataclasses import dataclass, field, replace
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_PAYMENT_TERMS_DAYS,
    SHEET_COLUMNS,
    CostingPolicy,
    EntryKind,
    SheetName,
)
from .pricing import ZERO


CONFIG_FILE_NAME = "config.ini"
WORKBOOK_SUFFIX = ".xlsx"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
SUPPLIERS_SHEET = SheetName.SUPPLIERS.value
SALES_SHEET = SheetName.SALES.value
SALE_LINES_SHEET = SheetName.SALE_LINES.value
SUPPLIER_INVOICES_SHEET = SheetName.SUPPLIER_INVOICES.value
INVOICE_LINES_SHEET = SheetName.INVOICE_LINES.value


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_dir: Path
    store_name: str
    schema_version: str
    payment_terms_days: int = DEFAULT_PAYMENT_TERMS_DAYS
    default_costing_policy: CostingPolicy = CostingPolicy.WEIGHTED_AVERAGE


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    name: str
    category: str
    unit_price: Decimal
    purchase_price: Decimal
    stock: int
    min_stock: int = 0
    quantity_per_box: Optional[int] = None
    box_price: Optional[Decimal] = None


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    phone: Optional[str] = None
    balance: Decimal = ZERO
    spent: Decimal = ZERO
    settlement_day: Optional[int] = None


@dataclass(frozen=True)
class SupplierRow:
    """In-memory view of a row from the ``Suppliers`` sheet."""

    supplier_id: str
    name: str
    phone: Optional[str] = None
    balance: Decimal = ZERO


@dataclass(frozen=True)
class SaleLineRow:
    """Snapshot of a product line as it was sold."""

    sale_id: str
    product_id: str
    product_name: str
    quantity: int
    unit_price: Decimal
    purchase_price: Decimal
    quantity_per_box: Optional[int] = None
    box_price: Optional[Decimal] = None


@dataclass(frozen=True)
class SaleRecordRow:
    """A customer-side transaction: a sale with lines, or a payment without."""

    sale_id: str
    timestamp_iso: str
    kind: EntryKind
    customer_id: Optional[str]
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    amount_paid: Decimal
    balance_delta: Decimal
    lines: Tuple[SaleLineRow, ...] = ()


@dataclass(frozen=True)
class InvoiceLineRow:
    """A product line received on a supplier invoice."""

    invoice_id: str
    product_id: str
    product_name: str
    quantity: int
    purchase_price: Decimal
    quantity_per_box: Optional[int] = None
    box_price: Optional[Decimal] = None


@dataclass(frozen=True)
class SupplierInvoiceRow:
    """A supplier-side transaction: a purchase invoice or a payment."""

    invoice_id: str
    timestamp_iso: str
    supplier_id: str
    is_payment: bool
    total_amount: Decimal
    amount_paid: Decimal
    costing_policy: Optional[CostingPolicy] = None
    lines: Tuple[InvoiceLineRow, ...] = ()

    @property
    def balance_delta(self) -> Decimal:
        """Signed change this record made to the supplier balance."""

        if self.is_payment:
            return -self.amount_paid
        return self.total_amount - self.amount_paid


class MutationAction(str, Enum):
    """Kinds of row mutation a unit of work can carry."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass(frozen=True)
class Mutation:
    """A single pending change against one worksheet."""

    sheet: str
    action: MutationAction
    key: Optional[str] = None
    row: Tuple[object, ...] = ()
    field_values: Mapping[str, Any] = field(default_factory=dict)


class UnitOfWork:
    """Collects the mutations of one ledger operation until they are committed.

    The ledger engine only plans changes into a unit of work. Whoever owns the
    workbook applies it in one step with :func:`apply_unit_of_work`, so the
    planning logic never touches storage directly.
    """

    def __init__(self) -> None:
        self._mutations: List[Mutation] = []

    def create(self, sheet: str, row: Sequence[object]) -> None:
        self._mutations.append(Mutation(sheet=sheet, action=MutationAction.CREATE, row=tuple(row)))

    def update(self, sheet: str, key: str, field_values: Mapping[str, Any]) -> None:
        self._mutations.append(
            Mutation(sheet=sheet, action=MutationAction.UPDATE, key=key, field_values=dict(field_values))
        )

    def delete(self, sheet: str, key: str) -> None:
        self._mutations.append(Mutation(sheet=sheet, action=MutationAction.DELETE, key=key))

    @property
    def mutations(self) -> Tuple[Mutation, ...]:
        return tuple(self._mutations)

    def __len__(self) -> int:
        return len(self._mutations)

    def __iter__(self) -> Iterator[Mutation]:
        return iter(self._mutations)


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no ``CONFIG_FILE_NAME`` exists in the working
            directory or any of its parents.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(inline_comment_prefixes=(";", "#"))
    parser.read(config_path)
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` is mandatory. ``[Ledger]`` is optional and falls back to a
    30 day payment term and weighted-average costing. A relative ``DataDir``
    is anchored at ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve a relative
            ``DataDir``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
        ValueError: If a ``[Ledger]`` option cannot be interpreted.
    """

    try:
        data_dir_raw = parser.get("System", "DataDir")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    payment_terms_days = parser.getint(
        "Ledger", "PaymentTermsDays", fallback=DEFAULT_PAYMENT_TERMS_DAYS
    )
    if payment_terms_days < 0:
        raise ValueError(f"PaymentTermsDays must not be negative: {payment_terms_days}")
    costing_policy = CostingPolicy(
        parser.get("Ledger", "DefaultCostingPolicy", fallback=CostingPolicy.WEIGHTED_AVERAGE.value)
    )

    data_dir = Path(data_dir_raw).expanduser()
    if not data_dir.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_dir = (base_path / data_dir).resolve()

    return ConfigSettings(
        data_dir=data_dir,
        store_name=store_name,
        schema_version=schema_version,
        payment_terms_days=payment_terms_days,
        default_costing_policy=costing_policy,
    )


def scope_workbook_path(data_dir: Path, scope: str) -> Path:
    """Return the workbook location holding the data of ``scope``."""

    return Path(data_dir) / f"{scope}{WORKBOOK_SUFFIX}"


def open_workbook(data_file: Path) -> Workbook:
    """Open a scope workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook so readers see either the old or the new file.

    The workbook is written to a temporary file in the destination folder and
    then moved over the target with :func:`os.replace`, which is atomic on the
    same filesystem.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): File that should receive the serialized workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{dest.stem}-", suffix=WORKBOOK_SUFFIX, dir=dest.parent)
    os.close(fd)
    try:
        workbook.save(tmp_name)
        os.replace(tmp_name, dest)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _data_rows(workbook: Workbook, sheet_name: str) -> Iterator[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _data_rows(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over the ``Customers`` worksheet and yield typed records."""

    for raw in _data_rows(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_suppliers(workbook: Workbook) -> Iterable[SupplierRow]:
    """Iterate over the ``Suppliers`` worksheet and yield typed records."""

    for raw in _data_rows(workbook, SUPPLIERS_SHEET):
        yield deserialize_supplier(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRecordRow]:
    """Stream sale and customer-payment records with their lines attached.

    Lines are grouped by ``SaleID`` first so each record is yielded complete,
    in sheet order.
    """

    lines_by_sale: Dict[str, List[SaleLineRow]] = defaultdict(list)
    for raw in _data_rows(workbook, SALE_LINES_SHEET):
        line = deserialize_sale_line(raw)
        lines_by_sale[line.sale_id].append(line)

    for raw in _data_rows(workbook, SALES_SHEET):
        record = deserialize_sale(raw)
        yield replace(record, lines=tuple(lines_by_sale.get(record.sale_id, ())))


def iter_supplier_invoices(workbook: Workbook) -> Iterable[SupplierInvoiceRow]:
    """Stream supplier invoices and payments with their lines attached."""

    lines_by_invoice: Dict[str, List[InvoiceLineRow]] = defaultdict(list)
    for raw in _data_rows(workbook, INVOICE_LINES_SHEET):
        line = deserialize_invoice_line(raw)
        lines_by_invoice[line.invoice_id].append(line)

    for raw in _data_rows(workbook, SUPPLIER_INVOICES_SHEET):
        record = deserialize_supplier_invoice(raw)
        yield replace(record, lines=tuple(lines_by_invoice.get(record.invoice_id, ())))


def header_map(workbook: Workbook, sheet_name: str) -> Dict[str, int]:
    """Map header titles of ``sheet_name`` to 1-based column indices."""

    sheet = workbook[sheet_name]
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1]) if cell.value is not None}


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title identifying the lookup column.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    headers = header_map(workbook, sheet_name)
    if key_column not in headers:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = headers[key_column]
    for row_idx, row in enumerate(workbook[sheet_name].iter_rows(min_row=2, values_only=True), start=2):
        if row[key_col_index - 1] is not None and str(row[key_col_index - 1]) == key_value:
            return row_idx

    return None


def apply_unit_of_work(workbook: Workbook, unit: UnitOfWork) -> None:
    """Apply every mutation of ``unit`` to ``workbook`` as one group.

    All target rows and columns are resolved before the first cell is
    written, so a missing row or unknown column aborts the group with nothing
    applied. Deletes run last, bottom row first, so earlier row indices stay
    valid.

    Args:
        workbook (Workbook): Workbook to mutate in memory.
        unit (UnitOfWork): Planned mutations.

    Raises:
        KeyError: If a sheet, row, or column referenced by a mutation does not
            exist.
        ValueError: If a created row does not match the sheet's column count.
    """

    resolved: List[Tuple[Mutation, Optional[int], Dict[str, int]]] = []
    for mutation in unit:
        if mutation.sheet not in workbook.sheetnames:
            raise KeyError(f"Unknown sheet: {mutation.sheet}")
        headers = header_map(workbook, mutation.sheet)
        if mutation.action is MutationAction.CREATE:
            if len(mutation.row) != len(headers):
                raise ValueError(
                    f"Row for '{mutation.sheet}' has {len(mutation.row)} values, expected {len(headers)}"
                )
            resolved.append((mutation, None, headers))
            continue

        key_column = SHEET_COLUMNS[mutation.sheet][0]
        row_index = locate_row(workbook, mutation.sheet, key_column, mutation.key)
        if row_index is None:
            raise KeyError(f"{mutation.sheet} row not found: {mutation.key}")
        for column in mutation.field_values:
            if column not in headers:
                raise KeyError(f"Unknown {mutation.sheet} field: {column}")
        resolved.append((mutation, row_index, headers))

    deletions: List[Tuple[str, int]] = []
    for mutation, row_index, headers in resolved:
        sheet = workbook[mutation.sheet]
        if mutation.action is MutationAction.CREATE:
            sheet.append(list(mutation.row))
        elif mutation.action is MutationAction.UPDATE:
            for column, value in mutation.field_values.items():
                sheet.cell(row=row_index, column=headers[column], value=value)
        else:
            deletions.append((mutation.sheet, row_index))

    for sheet_name, row_index in sorted(deletions, key=lambda item: item[1], reverse=True):
        workbook[sheet_name].delete_rows(row_index)

    log.debug("Applied unit of work with %d mutations", len(unit))


def format_money(amount: Optional[Decimal]) -> Optional[str]:
    """Serialize a money value as text so no float rounding creeps in."""

    return None if amount is None else str(amount)


def _decimal(raw: object, default: Optional[Decimal] = ZERO) -> Optional[Decimal]:
    if raw is None or raw == "":
        return default
    return Decimal(str(raw))


def _int(raw: object, default: Optional[int] = 0) -> Optional[int]:
    if raw is None or raw == "":
        return default
    return int(Decimal(str(raw)))


def _text(raw: object) -> Optional[str]:
    return None if raw is None else str(raw)


def _bool(raw: object) -> bool:
    if isinstance(raw, str):
        return raw.strip().lower() in {"true", "1", "yes"}
    return bool(raw)


def serialize_product(record: ProductRow) -> list[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.name,
        record.category,
        format_money(record.unit_price),
        format_money(record.purchase_price),
        record.stock,
        record.min_stock,
        record.quantity_per_box,
        format_money(record.box_price),
    ]


def serialize_customer(record: CustomerRow) -> list[object]:
    """Convert a customer dataclass into the worksheet column ordering."""

    return [
        record.customer_id,
        record.name,
        record.phone,
        format_money(record.balance),
        format_money(record.spent),
        record.settlement_day,
    ]


def serialize_supplier(record: SupplierRow) -> list[object]:
    """Convert a supplier dataclass into the worksheet column ordering."""

    return [record.supplier_id, record.name, record.phone, format_money(record.balance)]


def serialize_sale(record: SaleRecordRow) -> list[object]:
    """Convert the header of a sale record into the ``Sales`` column order."""

    return [
        record.sale_id,
        record.timestamp_iso,
        record.kind.value,
        record.customer_id,
        format_money(record.subtotal),
        format_money(record.discount),
        format_money(record.total),
        format_money(record.amount_paid),
        format_money(record.balance_delta),
    ]


def serialize_sale_line(record: SaleLineRow) -> list[object]:
    return [
        record.sale_id,
        record.product_id,
        record.product_name,
        record.quantity,
        format_money(record.unit_price),
        format_money(record.purchase_price),
        record.quantity_per_box,
        format_money(record.box_price),
    ]


def serialize_supplier_invoice(record: SupplierInvoiceRow) -> list[object]:
    """Convert the header of a supplier record into its column order."""

    return [
        record.invoice_id,
        record.timestamp_iso,
        record.supplier_id,
        record.is_payment,
        format_money(record.total_amount),
        format_money(record.amount_paid),
        record.costing_policy.value if record.costing_policy is not None else None,
    ]


def serialize_invoice_line(record: InvoiceLineRow) -> list[object]:
    return [
        record.invoice_id,
        record.product_id,
        record.product_name,
        record.quantity,
        format_money(record.purchase_price),
        record.quantity_per_box,
        format_money(record.box_price),
    ]


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Identifiers are coerced to ``str`` so numeric-looking ids typed into Excel
    still match, and money columns become :class:`~decimal.Decimal`.
    """

    (
        product_id,
        name,
        category,
        unit_price,
        purchase_price,
        stock,
        min_stock,
        quantity_per_box,
        box_price,
    ) = tuple(raw_row[:9])
    return ProductRow(
        product_id=str(product_id),
        name=str(name) if name is not None else "",
        category=str(category) if category is not None else "",
        unit_price=_decimal(unit_price),
        purchase_price=_decimal(purchase_price),
        stock=_int(stock),
        min_stock=_int(min_stock),
        quantity_per_box=_int(quantity_per_box, None),
        box_price=_decimal(box_price, None),
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    customer_id, name, phone, balance, spent, settlement_day = tuple(raw_row[:6])
    return CustomerRow(
        customer_id=str(customer_id),
        name=str(name) if name is not None else "",
        phone=_text(phone),
        balance=_decimal(balance),
        spent=_decimal(spent),
        settlement_day=_int(settlement_day, None),
    )


def deserialize_supplier(raw_row: Sequence[object]) -> SupplierRow:
    supplier_id, name, phone, balance = tuple(raw_row[:4])
    return SupplierRow(
        supplier_id=str(supplier_id),
        name=str(name) if name is not None else "",
        phone=_text(phone),
        balance=_decimal(balance),
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRecordRow:
    """Convert a raw ``Sales`` row into a record without lines."""

    (
        sale_id,
        timestamp_iso,
        kind,
        customer_id,
        subtotal,
        discount,
        total,
        amount_paid,
        balance_delta,
    ) = tuple(raw_row[:9])
    return SaleRecordRow(
        sale_id=str(sale_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        kind=EntryKind(str(kind)),
        customer_id=_text(customer_id),
        subtotal=_decimal(subtotal),
        discount=_decimal(discount),
        total=_decimal(total),
        amount_paid=_decimal(amount_paid),
        balance_delta=_decimal(balance_delta),
    )


def deserialize_sale_line(raw_row: Sequence[object]) -> SaleLineRow:
    (
        sale_id,
        product_id,
        product_name,
        quantity,
        unit_price,
        purchase_price,
        quantity_per_box,
        box_price,
    ) = tuple(raw_row[:8])
    return SaleLineRow(
        sale_id=str(sale_id),
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        quantity=_int(quantity),
        unit_price=_decimal(unit_price),
        purchase_price=_decimal(purchase_price),
        quantity_per_box=_int(quantity_per_box, None),
        box_price=_decimal(box_price, None),
    )


def deserialize_supplier_invoice(raw_row: Sequence[object]) -> SupplierInvoiceRow:
    (
        invoice_id,
        timestamp_iso,
        supplier_id,
        is_payment,
        total_amount,
        amount_paid,
        costing_policy,
    ) = tuple(raw_row[:7])
    return SupplierInvoiceRow(
        invoice_id=str(invoice_id),
        timestamp_iso=str(timestamp_iso) if timestamp_iso is not None else "",
        supplier_id=str(supplier_id),
        is_payment=_bool(is_payment),
        total_amount=_decimal(total_amount),
        amount_paid=_decimal(amount_paid),
        costing_policy=CostingPolicy(str(costing_policy)) if costing_policy else None,
    )


def deserialize_invoice_line(raw_row: Sequence[object]) -> InvoiceLineRow:
    (
        invoice_id,
        product_id,
        product_name,
        quantity,
        purchase_price,
        quantity_per_box,
        box_price,
    ) = tuple(raw_row[:7])
    return InvoiceLineRow(
        invoice_id=str(invoice_id),
        product_id=str(product_id),
        product_name=str(product_name) if product_name is not None else "",
        quantity=_int(quantity),
        purchase_price=_decimal(purchase_price),
        quantity_per_box=_int(quantity_per_box, None),
        box_price=_decimal(box_price, None),
    )
