"""Enumerations and workbook layout shared across the ledger modules.

The data access layer, the ledger engine and the command-line front-end all
rely on these identifiers, so they live in one place.
"""

from __future__ import annotations

from enum import Enum
from typing import Mapping, Sequence


# Schema version every scope workbook is expected to declare in config.ini.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_PAYMENT_TERMS_DAYS = 30


class CostingPolicy(str, Enum):
    """Rule used to revalue a product's cost basis when new stock arrives."""

    MASTER_OVERRIDE = "masterOverride"
    WEIGHTED_AVERAGE = "weightedAverage"
    NONE = "none"


class EntryKind(str, Enum):
    """Tag carried by every ledger entry and stored transaction record."""

    SALE = "SALE"
    PAYMENT = "PAYMENT"


class SheetName(str, Enum):
    """Worksheets managed by the data access layer."""

    PRODUCTS = "Products"
    CUSTOMERS = "Customers"
    SUPPLIERS = "Suppliers"
    SALES = "Sales"
    SALE_LINES = "SaleLines"
    SUPPLIER_INVOICES = "SupplierInvoices"
    INVOICE_LINES = "InvoiceLines"


# Column order of every worksheet. The first column is always the row key.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Name",
        "Category",
        "UnitPrice",
        "PurchasePrice",
        "Stock",
        "MinStock",
        "QuantityPerBox",
        "BoxPrice",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "Name",
        "Phone",
        "Balance",
        "Spent",
        "SettlementDay",
    ],
    SheetName.SUPPLIERS.value: [
        "SupplierID",
        "Name",
        "Phone",
        "Balance",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Timestamp",
        "Kind",
        "CustomerID",
        "Subtotal",
        "Discount",
        "Total",
        "AmountPaid",
        "BalanceDelta",
    ],
    SheetName.SALE_LINES.value: [
        "SaleID",
        "ProductID",
        "ProductName",
        "Quantity",
        "UnitPrice",
        "PurchasePrice",
        "QuantityPerBox",
        "BoxPrice",
    ],
    SheetName.SUPPLIER_INVOICES.value: [
        "InvoiceID",
        "Timestamp",
        "SupplierID",
        "IsPayment",
        "TotalAmount",
        "AmountPaid",
        "CostingPolicy",
    ],
    SheetName.INVOICE_LINES.value: [
        "InvoiceID",
        "ProductID",
        "ProductName",
        "Quantity",
        "PurchasePrice",
        "QuantityPerBox",
        "BoxPrice",
    ],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_PAYMENT_TERMS_DAYS",
    "CostingPolicy",
    "EntryKind",
    "SheetName",
    "SHEET_COLUMNS",
]
