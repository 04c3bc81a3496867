"""Statements, debt aging and stock alerts derived from stored history.

Counterparty balances are authoritative; history is explained backwards from
them rather than replayed forwards into them. Every entry is either a
:class:`SaleEntry` (something that raised the balance: a sale or a supplier
invoice) or a :class:`PaymentEntry` (money that lowered it), and the
functions here branch on that tag only.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Union

from . import log
from .constants import EntryKind
from .data_manager import CustomerRow, ProductRow, SaleRecordRow, SupplierInvoiceRow
from .pricing import ZERO, round2


@dataclass(frozen=True)
class SaleEntry:
    """A transaction that charged the counterparty."""

    entry_id: str
    timestamp: datetime
    balance_delta: Decimal
    debit: Decimal = ZERO
    credit: Decimal = ZERO

    kind = EntryKind.SALE


@dataclass(frozen=True)
class PaymentEntry:
    """Money received from, or paid to, the counterparty."""

    entry_id: str
    timestamp: datetime
    amount: Decimal

    kind = EntryKind.PAYMENT

    @property
    def balance_delta(self) -> Decimal:
        return -self.amount

    @property
    def debit(self) -> Decimal:
        return ZERO

    @property
    def credit(self) -> Decimal:
        return self.amount


LedgerEntry = Union[SaleEntry, PaymentEntry]


@dataclass(frozen=True)
class StatementLine:
    entry: LedgerEntry
    balance_after: Decimal


@dataclass(frozen=True)
class Statement:
    """Running balances of one counterparty, oldest entry first."""

    starting_balance: Decimal
    lines: List[StatementLine]
    closing_balance: Decimal


@dataclass(frozen=True)
class DebtStatus:
    """Where a counterparty's oldest unpaid debt stands relative to today."""

    counterparty_id: str
    balance: Decimal
    origin_date: date
    due_date: date
    days_until_due: int

    @property
    def is_overdue(self) -> bool:
        return self.days_until_due < 0

    @property
    def needs_alert(self) -> bool:
        return self.days_until_due <= 1


def parse_timestamp(timestamp_iso: str) -> datetime:
    """Parse a stored timestamp; values without an offset are read as UTC."""

    parsed = datetime.fromisoformat(timestamp_iso)
    return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)


def entries_from_sales(records: Iterable[SaleRecordRow]) -> List[LedgerEntry]:
    """Turn customer sale and payment records into tagged ledger entries."""

    entries: List[LedgerEntry] = []
    for record in records:
        timestamp = parse_timestamp(record.timestamp_iso)
        if record.kind is EntryKind.PAYMENT:
            entries.append(PaymentEntry(record.sale_id, timestamp, -record.balance_delta))
        else:
            entries.append(
                SaleEntry(
                    record.sale_id,
                    timestamp,
                    record.balance_delta,
                    debit=record.total,
                    credit=record.amount_paid,
                )
            )
    return entries


def entries_from_invoices(records: Iterable[SupplierInvoiceRow]) -> List[LedgerEntry]:
    """Turn supplier invoices and payments into tagged ledger entries."""

    entries: List[LedgerEntry] = []
    for record in records:
        timestamp = parse_timestamp(record.timestamp_iso)
        if record.is_payment:
            entries.append(PaymentEntry(record.invoice_id, timestamp, record.amount_paid))
        else:
            entries.append(
                SaleEntry(
                    record.invoice_id,
                    timestamp,
                    record.balance_delta,
                    debit=record.total_amount,
                    credit=record.amount_paid,
                )
            )
    return entries


def chronological(entries: Iterable[LedgerEntry]) -> List[LedgerEntry]:
    """Sort entries oldest first. Entries sharing a timestamp keep input order."""

    return sorted(entries, key=lambda entry: entry.timestamp)


def reconstruct_balances(current_balance: Decimal, entries: Sequence[LedgerEntry]) -> Statement:
    """Derive the running balance after every historical entry.

    The balance before the first entry is the current balance minus every
    delta; walking forward from it must land exactly on ``current_balance``.

    Args:
        current_balance (Decimal): The counterparty's stored balance.
        entries (Sequence[LedgerEntry]): Its full transaction history.

    Returns:
        Statement: Starting balance, one line per entry, closing balance.
    """

    ordered = chronological(entries)
    starting_balance = current_balance - sum((entry.balance_delta for entry in ordered), ZERO)
    running = starting_balance
    lines: List[StatementLine] = []
    for entry in ordered:
        running += entry.balance_delta
        lines.append(StatementLine(entry=entry, balance_after=running))
    return Statement(starting_balance=starting_balance, lines=lines, closing_balance=running)


def find_debt_origin(balance: Decimal, entries: Sequence[LedgerEntry]) -> Optional[date]:
    """Find the date of the oldest entry still covered by ``balance``.

    Walks the history newest first, peeling each entry off the outstanding
    amount until nothing positive is left. Sales peel off their balance
    delta; payments add their amount back, since they were paid against
    debt that must have existed before them.

    Returns:
        date | None: The origin date, or ``None`` when the balance is not
            positive or no entry explains it.
    """

    remaining = balance
    origin: Optional[date] = None
    for entry in reversed(chronological(entries)):
        if remaining <= ZERO:
            break
        origin = entry.timestamp.date()
        if isinstance(entry, PaymentEntry):
            remaining += entry.amount
        else:
            remaining -= entry.balance_delta
    return origin


def _with_day(year: int, month: int, day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day, last_day))


def compute_due_date(
    origin: date,
    *,
    payment_terms_days: int,
    settlement_day: Optional[int] = None,
) -> date:
    """Compute when a debt that started on ``origin`` falls due.

    With a settlement day the debt is due on that day of the origin month, or
    of the following month when that day has already passed. Days beyond the
    end of a short month fall on its last day. Without one, the debt is due
    ``payment_terms_days`` after the origin.
    """

    if settlement_day is None:
        return origin + timedelta(days=payment_terms_days)
    if not 1 <= settlement_day <= 31:
        raise ValueError(f"Settlement day must be between 1 and 31: {settlement_day}")

    due = _with_day(origin.year, origin.month, settlement_day)
    if due < origin:
        year, month = (origin.year + 1, 1) if origin.month == 12 else (origin.year, origin.month + 1)
        due = _with_day(year, month, settlement_day)
    return due


def resolve_debt_status(
    counterparty_id: str,
    balance: Decimal,
    entries: Sequence[LedgerEntry],
    *,
    payment_terms_days: int,
    today: date,
    settlement_day: Optional[int] = None,
) -> Optional[DebtStatus]:
    """Locate the oldest unpaid debt of a counterparty and date it.

    Returns:
        DebtStatus | None: ``None`` when nothing is owed or no debt origin can
            be found in the history.
    """

    origin = find_debt_origin(balance, entries)
    if origin is None:
        return None
    due = compute_due_date(origin, payment_terms_days=payment_terms_days, settlement_day=settlement_day)
    return DebtStatus(
        counterparty_id=counterparty_id,
        balance=balance,
        origin_date=origin,
        due_date=due,
        days_until_due=(due - today).days,
    )


def debt_alerts(
    customers: Iterable[CustomerRow],
    entries_by_customer: Mapping[str, Sequence[LedgerEntry]],
    *,
    payment_terms_days: int,
    today: date,
) -> List[DebtStatus]:
    """Collect customers whose debt is overdue, due today or due tomorrow.

    The most overdue customer comes first.
    """

    alerts: List[DebtStatus] = []
    for customer in customers:
        if customer.balance <= ZERO:
            continue
        status = resolve_debt_status(
            customer.customer_id,
            customer.balance,
            entries_by_customer.get(customer.customer_id, ()),
            payment_terms_days=payment_terms_days,
            today=today,
            settlement_day=customer.settlement_day,
        )
        if status is not None and status.needs_alert:
            alerts.append(status)
    alerts.sort(key=lambda status: status.days_until_due)
    log.debug("Found %d debt alerts as of %s", len(alerts), today.isoformat())
    return alerts


def low_stock_products(products: Iterable[ProductRow]) -> List[ProductRow]:
    """Products at or below their minimum stock, emptiest first."""

    return sorted(
        (product for product in products if product.stock <= product.min_stock),
        key=lambda product: product.stock,
    )


def sales_profit_summary(
    records: Iterable[SaleRecordRow],
    *,
    start: Optional[date] = None,
    end: Optional[date] = None,
) -> Dict[str, Decimal]:
    """Aggregate revenue, cost of goods and gross profit over sale records.

    Payments are ignored. Cost uses the purchase price captured on each sale
    line. ``start`` and ``end`` are inclusive calendar dates.
    """

    revenue = ZERO
    cost = ZERO
    for record in records:
        if record.kind is not EntryKind.SALE:
            continue
        sold_on = parse_timestamp(record.timestamp_iso).date()
        if start is not None and sold_on < start:
            continue
        if end is not None and sold_on > end:
            continue
        revenue += record.total
        cost += sum((line.quantity * line.purchase_price for line in record.lines), ZERO)
    return {
        "total_revenue": round2(revenue),
        "cost_of_goods": round2(cost),
        "gross_profit": round2(revenue - cost),
    }


__all__ = [
    "SaleEntry",
    "PaymentEntry",
    "LedgerEntry",
    "StatementLine",
    "Statement",
    "DebtStatus",
    "entries_from_sales",
    "entries_from_invoices",
    "reconstruct_balances",
    "find_debt_origin",
    "compute_due_date",
    "resolve_debt_status",
    "debt_alerts",
    "low_stock_products",
    "sales_profit_summary",
]
