"""Unit tests for statements, debt aging and stock alerts."""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from pos_ledger import statements
from pos_ledger.constants import EntryKind
from pos_ledger.data_manager import (
    CustomerRow,
    ProductRow,
    SaleLineRow,
    SaleRecordRow,
    SupplierInvoiceRow,
)

from conftest import at


def sale(entry_id: str, when, delta: str) -> statements.SaleEntry:
    return statements.SaleEntry(entry_id, when, Decimal(delta))


def payment(entry_id: str, when, amount: str) -> statements.PaymentEntry:
    return statements.PaymentEntry(entry_id, when, Decimal(amount))


# ---------------------------------------------------------------------------
# Balance reconstruction
# ---------------------------------------------------------------------------


def test_reconstruct_balances_round_trips_to_current_balance():
    """Walking forward from the derived start lands on the stored balance."""

    history = [sale("S1", at(1), "50"), payment("P1", at(3), "20"), sale("S2", at(5), "15.50")]

    result = statements.reconstruct_balances(Decimal("100.00"), history)

    assert result.starting_balance == Decimal("54.50")
    assert [line.balance_after for line in result.lines] == [
        Decimal("104.50"),
        Decimal("84.50"),
        Decimal("100.00"),
    ]
    assert result.closing_balance == Decimal("100.00")


def test_reconstruct_balances_sorts_entries_by_time():
    history = [sale("LATE", at(9), "10"), sale("EARLY", at(2), "5")]

    result = statements.reconstruct_balances(Decimal("15"), history)

    assert [line.entry.entry_id for line in result.lines] == ["EARLY", "LATE"]


def test_reconstruct_balances_keeps_input_order_for_equal_timestamps():
    history = [sale("FIRST", at(4), "1"), payment("SECOND", at(4), "1"), sale("THIRD", at(4), "1")]

    result = statements.reconstruct_balances(Decimal("1"), history)

    assert [line.entry.entry_id for line in result.lines] == ["FIRST", "SECOND", "THIRD"]


def test_parse_timestamp_reads_offsetless_values_as_utc():
    assert statements.parse_timestamp("2024-01-01T12:00:00") == at(1)
    assert statements.parse_timestamp("2024-01-01T09:00:00-03:00") == at(1)


def test_reconstruct_balances_mixes_offsetless_and_utc_rows():
    records = [
        SaleRecordRow(
            sale_id="S-LATE",
            timestamp_iso=at(3).isoformat(),
            kind=EntryKind.SALE,
            customer_id="C1",
            subtotal=Decimal("10"),
            discount=Decimal("0"),
            total=Decimal("10"),
            amount_paid=Decimal("0"),
            balance_delta=Decimal("10"),
        ),
        SaleRecordRow(
            sale_id="S-EARLY",
            timestamp_iso="2024-01-02T12:00:00",
            kind=EntryKind.SALE,
            customer_id="C1",
            subtotal=Decimal("5"),
            discount=Decimal("0"),
            total=Decimal("5"),
            amount_paid=Decimal("0"),
            balance_delta=Decimal("5"),
        ),
    ]

    result = statements.reconstruct_balances(Decimal("15"), statements.entries_from_sales(records))

    assert [line.entry.entry_id for line in result.lines] == ["S-EARLY", "S-LATE"]


def test_reconstruct_balances_with_no_history():
    result = statements.reconstruct_balances(Decimal("12.00"), [])

    assert result.lines == []
    assert result.starting_balance == result.closing_balance == Decimal("12.00")


def test_entries_from_sales_tags_payments():
    records = [
        SaleRecordRow(
            sale_id="S1",
            timestamp_iso=at(1).isoformat(),
            kind=EntryKind.SALE,
            customer_id="C1",
            subtotal=Decimal("100"),
            discount=Decimal("10"),
            total=Decimal("90"),
            amount_paid=Decimal("60"),
            balance_delta=Decimal("30"),
        ),
        SaleRecordRow(
            sale_id="P1",
            timestamp_iso=at(2).isoformat(),
            kind=EntryKind.PAYMENT,
            customer_id="C1",
            subtotal=Decimal("0"),
            discount=Decimal("0"),
            total=Decimal("25"),
            amount_paid=Decimal("25"),
            balance_delta=Decimal("-25"),
        ),
    ]

    first, second = statements.entries_from_sales(records)

    assert isinstance(first, statements.SaleEntry)
    assert first.kind is EntryKind.SALE
    assert first.balance_delta == Decimal("30")
    assert isinstance(second, statements.PaymentEntry)
    assert second.kind is EntryKind.PAYMENT
    assert second.amount == Decimal("25")
    assert second.balance_delta == Decimal("-25")


def test_supplier_entries_carry_debit_and_credit():
    records = [
        SupplierInvoiceRow(
            invoice_id="I1",
            timestamp_iso=at(1).isoformat(),
            supplier_id="S1",
            is_payment=False,
            total_amount=Decimal("80"),
            amount_paid=Decimal("30"),
        ),
        SupplierInvoiceRow(
            invoice_id="SP1",
            timestamp_iso=at(2).isoformat(),
            supplier_id="S1",
            is_payment=True,
            total_amount=Decimal("20"),
            amount_paid=Decimal("20"),
        ),
    ]

    result = statements.reconstruct_balances(Decimal("30"), statements.entries_from_invoices(records))

    invoice_line, payment_line = result.lines
    assert (invoice_line.entry.debit, invoice_line.entry.credit) == (Decimal("80"), Decimal("30"))
    assert invoice_line.balance_after == Decimal("50")
    assert (payment_line.entry.debit, payment_line.entry.credit) == (Decimal("0"), Decimal("20"))
    assert payment_line.balance_after == Decimal("30")
    assert result.starting_balance == Decimal("0")


# ---------------------------------------------------------------------------
# Debt aging
# ---------------------------------------------------------------------------


def test_find_debt_origin_returns_oldest_covering_entry():
    """Only the sales the current balance still covers count toward its age."""

    history = [sale("S1", at(1), "40"), payment("P1", at(5), "40"), sale("S2", at(10), "30"), sale("S3", at(15), "20")]

    assert statements.find_debt_origin(Decimal("50"), history) == date(2024, 1, 10)


def test_find_debt_origin_steps_over_payments():
    """A payment adds its amount back, pushing the origin past it."""

    history = [sale("S1", at(1), "60"), payment("P1", at(5), "20"), sale("S2", at(10), "10")]

    assert statements.find_debt_origin(Decimal("50"), history) == date(2024, 1, 1)


def test_find_debt_origin_none_without_positive_balance():
    history = [sale("S1", at(1), "10")]

    assert statements.find_debt_origin(Decimal("0"), history) is None
    assert statements.find_debt_origin(Decimal("-5"), history) is None
    assert statements.find_debt_origin(Decimal("10"), []) is None


def test_due_date_with_settlement_day_rolls_to_next_month():
    """Origin on the 20th with settlement day 15 is due on the 15th of next month."""

    due = statements.compute_due_date(date(2024, 1, 20), payment_terms_days=30, settlement_day=15)

    assert due == date(2024, 2, 15)


def test_due_date_with_settlement_day_later_in_same_month():
    due = statements.compute_due_date(date(2024, 1, 10), payment_terms_days=30, settlement_day=15)

    assert due == date(2024, 1, 15)


def test_due_date_settlement_day_clamps_to_month_end():
    due = statements.compute_due_date(date(2024, 1, 31), payment_terms_days=30, settlement_day=30)

    assert due == date(2024, 2, 29)


def test_due_date_settlement_day_rolls_over_year_end():
    due = statements.compute_due_date(date(2024, 12, 20), payment_terms_days=30, settlement_day=5)

    assert due == date(2025, 1, 5)


def test_due_date_uses_payment_terms_without_settlement_day():
    due = statements.compute_due_date(date(2024, 1, 1), payment_terms_days=30)

    assert due == date(2024, 1, 31)


def test_due_date_rejects_invalid_settlement_day():
    with pytest.raises(ValueError):
        statements.compute_due_date(date(2024, 1, 1), payment_terms_days=30, settlement_day=32)


@pytest.mark.parametrize(
    ("today", "alert", "overdue"),
    [
        (date(2024, 1, 29), False, False),
        (date(2024, 1, 30), True, False),
        (date(2024, 1, 31), True, False),
        (date(2024, 2, 1), True, True),
        (date(2024, 3, 1), True, True),
    ],
)
def test_resolve_debt_status_alert_window(today, alert, overdue):
    """With 30 day terms from 2024-01-01 alerts start on 2024-01-30."""

    status = statements.resolve_debt_status(
        "C1", Decimal("25"), [sale("S1", at(1), "25")], payment_terms_days=30, today=today
    )

    assert status.due_date == date(2024, 1, 31)
    assert status.needs_alert is alert
    assert status.is_overdue is overdue


def test_debt_alerts_sorted_most_overdue_first():
    customers = [
        CustomerRow(customer_id="RECENT", name="Recent", balance=Decimal("10")),
        CustomerRow(customer_id="OLD", name="Old", balance=Decimal("10")),
        CustomerRow(customer_id="FRESH", name="Fresh", balance=Decimal("10")),
        CustomerRow(customer_id="PAID", name="Paid", balance=Decimal("0")),
        CustomerRow(customer_id="MONTHLY", name="Monthly", balance=Decimal("10"), settlement_day=5),
    ]
    history = {
        "RECENT": [sale("S1", at(20), "10")],
        "OLD": [sale("S2", at(2), "10")],
        "FRESH": [sale("S3", at(1, month=3), "10")],
        "PAID": [sale("S4", at(1), "10"), payment("P4", at(2), "10")],
        "MONTHLY": [sale("S5", at(10, month=2), "10")],
    }

    alerts = statements.debt_alerts(customers, history, payment_terms_days=30, today=date(2024, 3, 5))

    assert [status.counterparty_id for status in alerts] == ["OLD", "RECENT", "MONTHLY"]
    assert alerts[-1].days_until_due == 0


def test_low_stock_products_sorted_by_stock():
    def product(product_id: str, stock: int, min_stock: int) -> ProductRow:
        return ProductRow(
            product_id=product_id,
            name=product_id,
            category="",
            unit_price=Decimal("1"),
            purchase_price=Decimal("1"),
            stock=stock,
            min_stock=min_stock,
        )

    products = [product("A", 5, 5), product("B", 10, 3), product("C", -2, 0), product("D", 1, 4)]

    assert [item.product_id for item in statements.low_stock_products(products)] == ["C", "D", "A"]


def test_sales_profit_summary_uses_cost_snapshots_and_date_range():
    def record(sale_id: str, when, total: str, cost: str, kind=EntryKind.SALE) -> SaleRecordRow:
        return SaleRecordRow(
            sale_id=sale_id,
            timestamp_iso=when.isoformat(),
            kind=kind,
            customer_id=None,
            subtotal=Decimal(total),
            discount=Decimal("0"),
            total=Decimal(total),
            amount_paid=Decimal(total),
            balance_delta=Decimal("0"),
            lines=(
                SaleLineRow(
                    sale_id=sale_id,
                    product_id="P1",
                    product_name="Cola",
                    quantity=2,
                    unit_price=Decimal("0"),
                    purchase_price=Decimal(cost),
                ),
            )
            if kind is EntryKind.SALE
            else (),
        )

    records = [
        record("S1", at(1), "20.00", "3.00"),
        record("S2", at(10), "30.00", "4.00"),
        record("P1", at(11), "99.00", "0", kind=EntryKind.PAYMENT),
        record("S3", at(1, month=2), "50.00", "5.00"),
    ]

    summary = statements.sales_profit_summary(records, start=date(2024, 1, 1), end=date(2024, 1, 31))

    assert summary == {
        "total_revenue": Decimal("50.00"),
        "cost_of_goods": Decimal("14.00"),
        "gross_profit": Decimal("36.00"),
    }
