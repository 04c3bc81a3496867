"""Command-line entry points for the POS ledger.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the command objects consumed by the business
layer. Every write command commits its own unit of work, so nothing needs to
be persisted here after dispatch.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, log
from .constants import CostingPolicy
from .costing import IncomingLine
from .ledger import LedgerError
from .statements import PaymentEntry, Statement


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]


def parse_money(raw: str) -> Decimal:
    """argparse type converting text into a ``Decimal`` amount."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise argparse.ArgumentTypeError(f"Invalid amount: {raw!r}") from exc


def parse_date(raw: str) -> date:
    try:
        return date.fromisoformat(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid date (expected YYYY-MM-DD): {raw!r}") from exc


def parse_sale_line(raw: str) -> core_logic.SaleItem:
    """Parse ``PRODUCT_ID:QUANTITY`` into a sale item."""
    product_id, sep, quantity = raw.rpartition(":")
    if not sep or not product_id:
        raise argparse.ArgumentTypeError(f"Expected PRODUCT_ID:QUANTITY, got {raw!r}")
    try:
        return core_logic.SaleItem(product_id=product_id, quantity=int(quantity))
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in {raw!r}") from exc


def parse_invoice_line(raw: str) -> IncomingLine:
    """Parse ``PRODUCT_ID:QUANTITY:COST[:QUANTITY_PER_BOX:BOX_PRICE]``."""
    parts = raw.split(":")
    if len(parts) not in (3, 5) or not parts[0]:
        raise argparse.ArgumentTypeError(
            f"Expected PRODUCT_ID:QUANTITY:COST[:QUANTITY_PER_BOX:BOX_PRICE], got {raw!r}"
        )
    try:
        quantity = int(parts[1])
        quantity_per_box = int(parts[3]) if len(parts) == 5 else None
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in {raw!r}") from exc
    return IncomingLine(
        product_id=parts[0],
        quantity=quantity,
        unit_cost=parse_money(parts[2]),
        quantity_per_box=quantity_per_box,
        box_price=parse_money(parts[4]) if len(parts) == 5 else None,
    )


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-ledger",
        description="Command-line tools for the POS account ledger.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (searched upwards from the working directory by default).",
    )
    parser.add_argument("--scope", required=True, help="Data partition (store or operator) to work on.")
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and payments."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "add-supplier": register_add_supplier_command(subparsers),
        "sale": register_sale_command(subparsers),
        "pay-customer": register_pay_customer_command(subparsers),
        "pay-supplier": register_pay_supplier_command(subparsers),
        "receive-invoice": register_receive_invoice_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as statements and reports."""
    specs = {
        "statement": register_statement_command(subparsers),
        "debt-alerts": register_debt_alerts_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "profit": register_profit_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""
    name = "add-product"
    help_text = "Add a product to the catalog."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", default=None)
        parser.add_argument("--name", required=True)
        parser.add_argument("--category", default="")
        parser.add_argument("--unit-price", type=parse_money, required=True)
        parser.add_argument("--purchase-price", type=parse_money, default=Decimal("0"))
        parser.add_argument("--stock", type=int, default=0)
        parser.add_argument("--min-stock", type=int, default=0)
        parser.add_argument("--quantity-per-box", type=int, default=None)
        parser.add_argument("--box-price", type=parse_money, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_product)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""
    name = "add-customer"
    help_text = "Add a customer with a zero balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.add_argument("--settlement-day", type=int, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_customer)


def register_add_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-supplier``."""
    name = "add-supplier"
    help_text = "Add a supplier with a zero balance."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", default=None)
        parser.add_argument("--name", required=True)
        parser.add_argument("--phone", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_supplier)


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""
    name = "sale"
    help_text = "Record a sale. Omit --customer-id for a walk-in sale."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--line",
            dest="lines",
            type=parse_sale_line,
            action="append",
            required=True,
            metavar="PRODUCT_ID:QUANTITY",
        )
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--discount", type=parse_money, default=Decimal("0"))
        parser.add_argument("--amount-paid", type=parse_money, default=Decimal("0"))
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_sale)


def register_pay_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-customer``."""
    name = "pay-customer"
    help_text = "Record a payment received from a customer."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-id", required=True)
        parser.add_argument("--amount", type=parse_money, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_customer)


def register_pay_supplier_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``pay-supplier``."""
    name = "pay-supplier"
    help_text = "Record a payment made to a supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument("--amount", type=parse_money, required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_pay_supplier)


def register_receive_invoice_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receive-invoice``."""
    name = "receive-invoice"
    help_text = "Receive stock on a supplier invoice."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--supplier-id", required=True)
        parser.add_argument(
            "--line",
            dest="lines",
            type=parse_invoice_line,
            action="append",
            required=True,
            metavar="PRODUCT_ID:QUANTITY:COST[:QUANTITY_PER_BOX:BOX_PRICE]",
        )
        parser.add_argument("--amount-paid", type=parse_money, default=Decimal("0"))
        parser.add_argument(
            "--policy",
            choices=[member.value for member in CostingPolicy],
            default=None,
            help="Costing policy (defaults to DefaultCostingPolicy from config.ini).",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_receive_invoice)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""
    name = "delete-product"
    help_text = "Delete a product that no transaction references."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--product-id", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete_product)


def register_statement_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``statement``."""
    name = "statement"
    help_text = "Display the running balance of a customer or supplier."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        target = parser.add_mutually_exclusive_group(required=True)
        target.add_argument("--customer-id", default=None)
        target.add_argument("--supplier-id", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_statement)


def register_debt_alerts_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``debt-alerts``."""
    name = "debt-alerts"
    help_text = "List customers whose debt is overdue or due within a day."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--today", type=parse_date, default=None, help="Reference date (YYYY-MM-DD).")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_debt_alerts)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    name = "low-stock"
    help_text = "List products at or below their minimum stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_low_stock)


def register_profit_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``profit``."""
    name = "profit"
    help_text = "Display revenue, cost of goods, and gross profit."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--start", type=parse_date, default=None)
        parser.add_argument("--end", type=parse_date, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_profit_report)


def load_runtime_context(config_path: Optional[Path], scope: str) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations.

    Without ``config_path`` the data layer searches for ``config.ini`` from the
    working directory upwards.
    """
    return core_logic.load_runtime_context(config_path, scope=scope)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into an add-product request."""
    return {
        "product_id": args.product_id,
        "name": args.name,
        "category": args.category,
        "unit_price": args.unit_price,
        "purchase_price": args.purchase_price,
        "stock": args.stock,
        "min_stock": args.min_stock,
        "quantity_per_box": args.quantity_per_box,
        "box_price": args.box_price,
    }


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    return {
        "customer_id": args.customer_id,
        "name": args.name,
        "phone": args.phone,
        "settlement_day": args.settlement_day,
    }


def translate_add_supplier(args: argparse.Namespace) -> Mapping[str, Any]:
    return {"supplier_id": args.supplier_id, "name": args.name, "phone": args.phone}


def translate_sale(args: argparse.Namespace) -> core_logic.SaleCommand:
    """Translate CLI args into a sale command object."""
    return core_logic.SaleCommand(
        items=tuple(args.lines),
        customer_id=args.customer_id,
        discount=args.discount,
        amount_paid=args.amount_paid,
    )


def translate_pay_customer(args: argparse.Namespace) -> core_logic.CustomerPaymentCommand:
    return core_logic.CustomerPaymentCommand(customer_id=args.customer_id, amount=args.amount)


def translate_pay_supplier(args: argparse.Namespace) -> core_logic.SupplierPaymentCommand:
    return core_logic.SupplierPaymentCommand(supplier_id=args.supplier_id, amount=args.amount)


def translate_receive_invoice(args: argparse.Namespace) -> core_logic.SupplierInvoiceCommand:
    """Translate CLI args into a supplier invoice command object."""
    return core_logic.SupplierInvoiceCommand(
        supplier_id=args.supplier_id,
        lines=tuple(args.lines),
        amount_paid=args.amount_paid,
        policy=CostingPolicy(args.policy) if args.policy else None,
    )


def format_statement(statement: Statement) -> str:
    """Render a statement as aligned text lines."""
    rows = [f"{'Starting balance':<40}{statement.starting_balance:>12}"]
    for line in statement.lines:
        entry = line.entry
        label = "PAYMENT" if isinstance(entry, PaymentEntry) else "CHARGE"
        rows.append(
            f"{entry.timestamp:%Y-%m-%d} {entry.entry_id:<22} {label:<7}"
            f"{entry.debit:>10}{entry.credit:>10}{line.balance_after:>12}"
        )
    rows.append(f"{'Closing balance':<40}{statement.closing_balance:>12}")
    return "\n".join(rows)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow in the BLL."""
    product = core_logic.add_product(context, **translate_add_product(args))
    print(f"Added product {product.product_id}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    customer = core_logic.add_customer(context, **translate_add_customer(args))
    print(f"Added customer {customer.customer_id}")
    return 0


def run_add_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    supplier = core_logic.add_supplier(context, **translate_add_supplier(args))
    print(f"Added supplier {supplier.supplier_id}")
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the sale workflow via the BLL."""
    record = core_logic.record_sale(context, translate_sale(args))
    print(f"Recorded sale {record.sale_id}: total {record.total}, paid {record.amount_paid}, owed {record.balance_delta}")
    return 0


def run_pay_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.record_customer_payment(context, translate_pay_customer(args))
    print(f"Recorded payment {record.sale_id}: {record.total}")
    return 0


def run_pay_supplier(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    record = core_logic.record_supplier_payment(context, translate_pay_supplier(args))
    print(f"Recorded payment {record.invoice_id}: {record.amount_paid}")
    return 0


def run_receive_invoice(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the supplier invoice workflow via the BLL."""
    record = core_logic.record_supplier_invoice(context, translate_receive_invoice(args))
    print(f"Recorded invoice {record.invoice_id}: total {record.total_amount}, paid {record.amount_paid}")
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    core_logic.delete_product(context, args.product_id)
    print(f"Deleted product {args.product_id}")
    return 0


def run_statement(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the statement report for the selected counterparty."""
    if args.customer_id is not None:
        statement = core_logic.customer_statement(context, args.customer_id)
    else:
        statement = core_logic.supplier_statement(context, args.supplier_id)
    print(format_statement(statement))
    return 0


def run_debt_alerts(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the debt alert report."""
    alerts = core_logic.debt_alert_report(context, today=args.today)
    if not alerts:
        print("No debt alerts.")
    for status in alerts:
        state = "OVERDUE" if status.is_overdue else "DUE SOON"
        print(
            f"{status.counterparty_id:<20} {status.balance:>12} due {status.due_date.isoformat()} "
            f"({status.days_until_due:+d} days) {state}"
        )
    return 0


def run_low_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the low-stock report."""
    for product in core_logic.low_stock_report(context):
        print(f"{product.product_id:<20} {product.name:<30} stock {product.stock} (min {product.min_stock})")
    return 0


def run_profit_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the profit reporting workflow."""
    summary = core_logic.calculate_profit_summary(context, start=args.start, end=args.end)
    for key, value in summary.items():
        print(f"{key:<15} {value:>12}")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, LedgerError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None), args.scope)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
