"""Shared pytest fixtures and utilities for POS ledger tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pos_ledger import cli, constants, core_logic, data_manager  # noqa: E402
from pos_ledger.setup_excel import create_scope_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_SCOPE = "corner-shop"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataDir = {data_dir}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
)
_LEDGER_TEMPLATE = (
    "\n[Ledger]\n"
    "PaymentTermsDays = {payment_terms_days}\n"
    "DefaultCostingPolicy = {costing_policy}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    data_dir: Path
    workbook_path: Path
    scope: str
    schema_version: str
    store_name: str


def at(day: int, hour: int = 12, month: int = 1, year: int = 2024) -> datetime:
    """Build a UTC timestamp; tests keep every timestamp timezone-aware."""

    return datetime(year, month, day, hour, tzinfo=UTC)


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized scope workbook in a temp folder."""

    def _create_workbook(*, data_dir: Path | None = None, scope: str = DEFAULT_SCOPE) -> Path:
        target_dir = data_dir if data_dir is not None else tmp_path / "data"
        workbook_path = data_manager.scope_workbook_path(target_dir, scope)
        create_scope_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        scope: str = DEFAULT_SCOPE,
        store_name: str = "Corner Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        payment_terms_days: int | None = 30,
        costing_policy: str = constants.CostingPolicy.WEIGHTED_AVERAGE.value,
        make_relative: bool = True,
    ) -> ConfigBundle:
        bundle_dir = tmp_path / f"bundle_{uuid.uuid4().hex}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        data_dir = bundle_dir / "data"
        workbook_path = workbook_factory(data_dir=data_dir, scope=scope)

        text = _CONFIG_TEMPLATE.format(
            data_dir="data" if make_relative else str(data_dir),
            store_name=store_name,
            schema_version=schema_version,
        )
        if payment_terms_days is not None:
            text += _LEDGER_TEMPLATE.format(payment_terms_days=payment_terms_days, costing_policy=costing_policy)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(text)
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            data_dir=data_dir.resolve(),
            workbook_path=workbook_path,
            scope=scope,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_bundle: ConfigBundle) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_bundle.config_path, scope=config_bundle.scope)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def stocked_context(runtime_context: core_logic.RuntimeContext) -> core_logic.RuntimeContext:
    """Runtime context seeded with two products, a customer and a supplier.

    ``P-COLA`` sells per unit at 10.00; ``P-WATER`` sells at 1.00 per unit or
    5.00 per box of 6.
    """

    core_logic.add_product(
        runtime_context,
        product_id="P-COLA",
        name="Cola",
        category="Drinks",
        unit_price=Decimal("10.00"),
        purchase_price=Decimal("2.00"),
        stock=10,
        min_stock=3,
    )
    core_logic.add_product(
        runtime_context,
        product_id="P-WATER",
        name="Water",
        category="Drinks",
        unit_price=Decimal("1.00"),
        purchase_price=Decimal("0.50"),
        stock=24,
        min_stock=6,
        quantity_per_box=6,
        box_price=Decimal("5.00"),
    )
    core_logic.add_customer(runtime_context, customer_id="C-ANA", name="Ana")
    core_logic.add_supplier(runtime_context, supplier_id="SUP-ACME", name="Acme Wholesale")
    return runtime_context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pos-ledger", description="POS ledger")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
