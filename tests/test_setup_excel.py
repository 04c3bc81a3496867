"""Tests for the workbook setup script."""

from __future__ import annotations

import openpyxl
import pytest

from pos_ledger import data_manager, setup_excel
from pos_ledger.constants import SHEET_COLUMNS, SheetName
from pos_ledger.ledger import NoContext


def test_create_scope_workbook_writes_bold_headers(tmp_path):
    path = setup_excel.create_scope_workbook(tmp_path / "nested" / "shop.xlsx")

    workbook = openpyxl.load_workbook(path)
    assert workbook.sheetnames == list(SHEET_COLUMNS)
    header = workbook[SheetName.PRODUCTS.value][1]
    assert [cell.value for cell in header] == list(SHEET_COLUMNS[SheetName.PRODUCTS.value])
    assert all(cell.font.bold for cell in header)


def test_create_scope_workbook_refuses_to_overwrite(tmp_path):
    path = setup_excel.create_scope_workbook(tmp_path / "shop.xlsx")

    with pytest.raises(FileExistsError):
        setup_excel.create_scope_workbook(path)
    assert setup_excel.create_scope_workbook(path, overwrite=True) == path


def test_create_scope_workbook_accepts_custom_layout(tmp_path):
    path = setup_excel.create_scope_workbook(tmp_path / "tiny.xlsx", sheet_columns={"Only": ("A", "B")})

    assert openpyxl.load_workbook(path).sheetnames == ["Only"]


def test_run_from_config_places_workbook_in_data_dir(tmp_path):
    config_path = tmp_path / "config.ini"
    config_path.write_text("[System]\nDataDir = ledgers\nStoreName = Shop\nSchemaVersion = 1.0.0\n")

    path = setup_excel.run_from_config(config_path, "north")

    assert path == data_manager.scope_workbook_path((tmp_path / "ledgers").resolve(), "north")
    assert path.exists()


def test_run_from_config_rejects_unsafe_scope(tmp_path):
    with pytest.raises(NoContext):
        setup_excel.run_from_config(tmp_path / "config.ini", "../north")


def test_main_reports_success_and_conflicts(config_bundle, capsys):
    argv = ["--config", str(config_bundle.config_path), "--scope", "south"]

    assert setup_excel.main(argv) == 0
    assert "[SUCCESS]" in capsys.readouterr().out
    assert setup_excel.main(argv) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_excel.main([*argv, "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    assert setup_excel.main(["--config", str(tmp_path / "absent.ini"), "--scope", "north"]) == 1
    assert "[ERROR]" in capsys.readouterr().out
