"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
import json
from datetime import date
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from repair_desk import billing, constants, data_manager
from repair_desk.records import (
    Bill,
    LaptopRecord,
    PhoneIntake,
    ServiceRecord,
    Snapshot,
    VendorBill,
    VendorRecord,
    Warranty,
)


def _sample_snapshot() -> Snapshot:
    screen = billing.make_line_item("Screen", "1300.50", 1, breakout="OEM")
    totals = billing.compute_bill_totals([screen], "5")
    service = ServiceRecord(
        service_id="SRV001",
        date=date(2025, 11, 15),
        customer_name="Sara",
        mobile_number="03111111111",
        mobile_brand="Samsung",
        model="A52",
        service_types=("Screen", "Battery"),
        accessories=("Charger",),
        estimated_delivery=date(2025, 11, 20),
        bill=Bill(
            items=(screen,),
            tax_percent=Decimal("5"),
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            grand_total=totals.grand_total,
            warranty=Warranty(6, date(2025, 11, 15)),
            saved_at="2025-11-15T10:00:00+00:00",
        ),
        timestamp="2025-11-15T09:00:00+00:00",
    )
    laptop = LaptopRecord("LAP001", date(2025, 11, 16), "03222222222", laptop_brand="Dell", accessories=("Bag",))
    phones = (
        PhoneIntake(
            "VND001-P001",
            date(2025, 11, 1),
            "Vivo",
            "Y20",
            "Board",
            status=constants.PhoneStatus.BILLED,
            completed=True,
            billed=True,
            bill_id="VND001-B001",
        ),
        PhoneIntake("VND001-P002", date(2025, 11, 2), "Oppo", "A5", "Mic", status=constants.PhoneStatus.IN_REPAIR),
    )
    vendor_items = (billing.make_line_item("Board repair", "800", 1),)
    vendor_totals = billing.compute_bill_totals(vendor_items, "0")
    vendor = VendorRecord(
        "VND001",
        "Ali Mobiles",
        "03001234567",
        date(2025, 11, 1),
        phones=phones,
        bills=(
            VendorBill(
                bill_id="VND001-B001",
                bill_date=date(2025, 11, 10),
                phone_ids=("VND001-P001",),
                items=vendor_items,
                tax_percent=Decimal("0"),
                subtotal=vendor_totals.subtotal,
                tax_amount=vendor_totals.tax_amount,
                grand_total=vendor_totals.grand_total,
                saved_at="2025-11-10T12:00:00+00:00",
            ),
        ),
    )
    return Snapshot(services=(service,), laptops=(laptop,), vendors=(vendor,))


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    result = data_manager.find_config_file(config_file)
    assert result == config_file


def test_find_config_file_discovers_in_cwd(tmp_path, monkeypatch):
    """Auto-discovery should locate config.ini in the working directory tree."""

    config_dir = tmp_path / "nested"
    child = config_dir / "child"
    child.mkdir(parents=True)
    config_file = config_dir / "config.ini"
    config_file.write_text("[System]\nDataFile=repair_desk.xlsx")
    monkeypatch.chdir(child)

    result = data_manager.find_config_file()
    assert result == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_loads_sections(config_file: Path):
    """read_config should return a populated ConfigParser."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "ShopName") == "Test Shop"
    assert parser.get("Defaults", "WarrantyMonths") == "3"


def test_read_config_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative paths should be anchored to the config location."""

    bundle = config_factory(make_relative=True, tax_percent="16")
    parser = configparser.ConfigParser()
    parser.read(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.changelog_file == bundle.changelog_path.resolve()
    assert settings.backup_dir == bundle.backup_dir.resolve()
    assert settings.default_tax_percent == Decimal("16")
    assert settings.default_warranty_months == 3


def test_parse_settings_blank_changelog_means_memory(config_factory):
    bundle = config_factory(with_changelog=False)
    parser = data_manager.read_config(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.directory)

    assert settings.changelog_file is None


def test_parse_settings_falls_back_on_unsupported_warranty(config_factory):
    bundle = config_factory(warranty_months="12")
    parser = data_manager.read_config(bundle.config_path)

    settings = data_manager.parse_settings(parser, base_path=bundle.directory)

    assert settings.default_warranty_months == constants.DEFAULT_WARRANTY_MONTHS


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_bad_tax(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=a.xlsx\nShopName=S\nSchemaVersion=1.0.0\n[Defaults]\nTaxPercent=lots\n"
    )
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert workbook.sheetnames == list(data_manager.SHEET_COLUMNS)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_new_workbook_writes_bold_headers():
    workbook = data_manager.new_workbook()

    sheet = workbook[data_manager.VENDOR_BILLS_SHEET]
    header = [cell.value for cell in sheet[1]]
    assert header == list(data_manager.SHEET_COLUMNS[data_manager.VENDOR_BILLS_SHEET])
    assert sheet.cell(row=1, column=1).font.bold


def test_save_workbook_leaves_no_staging_file(tmp_path):
    destination = tmp_path / "nested" / "out.xlsx"

    data_manager.save_workbook(data_manager.new_workbook(), destination)

    assert destination.exists()
    assert [path.name for path in destination.parent.iterdir()] == ["out.xlsx"]


# ---------------------------------------------------------------------------
# Snapshot conversion
# ---------------------------------------------------------------------------


def test_snapshot_survives_workbook_round_trip(tmp_path):
    """Everything written by the store should read back identically."""

    snapshot = _sample_snapshot()
    path = data_manager.write_snapshot(snapshot, tmp_path / "data.xlsx")

    loaded = data_manager.read_snapshot(openpyxl.load_workbook(path))

    assert loaded == snapshot


def test_vendor_bill_money_is_written_as_text():
    bill = _sample_snapshot().vendors[0].bills[0]

    row = data_manager.serialize_vendor_bill("VND001", bill)

    assert row[5:9] == ["0", "800", "0", "800"]
    assert json.loads(row[4])[0]["price"] == "800"


def test_deserialize_vendor_bill_recomputes_totals():
    """Stored totals are informational only."""

    bill = _sample_snapshot().vendors[0].bills[0]
    row = data_manager.serialize_vendor_bill("VND001", bill)
    row[8] = "999999"

    vendor_id, loaded = data_manager.deserialize_vendor_bill(tuple(row))

    assert vendor_id == "VND001"
    assert loaded.grand_total == Decimal("800")


def test_bill_json_keeps_warranty_and_recomputes_end_date():
    bill = _sample_snapshot().services[0].bill
    payload = json.loads(data_manager.bill_to_json(bill))
    payload["to_date"] = "1999-01-01"

    loaded = data_manager.bill_from_json(json.dumps(payload))

    assert loaded.warranty.period_months == 6
    assert loaded.warranty.to_date == date(2026, 5, 15)


def test_read_snapshot_skips_orphan_phones():
    workbook = data_manager.new_workbook()
    workbook[data_manager.VENDOR_PHONES_SHEET].append(
        ["VND009-P001", "VND009", "2025-11-01", "Nokia", "3310", "", "", "Received", False, False, None]
    )

    snapshot = data_manager.read_snapshot(workbook)

    assert snapshot.vendors == ()


def test_workbook_store_load_and_save(master_workbook_path):
    store = data_manager.WorkbookStore(master_workbook_path)
    assert store.load() == Snapshot()

    assert store.save(_sample_snapshot()) is True
    assert store.load() == _sample_snapshot()


def test_workbook_store_load_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.WorkbookStore(tmp_path / "missing.xlsx").load()


def test_workbook_store_save_reports_failure(tmp_path, monkeypatch):
    """I/O errors become a False return instead of an exception."""

    def _fail(snapshot, destination):
        raise PermissionError("file is open elsewhere")

    monkeypatch.setattr(data_manager, "write_snapshot", _fail)

    assert data_manager.WorkbookStore(tmp_path / "data.xlsx").save(Snapshot()) is False


def test_parse_settings_rejects_non_finite_tax(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string(
        "[System]\nDataFile=a.xlsx\nShopName=S\nSchemaVersion=1.0.0\n[Defaults]\nTaxPercent=NaN\n"
    )
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_workbook_store_save_strips_control_characters(master_workbook_path):
    """A stray control character must not make every later save fail."""

    store = data_manager.WorkbookStore(master_workbook_path)
    laptop = LaptopRecord("LAP001", date(2025, 11, 16), "0322", issue="fan\x07noise")

    assert store.save(Snapshot(laptops=(laptop,))) is True
    assert store.load().laptops[0].issue == "fannoise"


def test_workbook_store_sets_unreadable_file_aside(master_workbook_path):
    workbook = openpyxl.load_workbook(master_workbook_path)
    workbook[data_manager.LAPTOPS_SHEET].append(["LAP001", "2025-11-16", "0322", "", "", "", "", "{broken json"])
    workbook.save(master_workbook_path)
    store = data_manager.WorkbookStore(master_workbook_path)

    with pytest.raises(ValueError):
        store.load()

    copies = list(master_workbook_path.parent.glob(f"{master_workbook_path.stem}.unreadable_*.xlsx"))
    assert len(copies) == 1
    rows = list(openpyxl.load_workbook(copies[0])[data_manager.LAPTOPS_SHEET].iter_rows(min_row=2, values_only=True))
    assert rows[0][0] == "LAP001"


def test_workbook_store_missing_file_is_not_set_aside(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.WorkbookStore(tmp_path / "missing.xlsx").load()

    assert list(tmp_path.iterdir()) == []
