"""Data access layer for Repair Desk.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: creating, opening, and persisting the Excel file.
3. Snapshot conversion: turning a :class:`~repair_desk.records.Snapshot` into
   worksheet rows and back, exposed to the record store through
   :class:`WorkbookStore`.
"""


from __future__ import annotations

import configparser
import json
import shutil
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .billing import compute_bill_totals, make_line_item, normalize_warranty_period
from .constants import DEFAULT_WARRANTY_MONTHS, WARRANTY_PERIODS, PhoneStatus, SheetName
from .records import (
    Bill,
    LaptopRecord,
    LineItem,
    PhoneIntake,
    ServiceRecord,
    Snapshot,
    VendorBill,
    VendorRecord,
    Warranty,
)


CONFIG_FILE_NAME = "config.ini"
SERVICES_SHEET = SheetName.SERVICES.value
LAPTOPS_SHEET = SheetName.LAPTOPS.value
VENDORS_SHEET = SheetName.VENDORS.value
VENDOR_PHONES_SHEET = SheetName.VENDOR_PHONES.value
VENDOR_BILLS_SHEET = SheetName.VENDOR_BILLS.value

# Column layout of every sheet the durable store writes.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SERVICES_SHEET: [
        "ServiceID",
        "Date",
        "CustomerName",
        "MobileNumber",
        "Address",
        "MobileBrand",
        "Model",
        "IMEI1",
        "IMEI2",
        "Issue",
        "ServiceTypes",
        "MobileCondition",
        "Accessories",
        "ReceivedBy",
        "EstimatedDelivery",
        "Bill",
        "Timestamp",
    ],
    LAPTOPS_SHEET: [
        "LaptopID",
        "Date",
        "ContactNumber",
        "LaptopBrand",
        "Model",
        "Issue",
        "Condition",
        "Accessories",
        "ReceivedBy",
        "Bill",
        "Timestamp",
    ],
    VENDORS_SHEET: [
        "VendorID",
        "VendorName",
        "MobileNumber",
        "CreatedDate",
        "Timestamp",
    ],
    VENDOR_PHONES_SHEET: [
        "PhoneID",
        "VendorID",
        "DateReceived",
        "Brand",
        "Model",
        "Issue",
        "ReceivedBy",
        "Status",
        "Completed",
        "Billed",
        "BillID",
    ],
    VENDOR_BILLS_SHEET: [
        "BillID",
        "VendorID",
        "Date",
        "PhoneIDs",
        "Items",
        "TaxPercent",
        "Subtotal",
        "TaxAmount",
        "GrandTotal",
        "SavedAt",
        "UpdatedAt",
    ],
}


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    changelog_file: Optional[Path]
    backup_dir: Path
    shop_name: str
    schema_version: str
    default_tax_percent: Decimal = Decimal("0")
    default_warranty_months: int = DEFAULT_WARRANTY_MONTHS


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification, which allows the caller to deliberately target a
    non-standard location. When no explicit path is given the function walks up
    from the current working directory toward the filesystem root looking for a
    file named ``CONFIG_FILE_NAME``. The first match that exists on disk is
    considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search. May be relative to the current working directory.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _resolve_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Required entries live under ``[System]`` (``DataFile``, ``ShopName``,
    ``SchemaVersion``). ``ChangeLogFile`` and ``BackupDir`` are optional, as is
    the whole ``[Defaults]`` section. Relative paths are expanded against
    ``base_path`` when provided, or against the current working directory as a
    fallback.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used as the anchor for relative
            paths. Defaults to :func:`Path.cwd` when omitted.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing, or a
            default value cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        shop_name = parser.get("System", "ShopName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    changelog_raw = parser.get("System", "ChangeLogFile", fallback="").strip()
    backup_raw = parser.get("System", "BackupDir", fallback="backups").strip() or "backups"

    try:
        tax_percent = Decimal(parser.get("Defaults", "TaxPercent", fallback="0"))
        warranty_months = parser.getint("Defaults", "WarrantyMonths", fallback=DEFAULT_WARRANTY_MONTHS)
    except (InvalidOperation, ValueError) as exc:
        raise KeyError(f"Invalid default in configuration: {exc}") from exc
    if not tax_percent.is_finite():
        raise KeyError(f"Invalid default in configuration: TaxPercent={tax_percent}")
    if warranty_months not in WARRANTY_PERIODS:
        log.warning("Unsupported default warranty of %s months, using %s", warranty_months, DEFAULT_WARRANTY_MONTHS)
        warranty_months = DEFAULT_WARRANTY_MONTHS

    return ConfigSettings(
        data_file=_resolve_path(data_file_raw, base_path),
        changelog_file=_resolve_path(changelog_raw, base_path) if changelog_raw else None,
        backup_dir=_resolve_path(backup_raw, base_path),
        shop_name=shop_name,
        schema_version=schema_version,
        default_tax_percent=tax_percent,
        default_warranty_months=warranty_months,
    )


def new_workbook(sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS) -> Workbook:
    """Create an empty workbook with one bold header row per sheet."""

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
    return workbook


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the master workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk at an explicitly provided destination.

    The workbook is first written next to the destination and then moved into
    place, so readers never observe a half-written file.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    staging = dest.with_name(f".{dest.name}.tmp")
    workbook.save(staging)
    staging.replace(dest)


def _cell_safe(row: Sequence[object]) -> list[object]:
    # Worksheet cells reject ASCII control characters other than tab and newlines.
    return [ILLEGAL_CHARACTERS_RE.sub("", value) if isinstance(value, str) else value for value in row]


def build_workbook(snapshot: Snapshot) -> Workbook:
    """Render a full snapshot into a brand-new workbook."""

    workbook = new_workbook()
    for record in snapshot.services:
        workbook[SERVICES_SHEET].append(_cell_safe(serialize_service(record)))
    for record in snapshot.laptops:
        workbook[LAPTOPS_SHEET].append(_cell_safe(serialize_laptop(record)))
    for vendor in snapshot.vendors:
        workbook[VENDORS_SHEET].append(_cell_safe(serialize_vendor(vendor)))
        for phone in vendor.phones:
            workbook[VENDOR_PHONES_SHEET].append(_cell_safe(serialize_phone(vendor.vendor_id, phone)))
        for bill in vendor.bills:
            workbook[VENDOR_BILLS_SHEET].append(_cell_safe(serialize_vendor_bill(vendor.vendor_id, bill)))
    return workbook


def read_snapshot(workbook: Workbook) -> Snapshot:
    """Rebuild a snapshot from the sheets written by :func:`build_workbook`.

    Phones and bills are regrouped under their vendor in sheet order. Rows
    that reference a vendor missing from the ``Vendors`` sheet are skipped
    with a warning.
    """

    services = tuple(deserialize_service(raw) for raw in _iter_rows(workbook, SERVICES_SHEET))
    laptops = tuple(deserialize_laptop(raw) for raw in _iter_rows(workbook, LAPTOPS_SHEET))
    vendors = [deserialize_vendor(raw) for raw in _iter_rows(workbook, VENDORS_SHEET)]

    phones: dict[str, list[PhoneIntake]] = {vendor.vendor_id: [] for vendor in vendors}
    for raw in _iter_rows(workbook, VENDOR_PHONES_SHEET):
        vendor_id, phone = deserialize_phone(raw)
        if vendor_id not in phones:
            log.warning("Skipping phone '%s' for unknown vendor '%s'", phone.phone_id, vendor_id)
            continue
        phones[vendor_id].append(phone)

    bills: dict[str, list[VendorBill]] = {vendor.vendor_id: [] for vendor in vendors}
    for raw in _iter_rows(workbook, VENDOR_BILLS_SHEET):
        vendor_id, bill = deserialize_vendor_bill(raw)
        if vendor_id not in bills:
            log.warning("Skipping bill '%s' for unknown vendor '%s'", bill.bill_id, vendor_id)
            continue
        bills[vendor_id].append(bill)

    rebuilt = tuple(
        VendorRecord(
            vendor_id=vendor.vendor_id,
            vendor_name=vendor.vendor_name,
            mobile_number=vendor.mobile_number,
            created_date=vendor.created_date,
            phones=tuple(phones[vendor.vendor_id]),
            bills=tuple(bills[vendor.vendor_id]),
            timestamp=vendor.timestamp,
        )
        for vendor in vendors
    )
    return Snapshot(services=services, laptops=laptops, vendors=rebuilt)


def write_snapshot(snapshot: Snapshot, destination: Path) -> Path:
    """Write ``snapshot`` to ``destination`` as a complete workbook."""

    save_workbook(build_workbook(snapshot), destination)
    return Path(destination).expanduser().resolve()


class WorkbookStore:
    """Durable store adapter persisting snapshots to the master workbook.

    ``save`` rebuilds the whole file from the snapshot, which is the
    "clear then reinsert every record" cycle the record store serializes.
    """

    def __init__(self, data_file: Path) -> None:
        self.data_file = Path(data_file).expanduser().resolve()

    def load(self) -> Snapshot:
        """Read the master workbook into a snapshot.

        A workbook that exists but cannot be read is copied to a timestamped
        sibling file before the error propagates; the next save overwrites
        the original.

        Raises:
            FileNotFoundError: If the workbook does not exist.
            KeyError: If an expected sheet is missing.
        """

        try:
            workbook = open_workbook(self.data_file)
            snapshot = read_snapshot(workbook)
        except FileNotFoundError:
            raise
        except Exception:
            self.set_aside()
            raise
        log.info("Read %d records from '%s'", snapshot.record_count, self.data_file)
        return snapshot

    def save(self, snapshot: Snapshot) -> bool:
        """Persist ``snapshot``; returns ``False`` instead of raising on I/O errors."""

        try:
            write_snapshot(snapshot, self.data_file)
        except (OSError, PermissionError) as exc:
            log.error("Unable to write workbook '%s': %s", self.data_file, exc)
            return False
        return True

    def set_aside(self) -> Optional[Path]:
        """Copy the current workbook to a timestamped sibling file and return its path."""

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        target = self.data_file.with_name(f"{self.data_file.stem}.unreadable_{stamp}{self.data_file.suffix}")
        try:
            shutil.copy2(self.data_file, target)
        except OSError as exc:
            log.error("Unable to copy unreadable workbook '%s' aside: %s", self.data_file, exc)
            return None
        log.warning("Copied unreadable workbook '%s' to '%s'", self.data_file, target)
        return target


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[tuple[object, ...]]:
    sheet = workbook[sheet_name]
    width = len(SHEET_COLUMNS[sheet_name])
    for raw in sheet.iter_rows(min_row=2, max_col=width, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield tuple(raw) + (None,) * (width - len(raw))


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _optional_text(value: object) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _date_to_cell(value: Optional[date]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _date_from_cell(value: object) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _decimal_from_cell(value: object, default: str = "0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    return Decimal(str(value))


def _bool_from_cell(value: object) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"true", "1", "yes"}
    return bool(value)


def _json_list(value: object) -> tuple[Any, ...]:
    if value is None or value == "":
        return ()
    return tuple(json.loads(str(value)))


def items_to_json(items: Iterable[LineItem]) -> list[dict[str, Any]]:
    """Convert line items into JSON-ready dictionaries (money as text)."""

    return [
        {
            "item": item.description,
            "breakout": item.breakout,
            "price": str(item.price),
            "quantity": item.quantity,
            "total": str(item.total),
        }
        for item in items
    ]


def items_from_json(raw_items: Iterable[Mapping[str, Any]]) -> tuple[LineItem, ...]:
    """Rebuild line items, recomputing each total from price and quantity."""

    return tuple(
        make_line_item(
            str(raw.get("item", "")),
            raw.get("price", "0"),
            raw.get("quantity", 1),
            breakout=str(raw.get("breakout", "")),
        )
        for raw in raw_items
    )


def bill_to_json(bill: Optional[Bill]) -> Optional[str]:
    """Serialize a service/laptop bill into a JSON cell value."""

    if bill is None:
        return None
    payload = {
        "items": items_to_json(bill.items),
        "tax_percent": str(bill.tax_percent),
        "subtotal": str(bill.subtotal),
        "tax": str(bill.tax_amount),
        "grand_total": str(bill.grand_total),
        "warranty": str(bill.warranty.period_months),
        "from_date": bill.warranty.from_date.isoformat(),
        "to_date": bill.warranty.to_date.isoformat(),
        "saved_at": bill.saved_at,
        "updated_at": bill.updated_at,
    }
    return json.dumps(payload)


def bill_from_json(value: object) -> Optional[Bill]:
    """Rebuild a bill from its JSON cell, recomputing totals and warranty end."""

    if value is None or value == "":
        return None
    payload = json.loads(str(value))
    items = items_from_json(payload.get("items", []))
    tax_percent = _decimal_from_cell(payload.get("tax_percent"))
    totals = compute_bill_totals(items, tax_percent)
    warranty = Warranty(
        period_months=normalize_warranty_period(payload.get("warranty")),
        from_date=date.fromisoformat(payload["from_date"]),
    )
    return Bill(
        items=items,
        tax_percent=tax_percent,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        grand_total=totals.grand_total,
        warranty=warranty,
        saved_at=_text(payload.get("saved_at")),
        updated_at=payload.get("updated_at"),
    )


# ---------------------------------------------------------------------------
# Row conversion
# ---------------------------------------------------------------------------


def serialize_service(record: ServiceRecord) -> list[object]:
    """Convert a service record into the ``Services`` column ordering."""

    return [
        record.service_id,
        _date_to_cell(record.date),
        record.customer_name,
        record.mobile_number,
        record.address,
        record.mobile_brand,
        record.model,
        record.imei1,
        record.imei2,
        record.issue,
        json.dumps(list(record.service_types)),
        record.mobile_condition,
        json.dumps(list(record.accessories)),
        record.received_by,
        _date_to_cell(record.estimated_delivery),
        bill_to_json(record.bill),
        record.timestamp,
    ]


def deserialize_service(raw_row: Sequence[object]) -> ServiceRecord:
    """Convert a raw ``Services`` row into a :class:`ServiceRecord`."""

    (
        service_id,
        service_date,
        customer_name,
        mobile_number,
        address,
        mobile_brand,
        model,
        imei1,
        imei2,
        issue,
        service_types,
        mobile_condition,
        accessories,
        received_by,
        estimated_delivery,
        bill,
        timestamp,
    ) = raw_row
    return ServiceRecord(
        service_id=str(service_id),
        date=_date_from_cell(service_date),
        customer_name=_text(customer_name),
        mobile_number=_text(mobile_number),
        address=_text(address),
        mobile_brand=_text(mobile_brand),
        model=_text(model),
        imei1=_text(imei1),
        imei2=_text(imei2),
        issue=_text(issue),
        service_types=tuple(str(tag) for tag in _json_list(service_types)),
        mobile_condition=_text(mobile_condition),
        accessories=tuple(str(tag) for tag in _json_list(accessories)),
        received_by=_text(received_by),
        estimated_delivery=_date_from_cell(estimated_delivery),
        bill=bill_from_json(bill),
        timestamp=_text(timestamp),
    )


def serialize_laptop(record: LaptopRecord) -> list[object]:
    """Convert a laptop record into the ``Laptops`` column ordering."""

    return [
        record.laptop_id,
        _date_to_cell(record.date),
        record.contact_number,
        record.laptop_brand,
        record.model,
        record.issue,
        record.condition,
        json.dumps(list(record.accessories)),
        record.received_by,
        bill_to_json(record.bill),
        record.timestamp,
    ]


def deserialize_laptop(raw_row: Sequence[object]) -> LaptopRecord:
    """Convert a raw ``Laptops`` row into a :class:`LaptopRecord`."""

    (
        laptop_id,
        laptop_date,
        contact_number,
        laptop_brand,
        model,
        issue,
        condition,
        accessories,
        received_by,
        bill,
        timestamp,
    ) = raw_row
    return LaptopRecord(
        laptop_id=str(laptop_id),
        date=_date_from_cell(laptop_date),
        contact_number=_text(contact_number),
        laptop_brand=_text(laptop_brand),
        model=_text(model),
        issue=_text(issue),
        condition=_text(condition),
        accessories=tuple(str(tag) for tag in _json_list(accessories)),
        received_by=_text(received_by),
        bill=bill_from_json(bill),
        timestamp=_text(timestamp),
    )


def serialize_vendor(record: VendorRecord) -> list[object]:
    """Convert the vendor header into the ``Vendors`` column ordering."""

    return [
        record.vendor_id,
        record.vendor_name,
        record.mobile_number,
        _date_to_cell(record.created_date),
        record.timestamp,
    ]


def deserialize_vendor(raw_row: Sequence[object]) -> VendorRecord:
    """Convert a raw ``Vendors`` row into a vendor without phones or bills."""

    vendor_id, vendor_name, mobile_number, created_date, timestamp = raw_row
    return VendorRecord(
        vendor_id=str(vendor_id),
        vendor_name=_text(vendor_name),
        mobile_number=_text(mobile_number),
        created_date=_date_from_cell(created_date),
        timestamp=_text(timestamp),
    )


def serialize_phone(vendor_id: str, phone: PhoneIntake) -> list[object]:
    """Convert a phone intake into the ``VendorPhones`` column ordering."""

    return [
        phone.phone_id,
        vendor_id,
        _date_to_cell(phone.date_received),
        phone.brand,
        phone.model,
        phone.issue,
        phone.received_by,
        phone.status.value,
        phone.completed,
        phone.billed,
        phone.bill_id,
    ]


def deserialize_phone(raw_row: Sequence[object]) -> tuple[str, PhoneIntake]:
    """Convert a raw ``VendorPhones`` row into ``(vendor_id, phone)``."""

    (
        phone_id,
        vendor_id,
        date_received,
        brand,
        model,
        issue,
        received_by,
        status,
        completed,
        billed,
        bill_id,
    ) = raw_row
    phone = PhoneIntake(
        phone_id=str(phone_id),
        date_received=_date_from_cell(date_received),
        brand=_text(brand),
        model=_text(model),
        issue=_text(issue),
        received_by=_text(received_by),
        status=PhoneStatus(str(status)) if status else PhoneStatus.RECEIVED,
        completed=_bool_from_cell(completed),
        billed=_bool_from_cell(billed),
        bill_id=_optional_text(bill_id),
    )
    return str(vendor_id), phone


def serialize_vendor_bill(vendor_id: str, bill: VendorBill) -> list[object]:
    """Convert a vendor bill into the ``VendorBills`` column ordering.

    Money columns are written as text to keep :class:`~decimal.Decimal`
    precision through the round trip.
    """

    return [
        bill.bill_id,
        vendor_id,
        _date_to_cell(bill.bill_date),
        json.dumps(list(bill.phone_ids)),
        json.dumps(items_to_json(bill.items)),
        str(bill.tax_percent),
        str(bill.subtotal),
        str(bill.tax_amount),
        str(bill.grand_total),
        bill.saved_at,
        bill.updated_at,
    ]


def deserialize_vendor_bill(raw_row: Sequence[object]) -> tuple[str, VendorBill]:
    """Convert a raw ``VendorBills`` row into ``(vendor_id, bill)``.

    Stored totals are informational only: subtotal, tax and grand total are
    recomputed from the items and the tax percent.
    """

    (
        bill_id,
        vendor_id,
        bill_date,
        phone_ids,
        items_raw,
        tax_percent_raw,
        _subtotal,
        _tax_amount,
        _grand_total,
        saved_at,
        updated_at,
    ) = raw_row
    items = items_from_json(_json_list(items_raw))
    tax_percent = _decimal_from_cell(tax_percent_raw)
    totals = compute_bill_totals(items, tax_percent)
    bill = VendorBill(
        bill_id=str(bill_id),
        bill_date=_date_from_cell(bill_date) or date.today(),
        phone_ids=tuple(str(phone_id) for phone_id in _json_list(phone_ids)),
        items=items,
        tax_percent=tax_percent,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        grand_total=totals.grand_total,
        saved_at=_text(saved_at),
        updated_at=_optional_text(updated_at),
    )
    return str(vendor_id), bill
