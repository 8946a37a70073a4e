"""Record operations for Repair Desk.

This module orchestrates intake, lookup, editing and reporting on top of the
:class:`~repair_desk.record_store.RecordStore`. Every mutation follows the
same shape: read the current snapshot, validate, build a new snapshot,
``replace_all`` it and append the matching change log entry.
"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from . import data_manager, log
from .billing import present_amount
from .constants import ChangeAction, PhoneStatus, RecordFamily, RecordType
from .errors import NotFoundError, ValidationError
from .identifiers import next_id
from .records import (
    LaptopRecord,
    PhoneIntake,
    ServiceRecord,
    TopLevelRecord,
    VendorRecord,
    family_of,
    record_type_of,
    storable_text,
)
from .runtime import RuntimeContext


@dataclass(frozen=True)
class ServiceIntakeCommand:
    """User intent for registering a customer's phone for service."""

    customer_name: str
    mobile_number: str
    date: Optional[date] = None
    address: str = ""
    mobile_brand: str = ""
    model: str = ""
    imei1: str = ""
    imei2: str = ""
    issue: str = ""
    service_types: Sequence[str] = ()
    mobile_condition: str = ""
    accessories: Sequence[str] = ()
    received_by: str = ""
    estimated_delivery: Optional[date] = None
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class LaptopIntakeCommand:
    """User intent for registering a laptop for service."""

    contact_number: str
    date: Optional[date] = None
    laptop_brand: str = ""
    model: str = ""
    issue: str = ""
    condition: str = ""
    accessories: Sequence[str] = ()
    received_by: str = ""
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class PhoneIntakeCommand:
    """User intent for adding a phone to an existing vendor."""

    brand: str
    model: str
    issue: str = ""
    date_received: Optional[date] = None
    received_by: str = ""


@dataclass(frozen=True)
class BillSummary:
    """Flat view of one bill, used by bill listings."""

    bill_id: str
    record_id: str
    record_type: str
    bill_date: Optional[date]
    grand_total: Decimal
    saved_at: str
    updated_at: Optional[str] = None


# Fields that ``update_record`` never touches.
PROTECTED_FIELDS = frozenset({
    "service_id",
    "laptop_id",
    "vendor_id",
    "bill",
    "phones",
    "bills",
    "timestamp",
})
DATE_FIELDS = frozenset({"date", "estimated_delivery", "created_date"})
LIST_FIELDS = frozenset({"service_types", "accessories"})
SEARCHABLE_FIELDS = (
    "customer_name",
    "vendor_name",
    "mobile_number",
    "contact_number",
    "mobile_brand",
    "laptop_brand",
    "model",
    "issue",
    "imei1",
    "imei2",
)


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _require_text(value: str, label: str) -> str:
    cleaned = storable_text(value, label)
    if not cleaned:
        log.error("Validation failed: %s is required", label)
        raise ValidationError(f"{label} is required")
    return cleaned


def _optional_text(value: str, field_name: str) -> str:
    return storable_text(value, field_name.replace("_", " ").capitalize())


def _clean_tags(values: Iterable[str], field_name: str) -> tuple[str, ...]:
    cleaned = (_optional_text(value, field_name) for value in values if value)
    return tuple(value for value in cleaned if value)


def create_service_record(context: RuntimeContext, command: ServiceIntakeCommand) -> ServiceRecord:
    """Register a new service intake and return the stored record.

    Args:
        context (RuntimeContext): Runtime context with the record store.
        command (ServiceIntakeCommand): Intake form values.

    Returns:
        ServiceRecord: Record carrying the freshly allocated ``SRV###`` id.

    Raises:
        ValidationError: If the customer name or mobile number is blank.
    """
    customer_name = _require_text(command.customer_name, "Customer name")
    mobile_number = _require_text(command.mobile_number, "Mobile number")
    timestamp = _resolve_timestamp(command.timestamp)

    snapshot = context.store.load_all()
    record = ServiceRecord(
        service_id=next_id(snapshot, RecordFamily.SERVICE),
        date=command.date or timestamp.date(),
        customer_name=customer_name,
        mobile_number=mobile_number,
        address=_optional_text(command.address, "address"),
        mobile_brand=_optional_text(command.mobile_brand, "mobile_brand"),
        model=_optional_text(command.model, "model"),
        imei1=_optional_text(command.imei1, "imei1"),
        imei2=_optional_text(command.imei2, "imei2"),
        issue=_optional_text(command.issue, "issue"),
        service_types=_clean_tags(command.service_types, "service_types"),
        mobile_condition=_optional_text(command.mobile_condition, "mobile_condition"),
        accessories=_clean_tags(command.accessories, "accessories"),
        received_by=_optional_text(command.received_by, "received_by"),
        estimated_delivery=command.estimated_delivery,
        timestamp=timestamp.isoformat(),
    )
    context.store.replace_all(snapshot.with_service(record))
    context.changelog.append(ChangeAction.CREATE, RecordType.SERVICE.value, record.service_id)
    log.info("Created service record '%s' for '%s'", record.service_id, customer_name)
    return record


def create_laptop_record(context: RuntimeContext, command: LaptopIntakeCommand) -> LaptopRecord:
    """Register a new laptop intake and return the stored record."""
    contact_number = _require_text(command.contact_number, "Contact number")
    timestamp = _resolve_timestamp(command.timestamp)

    snapshot = context.store.load_all()
    record = LaptopRecord(
        laptop_id=next_id(snapshot, RecordFamily.LAPTOP),
        date=command.date or timestamp.date(),
        contact_number=contact_number,
        laptop_brand=_optional_text(command.laptop_brand, "laptop_brand"),
        model=_optional_text(command.model, "model"),
        issue=_optional_text(command.issue, "issue"),
        condition=_optional_text(command.condition, "condition"),
        accessories=_clean_tags(command.accessories, "accessories"),
        received_by=_optional_text(command.received_by, "received_by"),
        timestamp=timestamp.isoformat(),
    )
    context.store.replace_all(snapshot.with_laptop(record))
    context.changelog.append(ChangeAction.CREATE, RecordType.LAPTOP.value, record.laptop_id)
    log.info("Created laptop record '%s'", record.laptop_id)
    return record


def create_vendor(
    context: RuntimeContext,
    vendor_name: str,
    mobile_number: str,
    created_date: Optional[date] = None,
) -> VendorRecord:
    """Create an empty vendor account."""
    name = _require_text(vendor_name, "Vendor name")
    number = _require_text(mobile_number, "Mobile number")
    timestamp = _resolve_timestamp(None)

    snapshot = context.store.load_all()
    vendor = VendorRecord(
        vendor_id=next_id(snapshot, RecordFamily.VENDOR),
        vendor_name=name,
        mobile_number=number,
        created_date=created_date or timestamp.date(),
        timestamp=timestamp.isoformat(),
    )
    context.store.replace_all(snapshot.with_vendor(vendor))
    context.changelog.append(ChangeAction.CREATE, RecordType.VENDOR.value, vendor.vendor_id)
    log.info("Created vendor '%s' (%s)", vendor.vendor_id, name)
    return vendor


def add_phone_to_vendor(context: RuntimeContext, vendor_id: str, command: PhoneIntakeCommand) -> PhoneIntake:
    """Append a phone to ``vendor_id`` with status ``Received``.

    Raises:
        NotFoundError: If the vendor is unknown.
        ValidationError: If brand or model is blank.
    """
    brand = _require_text(command.brand, "Brand")
    model = _require_text(command.model, "Model")

    snapshot = context.store.load_all()
    vendor = snapshot.find_vendor(vendor_id)
    if vendor is None:
        raise NotFoundError(f"Unknown vendor id: {vendor_id}")

    phone = PhoneIntake(
        phone_id=next_id(snapshot, RecordFamily.PHONE, scope=vendor_id),
        date_received=command.date_received or date.today(),
        brand=brand,
        model=model,
        issue=_optional_text(command.issue, "issue"),
        received_by=_optional_text(command.received_by, "received_by"),
        status=PhoneStatus.RECEIVED,
    )
    context.store.replace_all(snapshot.with_vendor(replace(vendor, phones=(*vendor.phones, phone))))
    context.changelog.append(
        ChangeAction.UPDATE,
        RecordType.VENDOR.value,
        vendor_id,
        field_changed="phones",
        new_value=phone.phone_id,
    )
    log.info("Added phone '%s' (%s %s) to vendor '%s'", phone.phone_id, brand, model, vendor_id)
    return phone


def get_record(context: RuntimeContext, record_id: str) -> TopLevelRecord:
    """Return the record identified by ``record_id``.

    Raises:
        NotFoundError: If no service, laptop or vendor has that id.
    """
    record = context.store.load_all().find_record(record_id)
    if record is None:
        log.warning("Record '%s' not found", record_id)
        raise NotFoundError(f"Record '{record_id}' not found")
    return record


def find_record(context: RuntimeContext, query: str) -> Optional[TopLevelRecord]:
    """Look a record up by id (any case) or by contact number.

    The first match in service, laptop, vendor order wins.
    """
    needle = (query or "").strip()
    if not needle:
        raise ValidationError("Enter a service id, laptop id, vendor id or contact number")

    upper = needle.upper()
    for record in context.store.load_all().all_records():
        if record.record_id == upper or record.contact_number == needle:
            return record
    log.debug("No record matches '%s'", needle)
    return None


def _coerce_value(field_name: str, value: Any) -> Any:
    if field_name in DATE_FIELDS:
        if value is None or value == "":
            return None
        if isinstance(value, date):
            return value
        try:
            return date.fromisoformat(str(value))
        except ValueError as exc:
            raise ValidationError(f"Invalid date for {field_name}: {value!r}") from exc
    if field_name in LIST_FIELDS:
        if isinstance(value, str):
            return _clean_tags(value.split(","), field_name)
        return _clean_tags(value or (), field_name)
    return "" if value is None else _optional_text(str(value), field_name)


def update_record(context: RuntimeContext, record_id: str, field_values: Mapping[str, Any]) -> TopLevelRecord:
    """Update plain fields of a top-level record.

    Args:
        context (RuntimeContext): Runtime context with the record store.
        record_id (str): Service, laptop or vendor id.
        field_values (Mapping[str, Any]): Field name to new value. Dates may be
            ISO strings; list fields accept comma separated text.

    Returns:
        TopLevelRecord: The stored record, unchanged if nothing differed.

    Raises:
        NotFoundError: If the record is unknown.
        ValidationError: For unknown or protected fields, or invalid values.
    """
    snapshot = context.store.load_all()
    record = get_record(context, record_id)
    known = {item.name for item in fields(record)}

    changes: Dict[str, Any] = {}
    for name, raw_value in field_values.items():
        if name in PROTECTED_FIELDS:
            raise ValidationError(f"Field '{name}' cannot be edited")
        if name not in known:
            raise ValidationError(f"Unknown field '{name}' for {record_type_of(record)} records")
        value = _coerce_value(name, raw_value)
        if getattr(record, name) != value:
            changes[name] = value

    if not changes:
        log.debug("No field changes for '%s'", record_id)
        return record

    updated = replace(record, **changes)
    context.store.replace_all(snapshot.with_record(updated))
    for name, value in changes.items():
        context.changelog.append(
            ChangeAction.UPDATE,
            record_type_of(record),
            record_id,
            field_changed=name,
            old_value=getattr(record, name),
            new_value=value,
        )
    log.info("Updated %s on '%s'", ", ".join(sorted(changes)), record_id)
    return updated


def delete_record(context: RuntimeContext, record_id: str, *, force: bool = False) -> TopLevelRecord:
    """Remove a top-level record.

    Vendors that still hold unbilled phones are only removed with
    ``force=True``.

    Raises:
        NotFoundError: If the record is unknown.
        ValidationError: If a vendor with unbilled phones is deleted without
            ``force``.
    """
    snapshot = context.store.load_all()
    record = get_record(context, record_id)
    if isinstance(record, VendorRecord):
        pending = record.unbilled_phones()
        if pending and not force:
            raise ValidationError(
                f"Vendor '{record_id}' still has {len(pending)} unbilled phone(s); use force to delete"
            )
        if pending:
            log.warning("Force deleting vendor '%s' with %d unbilled phone(s)", record_id, len(pending))

    context.store.replace_all(snapshot.without_record(record_id))
    context.changelog.append(ChangeAction.DELETE, record_type_of(record), record_id)
    log.info("Deleted record '%s'", record_id)
    return record


def _matches_text(record: TopLevelRecord, needle: str) -> bool:
    if needle in record.record_id.lower():
        return True
    for name in SEARCHABLE_FIELDS:
        value = getattr(record, name, None)
        if isinstance(value, str) and needle in value.lower():
            return True
    return False


def list_records(
    context: RuntimeContext,
    *,
    family: Optional[RecordFamily] = None,
    from_date: Optional[date] = None,
    to_date: Optional[date] = None,
    text: Optional[str] = None,
) -> List[TopLevelRecord]:
    """Return records filtered by family, inclusive date range and free text.

    Records without a date are dropped as soon as either bound is given.

    Raises:
        ValidationError: If ``from_date`` is after ``to_date``.
    """
    if from_date is not None and to_date is not None and from_date > to_date:
        raise ValidationError("From date cannot be after To date")

    needle = (text or "").strip().lower()
    results: List[TopLevelRecord] = []
    for record in context.store.load_all().all_records():
        if family is not None and family_of(record.record_id) is not family:
            continue
        if from_date is not None or to_date is not None:
            record_date = record.date
            if record_date is None:
                continue
            if from_date is not None and record_date < from_date:
                continue
            if to_date is not None and record_date > to_date:
                continue
        if needle and not _matches_text(record, needle):
            continue
        results.append(record)
    log.debug("Listed %d records", len(results))
    return results


def list_bills(context: RuntimeContext) -> List[BillSummary]:
    """Return every record bill and vendor bill, newest first."""
    snapshot = context.store.load_all()
    summaries: List[BillSummary] = []
    for record in (*snapshot.services, *snapshot.laptops):
        if record.bill is None:
            continue
        summaries.append(
            BillSummary(
                bill_id=record.record_id,
                record_id=record.record_id,
                record_type=record_type_of(record),
                bill_date=record.bill.warranty.from_date,
                grand_total=record.bill.grand_total,
                saved_at=record.bill.saved_at,
                updated_at=record.bill.updated_at,
            )
        )
    for vendor in snapshot.vendors:
        for bill in vendor.bills:
            summaries.append(
                BillSummary(
                    bill_id=bill.bill_id,
                    record_id=vendor.vendor_id,
                    record_type=RecordType.VENDOR.value,
                    bill_date=bill.bill_date,
                    grand_total=bill.grand_total,
                    saved_at=bill.saved_at,
                    updated_at=bill.updated_at,
                )
            )

    summaries.sort(key=lambda summary: (summary.bill_date or date.min, summary.saved_at), reverse=True)
    return summaries


def calculate_summary(
    context: RuntimeContext,
    records: Optional[Iterable[TopLevelRecord]] = None,
) -> Dict[str, Any]:
    """Summarise ``records`` (defaults to every record).

    Returns:
        Dict[str, Any]: Counts per family, ``billed`` (records with a bill
            plus vendor bills) and ``revenue`` (sum of grand totals, rounded
            to cents).
    """
    if records is None:
        records = context.store.load_all().all_records()

    summary: Dict[str, Any] = {
        "total": 0,
        "services": 0,
        "laptops": 0,
        "vendors": 0,
        "phones": 0,
        "billed": 0,
        "revenue": Decimal("0"),
    }
    for record in records:
        summary["total"] += 1
        if isinstance(record, ServiceRecord):
            summary["services"] += 1
        elif isinstance(record, LaptopRecord):
            summary["laptops"] += 1
        else:
            summary["vendors"] += 1
            summary["phones"] += len(record.phones)
            for bill in record.bills:
                summary["billed"] += 1
                summary["revenue"] += bill.grand_total
            continue
        if record.bill is not None:
            summary["billed"] += 1
            summary["revenue"] += record.bill.grand_total

    summary["revenue"] = present_amount(summary["revenue"])
    log.debug("Computed summary over %d records", summary["total"])
    return summary


def export_backup(context: RuntimeContext, destination: Optional[Path] = None) -> Path:
    """Write the current snapshot to a standalone workbook.

    Args:
        context (RuntimeContext): Runtime context with the record store.
        destination (Path | None): Target file. Defaults to a timestamped file
            in the configured backup directory.

    Returns:
        Path: Resolved path of the written backup.
    """
    if destination is None:
        stamp = datetime.now(UTC).strftime("%Y%m%d_%H%M%S")
        destination = context.settings.backup_dir / f"repair_desk_backup_{stamp}.xlsx"

    snapshot = context.store.export_snapshot()
    written = data_manager.write_snapshot(snapshot, destination)
    log.info("Exported backup of %d records to '%s'", snapshot.record_count, written)
    return written


__all__ = [
    "ServiceIntakeCommand",
    "LaptopIntakeCommand",
    "PhoneIntakeCommand",
    "BillSummary",
    "create_service_record",
    "create_laptop_record",
    "create_vendor",
    "add_phone_to_vendor",
    "get_record",
    "find_record",
    "update_record",
    "delete_record",
    "list_records",
    "list_bills",
    "calculate_summary",
    "export_backup",
]
