"""Record model for Repair Desk.

Every record is a frozen dataclass and every ordered collection is a tuple,
so a :class:`Snapshot` can be handed to any caller without copying: nothing
reachable from it can be mutated in place. Mutations are expressed as "build
a new snapshot" through the ``with_*`` helpers and then handed to
:meth:`repair_desk.record_store.RecordStore.replace_all`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Optional, Union

from dateutil.relativedelta import relativedelta
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE

from .constants import (
    SYSTEM_USER,
    WARRANTY_PERIODS,
    ChangeAction,
    PhoneStatus,
    RecordFamily,
    RecordType,
)
from .errors import ValidationError


def storable_text(value: Optional[str], label: str) -> str:
    """Return ``value`` stripped, rejecting control characters a worksheet cell cannot hold."""

    cleaned = (value or "").strip()
    if ILLEGAL_CHARACTERS_RE.search(cleaned):
        raise ValidationError(f"{label} contains control characters that cannot be stored")
    return cleaned


def add_months(start: date, months: int) -> date:
    """Return ``start`` shifted by whole calendar months.

    Days past the end of the target month are clamped to its last day
    (``2025-11-30`` plus three months is ``2026-02-28``).
    """

    return start + relativedelta(months=months)


@dataclass(frozen=True)
class LineItem:
    """One billed line: ``total`` is always ``price * quantity``."""

    description: str
    breakout: str
    price: Decimal
    quantity: int
    total: Decimal


@dataclass(frozen=True)
class Warranty:
    """Warranty window attached to a service or laptop bill."""

    period_months: int
    from_date: date

    def __post_init__(self) -> None:
        if self.period_months not in WARRANTY_PERIODS:
            raise ValidationError(f"Unsupported warranty period: {self.period_months}")

    @property
    def to_date(self) -> date:
        return add_months(self.from_date, self.period_months)


@dataclass(frozen=True)
class Bill:
    """Invoice attached to an individual service or laptop record."""

    items: tuple[LineItem, ...]
    tax_percent: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal
    warranty: Warranty
    saved_at: str
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class VendorBill:
    """Invoice grouping a fixed set of a vendor's phones."""

    bill_id: str
    bill_date: date
    phone_ids: tuple[str, ...]
    items: tuple[LineItem, ...]
    tax_percent: Decimal
    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal
    saved_at: str
    updated_at: Optional[str] = None


@dataclass(frozen=True)
class PhoneIntake:
    """A single phone received from a vendor."""

    phone_id: str
    date_received: Optional[date]
    brand: str
    model: str
    issue: str
    received_by: str = ""
    status: PhoneStatus = PhoneStatus.RECEIVED
    completed: bool = False
    billed: bool = False
    bill_id: Optional[str] = None


@dataclass(frozen=True)
class ServiceRecord:
    """Intake record for an individual customer's device."""

    service_id: str
    date: Optional[date]
    customer_name: str
    mobile_number: str
    address: str = ""
    mobile_brand: str = ""
    model: str = ""
    imei1: str = ""
    imei2: str = ""
    issue: str = ""
    service_types: tuple[str, ...] = ()
    mobile_condition: str = ""
    accessories: tuple[str, ...] = ()
    received_by: str = ""
    estimated_delivery: Optional[date] = None
    bill: Optional[Bill] = None
    timestamp: str = ""

    @property
    def record_id(self) -> str:
        return self.service_id

    @property
    def contact_number(self) -> str:
        return self.mobile_number


@dataclass(frozen=True)
class LaptopRecord:
    """Intake record for a laptop service."""

    laptop_id: str
    date: Optional[date]
    contact_number: str
    laptop_brand: str = ""
    model: str = ""
    issue: str = ""
    condition: str = ""
    accessories: tuple[str, ...] = ()
    received_by: str = ""
    bill: Optional[Bill] = None
    timestamp: str = ""

    @property
    def record_id(self) -> str:
        return self.laptop_id


@dataclass(frozen=True)
class VendorRecord:
    """Bulk vendor account owning phone intakes and vendor bills."""

    vendor_id: str
    vendor_name: str
    mobile_number: str
    created_date: Optional[date]
    phones: tuple[PhoneIntake, ...] = ()
    bills: tuple[VendorBill, ...] = ()
    timestamp: str = ""

    @property
    def record_id(self) -> str:
        return self.vendor_id

    @property
    def contact_number(self) -> str:
        return self.mobile_number

    @property
    def date(self) -> Optional[date]:
        return self.created_date

    def find_phone(self, phone_id: str) -> Optional[PhoneIntake]:
        for phone in self.phones:
            if phone.phone_id == phone_id:
                return phone
        return None

    def find_bill(self, bill_id: str) -> Optional[VendorBill]:
        for bill in self.bills:
            if bill.bill_id == bill_id:
                return bill
        return None

    def unbilled_phones(self) -> tuple[PhoneIntake, ...]:
        return tuple(phone for phone in self.phones if not phone.billed)


TopLevelRecord = Union[ServiceRecord, LaptopRecord, VendorRecord]


@dataclass(frozen=True)
class ChangeLogEntry:
    """Single audit trail entry."""

    timestamp: str
    action: ChangeAction
    record_type: str
    record_id: str
    field_changed: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    user: str = SYSTEM_USER


@dataclass(frozen=True)
class Snapshot:
    """Complete working set of records at one point in time."""

    services: tuple[ServiceRecord, ...] = field(default_factory=tuple)
    laptops: tuple[LaptopRecord, ...] = field(default_factory=tuple)
    vendors: tuple[VendorRecord, ...] = field(default_factory=tuple)

    @property
    def record_count(self) -> int:
        return len(self.services) + len(self.laptops) + len(self.vendors)

    def all_records(self) -> tuple[TopLevelRecord, ...]:
        return (*self.services, *self.laptops, *self.vendors)

    def find_service(self, service_id: str) -> Optional[ServiceRecord]:
        return next((r for r in self.services if r.service_id == service_id), None)

    def find_laptop(self, laptop_id: str) -> Optional[LaptopRecord]:
        return next((r for r in self.laptops if r.laptop_id == laptop_id), None)

    def find_vendor(self, vendor_id: str) -> Optional[VendorRecord]:
        return next((r for r in self.vendors if r.vendor_id == vendor_id), None)

    def find_record(self, record_id: str) -> Optional[TopLevelRecord]:
        prefix = family_of(record_id)
        if prefix is RecordFamily.SERVICE:
            return self.find_service(record_id)
        if prefix is RecordFamily.LAPTOP:
            return self.find_laptop(record_id)
        if prefix is RecordFamily.VENDOR:
            return self.find_vendor(record_id)
        return None

    def find_vendor_for_phone(self, phone_id: str) -> Optional[VendorRecord]:
        for vendor in self.vendors:
            if vendor.find_phone(phone_id) is not None:
                return vendor
        return None

    def find_vendor_for_bill(self, bill_id: str) -> Optional[VendorRecord]:
        for vendor in self.vendors:
            if vendor.find_bill(bill_id) is not None:
                return vendor
        return None

    def with_service(self, record: ServiceRecord) -> "Snapshot":
        """Return a snapshot where ``record`` replaces its namesake or is appended."""

        return replace(self, services=_upsert(self.services, record, "service_id"))

    def with_laptop(self, record: LaptopRecord) -> "Snapshot":
        return replace(self, laptops=_upsert(self.laptops, record, "laptop_id"))

    def with_vendor(self, record: VendorRecord) -> "Snapshot":
        return replace(self, vendors=_upsert(self.vendors, record, "vendor_id"))

    def with_record(self, record: TopLevelRecord) -> "Snapshot":
        if isinstance(record, ServiceRecord):
            return self.with_service(record)
        if isinstance(record, LaptopRecord):
            return self.with_laptop(record)
        return self.with_vendor(record)

    def without_record(self, record_id: str) -> "Snapshot":
        return Snapshot(
            services=tuple(r for r in self.services if r.service_id != record_id),
            laptops=tuple(r for r in self.laptops if r.laptop_id != record_id),
            vendors=tuple(r for r in self.vendors if r.vendor_id != record_id),
        )


def _upsert(collection: tuple, record, key: str) -> tuple:
    record_key = getattr(record, key)
    updated = []
    found = False
    for existing in collection:
        if getattr(existing, key) == record_key:
            updated.append(record)
            found = True
        else:
            updated.append(existing)
    if not found:
        updated.append(record)
    return tuple(updated)


def family_of(record_id: str) -> Optional[RecordFamily]:
    """Return the top-level family a record id belongs to, if any."""

    for family in (RecordFamily.SERVICE, RecordFamily.LAPTOP, RecordFamily.VENDOR):
        if record_id.startswith(family.value) and "-" not in record_id:
            return family
    return None


def record_type_of(record: TopLevelRecord) -> str:
    """Return the change-log record type label for ``record``."""

    if isinstance(record, ServiceRecord):
        return RecordType.SERVICE.value
    if isinstance(record, LaptopRecord):
        return RecordType.LAPTOP.value
    return RecordType.VENDOR.value


__all__ = [
    "storable_text",
    "add_months",
    "LineItem",
    "Warranty",
    "Bill",
    "VendorBill",
    "PhoneIntake",
    "ServiceRecord",
    "LaptopRecord",
    "VendorRecord",
    "TopLevelRecord",
    "ChangeLogEntry",
    "Snapshot",
    "family_of",
    "record_type_of",
]
