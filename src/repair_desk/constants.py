"""Enumerations shared across Repair Desk modules.

Centralises domain constants so that the durable store adapter, the record
operations, the billing engine and the CLI rely on a single source of truth
for identifier prefixes, statuses and workbook sheet names.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Sequence numbers are left-padded to this width and simply grow past it.
ID_SEQUENCE_WIDTH = 3

WARRANTY_PERIODS: tuple[int, ...] = (3, 6)
DEFAULT_WARRANTY_MONTHS = 3

SYSTEM_USER = "System"


class RecordFamily(str, Enum):
    """Enumerate identifier families together with their prefixes."""

    SERVICE = "SRV"
    LAPTOP = "LAP"
    VENDOR = "VND"
    PHONE = "P"
    BILL = "B"


class RecordType(str, Enum):
    """Enumerate the top-level record types written to the change log."""

    SERVICE = "service"
    LAPTOP = "laptop"
    VENDOR = "vendor"


class PhoneStatus(str, Enum):
    """Enumerate the lifecycle states of a vendor phone intake."""

    RECEIVED = "Received"
    IN_REPAIR = "In Repair"
    READY = "Ready"
    BILLED = "Billed"


class ChangeAction(str, Enum):
    """Enumerate the actions recorded in the change log."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the data layer."""

    SERVICES = "Services"
    LAPTOPS = "Laptops"
    VENDORS = "Vendors"
    VENDOR_PHONES = "VendorPhones"
    VENDOR_BILLS = "VendorBills"
    CHANGE_LOG = "ChangeLog"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "ID_SEQUENCE_WIDTH",
    "WARRANTY_PERIODS",
    "DEFAULT_WARRANTY_MONTHS",
    "SYSTEM_USER",
    "RecordFamily",
    "RecordType",
    "PhoneStatus",
    "ChangeAction",
    "SheetName",
]
