"""Identifier generation for every record family.

Top-level identifiers (``SRV``, ``LAP``, ``VND``) are derived from the highest
sequence number observed in the snapshot, so records stored out of order or
with gaps never cause a duplicate. Vendor sub-identifiers (phones and bills)
use the length of the vendor's own collection because those sub-records are
never removed.
"""

from __future__ import annotations

from typing import Iterable, Optional

from . import log
from .constants import ID_SEQUENCE_WIDTH, RecordFamily
from .errors import NotFoundError, ValidationError
from .records import Snapshot


TOP_LEVEL_FAMILIES = (RecordFamily.SERVICE, RecordFamily.LAPTOP, RecordFamily.VENDOR)


def format_sequence(prefix: str, number: int) -> str:
    """Render ``prefix`` followed by ``number`` padded to three digits."""

    return f"{prefix}{number:0{ID_SEQUENCE_WIDTH}d}"


def parse_sequence(identifier: Optional[str], prefix: str) -> Optional[int]:
    """Extract the numeric suffix of ``identifier`` or ``None`` if unparseable."""

    if not identifier or not identifier.startswith(prefix):
        return None
    suffix = identifier[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def _existing_ids(snapshot: Snapshot, family: RecordFamily) -> Iterable[str]:
    if family is RecordFamily.SERVICE:
        return (record.service_id for record in snapshot.services)
    if family is RecordFamily.LAPTOP:
        return (record.laptop_id for record in snapshot.laptops)
    return (record.vendor_id for record in snapshot.vendors)


def next_id(snapshot: Snapshot, family: RecordFamily, scope: Optional[str] = None) -> str:
    """Return the next identifier for ``family``.

    Args:
        snapshot (Snapshot): Working set to scan.
        family (RecordFamily): Family whose next identifier is requested.
        scope (str | None): Owning vendor id, required for ``PHONE`` and
            ``BILL`` families and ignored otherwise.

    Returns:
        str: ``SRV001`` style identifiers for top-level families or
            ``VND001-P001`` / ``VND001-B001`` for vendor sub-records.

    Raises:
        ValidationError: If a sub-record family is requested without a scope.
        NotFoundError: If ``scope`` names an unknown vendor.
    """

    if family in TOP_LEVEL_FAMILIES:
        highest = 0
        for identifier in _existing_ids(snapshot, family):
            number = parse_sequence(identifier, family.value)
            if number is not None and number > highest:
                highest = number
        result = format_sequence(family.value, highest + 1)
        log.debug("Allocated identifier '%s' (highest observed %d)", result, highest)
        return result

    if not scope:
        raise ValidationError(f"A vendor scope is required for {family.name.lower()} identifiers")
    vendor = snapshot.find_vendor(scope)
    if vendor is None:
        raise NotFoundError(f"Unknown vendor id: {scope}")

    collection = vendor.phones if family is RecordFamily.PHONE else vendor.bills
    result = format_sequence(f"{vendor.vendor_id}-{family.value}", len(collection) + 1)
    log.debug("Allocated sub-identifier '%s' for vendor '%s'", result, vendor.vendor_id)
    return result


__all__ = ["format_sequence", "parse_sequence", "next_id"]
