"""Status transitions for phones received from vendors."""

from __future__ import annotations

from collections import Counter
from dataclasses import replace
from typing import TYPE_CHECKING, Dict

from . import log
from .constants import ChangeAction, PhoneStatus, RecordType
from .errors import NotFoundError, ValidationError
from .records import PhoneIntake, VendorRecord

if TYPE_CHECKING:
    from .runtime import RuntimeContext


SETTABLE_STATUSES: tuple[PhoneStatus, ...] = (
    PhoneStatus.RECEIVED,
    PhoneStatus.IN_REPAIR,
    PhoneStatus.READY,
)


def apply_status(phone: PhoneIntake, status: PhoneStatus) -> PhoneIntake:
    """Return ``phone`` moved to ``status``.

    Received, In Repair and Ready may follow each other in any order. Billed
    is terminal and only reachable through :func:`mark_billed`.

    Raises:
        ValidationError: If ``status`` is ``Billed`` or the phone is already
            billed.
    """

    try:
        status = PhoneStatus(status)
    except ValueError as exc:
        raise ValidationError(f"Unknown phone status: {status!r}") from exc
    if phone.billed or phone.status is PhoneStatus.BILLED:
        log.warning("Rejected status change on billed phone '%s'", phone.phone_id)
        raise ValidationError(f"Phone '{phone.phone_id}' is billed and can no longer change status")
    if status not in SETTABLE_STATUSES:
        raise ValidationError(f"Status '{status.value}' is assigned by billing only")

    return replace(phone, status=status, completed=status is PhoneStatus.READY)


def mark_billed(phone: PhoneIntake, bill_id: str) -> PhoneIntake:
    if phone.billed:
        raise ValidationError(f"Phone '{phone.phone_id}' is already billed on {phone.bill_id}")
    return replace(phone, status=PhoneStatus.BILLED, completed=True, billed=True, bill_id=bill_id)


def _replace_phone(vendor: VendorRecord, phone: PhoneIntake) -> VendorRecord:
    phones = tuple(phone if existing.phone_id == phone.phone_id else existing for existing in vendor.phones)
    return replace(vendor, phones=phones)


def update_phone_status(context: "RuntimeContext", phone_id: str, status: PhoneStatus) -> PhoneIntake:
    """Apply a status change to a vendor phone and persist it.

    Args:
        context (RuntimeContext): Runtime context holding the record store and
            change log.
        phone_id (str): Identifier such as ``VND001-P002``.
        status (PhoneStatus): Target status.

    Returns:
        PhoneIntake: The updated phone.

    Raises:
        NotFoundError: If no vendor owns ``phone_id``.
        ValidationError: If the transition is not allowed.
    """

    snapshot = context.store.load_all()
    vendor = snapshot.find_vendor_for_phone(phone_id)
    if vendor is None:
        raise NotFoundError(f"Unknown phone id: {phone_id}")

    phone = vendor.find_phone(phone_id)
    assert phone is not None
    updated = apply_status(phone, status)
    if updated == phone:
        log.debug("Phone '%s' already in status '%s'", phone_id, updated.status.value)
        return updated

    context.store.replace_all(snapshot.with_vendor(_replace_phone(vendor, updated)))
    context.changelog.append(
        ChangeAction.UPDATE,
        RecordType.VENDOR.value,
        vendor.vendor_id,
        field_changed=f"phones.{phone_id}.status",
        old_value=phone.status,
        new_value=updated.status,
    )
    log.info("Phone '%s' moved from '%s' to '%s'", phone_id, phone.status.value, updated.status.value)
    return updated


def count_by_status(vendor: VendorRecord) -> Dict[PhoneStatus, int]:
    """Tally the vendor's phones per status, including zero counts."""

    counts = Counter(phone.status for phone in vendor.phones)
    return {status: counts.get(status, 0) for status in PhoneStatus}


__all__ = [
    "SETTABLE_STATUSES",
    "apply_status",
    "mark_billed",
    "update_phone_status",
    "count_by_status",
]
