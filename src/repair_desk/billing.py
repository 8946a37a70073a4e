"""Billing engine for vendor bills and per-record bills.

Money is handled with :class:`~decimal.Decimal` throughout. Totals are kept
unrounded; :func:`present_amount` and :meth:`BillTotals.rounded` quantize to
two decimal places for display only.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import UTC, date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Iterable, Optional, Sequence

from . import log
from .constants import DEFAULT_WARRANTY_MONTHS, WARRANTY_PERIODS, ChangeAction, RecordFamily, RecordType
from .errors import NotFoundError, ValidationError
from .identifiers import next_id
from .lifecycle import mark_billed
from .records import (
    Bill,
    LaptopRecord,
    LineItem,
    ServiceRecord,
    VendorBill,
    Warranty,
    add_months,
    record_type_of,
    storable_text,
)

if TYPE_CHECKING:
    from .runtime import RuntimeContext


CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


@dataclass(frozen=True)
class BillTotals:
    """Unrounded bill totals."""

    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal

    def rounded(self) -> "BillTotals":
        return BillTotals(
            subtotal=present_amount(self.subtotal),
            tax_amount=present_amount(self.tax_amount),
            grand_total=present_amount(self.grand_total),
        )


def present_amount(amount: Decimal) -> Decimal:
    """Quantize ``amount`` to cents for presentation."""

    return Decimal(amount).quantize(CENT, rounding=ROUND_HALF_UP)


def _to_decimal(value: object) -> Decimal:
    if isinstance(value, Decimal):
        amount = value
    else:
        try:
            amount = Decimal(str(value).strip() or "0")
        except InvalidOperation as exc:
            raise ValidationError(f"Invalid amount: {value!r}") from exc
    if not amount.is_finite():
        raise ValidationError(f"Amount must be a finite number: {value!r}")
    return amount


def _to_quantity(value: object) -> int:
    try:
        return int(Decimal(str(value).strip() or "1"))
    except (InvalidOperation, ValueError, OverflowError) as exc:
        raise ValidationError(f"Invalid quantity: {value!r}") from exc


def compute_line_item(price: object, quantity: object) -> Decimal:
    """Return ``price * quantity`` with price floored at 0 and quantity at 1."""

    price_value = max(_to_decimal(price), ZERO)
    quantity_value = max(_to_quantity(quantity), 1)
    return price_value * quantity_value


def make_line_item(description: str, price: object, quantity: object, breakout: str = "") -> LineItem:
    price_value = max(_to_decimal(price), ZERO)
    quantity_value = max(_to_quantity(quantity), 1)
    return LineItem(
        description=storable_text(description, "Item description"),
        breakout=storable_text(breakout, "Item breakout"),
        price=price_value,
        quantity=quantity_value,
        total=compute_line_item(price_value, quantity_value),
    )


def compute_bill_totals(items: Iterable[LineItem], tax_percent: object) -> BillTotals:
    """Sum the line totals and apply ``tax_percent`` on top.

    Args:
        items (Iterable[LineItem]): Lines to total.
        tax_percent (Decimal | str | int): Tax rate in percent. Negative
            rates are treated as zero.

    Returns:
        BillTotals: Unrounded subtotal, tax amount and grand total.
    """

    subtotal = sum((item.total for item in items), ZERO)
    rate = max(_to_decimal(tax_percent), ZERO)
    tax_amount = subtotal * rate / HUNDRED
    return BillTotals(subtotal=subtotal, tax_amount=tax_amount, grand_total=subtotal + tax_amount)


def normalize_warranty_period(value: object) -> int:
    """Map a warranty selection to 3 or 6 months; anything else becomes 3."""

    try:
        months = int(str(value).strip())
    except (TypeError, ValueError):
        return DEFAULT_WARRANTY_MONTHS
    return months if months in WARRANTY_PERIODS else DEFAULT_WARRANTY_MONTHS


def compute_warranty_window(from_date: date, period_months: object) -> date:
    """Return the warranty end date ``period_months`` calendar months after ``from_date``."""

    return add_months(from_date, normalize_warranty_period(period_months))


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()


def _normalize_items(items: Sequence[LineItem]) -> tuple[LineItem, ...]:
    # Line totals are always derived, never trusted from the caller.
    return tuple(
        make_line_item(item.description, item.price, item.quantity, breakout=item.breakout)
        for item in items
    )


def create_bill_for_phones(
    context: "RuntimeContext",
    vendor_id: str,
    phone_ids: Sequence[str],
    items: Sequence[LineItem],
    tax_percent: object,
    bill_date: Optional[date] = None,
) -> VendorBill:
    """Create a vendor bill covering ``phone_ids`` and mark those phones billed.

    All checks run before the snapshot is touched, so a rejected request
    leaves the store unchanged. A successful call performs exactly one
    :meth:`RecordStore.replace_all`.

    Args:
        context (RuntimeContext): Runtime context holding the record store and
            change log.
        vendor_id (str): Owning vendor.
        phone_ids (Sequence[str]): Phones to bill; must be non-empty, unique
            and currently unbilled.
        items (Sequence[LineItem]): Bill lines.
        tax_percent (Decimal | str | int): Tax rate in percent.
        bill_date (date | None): Bill date, defaults to today.

    Returns:
        VendorBill: The stored bill.

    Raises:
        ValidationError: For an empty or duplicated selection, or a phone that
            is already billed.
        NotFoundError: If the vendor or one of the phones is unknown.
    """

    requested = list(phone_ids)
    if not requested:
        raise ValidationError("Select at least one phone to bill")
    if len(set(requested)) != len(requested):
        raise ValidationError("Phone selection contains duplicates")

    snapshot = context.store.load_all()
    vendor = snapshot.find_vendor(vendor_id)
    if vendor is None:
        raise NotFoundError(f"Unknown vendor id: {vendor_id}")

    for phone_id in requested:
        phone = vendor.find_phone(phone_id)
        if phone is None:
            raise NotFoundError(f"Vendor '{vendor_id}' has no phone '{phone_id}'")
        if phone.billed:
            log.warning("Phone '%s' already billed on '%s'", phone_id, phone.bill_id)
            raise ValidationError(f"Phone '{phone_id}' is already billed on {phone.bill_id}")

    bill_id = next_id(snapshot, RecordFamily.BILL, scope=vendor_id)
    line_items = _normalize_items(items)
    rate = max(_to_decimal(tax_percent), ZERO)
    totals = compute_bill_totals(line_items, rate)
    bill = VendorBill(
        bill_id=bill_id,
        bill_date=bill_date or date.today(),
        phone_ids=tuple(requested),
        items=line_items,
        tax_percent=rate,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        grand_total=totals.grand_total,
        saved_at=_now_iso(),
    )

    selected = set(requested)
    phones = tuple(
        mark_billed(phone, bill_id) if phone.phone_id in selected else phone
        for phone in vendor.phones
    )
    updated_vendor = replace(vendor, phones=phones, bills=(*vendor.bills, bill))
    context.store.replace_all(snapshot.with_vendor(updated_vendor))
    context.changelog.append(
        ChangeAction.UPDATE,
        RecordType.VENDOR.value,
        vendor_id,
        field_changed="bills",
        new_value=bill_id,
    )
    log.info(
        "Created bill '%s' for %d phone(s) (grand total=%s)",
        bill_id,
        len(requested),
        present_amount(totals.grand_total),
    )
    return bill


def bill_unbilled_phones(
    context: "RuntimeContext",
    vendor_id: str,
    items: Sequence[LineItem],
    tax_percent: object,
    bill_date: Optional[date] = None,
) -> VendorBill:
    """Bill every phone of ``vendor_id`` that is not billed yet."""

    vendor = context.store.load_all().find_vendor(vendor_id)
    if vendor is None:
        raise NotFoundError(f"Unknown vendor id: {vendor_id}")
    phone_ids = [phone.phone_id for phone in vendor.unbilled_phones()]
    if not phone_ids:
        raise ValidationError(f"Vendor '{vendor_id}' has no unbilled phones")
    return create_bill_for_phones(context, vendor_id, phone_ids, items, tax_percent, bill_date=bill_date)


def edit_bill(
    context: "RuntimeContext",
    bill_id: str,
    new_items: Sequence[LineItem],
    new_tax_percent: object,
) -> VendorBill:
    """Replace the lines and tax of an existing vendor bill.

    The bill keeps its id, date and phone set; phones are not touched.

    Raises:
        NotFoundError: If no vendor owns ``bill_id``.
    """

    snapshot = context.store.load_all()
    vendor = snapshot.find_vendor_for_bill(bill_id)
    if vendor is None:
        raise NotFoundError(f"Unknown bill id: {bill_id}")
    current = vendor.find_bill(bill_id)
    assert current is not None

    line_items = _normalize_items(new_items)
    rate = max(_to_decimal(new_tax_percent), ZERO)
    totals = compute_bill_totals(line_items, rate)
    updated = replace(
        current,
        items=line_items,
        tax_percent=rate,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        grand_total=totals.grand_total,
        updated_at=_now_iso(),
    )
    bills = tuple(updated if bill.bill_id == bill_id else bill for bill in vendor.bills)
    context.store.replace_all(snapshot.with_vendor(replace(vendor, bills=bills)))
    context.changelog.append(
        ChangeAction.UPDATE,
        RecordType.VENDOR.value,
        vendor.vendor_id,
        field_changed=f"bills.{bill_id}",
        old_value=present_amount(current.grand_total),
        new_value=present_amount(updated.grand_total),
    )
    log.info("Edited bill '%s' (grand total %s -> %s)", bill_id, current.grand_total, updated.grand_total)
    return updated


def create_bill_for_record(
    context: "RuntimeContext",
    record_id: str,
    items: Sequence[LineItem],
    tax_percent: object,
    warranty_period: object,
    from_date: date,
    to_date: Optional[date] = None,
) -> Bill:
    """Attach a bill to a service or laptop record, replacing any previous one.

    The warranty end date is always derived from ``from_date`` and the
    period. A ``to_date`` supplied by the caller is only compared against it.

    Raises:
        NotFoundError: If ``record_id`` is unknown.
        ValidationError: If ``record_id`` names a vendor.
    """

    snapshot = context.store.load_all()
    record = snapshot.find_record(record_id)
    if record is None:
        raise NotFoundError(f"Unknown record id: {record_id}")
    if not isinstance(record, (ServiceRecord, LaptopRecord)):
        raise ValidationError("Vendor records are billed through vendor bills")

    warranty = Warranty(period_months=normalize_warranty_period(warranty_period), from_date=from_date)
    if to_date is not None and to_date != warranty.to_date:
        log.warning(
            "Discarding supplied warranty end %s for '%s'; computed %s",
            to_date,
            record_id,
            warranty.to_date,
        )

    line_items = _normalize_items(items)
    rate = max(_to_decimal(tax_percent), ZERO)
    totals = compute_bill_totals(line_items, rate)
    now = _now_iso()
    previous = record.bill
    bill = Bill(
        items=line_items,
        tax_percent=rate,
        subtotal=totals.subtotal,
        tax_amount=totals.tax_amount,
        grand_total=totals.grand_total,
        warranty=warranty,
        saved_at=previous.saved_at if previous is not None else now,
        updated_at=now if previous is not None else None,
    )
    context.store.replace_all(snapshot.with_record(replace(record, bill=bill)))
    context.changelog.append(
        ChangeAction.UPDATE,
        record_type_of(record),
        record_id,
        field_changed="bill",
        old_value=present_amount(previous.grand_total) if previous is not None else None,
        new_value=present_amount(bill.grand_total),
    )
    log.info("Saved bill on '%s' (grand total=%s)", record_id, present_amount(bill.grand_total))
    return bill


__all__ = [
    "BillTotals",
    "present_amount",
    "compute_line_item",
    "make_line_item",
    "compute_bill_totals",
    "normalize_warranty_period",
    "compute_warranty_window",
    "create_bill_for_phones",
    "bill_unbilled_phones",
    "edit_bill",
    "create_bill_for_record",
]
