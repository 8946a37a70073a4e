"""Command-line entry points for the Repair Desk toolkit.

All orchestration in this module is limited to argparse wiring and translating
command-line arguments into the calls exposed by the record operations and the
billing engine. Output is plain text written to stdout.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence

from . import billing, core_logic, lifecycle, log, runtime
from .constants import PhoneStatus, RecordFamily
from .errors import ValidationError
from .records import LineItem, TopLevelRecord, VendorRecord
from .runtime import RuntimeContext, close_runtime_context, ensure_schema_version


# Seconds the CLI waits for the background flush before giving up.
FLUSH_TIMEOUT = 30.0


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[RuntimeContext, argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="repair-desk",
        description="Command-line tools for the Repair Desk workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as intakes and bills."""
    specs = {
        "new-service": register_new_service_command(subparsers),
        "new-laptop": register_new_laptop_command(subparsers),
        "new-vendor": register_new_vendor_command(subparsers),
        "add-phone": register_add_phone_command(subparsers),
        "phone-status": register_phone_status_command(subparsers),
        "bill-phones": register_bill_phones_command(subparsers),
        "edit-bill": register_edit_bill_command(subparsers),
        "bill-record": register_bill_record_command(subparsers),
        "delete": register_delete_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as lookups and reports."""
    specs = {
        "find": register_find_command(subparsers),
        "records": register_records_command(subparsers),
        "bills": register_bills_command(subparsers),
        "summary": register_summary_command(subparsers),
        "backup": register_backup_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_item_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--item",
        dest="items",
        action="append",
        required=True,
        help='Bill line as "description|breakout|price|qty" (repeatable).',
    )
    parser.add_argument("--tax", dest="tax_percent", default=None, help="Tax percent (defaults to config).")


def register_new_service_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``new-service``."""
    name = "new-service"
    help_text = "Register a customer's phone for service."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--customer-name", required=True)
        parser.add_argument("--mobile-number", required=True)
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.add_argument("--address", default="")
        parser.add_argument("--brand", dest="mobile_brand", default="")
        parser.add_argument("--model", default="")
        parser.add_argument("--imei1", default="")
        parser.add_argument("--imei2", default="")
        parser.add_argument("--issue", default="")
        parser.add_argument("--service-type", dest="service_types", action="append", default=[])
        parser.add_argument("--condition", dest="mobile_condition", default="")
        parser.add_argument("--accessory", dest="accessories", action="append", default=[])
        parser.add_argument("--received-by", default="")
        parser.add_argument("--estimated-delivery", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_new_service)


def register_new_laptop_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``new-laptop``."""
    name = "new-laptop"
    help_text = "Register a laptop for service."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--contact-number", required=True)
        parser.add_argument("--date", type=date.fromisoformat, default=None)
        parser.add_argument("--brand", dest="laptop_brand", default="")
        parser.add_argument("--model", default="")
        parser.add_argument("--issue", default="")
        parser.add_argument("--condition", default="")
        parser.add_argument("--accessory", dest="accessories", action="append", default=[])
        parser.add_argument("--received-by", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_new_laptop)


def register_new_vendor_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``new-vendor``."""
    name = "new-vendor"
    help_text = "Create a vendor account."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vendor-name", required=True)
        parser.add_argument("--mobile-number", required=True)
        parser.add_argument("--date", dest="created_date", type=date.fromisoformat, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_new_vendor)


def register_add_phone_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-phone``."""
    name = "add-phone"
    help_text = "Add a received phone to a vendor."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vendor-id", required=True)
        parser.add_argument("--brand", required=True)
        parser.add_argument("--model", required=True)
        parser.add_argument("--issue", default="")
        parser.add_argument("--date", dest="date_received", type=date.fromisoformat, default=None)
        parser.add_argument("--received-by", default="")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_phone)


def register_phone_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``phone-status``."""
    name = "phone-status"
    help_text = "Move a vendor phone to another repair status."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--phone-id", required=True)
        parser.add_argument(
            "--status",
            choices=[status.value for status in lifecycle.SETTABLE_STATUSES],
            required=True,
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_phone_status)


def register_bill_phones_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bill-phones``."""
    name = "bill-phones"
    help_text = "Bill selected (or all unbilled) phones of a vendor."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--vendor-id", required=True)
        selection = parser.add_mutually_exclusive_group(required=True)
        selection.add_argument("--phone-id", dest="phone_ids", action="append")
        selection.add_argument("--all-unbilled", action="store_true")
        parser.add_argument("--date", dest="bill_date", type=date.fromisoformat, default=None)
        _add_item_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bill_phones)


def register_edit_bill_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``edit-bill``."""
    name = "edit-bill"
    help_text = "Replace the lines and tax of a vendor bill."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--bill-id", required=True)
        _add_item_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_edit_bill)


def register_bill_record_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bill-record``."""
    name = "bill-record"
    help_text = "Save the bill of a service or laptop record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--record-id", required=True)
        parser.add_argument("--warranty", default=None, help="Warranty months (3 or 6).")
        parser.add_argument("--from-date", type=date.fromisoformat, default=None)
        _add_item_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bill_record)


def register_delete_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete``."""
    name = "delete"
    help_text = "Delete a service, laptop or vendor record."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--record-id", required=True)
        parser.add_argument("--force", action="store_true", help="Delete vendors with unbilled phones too.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_delete)


def register_find_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``find``."""
    name = "find"
    help_text = "Find a record by id or contact number."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("query")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_find)


def register_records_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``records``."""
    name = "records"
    help_text = "List records with optional filters."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--family",
            choices=[RecordFamily.SERVICE.value, RecordFamily.LAPTOP.value, RecordFamily.VENDOR.value],
            default=None,
        )
        parser.add_argument("--from-date", type=date.fromisoformat, default=None)
        parser.add_argument("--to-date", type=date.fromisoformat, default=None)
        parser.add_argument("--search", dest="text", default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_records)


def register_bills_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``bills``."""
    name = "bills"
    help_text = "List every bill, newest first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_bills)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display record counts and revenue."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary)


def register_backup_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``backup``."""
    name = "backup"
    help_text = "Export every record to a backup workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_backup)


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return runtime.load_runtime_context(target)


def dispatch_command(
    context: RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_item_argument(raw: str) -> LineItem:
    """Parse ``description|breakout|price|qty`` into a line item.

    ``breakout`` and ``qty`` may be omitted (``"Screen|1300"`` is a single
    screen at 1300).
    """
    parts = [part.strip() for part in raw.split("|")]
    if len(parts) == 2:
        description, price = parts
        breakout, quantity = "", "1"
    elif len(parts) == 3:
        description, price, quantity = parts
        breakout = ""
    elif len(parts) == 4:
        description, breakout, price, quantity = parts
    else:
        raise ValidationError(f"Cannot parse bill item: {raw!r}")
    if not description:
        raise ValidationError(f"Bill item needs a description: {raw!r}")
    return billing.make_line_item(description, price, quantity, breakout=breakout)


def translate_items(args: argparse.Namespace) -> List[LineItem]:
    """Translate repeated ``--item`` values into line items."""
    return [parse_item_argument(raw) for raw in args.items]


def _tax_percent(context: RuntimeContext, args: argparse.Namespace) -> Any:
    if args.tax_percent is None:
        return context.settings.default_tax_percent
    return args.tax_percent


def translate_new_service(args: argparse.Namespace) -> core_logic.ServiceIntakeCommand:
    """Translate CLI args into a service intake command."""
    return core_logic.ServiceIntakeCommand(
        customer_name=args.customer_name,
        mobile_number=args.mobile_number,
        date=args.date,
        address=args.address,
        mobile_brand=args.mobile_brand,
        model=args.model,
        imei1=args.imei1,
        imei2=args.imei2,
        issue=args.issue,
        service_types=tuple(args.service_types),
        mobile_condition=args.mobile_condition,
        accessories=tuple(args.accessories),
        received_by=args.received_by,
        estimated_delivery=args.estimated_delivery,
    )


def translate_new_laptop(args: argparse.Namespace) -> core_logic.LaptopIntakeCommand:
    """Translate CLI args into a laptop intake command."""
    return core_logic.LaptopIntakeCommand(
        contact_number=args.contact_number,
        date=args.date,
        laptop_brand=args.laptop_brand,
        model=args.model,
        issue=args.issue,
        condition=args.condition,
        accessories=tuple(args.accessories),
        received_by=args.received_by,
    )


def translate_add_phone(args: argparse.Namespace) -> core_logic.PhoneIntakeCommand:
    """Translate CLI args into a phone intake command."""
    return core_logic.PhoneIntakeCommand(
        brand=args.brand,
        model=args.model,
        issue=args.issue,
        date_received=args.date_received,
        received_by=args.received_by,
    )


def format_record(record: TopLevelRecord) -> str:
    """Render a one-line description of ``record``."""
    when = record.date.isoformat() if record.date else "-"
    if isinstance(record, VendorRecord):
        counts = lifecycle.count_by_status(record)
        statuses = ", ".join(f"{status.value}={counts[status]}" for status in PhoneStatus)
        return f"{record.vendor_id}  {when}  {record.vendor_name}  {record.mobile_number}  [{statuses}]"
    billed = "billed" if record.bill is not None else "open"
    return f"{record.record_id}  {when}  {record.contact_number}  {billed}"


def run_new_service(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the service intake workflow."""
    record = core_logic.create_service_record(context, translate_new_service(args))
    print(record.service_id)
    return 0


def run_new_laptop(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the laptop intake workflow."""
    record = core_logic.create_laptop_record(context, translate_new_laptop(args))
    print(record.laptop_id)
    return 0


def run_new_vendor(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vendor creation workflow."""
    vendor = core_logic.create_vendor(context, args.vendor_name, args.mobile_number, args.created_date)
    print(vendor.vendor_id)
    return 0


def run_add_phone(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the phone intake workflow."""
    phone = core_logic.add_phone_to_vendor(context, args.vendor_id, translate_add_phone(args))
    print(phone.phone_id)
    return 0


def run_phone_status(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a phone status transition."""
    phone = lifecycle.update_phone_status(context, args.phone_id, PhoneStatus(args.status))
    print(f"{phone.phone_id}: {phone.status.value}")
    return 0


def run_bill_phones(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vendor billing workflow."""
    items = translate_items(args)
    tax_percent = _tax_percent(context, args)
    if args.all_unbilled:
        bill = billing.bill_unbilled_phones(context, args.vendor_id, items, tax_percent, bill_date=args.bill_date)
    else:
        bill = billing.create_bill_for_phones(
            context, args.vendor_id, args.phone_ids, items, tax_percent, bill_date=args.bill_date
        )
    print(f"{bill.bill_id}  {billing.present_amount(bill.grand_total)}")
    return 0


def run_edit_bill(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the vendor bill edit workflow."""
    bill = billing.edit_bill(context, args.bill_id, translate_items(args), _tax_percent(context, args))
    print(f"{bill.bill_id}  {billing.present_amount(bill.grand_total)}")
    return 0


def run_bill_record(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the record billing workflow."""
    warranty = args.warranty if args.warranty is not None else context.settings.default_warranty_months
    bill = billing.create_bill_for_record(
        context,
        args.record_id,
        translate_items(args),
        _tax_percent(context, args),
        warranty,
        args.from_date or date.today(),
    )
    print(
        f"{args.record_id}  {billing.present_amount(bill.grand_total)}  "
        f"warranty until {bill.warranty.to_date.isoformat()}"
    )
    return 0


def run_delete(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete workflow."""
    core_logic.delete_record(context, args.record_id, force=args.force)
    return 0


def run_find(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a record lookup."""
    record = core_logic.find_record(context, args.query)
    if record is None:
        print("Record not found")
        return 2
    print(format_record(record))
    return 0


def run_records(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the record listing workflow."""
    family = RecordFamily(args.family) if args.family else None
    records = core_logic.list_records(
        context, family=family, from_date=args.from_date, to_date=args.to_date, text=args.text
    )
    for record in records:
        print(format_record(record))
    return 0


def run_bills(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the bill listing workflow."""
    for summary in core_logic.list_bills(context):
        when = summary.bill_date.isoformat() if summary.bill_date else "-"
        print(f"{summary.bill_id}  {summary.record_id}  {when}  {billing.present_amount(summary.grand_total)}")
    return 0


def run_summary(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the summary report."""
    summary = core_logic.calculate_summary(context)
    print(
        f"Total: {summary['total']} | Services: {summary['services']} | Laptops: {summary['laptops']} | "
        f"Vendors: {summary['vendors']} | Completed Bills: {summary['billed']} | "
        f"Total Revenue: {summary['revenue']}"
    )
    return 0


def run_backup(context: RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the backup export."""
    print(core_logic.export_backup(context, args.output))
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, ValidationError):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)

    try:
        ensure_schema_version(context)
        return dispatch_command(context, args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
    finally:
        close_runtime_context(context, FLUSH_TIMEOUT)
        for warning in context.store.warnings:
            log.error("%s", warning)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
