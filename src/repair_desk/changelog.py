"""Append-only audit trail of record changes.

The core only ever appends; nothing in the package reads the log back. The
workbook-backed implementation writes to its own file so that audit appends
never interleave with the record store's full-snapshot flushes.
"""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import Any, List, Optional
from zipfile import BadZipFile

import openpyxl
from openpyxl.cell.cell import ILLEGAL_CHARACTERS_RE
from openpyxl.styles import Font
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException

from . import log
from .constants import SYSTEM_USER, ChangeAction, SheetName
from .records import ChangeLogEntry


CHANGE_LOG_SHEET = SheetName.CHANGE_LOG.value
CHANGE_LOG_COLUMNS = (
    "Timestamp",
    "Action",
    "RecordType",
    "RecordID",
    "FieldChanged",
    "OldValue",
    "NewValue",
    "User",
)


def _stringify(value: Any) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "value") and isinstance(value.value, str):
        return value.value
    return ILLEGAL_CHARACTERS_RE.sub("", str(value))


class ChangeLog:
    """Base audit sink; subclasses decide where entries end up."""

    def __init__(self, *, user: str = SYSTEM_USER) -> None:
        self.user = user

    def append(
        self,
        action: ChangeAction,
        record_type: str,
        record_id: str,
        field_changed: Optional[str] = None,
        old_value: Any = None,
        new_value: Any = None,
    ) -> ChangeLogEntry:
        """Record one create/update/delete and return the stored entry."""

        entry = ChangeLogEntry(
            timestamp=datetime.now(UTC).isoformat(),
            action=ChangeAction(action),
            record_type=record_type,
            record_id=record_id,
            field_changed=field_changed,
            old_value=_stringify(old_value),
            new_value=_stringify(new_value),
            user=self.user,
        )
        self._write(entry)
        log.info(
            "Change log: %s %s '%s'%s",
            entry.action.value,
            entry.record_type,
            entry.record_id,
            f" ({entry.field_changed})" if entry.field_changed else "",
        )
        return entry

    def _write(self, entry: ChangeLogEntry) -> None:
        raise NotImplementedError


class InMemoryChangeLog(ChangeLog):
    """Change log that keeps entries in a list."""

    def __init__(self, *, user: str = SYSTEM_USER) -> None:
        super().__init__(user=user)
        self.entries: List[ChangeLogEntry] = []

    def _write(self, entry: ChangeLogEntry) -> None:
        self.entries.append(entry)


class WorkbookChangeLog(ChangeLog):
    """Change log appending rows to the ``ChangeLog`` sheet of a workbook."""

    def __init__(self, path: Path, *, user: str = SYSTEM_USER) -> None:
        super().__init__(user=user)
        self.path = Path(path).expanduser().resolve()

    def _write(self, entry: ChangeLogEntry) -> None:
        try:
            workbook = self._open_or_create()
            workbook[CHANGE_LOG_SHEET].append(serialize_entry(entry))
            workbook.save(self.path)
        except (OSError, BadZipFile, InvalidFileException, IllegalCharacterError, KeyError, ValueError) as exc:
            log.error("Unable to append change log entry to '%s': %s", self.path, exc)

    def _open_or_create(self) -> openpyxl.Workbook:
        if self.path.exists():
            workbook = openpyxl.load_workbook(self.path)
            if CHANGE_LOG_SHEET in workbook.sheetnames:
                return workbook
        else:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            workbook = openpyxl.Workbook()
            if workbook.active and workbook.active.title == "Sheet":
                workbook.remove(workbook.active)

        sheet = workbook.create_sheet(title=CHANGE_LOG_SHEET)
        bold_font = Font(bold=True)
        for column_index, column_name in enumerate(CHANGE_LOG_COLUMNS, start=1):
            cell = sheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font
        log.info("Created change log sheet in '%s'", self.path)
        return workbook


def serialize_entry(entry: ChangeLogEntry) -> list[object]:
    """Convert a change log entry into the ``ChangeLog`` column ordering."""

    return [
        entry.timestamp,
        entry.action.value,
        entry.record_type,
        entry.record_id,
        entry.field_changed,
        entry.old_value,
        entry.new_value,
        entry.user,
    ]


def deserialize_entry(raw_row: list[object] | tuple[object, ...]) -> ChangeLogEntry:
    """Convert a raw ``ChangeLog`` row back into an entry (used by audits and tests)."""

    timestamp, action, record_type, record_id, field_changed, old_value, new_value, user = raw_row
    return ChangeLogEntry(
        timestamp=str(timestamp),
        action=ChangeAction(str(action)),
        record_type=str(record_type),
        record_id=str(record_id),
        field_changed=(str(field_changed) if field_changed is not None else None),
        old_value=(str(old_value) if old_value is not None else None),
        new_value=(str(new_value) if new_value is not None else None),
        user=str(user) if user is not None else SYSTEM_USER,
    )


__all__ = [
    "CHANGE_LOG_COLUMNS",
    "ChangeLog",
    "InMemoryChangeLog",
    "WorkbookChangeLog",
    "serialize_entry",
    "deserialize_entry",
]
