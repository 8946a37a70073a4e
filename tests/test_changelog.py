"""Tests for the append-only change log."""

from __future__ import annotations

import openpyxl

from repair_desk import changelog
from repair_desk.constants import ChangeAction, PhoneStatus, SYSTEM_USER


def test_in_memory_change_log_keeps_entries_in_order():
    log = changelog.InMemoryChangeLog()

    log.append(ChangeAction.CREATE, "service", "SRV001")
    log.append(ChangeAction.UPDATE, "service", "SRV001", "issue", "Screen", "Battery")

    assert [entry.action for entry in log.entries] == [ChangeAction.CREATE, ChangeAction.UPDATE]
    assert log.entries[1].field_changed == "issue"
    assert log.entries[1].user == SYSTEM_USER


def test_enum_values_are_stored_as_text():
    log = changelog.InMemoryChangeLog()

    entry = log.append(
        ChangeAction.UPDATE,
        "vendor",
        "VND001",
        field_changed="phones.VND001-P001.status",
        old_value=PhoneStatus.RECEIVED,
        new_value=PhoneStatus.READY,
    )

    assert (entry.old_value, entry.new_value) == ("Received", "Ready")


def test_workbook_change_log_creates_file_and_appends(tmp_path):
    """The workbook log should create its sheet on first use and append afterwards."""

    path = tmp_path / "logs" / "changelog.xlsx"
    log = changelog.WorkbookChangeLog(path, user="Front Desk")

    log.append(ChangeAction.CREATE, "vendor", "VND001")
    log.append(ChangeAction.DELETE, "vendor", "VND001")

    sheet = openpyxl.load_workbook(path)["ChangeLog"]
    rows = list(sheet.iter_rows(values_only=True))
    assert rows[0] == changelog.CHANGE_LOG_COLUMNS
    entries = [changelog.deserialize_entry(row) for row in rows[1:]]
    assert [entry.action for entry in entries] == [ChangeAction.CREATE, ChangeAction.DELETE]
    assert entries[0].user == "Front Desk"


def test_workbook_change_log_swallows_write_errors(tmp_path, monkeypatch):
    """A failing audit write is logged; the caller still receives the entry."""

    log = changelog.WorkbookChangeLog(tmp_path / "changelog.xlsx")
    monkeypatch.setattr(
        openpyxl.Workbook, "save", lambda self, filename: (_ for _ in ()).throw(PermissionError("locked"))
    )

    entry = log.append(ChangeAction.CREATE, "service", "SRV001")

    assert entry.record_id == "SRV001"


def test_workbook_change_log_survives_corrupt_file(tmp_path, caplog):
    """A change log file that is not a workbook is reported, not raised."""

    path = tmp_path / "changelog.xlsx"
    path.write_bytes(b"not a zip archive")
    log = changelog.WorkbookChangeLog(path)

    with caplog.at_level("ERROR", logger="repair_desk"):
        entry = log.append(ChangeAction.CREATE, "vendor", "VND001")

    assert entry.record_id == "VND001"
    assert "Unable to append change log entry" in caplog.text


def test_workbook_change_log_strips_control_characters(tmp_path):
    path = tmp_path / "changelog.xlsx"
    log = changelog.WorkbookChangeLog(path)

    entry = log.append(ChangeAction.UPDATE, "service", "SRV001", "issue", "screen", "bad\x07screen")

    assert entry.new_value == "badscreen"
    rows = list(openpyxl.load_workbook(path)["ChangeLog"].iter_rows(values_only=True))
    assert rows[1][6] == "badscreen"
