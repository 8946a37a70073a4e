"""Tests for the record store and its background flush worker."""

from __future__ import annotations

import threading
from datetime import date
from unittest.mock import Mock

import pytest

from repair_desk.errors import PersistenceWarning
from repair_desk.record_store import RecordStore
from repair_desk.records import ServiceRecord, Snapshot


def _snapshot(*service_ids: str) -> Snapshot:
    return Snapshot(
        services=tuple(
            ServiceRecord(service_id, date(2025, 11, 1), "Customer", "0300") for service_id in service_ids
        )
    )


def test_open_seeds_from_durable_store(recording_store_factory):
    seeded = _snapshot("SRV001")
    store = RecordStore.open(recording_store_factory(seeded))

    assert store.load_all() is seeded
    store.close(timeout=5)


def test_open_starts_empty_when_load_fails():
    """A failing durable load should never block startup."""

    adapter = Mock()
    adapter.load.side_effect = OSError("disk gone")

    store = RecordStore.open(adapter)

    assert store.load_all() == Snapshot()
    store.close(timeout=5)


def test_open_without_adapter_is_memory_only():
    store = RecordStore.open(None)

    store.replace_all(_snapshot("SRV001"))

    assert store.load_all().record_count == 1
    assert store.wait_for_flush(timeout=0.1) is True
    assert store.flush_count == 0


def test_replace_all_is_visible_before_flush_completes(recording_store_factory):
    """Readers see a replacement immediately, even while it is still being written."""

    gate = threading.Event()
    adapter = recording_store_factory(gate=gate)
    store = RecordStore(adapter)
    new = _snapshot("SRV001")

    store.replace_all(new)

    assert store.load_all() is new
    gate.set()
    assert store.wait_for_flush(timeout=5)
    assert adapter.saved == [new]
    store.close(timeout=5)


def test_flushes_never_overlap_and_coalesce_to_latest(recording_store_factory):
    """Replacements queued during a flush collapse into one write of the newest snapshot."""

    gate = threading.Event()
    adapter = recording_store_factory(gate=gate)
    store = RecordStore(adapter)
    first, second, third = _snapshot("SRV001"), _snapshot("SRV001", "SRV002"), _snapshot("SRV003")

    store.replace_all(first)
    assert adapter.started.wait(5)
    store.replace_all(second)
    store.replace_all(third)
    gate.set()

    assert store.wait_for_flush(timeout=5)
    assert adapter.max_active == 1
    assert adapter.saved == [first, third]
    assert store.load_all() is third
    store.close(timeout=5)


def test_failed_flush_reports_warning_and_keeps_memory(recording_store_factory):
    adapter = recording_store_factory(fail=True)
    store = RecordStore(adapter)
    received = []
    store.add_warning_listener(received.append)
    new = _snapshot("SRV001")

    store.replace_all(new)

    assert store.wait_for_flush(timeout=5)
    assert store.load_all() is new
    assert len(store.warnings) == 1
    assert isinstance(store.warnings[0], PersistenceWarning)
    assert received == store.warnings
    store.close(timeout=5)


def test_save_exception_is_reported_not_raised():
    adapter = Mock()
    adapter.save.side_effect = PermissionError("locked")
    store = RecordStore(adapter)

    store.replace_all(_snapshot("SRV001"))

    assert store.wait_for_flush(timeout=5)
    assert isinstance(store.warnings[0].cause, PermissionError)
    store.close(timeout=5)


def test_broken_listener_does_not_stop_worker(recording_store_factory):
    adapter = recording_store_factory(fail=True)
    store = RecordStore(adapter)
    store.add_warning_listener(Mock(side_effect=RuntimeError("boom")))

    store.replace_all(_snapshot("SRV001"))
    assert store.wait_for_flush(timeout=5)
    adapter.fail = False
    store.replace_all(_snapshot("SRV002"))

    assert store.wait_for_flush(timeout=5)
    assert [s.services[0].service_id for s in adapter.saved] == ["SRV002"]
    store.close(timeout=5)


def test_replace_all_rejects_non_snapshot():
    store = RecordStore(None)

    with pytest.raises(TypeError):
        store.replace_all({"services": []})


def test_close_drains_pending_flush_and_blocks_writes(recording_store_factory):
    adapter = recording_store_factory()
    store = RecordStore(adapter)
    store.replace_all(_snapshot("SRV001"))

    assert store.close(timeout=5) is True
    assert len(adapter.saved) == 1
    with pytest.raises(RuntimeError):
        store.replace_all(_snapshot("SRV002"))


def test_export_snapshot_matches_current_state():
    store = RecordStore(None, initial=_snapshot("SRV001"))

    assert store.export_snapshot() is store.load_all()
