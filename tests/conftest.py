"""Shared pytest fixtures and utilities for Repair Desk tests."""

from __future__ import annotations

import argparse
import sys
import threading
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator, List, Optional

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from repair_desk import cli, constants, core_logic, data_manager, runtime  # noqa: E402
from repair_desk.changelog import InMemoryChangeLog  # noqa: E402
from repair_desk.record_store import RecordStore  # noqa: E402
from repair_desk.records import Snapshot  # noqa: E402
from repair_desk.setup_excel import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ChangeLogFile = {changelog_file}\n"
    "BackupDir = {backup_dir}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "TaxPercent = {tax_percent}\n"
    "WarrantyMonths = {warranty_months}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    changelog_path: Optional[Path]
    backup_dir: Path
    schema_version: str
    shop_name: str


class RecordingStore:
    """In-memory durable store that records every saved snapshot.

    ``gate`` (when given) blocks each save until the test sets it, which lets
    tests observe what happens while a flush is in flight.
    """

    def __init__(
        self,
        initial: Optional[Snapshot] = None,
        *,
        fail: bool = False,
        gate: Optional[threading.Event] = None,
    ) -> None:
        self.initial = initial if initial is not None else Snapshot()
        self.fail = fail
        self.gate = gate
        self.saved: List[Snapshot] = []
        self.active = 0
        self.max_active = 0
        self.started = threading.Event()
        self._lock = threading.Lock()

    def load(self) -> Snapshot:
        return self.initial

    def save(self, snapshot: Snapshot) -> bool:
        with self._lock:
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        self.started.set()
        try:
            if self.gate is not None:
                self.gate.wait(5)
            if self.fail:
                return False
            self.saved.append(snapshot)
            return True
        finally:
            with self._lock:
                self.active -= 1


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the repository root path."""

    return PROJECT_ROOT


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "repair_desk.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        with_changelog: bool = True,
        tax_percent: str = "0",
        warranty_months: str = "3",
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        changelog_path = bundle_dir / "changelog.xlsx" if with_changelog else None
        backup_dir = bundle_dir / "backups"
        if make_relative:
            data_file_entry = workbook_path.name
            changelog_entry = changelog_path.name if changelog_path else ""
            backup_entry = "backups"
        else:
            data_file_entry = str(workbook_path)
            changelog_entry = str(changelog_path) if changelog_path else ""
            backup_entry = str(backup_dir)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                changelog_file=changelog_entry,
                backup_dir=backup_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                tax_percent=tax_percent,
                warranty_months=warranty_months,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            changelog_path=changelog_path,
            backup_dir=backup_dir,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> Iterator[runtime.RuntimeContext]:
    """Load the runtime context through the public API and close it afterwards."""

    context = runtime.load_runtime_context(config_file)
    runtime.ensure_schema_version(context)
    try:
        yield context
    finally:
        runtime.close_runtime_context(context, timeout=5)


# ---------------------------------------------------------------------------
# In-memory fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "repair_desk.xlsx",
        changelog_file=None,
        backup_dir=tmp_path / "backups",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def recording_store_factory() -> Callable[..., RecordingStore]:
    """Return the :class:`RecordingStore` constructor for tests that need variants."""

    return RecordingStore


@pytest.fixture
def recording_store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def context(settings: data_manager.ConfigSettings, recording_store: RecordingStore) -> Iterator[runtime.RuntimeContext]:
    """Runtime context backed by a recording durable store and an in-memory change log."""

    store = RecordStore.open(recording_store)
    ctx = runtime.RuntimeContext(settings=settings, store=store, changelog=InMemoryChangeLog())
    try:
        yield ctx
    finally:
        store.close(timeout=5)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="repair-desk", description="Repair Desk CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
