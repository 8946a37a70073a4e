"""Runtime wiring shared by the CLI and the record operations."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from . import data_manager, log
from .changelog import ChangeLog, InMemoryChangeLog, WorkbookChangeLog
from .constants import EXPECTED_SCHEMA_VERSION
from .record_store import RecordStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, the record store and the change log."""

    settings: data_manager.ConfigSettings
    store: RecordStore
    changelog: ChangeLog


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and open the record store.

    The helper resolves ``config.ini``, parses settings and seeds a
    :class:`RecordStore` from the configured workbook. A workbook that cannot
    be read does not abort startup; the store begins empty and the failure is
    logged.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Fully populated context ready for record operations.

    Raises:
        FileNotFoundError: If the configuration file cannot be located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)

    store = RecordStore.open(data_manager.WorkbookStore(settings.data_file))
    if settings.changelog_file is not None:
        changelog: ChangeLog = WorkbookChangeLog(settings.changelog_file)
    else:
        changelog = InMemoryChangeLog()
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store, changelog=changelog)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def close_runtime_context(context: RuntimeContext, timeout: Optional[float] = None) -> bool:
    """Wait for the pending durable flush and stop the flush worker.

    Returns:
        bool: ``False`` if the flush did not finish within ``timeout``.
    """
    idle = context.store.close(timeout)
    if not idle:
        log.warning("Durable flush still running after %s seconds", timeout)
    return idle


__all__ = [
    "RuntimeContext",
    "load_runtime_context",
    "ensure_schema_version",
    "close_runtime_context",
]
