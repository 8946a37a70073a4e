"""Authoritative in-memory record store with background durable flushes.

The store exposes a deliberately narrow contract: read the whole snapshot,
or replace the whole snapshot. Every replacement is visible to callers
immediately and is then written to the durable store by a single worker
thread. Flushes never overlap; when several replacements arrive while a flush
is running only the newest snapshot is written next, because each snapshot
already carries the complete working set.
"""

from __future__ import annotations

from threading import Condition, Thread
from typing import Callable, List, Optional, Protocol

from . import log
from .errors import PersistenceWarning
from .records import Snapshot


WarningListener = Callable[[PersistenceWarning], None]


class DurableStore(Protocol):
    """Boundary contract for crash-surviving storage backends."""

    def load(self) -> Snapshot:
        ...

    def save(self, snapshot: Snapshot) -> bool:
        ...


class FlushWorker(Thread):
    """Worker thread that writes pending snapshots one at a time."""

    def __init__(self, store: "RecordStore") -> None:
        super().__init__(name="repair-desk-flush", daemon=True)
        self._store = store

    def run(self) -> None:
        log.debug("Flush worker started")
        while True:
            snapshot = self._store._take_pending()
            if snapshot is None:
                break
            self._store._flush(snapshot)
        log.debug("Flush worker stopped")


class RecordStore:
    """Single source of truth for every record in the running process."""

    def __init__(self, adapter: Optional[DurableStore] = None, *, initial: Optional[Snapshot] = None) -> None:
        self._adapter = adapter
        self._snapshot = initial if initial is not None else Snapshot()
        self._condition = Condition()
        self._pending: Optional[Snapshot] = None
        self._flushing = False
        self._closed = False
        self._worker: Optional[FlushWorker] = None
        self._listeners: List[WarningListener] = []
        self.warnings: List[PersistenceWarning] = []
        self.flush_count = 0

    @classmethod
    def open(cls, adapter: Optional[DurableStore]) -> "RecordStore":
        """Create a store seeded from ``adapter``.

        A failing load never blocks startup: the failure is logged and the
        store starts from an empty snapshot.
        """

        if adapter is None:
            log.warning("No durable store configured; records are kept in memory only")
            return cls(None)

        try:
            initial = adapter.load()
        except Exception as exc:  # noqa: BLE001 - any backend failure falls back to empty
            log.warning("Unable to load durable store, starting empty: %s", exc)
            initial = Snapshot()
        else:
            log.info("Loaded %d records from durable store", initial.record_count)
        return cls(adapter, initial=initial)

    def load_all(self) -> Snapshot:
        """Return the current snapshot.

        Snapshots are immutable, so the returned object doubles as a
        defensive copy: callers derive new snapshots instead of editing it.
        """

        with self._condition:
            return self._snapshot

    def export_snapshot(self) -> Snapshot:
        """Return a read-only snapshot for backup tooling."""

        return self.load_all()

    def replace_all(self, snapshot: Snapshot) -> None:
        """Swap the working set and schedule a durable flush without waiting."""

        if not isinstance(snapshot, Snapshot):
            raise TypeError(f"replace_all expects a Snapshot, got {type(snapshot).__name__}")

        with self._condition:
            if self._closed:
                raise RuntimeError("Record store is closed")
            self._snapshot = snapshot
            if self._adapter is None:
                return
            if self._pending is not None:
                log.debug("Dropping superseded pending flush")
            self._pending = snapshot
            self._ensure_worker()
            self._condition.notify_all()

    def add_warning_listener(self, listener: WarningListener) -> None:
        self._listeners.append(listener)

    def wait_for_flush(self, timeout: Optional[float] = None) -> bool:
        """Block until no flush is pending or running.

        Returns:
            bool: ``True`` when the store is idle, ``False`` on timeout.
        """

        with self._condition:
            return self._condition.wait_for(
                lambda: self._pending is None and not self._flushing,
                timeout=timeout,
            )

    def close(self, timeout: Optional[float] = None) -> bool:
        """Drain the pending flush and stop the worker thread."""

        idle = self.wait_for_flush(timeout)
        with self._condition:
            self._closed = True
            self._condition.notify_all()
            worker = self._worker
        if worker is not None:
            worker.join(timeout)
        return idle

    def _ensure_worker(self) -> None:
        if self._worker is None or not self._worker.is_alive():
            self._worker = FlushWorker(self)
            self._worker.start()

    def _take_pending(self) -> Optional[Snapshot]:
        with self._condition:
            self._condition.wait_for(lambda: self._pending is not None or self._closed)
            if self._pending is None:
                return None
            snapshot = self._pending
            self._pending = None
            self._flushing = True
            return snapshot

    def _flush(self, snapshot: Snapshot) -> None:
        assert self._adapter is not None
        error: Optional[BaseException] = None
        try:
            saved = self._adapter.save(snapshot)
        except Exception as exc:  # noqa: BLE001 - reported as a PersistenceWarning
            saved = False
            error = exc

        if saved:
            log.info("Flushed %d records to durable store", snapshot.record_count)
        else:
            self._report_failure(error)

        with self._condition:
            self._flushing = False
            self.flush_count += 1
            self._condition.notify_all()

    def _report_failure(self, error: Optional[BaseException]) -> None:
        message = "Durable flush failed; latest changes are only held in memory"
        if error is not None:
            message = f"{message}: {error}"
        warning = PersistenceWarning(message, cause=error)
        log.warning(message, exc_info=error)
        self.warnings.append(warning)
        for listener in list(self._listeners):
            try:
                listener(warning)
            except Exception:  # noqa: BLE001 - a broken listener must not kill the worker
                log.exception("Persistence warning listener failed")


__all__ = ["DurableStore", "FlushWorker", "RecordStore", "WarningListener"]
