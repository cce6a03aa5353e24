"""Transactional in-memory store with an optional workbook backend.

All business modules read and write through a :class:`Store`. Writes are
only accepted inside :meth:`Store.transaction`, which holds a re-entrant
lock for the whole unit and keeps an undo journal. When the unit raises,
every touched row is restored before the exception propagates, so callers
never see a partially applied sale or cancellation.

:class:`WorkbookStore` keeps the same tables but loads them from the master
workbook and writes each committed journal back into the sheets.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import SheetName


# (sheet, primary key, row before the write or None for inserts, row after)
JournalEntry = Tuple[SheetName, int, Optional[Any], Any]


class Store:
    """In-memory tables for every sheet, guarded by one re-entrant lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: Dict[SheetName, Dict[int, Any]] = {sheet: {} for sheet in SheetName}
        self._journal: Optional[List[JournalEntry]] = None

    @property
    def in_transaction(self) -> bool:
        return self._journal is not None

    @contextmanager
    def transaction(self) -> Iterator["Store"]:
        """Run the enclosed block as one all-or-nothing unit of work.

        Nested calls join the outermost unit. The lock is held until the
        outermost unit commits or rolls back, so concurrent writers are
        serialized and readers never observe intermediate state.
        """

        with self._lock:
            if self._journal is not None:
                yield self
                return

            journal: List[JournalEntry] = []
            self._journal = journal
            try:
                yield self
                self._flush(journal)
            except BaseException:
                log.warning("Rolling back unit of work (%d pending writes)", len(journal))
                self._rollback(journal)
                raise
            finally:
                self._journal = None
            log.debug("Committed unit of work with %d writes", len(journal))

    @contextmanager
    def reading(self) -> Iterator["Store"]:
        """Hold the lock while a caller assembles a multi-table snapshot."""

        with self._lock:
            yield self

    def get(self, sheet: SheetName, key: int) -> Optional[Any]:
        with self._lock:
            return self._tables[sheet].get(key)

    def rows(self, sheet: SheetName, predicate: Optional[Callable[[Any], bool]] = None) -> List[Any]:
        """Return rows of ``sheet`` in insertion order, optionally filtered."""

        with self._lock:
            values = list(self._tables[sheet].values())
        if predicate is None:
            return values
        return [row for row in values if predicate(row)]

    def next_id(self, sheet: SheetName) -> int:
        with self._lock:
            table = self._tables[sheet]
            return max(table, default=0) + 1

    def insert(self, sheet: SheetName, record: Any) -> Any:
        """Add a new row. Only valid inside :meth:`transaction`."""

        with self._lock:
            journal = self._require_journal()
            key = data_manager.record_key(record)
            table = self._tables[sheet]
            if key in table:
                raise KeyError(f"Duplicate {sheet.value} key: {key}")
            table[key] = record
            journal.append((sheet, key, None, record))
        return record

    def replace(self, sheet: SheetName, record: Any) -> Any:
        """Swap an existing row for ``record``. Only valid inside :meth:`transaction`."""

        with self._lock:
            journal = self._require_journal()
            key = data_manager.record_key(record)
            table = self._tables[sheet]
            if key not in table:
                raise KeyError(f"Unknown {sheet.value} key: {key}")
            journal.append((sheet, key, table[key], record))
            table[key] = record
        return record

    def load(self, sheet: SheetName, records: Any) -> None:
        """Bulk-populate a table outside any unit of work (bootstrap only)."""

        with self._lock:
            self._tables[sheet] = {data_manager.record_key(record): record for record in records}

    def _require_journal(self) -> List[JournalEntry]:
        if self._journal is None:
            raise RuntimeError("Store writes require an open transaction")
        return self._journal

    def _flush(self, journal: List[JournalEntry]) -> None:
        """Hook for backends that persist each committed journal."""

    def _rollback(self, journal: List[JournalEntry]) -> None:
        for sheet, key, before, _after in reversed(journal):
            table = self._tables[sheet]
            if before is None:
                table.pop(key, None)
            else:
                table[key] = before


class WorkbookStore(Store):
    """Store whose tables mirror the sheets of an openpyxl workbook."""

    def __init__(self, workbook: Workbook, data_file: Path, *, auto_save: bool = True) -> None:
        super().__init__()
        self.workbook = workbook
        self.data_file = Path(data_file)
        self.auto_save = auto_save
        self._reload_pending = False
        self._load_from_workbook()

    @classmethod
    def open(cls, data_file: Path, *, auto_save: bool = True) -> "WorkbookStore":
        workbook = data_manager.open_workbook(data_file)
        return cls(workbook, data_file, auto_save=auto_save)

    def save(self) -> None:
        """Write the workbook to :attr:`data_file`."""

        with self._lock:
            data_manager.save_workbook(self.workbook, self.data_file)
        log.info("Persisted workbook '%s'", self.data_file)

    def reload(self) -> None:
        """Discard unsaved changes and rebuild every table from disk."""

        with self._lock:
            self.workbook = data_manager.refresh_workbook(self.data_file)
            self._load_from_workbook()
        log.info("Reloaded workbook '%s'", self.data_file)

    def _load_from_workbook(self) -> None:
        data_manager.validate_workbook(self.workbook)
        for sheet in SheetName:
            self.load(sheet, data_manager.iter_records(self.workbook, sheet))
        log.debug(
            "Loaded workbook tables: %s",
            ", ".join(f"{sheet.value}={len(self._tables[sheet])}" for sheet in SheetName),
        )

    def _flush(self, journal: List[JournalEntry]) -> None:
        try:
            for sheet, _key, before, after in journal:
                if before is None:
                    data_manager.append_record(self.workbook, sheet, after)
                else:
                    data_manager.replace_record(self.workbook, sheet, after)
            if self.auto_save and journal:
                data_manager.save_workbook(self.workbook, self.data_file)
        except Exception:
            log.error("Failed to write unit of work to workbook '%s'", self.data_file)
            self._reload_pending = True
            raise

    def _rollback(self, journal: List[JournalEntry]) -> None:
        super()._rollback(journal)
        if not self._reload_pending:
            return
        # Sheets may hold part of the journal; the file on disk is the last good state.
        self._reload_pending = False
        try:
            self.reload()
        except Exception:
            log.exception("Could not reload workbook '%s' after a failed write", self.data_file)
