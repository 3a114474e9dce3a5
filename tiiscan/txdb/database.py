"""In-memory transmitter catalog with copy-on-write snapshots and SQLite persistence."""

from __future__ import annotations

import csv
import dataclasses
import sqlite3
import threading
from typing import Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, TextIO, Tuple

from tiiscan.io import txdb_csv
from tiiscan.txdb.model import TransmitterKey, TransmitterRecord
from tiiscan.txdb.store import TransmitterStore
from tiiscan.util.logging import get_logger

log = get_logger(__name__)


class TxDbError(Exception):
    """Base class for transmitter database failures."""


class DuplicateTransmitter(TxDbError):
    def __init__(self, key: TransmitterKey):
        super().__init__(f"transmitter {key} already exists")
        self.key = key


class TxDbFormatError(TxDbError, ValueError):
    """The CSV file as a whole cannot be read (no header, missing columns)."""


class UnknownTransmitterKey(TxDbError, KeyError):
    def __init__(self, key: TransmitterKey):
        super().__init__(f"no transmitter {key}")
        self.key = key

    def __str__(self) -> str:
        return str(self.args[0])


class ImportResult(NamedTuple):
    imported_count: int
    rejected_rows: int


class TxDbSnapshot:
    """Immutable view of the database at one point in time."""

    def __init__(self, records: Iterable[TransmitterRecord] = ()):
        ordered = sorted(records, key=lambda r: r.key.sort_key())
        index: Dict[TransmitterKey, List[TransmitterRecord]] = {}
        for rec in ordered:
            index.setdefault(rec.key, []).append(rec)
        self._records: Tuple[TransmitterRecord, ...] = tuple(ordered)
        self._index: Dict[TransmitterKey, Tuple[TransmitterRecord, ...]] = {k: tuple(v) for k, v in index.items()}

    @property
    def records(self) -> Tuple[TransmitterRecord, ...]:
        return self._records

    def records_for(self, key: TransmitterKey) -> Tuple[TransmitterRecord, ...]:
        return self._index.get(key, ())

    def get(self, key: TransmitterKey) -> Optional[TransmitterRecord]:
        found = self._index.get(key)
        if not found:
            return None
        return max(found, key=lambda r: r.revision)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def __iter__(self) -> Iterator[TransmitterRecord]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TxDbSnapshot):
            return NotImplemented
        return self._records == other._records

    def __repr__(self) -> str:
        return f"TxDbSnapshot({len(self._records)} records)"


class TransmitterDatabase:
    """Process-wide transmitter catalog keyed by (ensemble, channel, main, sub).

    Mutations go through a lock, are written to SQLite when a path is given,
    and publish a fresh TxDbSnapshot. Readers take snapshot() and never see a
    half-applied import.
    """

    def __init__(self, path: Optional[str] = None):
        self._lock = threading.RLock()
        self._store: Optional[TransmitterStore] = TransmitterStore(path) if path else None
        self._records: Dict[TransmitterKey, TransmitterRecord] = {}
        self._revision = 0
        self.last_import_rejections: List[txdb_csv.RejectedRow] = []
        if self._store is not None:
            for rec in self._store.load_all():
                self._records[rec.key] = rec
                self._revision = max(self._revision, rec.revision)
            log.debug("loaded %d transmitter records from %s", len(self._records), path)
        self._snapshot = TxDbSnapshot(self._records.values())

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def snapshot(self) -> TxDbSnapshot:
        return self._snapshot

    def lookup(self, key: TransmitterKey) -> Tuple[TransmitterRecord, ...]:
        return self._snapshot.records_for(key)

    def get(self, key: TransmitterKey) -> Optional[TransmitterRecord]:
        return self._snapshot.get(key)

    def __len__(self) -> int:
        return len(self._snapshot)

    def __contains__(self, key: object) -> bool:
        return key in self._snapshot

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _next_revision(self) -> int:
        self._revision += 1
        return self._revision

    def _persist(self, records: List[TransmitterRecord]) -> None:
        if self._store is None or not records:
            return
        try:
            self._store.upsert_many(records)
        except sqlite3.Error as exc:
            raise TxDbError(f"failed to persist transmitter records: {exc}") from exc

    def _publish(self) -> None:
        self._snapshot = TxDbSnapshot(self._records.values())

    def insert(self, record: TransmitterRecord) -> TransmitterRecord:
        """Add a new record; an existing key raises DuplicateTransmitter."""
        with self._lock:
            if record.key in self._records:
                raise DuplicateTransmitter(record.key)
            return self._apply([record])[0]

    def upsert(self, record: TransmitterRecord) -> TransmitterRecord:
        """Insert or explicitly replace the record stored under the same key."""
        with self._lock:
            return self._apply([record])[0]

    def _apply(self, records: List[TransmitterRecord]) -> List[TransmitterRecord]:
        stamped = [dataclasses.replace(rec, revision=self._next_revision()) for rec in records]
        self._persist(stamped)
        for rec in stamped:
            self._records[rec.key] = rec
        self._publish()
        return stamped

    def remove(self, key: TransmitterKey) -> None:
        with self._lock:
            if key not in self._records:
                raise UnknownTransmitterKey(key)
            if self._store is not None:
                try:
                    self._store.delete(key)
                except sqlite3.Error as exc:
                    raise TxDbError(f"failed to delete transmitter {key}: {exc}") from exc
            del self._records[key]
            self._publish()

    def mark_known(self, key: TransmitterKey, known: bool = True) -> TransmitterRecord:
        """Set or clear the user's "locally known" flag on an existing record."""
        with self._lock:
            current = self._records.get(key)
            if current is None:
                raise UnknownTransmitterKey(key)
            if current.locally_known == bool(known):
                return current
            return self._apply([dataclasses.replace(current, locally_known=bool(known))])[0]

    def clear(self) -> int:
        """Delete every record. Irreversible; callers confirm with the user first."""
        with self._lock:
            removed = len(self._records)
            if self._store is not None:
                try:
                    self._store.delete_all()
                except sqlite3.Error as exc:
                    raise TxDbError(f"failed to clear transmitter database: {exc}") from exc
            self._records.clear()
            self._publish()
        log.info("transmitter database cleared (%d records removed)", removed)
        return removed

    # ------------------------------------------------------------------
    # CSV import / export
    # ------------------------------------------------------------------

    def import_csv(self, stream: TextIO, *, replace: bool = False) -> ImportResult:
        """Import transmitter rows from a CSV stream.

        Malformed rows and rows whose key already exists (in the database or
        earlier in the same file) are skipped and counted as rejected; with
        replace=True existing keys are overwritten instead. Only a missing
        header or required column aborts the import (TxDbFormatError).
        """
        try:
            _, rows = txdb_csv.read_rows(stream)
        except ValueError as exc:
            raise TxDbFormatError(str(exc)) from exc

        accepted: Dict[TransmitterKey, TransmitterRecord] = {}
        rejected: List[txdb_csv.RejectedRow] = []
        with self._lock:
            for line, row in rows:
                if isinstance(row, txdb_csv.CsvRowError):
                    rejected.append(txdb_csv.RejectedRow(line, str(row)))
                    continue
                try:
                    record = txdb_csv.parse_row(row)
                except txdb_csv.CsvRowError as exc:
                    rejected.append(txdb_csv.RejectedRow(line, str(exc)))
                    continue
                key = record.key
                if key in accepted or (not replace and key in self._records):
                    rejected.append(txdb_csv.RejectedRow(line, f"duplicate key {key}"))
                    continue
                accepted[key] = record
            if accepted:
                self._apply(list(accepted.values()))

        for item in rejected:
            log.warning("rejected transmitter CSV line %d: %s", item.line, item.reason)
        self.last_import_rejections = rejected
        log.info("imported %d transmitter records (%d rejected)", len(accepted), len(rejected))
        return ImportResult(imported_count=len(accepted), rejected_rows=len(rejected))

    def export_csv(
        self,
        stream: TextIO,
        predicate: Optional[Callable[[TransmitterRecord], bool]] = None,
    ) -> int:
        """Write the current snapshot (optionally filtered) as CSV; returns row count."""
        writer = csv.writer(stream, lineterminator="\n")
        txdb_csv.write_header(writer)
        count = 0
        for record in self._snapshot:
            if predicate is not None and not predicate(record):
                continue
            writer.writerow(txdb_csv.format_row(record))
            count += 1
        return count

    def close(self) -> None:
        if self._store is not None:
            self._store.close()
