"""Transmitter database persistence (SQLite-backed TransmitterStore)."""

from __future__ import annotations

import sqlite3
import threading
from typing import Iterable, List, Optional

from tiiscan.io.channels import ChannelId, channel_by_name
from tiiscan.txdb.model import EnsembleIdentity, TransmitterKey, TransmitterRecord
from tiiscan.util.time import utc_now_str

# sub_id is part of the primary key, so "none" is stored as -1
_NO_SUB = -1


class TransmitterStore:
    def __init__(self, path: str):
        self.path = path
        self._lock = threading.Lock()
        self.con = sqlite3.connect(path, timeout=30.0, check_same_thread=False)
        try:
            self.con.execute("PRAGMA journal_mode=WAL")
        except sqlite3.OperationalError:
            pass
        self.con.execute("PRAGMA busy_timeout=5000")
        self._init()

    def _init(self) -> None:
        cur = self.con.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS transmitters (
                ecc INTEGER NOT NULL,
                eid INTEGER NOT NULL,
                channel TEXT NOT NULL,
                frequency_khz INTEGER NOT NULL,
                main_id INTEGER NOT NULL,
                sub_id INTEGER NOT NULL,
                label TEXT NOT NULL,
                country TEXT NOT NULL,
                latitude REAL NOT NULL,
                longitude REAL NOT NULL,
                altitude_m REAL,
                antenna_height_m REAL,
                erp_kw REAL,
                locally_known INTEGER NOT NULL DEFAULT 0,
                revision INTEGER NOT NULL DEFAULT 0,
                updated_utc TEXT NOT NULL,
                PRIMARY KEY (ecc, eid, channel, main_id, sub_id)
            )
            """
        )
        self.con.commit()
        self._ensure_column("transmitters", "revision", "INTEGER NOT NULL DEFAULT 0")

    def _ensure_column(self, table: str, column: str, definition: str) -> None:
        cur = self.con.cursor()
        cur.execute(f"PRAGMA table_info({table})")
        cols = {row[1] for row in cur.fetchall()}
        if column not in cols:
            cur.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")
            self.con.commit()

    def close(self) -> None:
        with self._lock:
            self.con.close()

    def load_all(self) -> List[TransmitterRecord]:
        with self._lock:
            cur = self.con.cursor()
            cur.execute(
                """
                SELECT ecc, eid, channel, frequency_khz, main_id, sub_id, label, country,
                       latitude, longitude, altitude_m, antenna_height_m, erp_kw, locally_known, revision
                FROM transmitters
                ORDER BY revision ASC
                """
            )
            rows = cur.fetchall()
        records: List[TransmitterRecord] = []
        for row in rows:
            channel = channel_by_name(str(row[2])) or ChannelId(frequency_khz=int(row[3]), name=str(row[2]))
            records.append(
                TransmitterRecord(
                    ensemble=EnsembleIdentity(int(row[0]), int(row[1])),
                    channel=channel,
                    main_id=int(row[4]),
                    sub_id=None if int(row[5]) == _NO_SUB else int(row[5]),
                    label=str(row[6]),
                    country=str(row[7]),
                    latitude=float(row[8]),
                    longitude=float(row[9]),
                    altitude_m=_opt_float(row[10]),
                    antenna_height_m=_opt_float(row[11]),
                    erp_kw=_opt_float(row[12]),
                    locally_known=bool(row[13]),
                    revision=int(row[14] or 0),
                )
            )
        return records

    def upsert_many(self, records: Iterable[TransmitterRecord]) -> None:
        timestamp = utc_now_str()
        with self._lock:
            cur = self.con.cursor()
            try:
                for rec in records:
                    cur.execute(
                        """
                        INSERT OR REPLACE INTO transmitters(
                            ecc, eid, channel, frequency_khz, main_id, sub_id, label, country,
                            latitude, longitude, altitude_m, antenna_height_m, erp_kw,
                            locally_known, revision, updated_utc
                        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            int(rec.ensemble.ecc),
                            int(rec.ensemble.eid),
                            rec.channel.name,
                            int(rec.channel.frequency_khz),
                            int(rec.main_id),
                            _NO_SUB if rec.sub_id is None else int(rec.sub_id),
                            rec.label,
                            rec.country,
                            float(rec.latitude),
                            float(rec.longitude),
                            rec.altitude_m,
                            rec.antenna_height_m,
                            rec.erp_kw,
                            1 if rec.locally_known else 0,
                            int(rec.revision),
                            timestamp,
                        ),
                    )
                self.con.commit()
            except sqlite3.Error:
                self.con.rollback()
                raise

    def upsert(self, record: TransmitterRecord) -> None:
        self.upsert_many([record])

    def delete(self, key: TransmitterKey) -> None:
        with self._lock:
            self.con.execute(
                "DELETE FROM transmitters WHERE ecc = ? AND eid = ? AND channel = ? AND main_id = ? AND sub_id = ?",
                (
                    int(key.ensemble.ecc),
                    int(key.ensemble.eid),
                    key.channel.name,
                    int(key.main_id),
                    _NO_SUB if key.sub_id is None else int(key.sub_id),
                ),
            )
            self.con.commit()

    def delete_all(self) -> None:
        with self._lock:
            self.con.execute("DELETE FROM transmitters")
            self.con.commit()

    def count(self) -> int:
        with self._lock:
            cur = self.con.cursor()
            cur.execute("SELECT COUNT(*) FROM transmitters")
            row = cur.fetchone()
        return int(row[0]) if row else 0


def _opt_float(value: Optional[object]) -> Optional[float]:
    return None if value is None else float(value)  # type: ignore[arg-type]
