"""Transmitter database CSV format: column layout, row parsing and formatting."""

from __future__ import annotations

import csv
import io
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, TextIO, Tuple, Union

from tiiscan.io.channels import resolve_channel
from tiiscan.txdb.model import EnsembleIdentity, TransmitterRecord

REQUIRED_COLUMNS = ("ECC", "EID", "Channel", "MainId", "SubId", "Label", "Country", "Latitude", "Longitude")
OPTIONAL_COLUMNS = ("Altitude", "AntennaHeight", "ERP", "LocallyKnown")
COLUMNS = REQUIRED_COLUMNS + OPTIONAL_COLUMNS

_TRUE = {"1", "true", "yes", "y", "x"}
_FALSE = {"", "0", "false", "no", "n"}
_NONE_SUB = {"", "none", "-", "n/a", "na"}


class CsvRowError(ValueError):
    """A single malformed data row."""


RowOrError = Union[Dict[str, str], CsvRowError]


@dataclass(frozen=True)
class RejectedRow:
    line: int
    reason: str


def _normalize_header(name: Optional[str]) -> str:
    return "".join(ch for ch in str(name or "").lower() if ch.isalnum())


_CANONICAL: Dict[str, str] = {_normalize_header(col): col for col in COLUMNS}


def _guess_delimiter(header_line: str) -> str:
    counts = {delim: header_line.count(delim) for delim in (",", ";", "\t")}
    best = max(counts, key=lambda d: counts[d])
    return best if counts[best] > 0 else ","


def read_rows(stream: TextIO) -> Tuple[List[str], Iterator[Tuple[int, RowOrError]]]:
    """Return the canonical header names found and an iterator of (line, row) pairs.

    A row the csv module cannot read is yielded as a CsvRowError in place of
    its values.

    Raises ValueError when the file has no header or lacks a required column.
    """

    text = stream.read()
    if isinstance(text, bytes):
        text = text.decode("utf-8-sig")
    text = text.lstrip("\ufeff")
    if not text.strip():
        raise ValueError("empty transmitter CSV")
    first_line = text.splitlines()[0]
    reader = csv.reader(io.StringIO(text), delimiter=_guess_delimiter(first_line))
    try:
        raw_header = next(reader)
    except StopIteration:
        raise ValueError("empty transmitter CSV") from None
    except csv.Error as exc:
        raise ValueError(f"unreadable transmitter CSV header: {exc}") from exc

    header: List[str] = []
    for name in raw_header:
        header.append(_CANONICAL.get(_normalize_header(name), name.strip()))
    missing = [col for col in REQUIRED_COLUMNS if col not in header]
    if missing:
        raise ValueError(f"transmitter CSV missing required columns: {', '.join(missing)}")

    lines = text.splitlines()

    def _rows() -> Iterator[Tuple[int, RowOrError]]:
        while True:
            before = reader.line_num
            try:
                values = next(reader)
            except StopIteration:
                return
            except csv.Error as exc:
                if reader.line_num <= before:
                    # reader is stuck; every remaining line is rejected
                    for number in range(before + 1, len(lines) + 1):
                        if lines[number - 1].strip():
                            yield number, CsvRowError(f"unreadable CSV: {exc}")
                    return
                yield reader.line_num, CsvRowError(f"unreadable CSV row: {exc}")
                continue
            if not values or all(not v.strip() for v in values):
                continue
            row: Dict[str, str] = {}
            for idx, col in enumerate(header):
                if idx < len(values):
                    row[col] = values[idx].strip()
            if len(values) > len(header):
                row["__extra__"] = ",".join(values[len(header):])
            yield reader.line_num, row

    return header, _rows()


def _parse_hex(value: Optional[str], field: str) -> int:
    text = (value or "").strip()
    if not text:
        raise CsvRowError(f"missing {field}")
    if text.lower().startswith("0x"):
        text = text[2:]
    try:
        return int(text, 16)
    except ValueError:
        raise CsvRowError(f"invalid {field} '{value}'") from None


def _parse_int(value: Optional[str], field: str) -> int:
    text = (value or "").strip()
    if not text:
        raise CsvRowError(f"missing {field}")
    try:
        return int(text)
    except ValueError:
        raise CsvRowError(f"invalid {field} '{value}'") from None


def _parse_float(value: Optional[str], field: str) -> float:
    text = (value or "").strip()
    if not text:
        raise CsvRowError(f"missing {field}")
    try:
        return float(text)
    except ValueError:
        raise CsvRowError(f"invalid {field} '{value}'") from None


def _parse_opt_float(value: Optional[str], field: str) -> Optional[float]:
    text = (value or "").strip()
    if not text or text.lower() in ("n/a", "na", "none", "-"):
        return None
    try:
        return float(text)
    except ValueError:
        raise CsvRowError(f"invalid {field} '{value}'") from None


def _parse_bool(value: Optional[str], field: str) -> bool:
    text = (value or "").strip().lower()
    if text in _TRUE:
        return True
    if text in _FALSE:
        return False
    raise CsvRowError(f"invalid {field} '{value}'")


def parse_row(row: Dict[str, str]) -> TransmitterRecord:
    """Convert one CSV row into a TransmitterRecord or raise CsvRowError."""

    if "__extra__" in row:
        raise CsvRowError("too many fields")
    ecc = _parse_hex(row.get("ECC"), "ECC")
    eid = _parse_hex(row.get("EID"), "EID")
    channel_text = (row.get("Channel") or "").strip()
    if not channel_text:
        raise CsvRowError("missing Channel")
    try:
        channel = resolve_channel(channel_text)
    except ValueError as exc:
        raise CsvRowError(str(exc)) from None
    main_id = _parse_int(row.get("MainId"), "MainId")
    sub_text = (row.get("SubId") or "").strip()
    sub_id = None if sub_text.lower() in _NONE_SUB else _parse_int(sub_text, "SubId")
    if "Label" not in row or "Country" not in row:
        raise CsvRowError("truncated row")
    label = row["Label"]
    country = row["Country"]
    latitude = _parse_float(row.get("Latitude"), "Latitude")
    longitude = _parse_float(row.get("Longitude"), "Longitude")
    try:
        return TransmitterRecord(
            ensemble=EnsembleIdentity(ecc, eid),
            channel=channel,
            main_id=main_id,
            sub_id=sub_id,
            label=label,
            country=country,
            latitude=latitude,
            longitude=longitude,
            altitude_m=_parse_opt_float(row.get("Altitude"), "Altitude"),
            antenna_height_m=_parse_opt_float(row.get("AntennaHeight"), "AntennaHeight"),
            erp_kw=_parse_opt_float(row.get("ERP"), "ERP"),
            locally_known=_parse_bool(row.get("LocallyKnown"), "LocallyKnown"),
        )
    except ValueError as exc:
        if isinstance(exc, CsvRowError):
            raise
        raise CsvRowError(str(exc)) from None


def _fmt_opt(value: Optional[float]) -> str:
    if value is None:
        return ""
    return f"{value:g}"


def format_row(record: TransmitterRecord) -> List[str]:
    return [
        record.ensemble.ecc_hex,
        record.ensemble.eid_hex,
        record.channel.name,
        str(int(record.main_id)),
        "" if record.sub_id is None else str(int(record.sub_id)),
        record.label,
        record.country,
        f"{record.latitude:.6f}",
        f"{record.longitude:.6f}",
        _fmt_opt(record.altitude_m),
        _fmt_opt(record.antenna_height_m),
        _fmt_opt(record.erp_kw),
        "1" if record.locally_known else "0",
    ]


def write_header(writer) -> None:
    writer.writerow(list(COLUMNS))
