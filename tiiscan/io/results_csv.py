"""Scan results CSV: one row per detected transmitter in a session snapshot."""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable, List, Optional, TextIO, Union

from tiiscan.detection.types import DetectedTransmitter, TiiCode
from tiiscan.io.channels import resolve_channel
from tiiscan.txdb.database import TxDbSnapshot
from tiiscan.txdb.model import EnsembleIdentity, TransmitterKey
from tiiscan.util.geo import GeoPosition, GeoResult, distance_and_azimuth
from tiiscan.util.logging import get_logger
from tiiscan.util.time import format_timestamp, parse_timestamp, utc_now

log = get_logger(__name__)

RESULT_COLUMNS = (
    "Channel",
    "FrequencyKHz",
    "ECC",
    "EID",
    "EnsembleLabel",
    "MainId",
    "SubId",
    "Level",
    "SNR",
    "Label",
    "LocallyKnown",
    "DistanceKm",
    "AzimuthDeg",
    "FirstCycle",
    "LastCycle",
    "Hits",
    "LastSeenUTC",
)


def _opt(value: Optional[float], fmt: str) -> str:
    return "" if value is None else format(value, fmt)


def result_row(det: DetectedTransmitter) -> List[str]:
    geo = det.geo
    return [
        det.channel.name,
        str(det.channel.frequency_khz),
        det.ensemble.ecc_hex,
        det.ensemble.eid_hex,
        det.ensemble_label,
        str(int(det.main_id)),
        "" if det.sub_id is None else str(int(det.sub_id)),
        f"{det.level:.2f}",
        _opt(det.snr_db, ".1f"),
        det.label,
        "1" if det.locally_known else "0",
        _opt(geo.distance_km if geo else None, ".1f"),
        _opt(geo.azimuth_deg if geo else None, ".1f"),
        str(det.first_seen_cycle),
        str(det.last_seen_cycle),
        str(det.hits),
        format_timestamp(det.last_seen or det.timestamp, utc=True),
    ]


def export_results(stream: TextIO, detections: Iterable[DetectedTransmitter]) -> int:
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(list(RESULT_COLUMNS))
    count = 0
    for det in detections:
        writer.writerow(result_row(det))
        count += 1
    return count


def write_results(path: Union[str, Path], detections: Iterable[DetectedTransmitter]) -> int:
    target = Path(path).expanduser()
    target.parent.mkdir(parents=True, exist_ok=True)
    with target.open("w", encoding="utf-8", newline="") as fh:
        count = export_results(fh, detections)
    log.info("wrote %d scan results to %s", count, target)
    return count


def _float_or_none(text: Optional[str]) -> Optional[float]:
    text = (text or "").strip()
    return float(text) if text else None


def load_results(
    stream: TextIO,
    snapshot: Optional[TxDbSnapshot] = None,
    receiver: Optional[GeoPosition] = None,
) -> List[DetectedTransmitter]:
    """Read back an exported results file.

    Records are re-attached from `snapshot` when given. With a `receiver`,
    geolocation is recomputed from the record position and is unavailable for
    rows without a record; otherwise the stored distance/azimuth is kept.
    Rows that do not parse are logged and skipped.
    """
    reader = csv.DictReader(stream)
    missing = [col for col in ("Channel", "ECC", "EID", "MainId", "SubId", "Level") if col not in (reader.fieldnames or [])]
    if missing:
        raise ValueError(f"results CSV missing columns: {', '.join(missing)}")

    detections: List[DetectedTransmitter] = []
    for row in reader:
        try:
            detections.append(_parse_result(row, snapshot, receiver))
        except (KeyError, ValueError) as exc:
            log.warning("skipping results CSV line %d: %s", reader.line_num, exc)
    return detections


def _parse_result(row, snapshot: Optional[TxDbSnapshot], receiver: Optional[GeoPosition]) -> DetectedTransmitter:
    channel = resolve_channel(row["Channel"])
    ensemble = EnsembleIdentity(int(row["ECC"], 16), int(row["EID"], 16))
    sub_text = (row.get("SubId") or "").strip()
    code = TiiCode(
        main_id=int(row["MainId"]),
        sub_id=int(sub_text) if sub_text else None,
        level=float(row["Level"]),
    )
    record = None
    if snapshot is not None:
        record = snapshot.get(TransmitterKey(ensemble, channel, code.main_id, code.sub_id))

    if receiver is not None:
        geo = distance_and_azimuth(receiver, record.position if record is not None else None)
    else:
        distance = _float_or_none(row.get("DistanceKm"))
        azimuth = _float_or_none(row.get("AzimuthDeg"))
        geo = GeoResult(distance, azimuth) if distance is not None and azimuth is not None else None

    last_seen = parse_timestamp(row.get("LastSeenUTC")) or utc_now()
    first_cycle = int(row.get("FirstCycle") or 1)
    last_cycle = int(row.get("LastCycle") or first_cycle)
    return DetectedTransmitter(
        code=code,
        channel=channel,
        ensemble=ensemble,
        timestamp=last_seen,
        cycle=last_cycle,
        record=record,
        geo=geo,
        ensemble_label=row.get("EnsembleLabel") or "",
        snr_db=_float_or_none(row.get("SNR")),
        first_seen_cycle=first_cycle,
        last_seen_cycle=last_cycle,
        last_seen=last_seen,
        hits=int(row.get("Hits") or 1),
    )
