"""Append-only CSV log of TII detections, fed from the scan event channel."""

from __future__ import annotations

import csv
import threading
from pathlib import Path
from typing import List, Optional, Union

from tiiscan.detection.types import DetectedTransmitter
from tiiscan.scan.events import ScanEvent, TransmitterDetected
from tiiscan.util.geo import GeoPosition
from tiiscan.util.logging import get_logger
from tiiscan.util.time import format_timestamp

log = get_logger(__name__)

LOG_COLUMNS = (
    "Time",
    "Channel",
    "FrequencyKHz",
    "ECC",
    "EID",
    "EnsembleLabel",
    "MainId",
    "SubId",
    "Level",
    "Label",
    "DistanceKm",
    "AzimuthDeg",
)
COORD_COLUMNS = ("RxLatitude", "RxLongitude")


class TiiLogWriter:
    """Event listener writing one row per TransmitterDetected event.

    Timestamps are written in UTC unless utc=False. With a receiver position
    set and include_coordinates=True the receiver latitude/longitude are
    added to each row (e.g. for drive tests with GPS).
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        utc: bool = True,
        include_coordinates: bool = False,
        receiver: Optional[GeoPosition] = None,
    ):
        self.path = Path(path).expanduser()
        self.utc = utc
        self.include_coordinates = include_coordinates
        self.receiver = receiver
        self.rows_written = 0
        self._lock = threading.Lock()

    @property
    def columns(self) -> List[str]:
        cols = list(LOG_COLUMNS)
        if self.include_coordinates:
            cols.extend(COORD_COLUMNS)
        return cols

    def row(self, det: DetectedTransmitter) -> List[str]:
        geo = det.geo
        row = [
            format_timestamp(det.timestamp, utc=self.utc),
            det.channel.name,
            str(det.channel.frequency_khz),
            det.ensemble.ecc_hex,
            det.ensemble.eid_hex,
            det.ensemble_label,
            str(int(det.main_id)),
            "" if det.sub_id is None else str(int(det.sub_id)),
            f"{det.level:.2f}",
            det.label,
            f"{geo.distance_km:.1f}" if geo else "",
            f"{geo.azimuth_deg:.1f}" if geo else "",
        ]
        if self.include_coordinates:
            if self.receiver is not None:
                row.extend([f"{self.receiver.latitude:.6f}", f"{self.receiver.longitude:.6f}"])
            else:
                row.extend(["", ""])
        return row

    def write(self, det: DetectedTransmitter) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            new_file = not self.path.exists() or self.path.stat().st_size == 0
            with self.path.open("a", encoding="utf-8", newline="") as fh:
                writer = csv.writer(fh, lineterminator="\n")
                if new_file:
                    log.info("TII log started at %s", self.path)
                    writer.writerow(self.columns)
                writer.writerow(self.row(det))
            self.rows_written += 1

    def __call__(self, event: ScanEvent) -> None:
        if isinstance(event, TransmitterDetected):
            self.write(event.detection)
