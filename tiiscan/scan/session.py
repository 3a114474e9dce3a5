"""Scan session aggregate: best detection per transmitter key across cycles."""

from __future__ import annotations

import enum
import threading
from dataclasses import replace
from typing import Dict, Iterable, Optional, Sequence, Tuple

from tiiscan.detection.types import ChannelOutcome, DetectedTransmitter
from tiiscan.io.channels import ChannelId
from tiiscan.txdb.model import TransmitterKey
from tiiscan.util.geo import GeoPosition, distance_and_azimuth


class ScanStatus(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    CANCELLED = "cancelled"
    FAILED = "failed"
    COMPLETED = "completed"

    @property
    def terminal(self) -> bool:
        return self in (ScanStatus.CANCELLED, ScanStatus.FAILED, ScanStatus.COMPLETED)


class RecordResult(str, enum.Enum):
    ADDED = "added"
    REPLACED = "replaced"
    MERGED = "merged"

    @property
    def changed_best(self) -> bool:
        return self is not RecordResult.MERGED


def _later(a, b):
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def merge_detection(current: Optional[DetectedTransmitter], new: DetectedTransmitter) -> Tuple[DetectedTransmitter, RecordResult]:
    """Apply the dedup rule for one key.

    The stored entry is replaced only by a strictly higher level; equal or
    lower levels keep the stored entry and extend its seen-range and hits.
    """
    if current is None:
        return new, RecordResult.ADDED

    first_cycle = min(current.first_seen_cycle, new.first_seen_cycle)
    last_cycle = max(current.last_seen_cycle, new.last_seen_cycle)
    last_seen = _later(current.last_seen, new.last_seen)
    hits = current.hits + new.hits

    if new.level > current.level:
        merged = replace(new, first_seen_cycle=first_cycle, last_seen_cycle=last_cycle, last_seen=last_seen, hits=hits)
        return merged, RecordResult.REPLACED
    merged = replace(current, first_seen_cycle=first_cycle, last_seen_cycle=last_cycle, last_seen=last_seen, hits=hits)
    return merged, RecordResult.MERGED


class ScanSession:
    """Results of one scan: per-key best detections and per-channel outcomes.

    All methods are safe to call from any thread. snapshot() copies under the
    lock and returns an immutable tuple, so a consumer can export while the
    worker keeps recording.
    """

    def __init__(
        self,
        channels: Sequence[ChannelId] = (),
        cycle_limit: Optional[int] = 1,
        receiver: Optional[GeoPosition] = None,
    ) -> None:
        self._lock = threading.Lock()
        self.channels: Tuple[ChannelId, ...] = tuple(channels)
        self.cycle_limit = cycle_limit
        self.receiver = receiver
        self.status = ScanStatus.IDLE
        self.cycles_completed = 0
        self.failure_reason: Optional[str] = None
        self._best: Dict[TransmitterKey, DetectedTransmitter] = {}
        self._outcomes: Dict[ChannelId, ChannelOutcome] = {}

    # ------------------------------------------------------------------
    # detections
    # ------------------------------------------------------------------
    def record(self, detection: DetectedTransmitter) -> RecordResult:
        key = detection.key
        with self._lock:
            merged, result = merge_detection(self._best.get(key), detection)
            self._best[key] = merged
        return result

    def best_for(self, key: TransmitterKey) -> Optional[DetectedTransmitter]:
        with self._lock:
            return self._best.get(key)

    def snapshot(self, hide_known: bool = False) -> Tuple[DetectedTransmitter, ...]:
        with self._lock:
            items = list(self._best.values())
        if hide_known:
            items = [d for d in items if not d.locally_known]
        items.sort(key=lambda d: d.key.sort_key())
        return tuple(items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._best)

    def load(self, detections: Iterable[DetectedTransmitter]) -> int:
        """Merge previously exported detections into the session."""
        count = 0
        for det in detections:
            self.record(det)
            count += 1
        return count

    def relocate(self, receiver: Optional[GeoPosition]) -> int:
        """Recompute distance/azimuth of every stored detection for a new receiver position."""
        updated = 0
        with self._lock:
            self.receiver = receiver
            for key, det in list(self._best.items()):
                target = det.record.position if det.record is not None else None
                geo = distance_and_azimuth(receiver, target)
                if geo != det.geo:
                    self._best[key] = replace(det, geo=geo)
                    updated += 1
        return updated

    # ------------------------------------------------------------------
    # per-channel outcomes and lifecycle
    # ------------------------------------------------------------------
    def record_outcome(self, channel: ChannelId, outcome: ChannelOutcome) -> None:
        with self._lock:
            self._outcomes[channel] = outcome

    def outcomes(self) -> Dict[ChannelId, ChannelOutcome]:
        with self._lock:
            return dict(self._outcomes)

    def reset(self) -> None:
        with self._lock:
            self._best.clear()
            self._outcomes.clear()
            self.cycles_completed = 0
            self.failure_reason = None
            self.status = ScanStatus.IDLE

    def begin(self, channels: Sequence[ChannelId], cycle_limit: Optional[int], receiver: Optional[GeoPosition]) -> None:
        with self._lock:
            self.channels = tuple(channels)
            self.cycle_limit = cycle_limit
            self.receiver = receiver
            self.cycles_completed = 0
            self.failure_reason = None
            self._outcomes.clear()
            self.status = ScanStatus.RUNNING

    def complete_cycle(self, cycle: int) -> None:
        with self._lock:
            self.cycles_completed = max(self.cycles_completed, cycle)

    def finish(self, status: ScanStatus, reason: Optional[str] = None) -> None:
        with self._lock:
            self.status = status
            if status is ScanStatus.FAILED:
                self.failure_reason = reason

    def summary(self) -> Dict[str, object]:
        snap = self.snapshot()
        return {
            "status": self.status.value,
            "cycles_completed": self.cycles_completed,
            "transmitters": len(snap),
            "matched": sum(1 for d in snap if d.is_known),
            "locally_known": sum(1 for d in snap if d.locally_known),
            "failure_reason": self.failure_reason,
        }
