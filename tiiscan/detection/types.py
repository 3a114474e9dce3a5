"""Dataclasses shared across decoder, matcher, session and controller layers."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from tiiscan.io.channels import ChannelId
from tiiscan.txdb.model import EnsembleIdentity, TransmitterKey, TransmitterRecord, validate_tii_ids
from tiiscan.util.geo import GeoResult


@dataclass(frozen=True)
class TiiCode:
    main_id: int
    sub_id: Optional[int]
    level: float
    confidence: float = 0.0

    def __post_init__(self) -> None:
        validate_tii_ids(self.main_id, self.sub_id)


@dataclass(frozen=True)
class DetectedTransmitter:
    code: TiiCode
    channel: ChannelId
    ensemble: EnsembleIdentity
    timestamp: datetime
    cycle: int
    record: Optional[TransmitterRecord] = None
    geo: Optional[GeoResult] = None
    ensemble_label: str = ""
    snr_db: Optional[float] = None
    below_snr: bool = False
    first_seen_cycle: Optional[int] = None
    last_seen_cycle: Optional[int] = None
    last_seen: Optional[datetime] = None
    hits: int = 1

    def __post_init__(self) -> None:
        # Fresh observations start their own seen-range
        if self.first_seen_cycle is None:
            object.__setattr__(self, "first_seen_cycle", self.cycle)
        if self.last_seen_cycle is None:
            object.__setattr__(self, "last_seen_cycle", self.cycle)
        if self.last_seen is None:
            object.__setattr__(self, "last_seen", self.timestamp)

    @property
    def key(self) -> TransmitterKey:
        return TransmitterKey(self.ensemble, self.channel, int(self.code.main_id), self.code.sub_id)

    @property
    def level(self) -> float:
        return self.code.level

    @property
    def main_id(self) -> int:
        return self.code.main_id

    @property
    def sub_id(self) -> Optional[int]:
        return self.code.sub_id

    @property
    def is_known(self) -> bool:
        return self.record is not None

    @property
    def locally_known(self) -> bool:
        return bool(self.record is not None and self.record.locally_known)

    @property
    def label(self) -> str:
        return self.record.label if self.record is not None else ""


class OutcomeKind(str, enum.Enum):
    NO_SIGNAL = "no_signal"
    BELOW_SNR_THRESHOLD = "below_snr_threshold"
    DECODE_EMPTY = "decode_empty"
    DETECTED = "detected"


@dataclass(frozen=True)
class ChannelOutcome:
    """Non-fatal per-channel result of one dwell."""

    kind: OutcomeKind
    detections: int = 0
    snr_db: Optional[float] = None
    ensemble: Optional[EnsembleIdentity] = None
    ensemble_label: str = ""

    @classmethod
    def no_signal(cls) -> "ChannelOutcome":
        return cls(OutcomeKind.NO_SIGNAL)

    @property
    def synchronized(self) -> bool:
        return self.kind is not OutcomeKind.NO_SIGNAL
