from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import pytest

from tiiscan.detection.types import DetectedTransmitter, TiiCode
from tiiscan.io.channels import ChannelId, resolve_channel
from tiiscan.scan.clock import Clock
from tiiscan.scan.controller import ScanController
from tiiscan.scan.events import EventChannel
from tiiscan.scan.tuner import NOT_SYNCED, SyncState, TunerHandle
from tiiscan.txdb.database import TransmitterDatabase
from tiiscan.txdb.model import EnsembleIdentity, TransmitterRecord

ENSEMBLE = EnsembleIdentity(0xE0, 0x1001)

CSV_HEADER = "ECC,EID,Channel,MainId,SubId,Label,Country,Latitude,Longitude,Altitude,AntennaHeight,ERP,LocallyKnown\n"


class FakeClock(Clock):
    """Manual clock: wait() advances time instantly and runs an optional hook."""

    def __init__(self) -> None:
        self.t = 0.0
        self.base = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
        self.waits = 0
        self.on_wait: Optional[Callable[[int], None]] = None

    def now(self) -> datetime:
        return self.base + timedelta(seconds=self.t)

    def monotonic(self) -> float:
        return self.t

    def wait(self, seconds: float, cancel: threading.Event) -> bool:
        self.waits += 1
        if self.on_wait is not None:
            self.on_wait(self.waits)
        if cancel.is_set():
            return True
        self.t += max(0.0, seconds)
        return cancel.is_set()


class FakeTuner:
    """Scripted tuner.

    `channels` maps a channel name to a dict with optional keys: ensemble,
    label, snr, sync_after_tunes (default 1). Channels not listed never sync.
    sample_tii_window() returns the channel name, which FakeDecoder maps to
    TII codes.
    """

    def __init__(self, channels: Optional[Dict[str, dict]] = None, fault_on: Optional[str] = None):
        self.channels = channels or {}
        self.fault_on = fault_on
        self.current: Optional[ChannelId] = None
        self.tunes: List[str] = []
        self.tune_counts: Dict[str, int] = defaultdict(int)
        self.samples = 0
        self.released = 0
        self.sync_gate: Optional[threading.Event] = None
        self.in_sync = threading.Event()

    def tune(self, channel: ChannelId) -> bool:
        if self.fault_on == channel.name:
            raise RuntimeError("usb transfer error")
        self.current = channel
        self.tunes.append(channel.name)
        self.tune_counts[channel.name] += 1
        return True

    def wait_for_sync(self, timeout: float) -> SyncState:
        self.in_sync.set()
        if self.sync_gate is not None:
            self.sync_gate.wait(5.0)
        assert self.current is not None
        cfg = self.channels.get(self.current.name)
        if cfg is None:
            return NOT_SYNCED
        if self.tune_counts[self.current.name] < cfg.get("sync_after_tunes", 1):
            return NOT_SYNCED
        return SyncState(True, cfg.get("ensemble", ENSEMBLE), cfg.get("label", "TEST MUX"))

    def sample_tii_window(self) -> str:
        assert self.current is not None
        self.samples += 1
        return self.current.name

    def read_snr(self) -> float:
        assert self.current is not None
        return float(self.channels.get(self.current.name, {}).get("snr", 20.0))

    def release(self) -> None:
        self.current = None
        self.released += 1


class FakeDecoder:
    def __init__(self, codes: Optional[Dict[str, List[TiiCode]]] = None, error: Optional[Exception] = None):
        self.codes = codes or {}
        self.error = error
        self.calls = 0

    def __call__(self, window) -> List[TiiCode]:
        self.calls += 1
        if self.error is not None:
            raise self.error
        return list(self.codes.get(window, []))


def make_record(channel: str = "6A", main_id: int = 3, sub_id: Optional[int] = 7, **overrides) -> TransmitterRecord:
    fields = dict(
        ensemble=ENSEMBLE,
        channel=resolve_channel(channel),
        main_id=main_id,
        sub_id=sub_id,
        label="Sender Test",
        country="DE",
        latitude=0.0,
        longitude=1.0,
        altitude_m=None,
        antenna_height_m=None,
        erp_kw=None,
        locally_known=False,
    )
    fields.update(overrides)
    return TransmitterRecord(**fields)


def make_detection(level: float, cycle: int = 1, channel: str = "6A", main_id: int = 3, sub_id: Optional[int] = 7, **kwargs) -> DetectedTransmitter:
    base = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)
    return DetectedTransmitter(
        code=TiiCode(main_id, sub_id, level),
        channel=resolve_channel(channel),
        ensemble=kwargs.pop("ensemble", ENSEMBLE),
        timestamp=kwargs.pop("timestamp", base + timedelta(seconds=cycle)),
        cycle=cycle,
        **kwargs,
    )


def csv_row(ecc="E0", eid="1001", channel="6A", main=3, sub=7, label="Sender Test", country="DE", lat="50.0", lon="8.0", alt="", ant="", erp="", known="") -> str:
    return f"{ecc},{eid},{channel},{main},{sub},{label},{country},{lat},{lon},{alt},{ant},{erp},{known}\n"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def database() -> TransmitterDatabase:
    db = TransmitterDatabase()
    yield db
    db.close()


@pytest.fixture
def events() -> EventChannel:
    return EventChannel()


@pytest.fixture
def make_controller(clock, database, events):
    """Build a controller over a FakeTuner; returns (controller, tuner, handle)."""

    def _build(channels=None, codes=None, fault_on=None, decoder=None, scan_logger=None):
        tuner = FakeTuner(channels, fault_on=fault_on)
        handle = TunerHandle(tuner)
        controller = ScanController(
            handle,
            database,
            decoder=decoder if decoder is not None else FakeDecoder(codes),
            clock=clock,
            events=events,
            scan_logger=scan_logger,
        )
        return controller, tuner, handle

    return _build
