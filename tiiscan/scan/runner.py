"""High-level scan runner that binds CLI args to tuner, database and controller."""

from __future__ import annotations

import argparse
import os
import sys
from typing import List, Optional

from tiiscan.drivers.replay import ReplayTuner
from tiiscan.io.profiles import ScanModeProfile, customize_mode
from tiiscan.io.tii_log import TiiLogWriter
from tiiscan.scan.controller import ScanController
from tiiscan.scan.events import (
    ChannelFinished,
    ChannelStarted,
    CycleCompleted,
    EventChannel,
    ScanEvent,
    SessionCancelled,
    SessionCompleted,
    SessionFailed,
    TransmitterDetected,
)
from tiiscan.scan.errors import ScanError
from tiiscan.scan.session import ScanStatus
from tiiscan.scan.tuner import TunerHandle
from tiiscan.txdb.database import TransmitterDatabase
from tiiscan.util.exit_codes import ExitCode
from tiiscan.util.geo import GeoPosition
from tiiscan.util.scan_logger import ScanLogger


def format_event(event: ScanEvent) -> Optional[str]:
    """One progress line per event, or None for events not shown."""
    if isinstance(event, ChannelStarted):
        return f"[scan] cycle {event.cycle} channel {event.channel.name} ({event.channel.frequency_mhz:.3f} MHz)"
    if isinstance(event, ChannelFinished):
        outcome = event.outcome
        text = f"[scan] {event.channel.name}: {outcome.kind.value}"
        if outcome.ensemble is not None:
            text += f" ensemble {outcome.ensemble}"
            if outcome.ensemble_label:
                text += f" '{outcome.ensemble_label}'"
        if outcome.snr_db is not None:
            text += f" snr={outcome.snr_db:.1f} dB"
        if outcome.detections:
            text += f" tii={outcome.detections}"
        return text
    if isinstance(event, TransmitterDetected):
        det = event.detection
        sub = "-" if det.sub_id is None else det.sub_id
        text = f"[scan]   TII {det.main_id}/{sub} level={det.level:.1f} dB"
        if det.label:
            text += f" {det.label}"
        if det.geo is not None:
            text += f" {det.geo.distance_km:.1f} km @ {det.geo.azimuth_deg:.0f} deg"
        return text
    if isinstance(event, CycleCompleted):
        return f"[scan] cycle {event.cycle} complete"
    if isinstance(event, SessionCompleted):
        return f"[scan] completed after {event.cycles} cycle(s)"
    if isinstance(event, SessionCancelled):
        return "[scan] cancelled"
    if isinstance(event, SessionFailed):
        return f"[scan] failed: {event.reason}"
    return None


class ScannerRunner:
    """Bind CLI args to tuner, transmitter database and scan controller."""

    def __init__(self, args: argparse.Namespace, database: Optional[TransmitterDatabase] = None):
        self.args = args
        self.database = database or TransmitterDatabase(args.db)
        self.logger = ScanLogger.from_db_path(args.db, extra_targets=self._extra_targets())
        self.events = EventChannel()
        self.failure: Optional[SessionFailed] = None
        self.controller: Optional[ScanController] = None

    def _extra_targets(self) -> Optional[List[str]]:
        jsonl_path = getattr(self.args, "jsonl", None)
        return [jsonl_path] if jsonl_path else None

    def _receiver(self) -> Optional[GeoPosition]:
        return GeoPosition.maybe(getattr(self.args, "latitude", None), getattr(self.args, "longitude", None))

    def _mode(self) -> ScanModeProfile:
        args = self.args
        return customize_mode(
            args.mode,
            sync_timeout_s=getattr(args, "sync_timeout", None),
            tii_dwell_s=getattr(args, "dwell", None),
            sample_interval_s=getattr(args, "interval", None),
        )

    def _select_tuner(self) -> TunerHandle:
        return TunerHandle(ReplayTuner.from_file(self.args.replay))

    def _on_event(self, event: ScanEvent) -> None:
        if isinstance(event, SessionFailed):
            self.failure = event
        line = format_event(event)
        if line is not None and not getattr(self.args, "quiet", False):
            print(line, flush=True)

    def run(self) -> int:
        args = self.args
        receiver = self._receiver()
        self.events.add_listener(self._on_event)
        tii_log = None
        if getattr(args, "tii_log", None):
            tii_log = TiiLogWriter(
                args.tii_log,
                utc=not getattr(args, "local_time", False),
                include_coordinates=receiver is not None,
                receiver=receiver,
            )
            self.events.add_listener(tii_log)

        self.controller = ScanController(
            self._select_tuner(),
            self.database,
            events=self.events,
            scan_logger=self.logger,
        )
        self.logger.log("scan_request", db_path=os.path.abspath(args.db), replay=args.replay)
        self.controller.start(
            args.channels,
            mode=self._mode(),
            cycle_limit=args.cycles,
            snr_threshold=args.snr_threshold,
            snr_policy=args.snr_policy,
            detector=args.detector,
            receiver=receiver,
            autosave_csv=getattr(args, "output", None),
        )
        try:
            while not self.controller.wait(0.5):
                pass
        except KeyboardInterrupt:
            self.controller.cancel()
            self.controller.wait()
        finally:
            if tii_log is not None:
                self.events.remove_listener(tii_log)

        summary = self.controller.session.summary()
        if not getattr(args, "quiet", False):
            print(f"[scan] {summary['transmitters']} transmitter(s), {summary['matched']} in database, {summary['locally_known']} locally known", flush=True)
        return self.exit_code()

    def exit_code(self) -> int:
        assert self.controller is not None
        status = self.controller.status
        if status is ScanStatus.COMPLETED:
            return ExitCode.SUCCESS
        if status is ScanStatus.CANCELLED:
            return ExitCode.CANCELLED
        if self.failure is not None and isinstance(self.failure.error, ScanError):
            return int(self.failure.error.exit_code)
        return ExitCode.GENERAL_ERROR

    def close(self) -> None:
        self.database.close()


def run_scan(args: argparse.Namespace) -> int:
    runner = ScannerRunner(args)
    try:
        code = runner.run()
    finally:
        runner.close()
    if code != ExitCode.SUCCESS:
        print(f"[scan] exit {code}: {ExitCode.message(code)}", file=sys.stderr)
    return code
