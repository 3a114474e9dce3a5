"""Scan controller: runs the channel scan state machine on a worker thread."""

from __future__ import annotations

import enum
import math
import threading
from pathlib import Path
from typing import Any, Callable, List, Optional, Sequence, TextIO, Union

from tiiscan.detection.matcher import KnownTransmitter, TransmitterMatcher
from tiiscan.detection.types import ChannelOutcome, DetectedTransmitter, OutcomeKind, TiiCode
from tiiscan.dsp.tii_decoder import TiiDecoder
from tiiscan.io import results_csv
from tiiscan.io.profiles import ScanModeProfile
from tiiscan.scan.clock import Clock
from tiiscan.scan.config import ScanConfig
from tiiscan.scan.errors import InvalidConfiguration, ScanError
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
from tiiscan.scan.scheduler import ChannelScheduler, ScanStep
from tiiscan.scan.session import ScanSession, ScanStatus
from tiiscan.scan.tuner import NOT_SYNCED, SyncState, TunerHandle, TunerLease
from tiiscan.txdb.database import TransmitterDatabase
from tiiscan.util.geo import GeoPosition, distance_and_azimuth
from tiiscan.util.logging import get_logger, log_exception
from tiiscan.util.scan_logger import ScanLogger

log = get_logger(__name__)

Decoder = Callable[[Any], List[TiiCode]]


class ControllerState(str, enum.Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    TUNING = "tuning"
    WAITING_SYNC = "waiting_sync"
    DECODING = "decoding"
    RECORDING = "recording"
    NEXT = "next_channel_or_cycle"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


_TERMINAL_STATE = {
    ScanStatus.COMPLETED: ControllerState.COMPLETED,
    ScanStatus.CANCELLED: ControllerState.CANCELLED,
    ScanStatus.FAILED: ControllerState.FAILED,
}


class _Cancelled(Exception):
    """Unwinds the worker when cancel() is observed."""


class ScanController:
    """Sequences channels and cycles over an exclusively leased tuner.

    start() validates the configuration and returns immediately; the scan
    runs on a worker thread that holds the tuner lease for the whole session
    and reports progress through `events`. cancel() is observed within one
    tick of the mode's sampling interval. Results stay in `session` after
    any terminal state.
    """

    OWNER = "scanner"

    def __init__(
        self,
        tuner: TunerHandle,
        database: TransmitterDatabase,
        decoder: Optional[Decoder] = None,
        clock: Optional[Clock] = None,
        events: Optional[EventChannel] = None,
        scan_logger: Optional[ScanLogger] = None,
    ) -> None:
        self.tuner = tuner
        self.database = database
        self.decoder = decoder
        self.clock = clock or Clock()
        self.events = events or EventChannel()
        self.scan_logger = scan_logger
        self.session = ScanSession()
        self.config: Optional[ScanConfig] = None
        self._receiver: Optional[GeoPosition] = None
        self._cancel = threading.Event()
        self._lock = threading.RLock()
        self._active = False
        self._thread: Optional[threading.Thread] = None
        self._state = ControllerState.IDLE

    # ------------------------------------------------------------------
    # caller API
    # ------------------------------------------------------------------
    @property
    def state(self) -> ControllerState:
        return self._state

    @property
    def status(self) -> ScanStatus:
        return self.session.status

    @property
    def running(self) -> bool:
        return self._active

    @property
    def receiver(self) -> Optional[GeoPosition]:
        return self._receiver

    def start(
        self,
        channels: Union[str, Sequence[Any]],
        mode: Union[str, ScanModeProfile] = "normal",
        cycle_limit: Any = 1,
        snr_threshold: Optional[float] = None,
        **options: Any,
    ) -> ScanSession:
        config = ScanConfig.build(channels, mode, cycle_limit, snr_threshold, **options)
        with self._lock:
            if self._active:
                raise InvalidConfiguration("scan already running")
            self._active = True
            self.config = config
            self._cancel.clear()
            if config.receiver is not None:
                self._receiver = config.receiver
            if config.clear_results:
                self.session.reset()
            self.session.begin(config.channels, config.cycle_limit, self._receiver)
            self._state = ControllerState.SCANNING
            self._thread = threading.Thread(target=self._worker, args=(config,), name="tiiscan-scan", daemon=True)
            self._thread.start()
        log.info("scan started: %s", " ".join(config.describe()))
        return self.session

    def run(self, *args: Any, **kwargs: Any) -> ScanSession:
        """Start a scan and block until it reaches a terminal state."""
        self.start(*args, **kwargs)
        self.wait()
        return self.session

    def cancel(self) -> bool:
        """Request cancellation; returns False when no scan is running."""
        if not self._active:
            return False
        self._cancel.set()
        log.info("scan cancellation requested")
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    def snapshot(self, hide_known: bool = False):
        return self.session.snapshot(hide_known=hide_known)

    def set_receiver_position(self, position: Optional[GeoPosition]) -> int:
        """Set the receiver position and recompute geolocation of stored detections."""
        self._receiver = position
        updated = self.session.relocate(position)
        log.info("receiver position set to %s (%d detections relocated)", position, updated)
        return updated

    def load_results(self, source: Union[str, Path, TextIO]) -> int:
        if isinstance(source, (str, Path)):
            with Path(source).expanduser().open("r", encoding="utf-8", newline="") as fh:
                loaded = results_csv.load_results(fh, self.database.snapshot(), self._receiver)
        else:
            loaded = results_csv.load_results(source, self.database.snapshot(), self._receiver)
        return self.session.load(loaded)

    def export_results(self, stream: TextIO, hide_known: bool = False) -> int:
        return results_csv.export_results(stream, self.snapshot(hide_known=hide_known))

    # ------------------------------------------------------------------
    # worker
    # ------------------------------------------------------------------
    def _set_state(self, state: ControllerState) -> None:
        self._state = state

    def _log(self, event: str, **fields: Any) -> None:
        if self.scan_logger is not None:
            self.scan_logger.log(event, **fields)

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise _Cancelled()

    def _worker(self, config: ScanConfig) -> None:
        decoder = self.decoder or TiiDecoder(config.detector)
        scheduler = ChannelScheduler(config.channels, config.cycle_limit)
        started = self.clock.monotonic()
        self._log(
            "session_start",
            channels=[ch.name for ch in config.channels],
            mode=config.mode.name,
            cycle_limit=config.cycle_limit,
            snr_threshold=config.snr_threshold,
            snr_policy=config.snr_policy,
            detector=config.detector.name,
        )

        status = ScanStatus.COMPLETED
        reason = "completed"
        error: Optional[BaseException] = None
        try:
            with self.tuner.acquire(self.OWNER) as lease:
                self._scan(lease, scheduler, decoder, config)
        except _Cancelled:
            status, reason = ScanStatus.CANCELLED, "cancelled"
        except ScanError as exc:
            status, reason, error = ScanStatus.FAILED, exc.reason, exc
            log.error("scan failed: %s (%s)", exc, exc.reason, extra={"error_type": exc.reason})
        except Exception as exc:
            status, reason, error = ScanStatus.FAILED, "unexpected_error", exc
            log_exception(log, f"scan aborted by unexpected error: {exc}", error_type="unexpected_error")

        self._finish(config, status, reason, error, started)

    def _finish(
        self,
        config: ScanConfig,
        status: ScanStatus,
        reason: str,
        error: Optional[BaseException],
        started: float,
    ) -> None:
        failure = f"{reason}: {error}" if error is not None else reason
        self.session.finish(status, failure if status is ScanStatus.FAILED else None)
        self._set_state(_TERMINAL_STATE[status])

        if config.autosave_csv is not None:
            try:
                results_csv.write_results(config.autosave_csv, self.session.snapshot())
            except OSError as exc:
                log.error("autosave to %s failed: %s", config.autosave_csv, exc)

        duration_ms = int((self.clock.monotonic() - started) * 1000)
        self._log(
            "session_end",
            status=status.value,
            reason=failure,
            cycles_completed=self.session.cycles_completed,
            transmitters=len(self.session),
            duration_ms=duration_ms,
        )
        log.info(
            "scan %s after %d cycle(s), %d transmitter(s)",
            status.value,
            self.session.cycles_completed,
            len(self.session),
            extra={"duration_ms": duration_ms},
        )

        if status is ScanStatus.COMPLETED:
            terminal: ScanEvent = SessionCompleted(self.session.cycles_completed)
        elif status is ScanStatus.CANCELLED:
            terminal = SessionCancelled(reason)
        else:
            terminal = SessionFailed(failure, error)
        # start() from another thread waits until the terminal event is delivered
        with self._lock:
            self._active = False
            self.events.publish(terminal)

    def _scan(self, lease: TunerLease, scheduler: ChannelScheduler, decoder: Decoder, config: ScanConfig) -> None:
        for cycle in scheduler.cycles():
            if self.scan_logger is not None:
                self.scan_logger.start_cycle(cycle, channels=len(config.channels))
            for step in scheduler.steps_for(cycle):
                self._check_cancel()
                self._scan_channel(lease, step, decoder, config)
                self._set_state(ControllerState.NEXT)
            self.session.complete_cycle(cycle)
            self._log("cycle_complete", transmitters=len(self.session))
            log.info("cycle %d complete", cycle, extra={"cycle": cycle})
            self.events.publish(CycleCompleted(cycle))

    def _scan_channel(self, lease: TunerLease, step: ScanStep, decoder: Decoder, config: ScanConfig) -> ChannelOutcome:
        channel = step.channel
        mode = config.mode
        self.events.publish(ChannelStarted(channel, step.cycle, step.index))
        self._log("channel_start", channel=channel.name, frequency_khz=channel.frequency_khz, index=step.index)

        sync = NOT_SYNCED
        for attempt in range(1, max(1, mode.sync_attempts) + 1):
            self._set_state(ControllerState.TUNING)
            lease.tune(channel)
            self._set_state(ControllerState.WAITING_SYNC)
            sync = self._wait_for_sync(lease, mode)
            if sync.locked:
                break
            log.debug("no sync on %s (attempt %d/%d)", channel.name, attempt, mode.sync_attempts, extra={"channel": channel.name})

        if not sync.locked:
            return self._finish_channel(step, ChannelOutcome.no_signal())

        snr = lease.read_snr()
        below = config.snr_threshold is not None and snr < config.snr_threshold
        if below and config.snr_policy == "skip":
            outcome = ChannelOutcome(
                OutcomeKind.BELOW_SNR_THRESHOLD,
                snr_db=snr,
                ensemble=sync.ensemble,
                ensemble_label=sync.ensemble_label,
            )
            return self._finish_channel(step, outcome)

        detected = self._decode_dwell(lease, step, decoder, config, sync, snr, below)
        kind = OutcomeKind.DETECTED if detected else OutcomeKind.DECODE_EMPTY
        outcome = ChannelOutcome(
            kind,
            detections=detected,
            snr_db=snr,
            ensemble=sync.ensemble,
            ensemble_label=sync.ensemble_label,
        )
        return self._finish_channel(step, outcome)

    def _wait_for_sync(self, lease: TunerLease, mode: ScanModeProfile) -> SyncState:
        """Poll for sync in tick-sized slices so cancellation stays responsive."""
        tick = mode.tick_s
        slices = max(1, int(math.ceil(mode.sync_timeout_s / tick - 1e-9)))
        state = NOT_SYNCED
        for _ in range(slices):
            self._check_cancel()
            t0 = self.clock.monotonic()
            state = lease.wait_for_sync(tick)
            if state.locked:
                return state
            remaining = tick - (self.clock.monotonic() - t0)
            if remaining > 0 and self.clock.wait(remaining, self._cancel):
                raise _Cancelled()
        return state

    def _decode_dwell(
        self,
        lease: TunerLease,
        step: ScanStep,
        decoder: Decoder,
        config: ScanConfig,
        sync: SyncState,
        snr: float,
        below: bool,
    ) -> int:
        """Sample and decode for the mode's dwell; returns the number of distinct keys seen."""
        mode = config.mode
        ensemble = sync.ensemble
        assert ensemble is not None
        # one database view for the whole dwell
        matcher = TransmitterMatcher(self.database.snapshot())
        seen = set()
        for _ in range(mode.decode_rounds):
            if self.clock.wait(mode.sample_interval_s, self._cancel):
                raise _Cancelled()
            self._set_state(ControllerState.DECODING)
            window = lease.sample_tii_window()
            codes = decoder(window)
            if not codes:
                continue
            self._set_state(ControllerState.RECORDING)
            for code in codes:
                match = matcher.match(ensemble, step.channel, code)
                record = match.record if isinstance(match, KnownTransmitter) else None
                detection = DetectedTransmitter(
                    code=code,
                    channel=step.channel,
                    ensemble=ensemble,
                    timestamp=self.clock.now(),
                    cycle=step.cycle,
                    record=record,
                    geo=distance_and_azimuth(self._receiver, record.position if record else None),
                    ensemble_label=sync.ensemble_label,
                    snr_db=snr,
                    below_snr=below,
                )
                seen.add(detection.key)
                self._record(detection)
        return len(seen)

    def _record(self, detection: DetectedTransmitter) -> None:
        result = self.session.record(detection)
        if not result.changed_best:
            return
        best = self.session.best_for(detection.key) or detection
        self._log(
            "tii_detect",
            channel=detection.channel.name,
            ensemble=str(detection.ensemble),
            main_id=detection.main_id,
            sub_id=detection.sub_id,
            level=detection.level,
            known=detection.is_known,
            label=detection.label,
            distance_km=best.geo.distance_km if best.geo else None,
            azimuth_deg=best.geo.azimuth_deg if best.geo else None,
            result=result.value,
        )
        self.events.publish(TransmitterDetected(best))

    def _finish_channel(self, step: ScanStep, outcome: ChannelOutcome) -> ChannelOutcome:
        self.session.record_outcome(step.channel, outcome)
        self._log(
            "channel_finished",
            channel=step.channel.name,
            outcome=outcome.kind.value,
            detections=outcome.detections,
            snr_db=outcome.snr_db,
            ensemble=str(outcome.ensemble) if outcome.ensemble else None,
        )
        log.info(
            "%s: %s (%d detections)",
            step.channel.name,
            outcome.kind.value,
            outcome.detections,
            extra={"channel": step.channel.name, "cycle": step.cycle},
        )
        self.events.publish(ChannelFinished(step.channel, step.cycle, outcome))
        return outcome
