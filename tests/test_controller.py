import csv
import io
import math
import threading

import pytest

from conftest import ENSEMBLE, FakeDecoder, make_record
from tiiscan.detection.types import OutcomeKind, TiiCode
from tiiscan.io.channels import resolve_channel
from tiiscan.scan.controller import ControllerState
from tiiscan.scan.errors import InvalidConfiguration, TunerFault, TunerUnavailable
from tiiscan.scan.events import (
    ChannelFinished,
    ChannelStarted,
    CycleCompleted,
    SessionCancelled,
    SessionCompleted,
    SessionFailed,
    TransmitterDetected,
    drain,
)
from tiiscan.scan.session import ScanStatus
from tiiscan.txdb.model import TransmitterKey
from tiiscan.util.geo import GeoPosition


def _of(events, kind):
    return [e for e in events if isinstance(e, kind)]


def test_two_channel_scenario_reports_no_signal_and_one_detection(make_controller, events) -> None:
    controller, tuner, handle = make_controller(
        channels={"6A": {"snr": 18.0}},
        codes={"6A": [TiiCode(3, 7, -40.0)]},
    )
    q = events.subscribe()

    session = controller.run(["5C", "6A"], mode="fast", cycle_limit=1)
    seen = drain(q)

    finished = _of(seen, ChannelFinished)
    assert [(f.channel.name, f.outcome.kind) for f in finished] == [
        ("5C", OutcomeKind.NO_SIGNAL),
        ("6A", OutcomeKind.DETECTED),
    ]
    assert finished[1].outcome.detections == 1
    assert finished[1].outcome.ensemble == ENSEMBLE
    assert isinstance(seen[-1], SessionCompleted)
    assert seen[-1].cycles == 1

    snap = session.snapshot()
    assert len(snap) == 1
    det = snap[0]
    assert det.key == TransmitterKey(ENSEMBLE, resolve_channel("6A"), 3, 7)
    assert det.level == -40.0
    assert det.snr_db == 18.0
    assert det.record is None
    assert session.status is ScanStatus.COMPLETED
    assert controller.state is ControllerState.COMPLETED
    assert not handle.busy
    assert tuner.released == 1


def test_events_follow_state_transition_order(make_controller, events) -> None:
    controller, _, _ = make_controller(
        channels={"6A": {}},
        codes={"6A": [TiiCode(3, 7, -40.0)]},
    )
    q = events.subscribe()
    controller.run(["5C", "6A"], mode="fast", cycle_limit=1)
    kinds = [type(e).__name__ for e in drain(q)]
    assert kinds == [
        "ChannelStarted",
        "ChannelFinished",
        "ChannelStarted",
        "TransmitterDetected",
        "ChannelFinished",
        "CycleCompleted",
        "SessionCompleted",
    ]


def test_repeated_decodes_merge_into_one_entry(make_controller) -> None:
    controller, tuner, _ = make_controller(
        channels={"6A": {}},
        codes={"6A": [TiiCode(3, 7, -40.0)]},
    )
    session = controller.run(["6A"], mode="fast", cycle_limit=2)
    (det,) = session.snapshot()
    rounds = controller.config.mode.decode_rounds
    assert tuner.samples == 2 * rounds
    assert det.hits == 2 * rounds
    assert det.first_seen_cycle == 1
    assert det.last_seen_cycle == 2


@pytest.mark.parametrize("channels,cycles", [(["5A"], 1), (["5A", "5B", "5C"], 2), (["5A", "6A"], 3)])
def test_channel_started_count_is_channels_times_cycles(make_controller, events, channels, cycles) -> None:
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(1, 2, -50.0)]})
    q = events.subscribe()
    controller.run(channels, mode="fast", cycle_limit=cycles)
    seen = drain(q)
    assert len(_of(seen, ChannelStarted)) == len(channels) * cycles
    assert [c.cycle for c in _of(seen, CycleCompleted)] == list(range(1, cycles + 1))
    assert controller.session.cycles_completed == cycles


def test_cancel_releases_tuner_and_keeps_partial_results(make_controller, events, clock) -> None:
    controller, tuner, handle = make_controller(
        channels={"5A": {}, "5B": {}},
        codes={"5A": [TiiCode(3, 7, -40.0)], "5B": [TiiCode(4, 1, -45.0)]},
    )
    q = events.subscribe()
    rounds_fast = 8

    def _cancel_during_second_channel(count: int) -> None:
        if count == rounds_fast + 2:
            controller.cancel()

    clock.on_wait = _cancel_during_second_channel
    session = controller.run(["5A", "5B"], mode="fast", cycle_limit="inf")
    seen = drain(q)

    assert isinstance(seen[-1], SessionCancelled)
    assert session.status is ScanStatus.CANCELLED
    assert controller.state is ControllerState.CANCELLED
    assert not handle.busy
    assert tuner.released == 1
    # cancellation is seen on the very wait that observed it
    assert clock.waits == rounds_fast + 2
    names = {d.channel.name for d in session.snapshot()}
    assert "5A" in names
    assert len(_of(seen, ChannelStarted)) == 2
    assert not _of(seen, CycleCompleted)


def test_cancel_during_sync_wait(make_controller, events, clock) -> None:
    controller, tuner, handle = make_controller(channels={})
    q = events.subscribe()
    clock.on_wait = lambda count: controller.cancel() if count == 3 else None
    controller.run(["5A"], mode="precise", cycle_limit=1)
    seen = drain(q)
    assert isinstance(seen[-1], SessionCancelled)
    assert not _of(seen, ChannelFinished)
    assert not handle.busy
    assert tuner.released == 1


def test_cancel_without_running_scan_is_noop(make_controller) -> None:
    controller, _, _ = make_controller()
    assert controller.cancel() is False
    assert controller.status is ScanStatus.IDLE


def test_tuner_unavailable_fails_session(make_controller, events) -> None:
    controller, tuner, handle = make_controller(channels={"6A": {}})
    q = events.subscribe()
    with handle.acquire("playback"):
        controller.run(["6A"], mode="fast")
        seen = drain(q)
    assert len(seen) == 1
    failed = seen[0]
    assert isinstance(failed, SessionFailed)
    assert isinstance(failed.error, TunerUnavailable)
    assert controller.status is ScanStatus.FAILED
    assert controller.session.failure_reason.startswith("tuner_unavailable")
    assert tuner.tunes == []


def test_tuner_fault_aborts_and_keeps_earlier_results(make_controller, events) -> None:
    controller, tuner, handle = make_controller(
        channels={"5A": {}},
        codes={"5A": [TiiCode(3, 7, -40.0)]},
        fault_on="5B",
    )
    q = events.subscribe()
    session = controller.run(["5A", "5B"], mode="fast")
    seen = drain(q)
    assert isinstance(seen[-1], SessionFailed)
    assert isinstance(seen[-1].error, TunerFault)
    assert session.status is ScanStatus.FAILED
    assert session.failure_reason.startswith("tuner_fault")
    assert len(session.snapshot()) == 1
    assert not handle.busy
    assert tuner.released == 1


def test_unexpected_decoder_error_fails_and_releases(make_controller, events) -> None:
    controller, tuner, handle = make_controller(
        channels={"6A": {}},
        decoder=FakeDecoder(error=ValueError("bad window")),
    )
    q = events.subscribe()
    controller.run(["6A"], mode="fast")
    failed = drain(q)[-1]
    assert isinstance(failed, SessionFailed)
    assert failed.reason.startswith("unexpected_error")
    assert not handle.busy
    assert tuner.released == 1


@pytest.mark.parametrize("channels", [[], "", "   "])
def test_empty_channel_list_is_invalid(make_controller, channels) -> None:
    controller, _, _ = make_controller()
    with pytest.raises(InvalidConfiguration):
        controller.start(channels)
    assert not controller.running


@pytest.mark.parametrize("limit", [0, -1, True, "abc", 1.5])
def test_bad_cycle_limit_is_invalid(make_controller, limit) -> None:
    controller, _, _ = make_controller()
    with pytest.raises(InvalidConfiguration):
        controller.start(["5A"], cycle_limit=limit)


@pytest.mark.parametrize("option", [{"mode": "slow"}, {"detector": "paranoid"}, {"snr_policy": "maybe"}])
def test_unknown_profiles_are_invalid(make_controller, option) -> None:
    controller, _, _ = make_controller()
    with pytest.raises(InvalidConfiguration):
        controller.start(["5A"], **option)


def test_second_start_while_running_is_rejected(make_controller) -> None:
    controller, tuner, _ = make_controller(channels={"6A": {}})
    gate = threading.Event()
    tuner.sync_gate = gate
    controller.start(["6A"], mode="fast")
    try:
        assert tuner.in_sync.wait(5.0)
        assert controller.running
        with pytest.raises(InvalidConfiguration):
            controller.start(["5A"], mode="fast")
    finally:
        gate.set()
        assert controller.wait(10.0)
    assert controller.status is ScanStatus.COMPLETED


def test_below_snr_threshold_skips_decode_by_default(make_controller, events) -> None:
    decoder = FakeDecoder({"6A": [TiiCode(3, 7, -40.0)]})
    controller, _, _ = make_controller(channels={"6A": {"snr": 4.0}}, decoder=decoder)
    q = events.subscribe()
    session = controller.run(["6A"], mode="fast", snr_threshold=10.0)
    (finished,) = _of(drain(q), ChannelFinished)
    assert finished.outcome.kind is OutcomeKind.BELOW_SNR_THRESHOLD
    assert finished.outcome.snr_db == 4.0
    assert decoder.calls == 0
    assert session.snapshot() == ()


def test_below_snr_threshold_decode_policy_flags_detections(make_controller) -> None:
    controller, _, _ = make_controller(channels={"6A": {"snr": 4.0}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    session = controller.run(["6A"], mode="fast", snr_threshold=10.0, snr_policy="decode")
    (det,) = session.snapshot()
    assert det.below_snr is True


def test_no_threshold_never_skips(make_controller) -> None:
    controller, _, _ = make_controller(channels={"6A": {"snr": -3.0}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    session = controller.run(["6A"], mode="fast", snr_threshold=None)
    assert len(session.snapshot()) == 1
    assert session.snapshot()[0].below_snr is False


def test_decode_empty_outcome(make_controller, events) -> None:
    controller, _, _ = make_controller(channels={"6A": {}}, codes={})
    q = events.subscribe()
    controller.run(["6A"], mode="fast")
    (finished,) = _of(drain(q), ChannelFinished)
    assert finished.outcome.kind is OutcomeKind.DECODE_EMPTY
    assert finished.outcome.synchronized


def test_precise_mode_retries_sync(make_controller) -> None:
    channels = {"6A": {"sync_after_tunes": 2}}
    codes = {"6A": [TiiCode(3, 7, -40.0)]}

    controller, tuner, _ = make_controller(channels=channels, codes=codes)
    controller.run(["6A"], mode="fast")
    assert controller.session.outcomes()[resolve_channel("6A")].kind is OutcomeKind.NO_SIGNAL
    assert tuner.tunes == ["6A"]

    controller, tuner, _ = make_controller(channels=channels, codes=codes)
    controller.run(["6A"], mode="precise")
    assert controller.session.outcomes()[resolve_channel("6A")].kind is OutcomeKind.DETECTED
    assert tuner.tunes == ["6A", "6A"]


def test_sync_wait_is_bounded_by_mode_timeout(make_controller, clock) -> None:
    controller, _, _ = make_controller(channels={})
    controller.run(["5A"], mode="normal")
    mode = controller.config.mode
    assert clock.waits == math.ceil(mode.sync_timeout_s / mode.tick_s)
    assert clock.t == pytest.approx(mode.sync_timeout_s)


def test_known_transmitter_is_matched_and_located(make_controller, database, events) -> None:
    database.upsert(make_record("6A", 3, 7, latitude=0.0, longitude=1.0, label="Feldberg"))
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0), TiiCode(5, 2, -50.0)]})
    q = events.subscribe()
    session = controller.run(["6A"], mode="fast", receiver=(0.0, 0.0))

    detected = _of(drain(q), TransmitterDetected)
    assert len(detected) == 2
    known = session.best_for(TransmitterKey(ENSEMBLE, resolve_channel("6A"), 3, 7))
    assert known.label == "Feldberg"
    assert known.geo.distance_km == pytest.approx(111.19, abs=0.1)
    assert known.geo.azimuth_deg == pytest.approx(90.0, abs=0.01)
    unknown = session.best_for(TransmitterKey(ENSEMBLE, resolve_channel("6A"), 5, 2))
    assert unknown.record is None
    assert unknown.geo is None


def test_set_receiver_position_relocates_results(make_controller, database) -> None:
    database.upsert(make_record("6A", 3, 7, latitude=0.0, longitude=1.0))
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    session = controller.run(["6A"], mode="fast")
    assert session.snapshot()[0].geo is None

    assert controller.set_receiver_position(GeoPosition(0.0, 2.0)) == 1
    geo = session.snapshot()[0].geo
    assert geo.azimuth_deg == pytest.approx(270.0, abs=0.01)


def test_results_kept_between_runs_when_not_cleared(make_controller) -> None:
    controller, _, _ = make_controller(
        channels={"5A": {}, "6A": {}},
        codes={"5A": [TiiCode(1, 1, -40.0)], "6A": [TiiCode(3, 7, -40.0)]},
    )
    controller.run(["5A"], mode="fast")
    controller.run(["6A"], mode="fast", clear_results=False)
    assert len(controller.snapshot()) == 2
    controller.run(["6A"], mode="fast")
    assert len(controller.snapshot()) == 1


def test_autosave_writes_results_csv(make_controller, tmp_path) -> None:
    target = tmp_path / "out" / "results.csv"
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    controller.run(["6A"], mode="fast", autosave_csv=str(target))
    with target.open(newline="") as fh:
        rows = list(csv.DictReader(fh))
    assert len(rows) == 1
    assert rows[0]["Channel"] == "6A"
    assert rows[0]["MainId"] == "3"
    assert rows[0]["SubId"] == "7"


def test_exported_results_reload_into_another_controller(make_controller, database, tmp_path) -> None:
    database.insert(make_record())
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    controller.run(["6A"], mode="fast")
    target = tmp_path / "results.csv"
    with target.open("w", newline="") as fh:
        assert controller.export_results(fh) == 1

    other, _, _ = make_controller()
    assert other.load_results(target) == 1
    (restored,) = other.snapshot()
    assert (restored.main_id, restored.sub_id) == (3, 7)
    assert restored.label == "Sender Test"


def test_scan_logger_records_session_lifecycle(make_controller, tmp_path) -> None:
    import json

    from tiiscan.util.scan_logger import ScanLogger

    logger = ScanLogger(tmp_path / "scan.log")
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0)]}, scan_logger=logger)
    controller.run(["5C", "6A"], mode="fast")
    lines = [json.loads(line) for line in (tmp_path / "scan.log").read_text().splitlines()]
    names = [entry["event"] for entry in lines]
    assert names[0] == "session_start"
    assert names[-1] == "session_end"
    assert names.count("channel_start") == 2
    assert "tii_detect" in names
    assert lines[-1]["status"] == "completed"


def test_restart_from_another_thread_waits_for_terminal_event(make_controller, events) -> None:
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    q = events.subscribe()
    entered = threading.Event()
    gate = threading.Event()

    def hold_first_completion(event) -> None:
        if isinstance(event, SessionCompleted) and not entered.is_set():
            entered.set()
            gate.wait(5.0)

    events.add_listener(hold_first_completion)
    controller.start(["6A"], mode="fast")
    starter = threading.Thread(target=controller.start, args=(["6A"],), kwargs={"mode": "fast"})
    try:
        assert entered.wait(5.0)
        starter.start()
        starter.join(0.2)
        assert starter.is_alive()
    finally:
        gate.set()
    starter.join(5.0)
    assert not starter.is_alive()
    assert controller.wait(10.0)

    seen = drain(q)
    completed = [i for i, e in enumerate(seen) if isinstance(e, SessionCompleted)]
    started = [i for i, e in enumerate(seen) if isinstance(e, ChannelStarted)]
    assert len(completed) == 2 and len(started) == 2
    assert completed[0] < started[1]
    assert seen[completed[0]].cycles == 1


def test_restart_from_terminal_event_listener(make_controller, events) -> None:
    controller, _, _ = make_controller(channels={"6A": {}}, codes={"6A": [TiiCode(3, 7, -40.0)]})
    q = events.subscribe()
    restarted = []

    def restart_once(event) -> None:
        if isinstance(event, SessionCompleted) and not restarted:
            restarted.append(controller.start(["6A"], mode="fast"))

    events.add_listener(restart_once)
    controller.run(["6A"], mode="fast")
    assert controller.wait(10.0)
    assert restarted
    kinds = [type(e) for e in drain(q) if isinstance(e, (ChannelStarted, SessionCompleted))]
    assert kinds == [ChannelStarted, SessionCompleted, ChannelStarted, SessionCompleted]
    assert controller.status is ScanStatus.COMPLETED


def test_partial_results_export_while_running(make_controller, clock) -> None:
    controller, tuner, _ = make_controller(
        channels={"6A": {}, "7A": {}},
        codes={"6A": [TiiCode(3, 7, -40.0)], "7A": [TiiCode(5, 1, -42.0)]},
    )
    held = threading.Event()
    gate = threading.Event()

    def pause_mid_dwell(count: int) -> None:
        if tuner.samples >= 2 and not held.is_set():
            held.set()
            gate.wait(5.0)

    clock.on_wait = pause_mid_dwell
    controller.start(["6A", "7A"], mode="fast")
    try:
        assert held.wait(5.0)
        assert controller.running
        (partial,) = controller.snapshot()
        assert (partial.channel.name, partial.main_id, partial.sub_id) == ("6A", 3, 7)
        out = io.StringIO()
        assert controller.export_results(out) == 1
        rows = list(csv.DictReader(io.StringIO(out.getvalue())))
        assert [(r["Channel"], r["MainId"], r["SubId"]) for r in rows] == [("6A", "3", "7")]
    finally:
        gate.set()
    assert controller.wait(10.0)
    assert controller.status is ScanStatus.COMPLETED
    final = controller.snapshot()
    assert [(d.channel.name, d.main_id) for d in final] == [("6A", 3), ("7A", 5)]
    assert final[0].hits > partial.hits
