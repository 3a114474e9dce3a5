import dataclasses

from conftest import ENSEMBLE, make_record
from tiiscan.detection.matcher import KnownTransmitter, TransmitterMatcher, UnknownTransmitter
from tiiscan.detection.types import TiiCode
from tiiscan.io.channels import resolve_channel
from tiiscan.txdb.database import TransmitterDatabase, TxDbSnapshot
from tiiscan.txdb.model import EnsembleIdentity

CH6A = resolve_channel("6A")


def test_empty_database_always_unknown() -> None:
    matcher = TransmitterMatcher(TransmitterDatabase())
    for main_id, sub_id in [(0, 0), (3, 7), (69, 23), (12, None)]:
        assert matcher.match(ENSEMBLE, CH6A, TiiCode(main_id, sub_id, -40.0)) == UnknownTransmitter()


def test_exact_key_match_only() -> None:
    db = TransmitterDatabase()
    record = db.insert(make_record("6A", 3, 7, label="Feldberg", locally_known=True))
    matcher = TransmitterMatcher(db)

    result = matcher.match(ENSEMBLE, CH6A, TiiCode(3, 7, -40.0))
    assert isinstance(result, KnownTransmitter)
    assert result.record == record
    assert result.locally_known is True

    assert isinstance(matcher.match(ENSEMBLE, CH6A, TiiCode(3, 8, -40.0)), UnknownTransmitter)
    assert isinstance(matcher.match(ENSEMBLE, resolve_channel("6B"), TiiCode(3, 7, -40.0)), UnknownTransmitter)
    assert isinstance(matcher.match(EnsembleIdentity(0xE0, 0x1002), CH6A, TiiCode(3, 7, -40.0)), UnknownTransmitter)
    assert isinstance(matcher.match(ENSEMBLE, CH6A, TiiCode(3, None, -40.0)), UnknownTransmitter)


def test_live_database_sees_later_inserts_snapshot_does_not() -> None:
    db = TransmitterDatabase()
    live = TransmitterMatcher(db)
    pinned = TransmitterMatcher(db.snapshot())
    db.insert(make_record("6A", 3, 7))
    code = TiiCode(3, 7, -40.0)
    assert isinstance(live.match(ENSEMBLE, CH6A, code), KnownTransmitter)
    assert isinstance(pinned.match(ENSEMBLE, CH6A, code), UnknownTransmitter)


def test_conflicting_records_prefer_latest_revision(caplog) -> None:
    older = dataclasses.replace(make_record(label="Old"), revision=4)
    newer = dataclasses.replace(make_record(label="New"), revision=9)
    matcher = TransmitterMatcher(TxDbSnapshot([newer, older]))
    with caplog.at_level("WARNING", logger="tiiscan"):
        result = matcher.match(ENSEMBLE, CH6A, TiiCode(3, 7, -40.0))
    assert result.record.label == "New"
    assert "conflicting" in caplog.text
