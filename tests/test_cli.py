import json

from conftest import CSV_HEADER, csv_row
from tiiscan import cli
from tiiscan.util.exit_codes import ExitCode


def _write_csv(tmp_path, rows):
    path = tmp_path / "tx.csv"
    path.write_text(CSV_HEADER + "".join(rows))
    return path


def test_txdb_import_export_and_clear(tmp_path, capsys) -> None:
    db = str(tmp_path / "tx.db")
    src = _write_csv(tmp_path, [csv_row(main=1), csv_row(main=2), csv_row(main="bad")])

    assert cli.main(["--db", db, "txdb", "import", str(src)]) == ExitCode.SUCCESS
    out = capsys.readouterr()
    assert "[txdb] imported 2 rows, rejected 1" in out.out
    assert "line 4" in out.err

    assert cli.main(["--db", db, "txdb", "mark", "6A", "E0", "1001", "1", "7"]) == ExitCode.SUCCESS
    dest = tmp_path / "known.csv"
    assert cli.main(["--db", db, "txdb", "export", str(dest), "--known-only"]) == ExitCode.SUCCESS
    assert len(dest.read_text().splitlines()) == 2

    assert cli.main(["--db", db, "txdb", "clear"]) == ExitCode.INVALID_ARGS
    assert cli.main(["--db", db, "txdb", "clear", "--yes"]) == ExitCode.SUCCESS
    capsys.readouterr()
    assert cli.main(["--db", db, "txdb", "count"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.strip() == "0"


def test_txdb_mark_unknown_key_is_db_error(tmp_path) -> None:
    db = str(tmp_path / "tx.db")
    assert cli.main(["--db", db, "txdb", "mark", "6A", "E0", "1001", "1", "-"]) == ExitCode.DB_ERROR


def test_distance_and_modes(capsys) -> None:
    assert cli.main(["distance", "0", "0", "0", "1"]) == ExitCode.SUCCESS
    assert capsys.readouterr().out.startswith("111.19")
    assert cli.main(["modes"]) == ExitCode.SUCCESS
    payload = json.loads(capsys.readouterr().out)
    assert "modes" in payload and "detectors" in payload


def test_scan_with_replay_capture(tmp_path, capsys) -> None:
    capture = tmp_path / "capture.json"
    capture.write_text(
        json.dumps(
            {
                "channels": {
                    "5C": {"ecc": "E0", "eid": "1001", "label": "TEST", "windows": [{"codes": [[3, 7, -40.0]]}]},
                }
            }
        )
    )
    db = str(tmp_path / "tx.db")
    src = _write_csv(tmp_path, [csv_row(channel="5C", main=3, sub=7, label="Feldberg", lat="0.0", lon="1.0")])
    assert cli.main(["--db", db, "txdb", "import", str(src)]) == ExitCode.SUCCESS

    results = tmp_path / "results.csv"
    tii_log = tmp_path / "tii.csv"
    code = cli.main(
        [
            "--db", db, "scan",
            "--replay", str(capture),
            "--channels", "5C",
            "--mode", "fast",
            "--sync-timeout", "500ms", "--dwell", "1s",
            "--latitude", "0", "--longitude", "0",
            "--output", str(results),
            "--tii-log", str(tii_log),
        ]
    )
    # real clock: a one second dwell on a synchronized channel
    assert code == ExitCode.SUCCESS
    out = capsys.readouterr().out
    assert "[scan] 5C: detected" in out
    assert "Feldberg" in out
    assert "111.2 km" in out
    assert len(results.read_text().splitlines()) == 2
    assert len(tii_log.read_text().splitlines()) >= 2


def test_scan_invalid_cycles_and_missing_capture(tmp_path) -> None:
    db = str(tmp_path / "tx.db")
    capture = tmp_path / "capture.json"
    capture.write_text(json.dumps({"channels": {}}))
    assert cli.main(["--db", db, "scan", "--replay", str(capture), "--cycles", "0"]) == ExitCode.INVALID_ARGS
    missing = str(tmp_path / "nope.json")
    assert cli.main(["--db", db, "scan", "--replay", missing]) == ExitCode.CAPTURE_ERROR


def test_exit_code_messages() -> None:
    assert ExitCode.message(ExitCode.TUNER_UNAVAILABLE) == "tuner owned by another consumer"
    assert ExitCode.message(42) == "unknown exit code 42"
