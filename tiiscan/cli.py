#!/usr/bin/env python3
"""tiiscan CLI entrypoint (package module)."""

from __future__ import annotations

import argparse
import json
import sys
from typing import List, Optional

from tiiscan import config
from tiiscan.io.channels import resolve_channel
from tiiscan.io.profiles import default_detector_profiles, default_scan_modes, serialize_profiles
from tiiscan.scan.config import SNR_POLICIES
from tiiscan.scan.errors import ScanError
from tiiscan.scan.runner import run_scan
from tiiscan.txdb.database import TransmitterDatabase, TxDbError
from tiiscan.txdb.model import EnsembleIdentity, TransmitterKey
from tiiscan.util.duration import parse_seconds
from tiiscan.util.exit_codes import ExitCode
from tiiscan.util.geo import GeoPosition, distance_and_azimuth
from tiiscan.util.logging import configure_logging


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    if argv is None:
        argv = sys.argv[1:]

    p = argparse.ArgumentParser(
        prog="tiiscan",
        description="DAB channel scanner with transmitter identification (TII) and transmitter database tools",
    )
    p.add_argument("--db", default=config.DB_PATH, help=f"SQLite transmitter database (default {config.DB_PATH})")
    p.add_argument("--log-level", dest="log_level", default=None, help="Logging level (default from TIISCAN_LOG_LEVEL or INFO)")
    p.add_argument("--log-json", dest="log_json", default=None, help="Also write JSON-lines logs to this file")
    p.add_argument("--no-color", dest="no_color", action="store_true", help="Disable coloured console logs")
    sub = p.add_subparsers(dest="command")
    sub.required = True

    scan = sub.add_parser("scan", help="Scan channels and identify transmitters")
    scan.add_argument("--replay", required=True, help="JSON capture replayed as the tuner")
    scan.add_argument("--channels", default="all", help="Channel list: 'all', '5A,6B' or a range '5A-7D' (default all)")
    scan.add_argument("--mode", choices=sorted(default_scan_modes()), default=config.DEFAULT_MODE, help="Precision mode")
    scan.add_argument("--cycles", default="1", help="Number of scan cycles, or 'inf' to scan until interrupted (default 1)")
    scan.add_argument("--sync-timeout", dest="sync_timeout", type=parse_seconds, help="Override the mode's sync timeout per attempt (e.g. 3s, 1500ms)")
    scan.add_argument("--dwell", type=parse_seconds, help="Override the mode's TII dwell after sync")
    scan.add_argument("--interval", type=parse_seconds, help="Override the mode's TII sampling interval")
    scan.add_argument("--snr-threshold", dest="snr_threshold", type=float, default=config.DEFAULT_SNR_THRESHOLD, help="Minimum SNR [dB] before decoding TII")
    scan.add_argument("--snr-policy", dest="snr_policy", choices=SNR_POLICIES, default=config.DEFAULT_SNR_POLICY, help="Below threshold: skip the channel or decode and flag (default skip)")
    scan.add_argument("--detector", choices=sorted(default_detector_profiles()), default=config.DEFAULT_DETECTOR, help="TII detector profile")
    scan.add_argument("--latitude", type=float, default=config.RECEIVER_LATITUDE, help="Receiver latitude in decimal degrees")
    scan.add_argument("--longitude", type=float, default=config.RECEIVER_LONGITUDE, help="Receiver longitude in decimal degrees")
    scan.add_argument("--output", help="Write scan results CSV here when the scan ends")
    scan.add_argument("--tii-log", dest="tii_log", help="Append every TII detection to this CSV log")
    scan.add_argument("--local-time", dest="local_time", action="store_true", help="TII log timestamps in local time instead of UTC")
    scan.add_argument("--jsonl", default=config.SCAN_LOG_JSONL or None, help="Mirror structured scan events to this JSON-lines file")
    scan.add_argument("--quiet", action="store_true", help="Do not print per-channel progress")

    txdb = sub.add_parser("txdb", help="Manage the transmitter database")
    txdb_sub = txdb.add_subparsers(dest="txdb_command")
    txdb_sub.required = True
    imp = txdb_sub.add_parser("import", help="Import transmitters from CSV")
    imp.add_argument("file")
    imp.add_argument("--replace", action="store_true", help="Overwrite existing keys instead of rejecting them")
    exp = txdb_sub.add_parser("export", help="Export transmitters to CSV ('-' for stdout)")
    exp.add_argument("file")
    exp.add_argument("--known-only", dest="known_only", action="store_true", help="Only locally known transmitters")
    clr = txdb_sub.add_parser("clear", help="Delete all transmitters (irreversible)")
    clr.add_argument("--yes", action="store_true", help="Confirm the irreversible delete")
    mark = txdb_sub.add_parser("mark", help="Set or clear the locally known flag")
    mark.add_argument("channel")
    mark.add_argument("ecc", help="Extended country code (hex)")
    mark.add_argument("eid", help="Ensemble id (hex)")
    mark.add_argument("main_id", type=int)
    mark.add_argument("sub_id", help="Sub id, or '-' for none")
    mark.add_argument("--unset", action="store_true", help="Clear the flag instead of setting it")
    txdb_sub.add_parser("count", help="Print the number of stored transmitters")

    dist = sub.add_parser("distance", help="Distance and azimuth between two positions")
    dist.add_argument("rx_lat", type=float)
    dist.add_argument("rx_lon", type=float)
    dist.add_argument("tx_lat", type=float)
    dist.add_argument("tx_lon", type=float)

    sub.add_parser("modes", help="Print precision modes and detector profiles as JSON")

    args = p.parse_args(argv)
    if args.command == "scan" and (args.latitude is None) != (args.longitude is None):
        p.error("--latitude and --longitude must be given together")
    return args


def _txdb_key(args: argparse.Namespace) -> TransmitterKey:
    sub_text = str(args.sub_id).strip()
    sub_id = None if sub_text in ("-", "", "none") else int(sub_text)
    return TransmitterKey(
        EnsembleIdentity(int(args.ecc, 16), int(args.eid, 16)),
        resolve_channel(args.channel),
        int(args.main_id),
        sub_id,
    )


def run_txdb(args: argparse.Namespace) -> int:
    db = TransmitterDatabase(args.db)
    try:
        cmd = args.txdb_command
        if cmd == "import":
            with open(args.file, "r", encoding="utf-8", newline="") as fh:
                result = db.import_csv(fh, replace=args.replace)
            print(f"[txdb] imported {result.imported_count} rows, rejected {result.rejected_rows}", flush=True)
            for item in db.last_import_rejections:
                print(f"[txdb]   line {item.line}: {item.reason}", file=sys.stderr)
            return ExitCode.SUCCESS
        if cmd == "export":
            predicate = (lambda rec: rec.locally_known) if args.known_only else None
            if args.file == "-":
                count = db.export_csv(sys.stdout, predicate)
            else:
                with open(args.file, "w", encoding="utf-8", newline="") as fh:
                    count = db.export_csv(fh, predicate)
                print(f"[txdb] exported {count} rows to {args.file}", flush=True)
            return ExitCode.SUCCESS
        if cmd == "clear":
            if not args.yes:
                print("[txdb] refusing to clear without --yes (this action is irreversible)", file=sys.stderr)
                return ExitCode.INVALID_ARGS
            removed = db.clear()
            print(f"[txdb] removed {removed} transmitters", flush=True)
            return ExitCode.SUCCESS
        if cmd == "mark":
            try:
                key = _txdb_key(args)
            except ValueError as exc:
                print(f"[txdb] invalid key: {exc}", file=sys.stderr)
                return ExitCode.INVALID_ARGS
            record = db.mark_known(key, not args.unset)
            state = "known" if record.locally_known else "not known"
            print(f"[txdb] {key} {record.label} marked {state}", flush=True)
            return ExitCode.SUCCESS
        if cmd == "count":
            print(len(db))
            return ExitCode.SUCCESS
        return ExitCode.INVALID_ARGS
    finally:
        db.close()


def run_distance(args: argparse.Namespace) -> int:
    try:
        rx = GeoPosition(args.rx_lat, args.rx_lon)
        tx = GeoPosition(args.tx_lat, args.tx_lon)
    except ValueError as exc:
        print(f"[geo] {exc}", file=sys.stderr)
        return ExitCode.INVALID_ARGS
    result = distance_and_azimuth(rx, tx)
    assert result is not None
    print(f"{result.distance_km:.3f} km  {result.azimuth_deg:.2f} deg")
    return ExitCode.SUCCESS


def _emit_profiles_json() -> None:
    payload = serialize_profiles()
    print(json.dumps(payload, indent=2, sort_keys=True))


def run(args: argparse.Namespace) -> int:
    """Top-level CLI dispatcher."""
    if args.command == "modes":
        _emit_profiles_json()
        return ExitCode.SUCCESS
    if args.command == "distance":
        return run_distance(args)
    if args.command == "txdb":
        return run_txdb(args)
    return run_scan(args)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(level=args.log_level, json_file=args.log_json, use_color=not args.no_color)
    try:
        return run(args)
    except ScanError as exc:
        print(f"[scan] {exc}", file=sys.stderr)
        return int(exc.exit_code)
    except TxDbError as exc:
        print(f"[txdb] {exc}", file=sys.stderr)
        return ExitCode.DB_ERROR
    except (OSError, ValueError) as exc:
        print(f"[tiiscan] {exc}", file=sys.stderr)
        return ExitCode.CAPTURE_ERROR if args.command == "scan" else ExitCode.GENERAL_ERROR


if __name__ == "__main__":
    sys.exit(main())
