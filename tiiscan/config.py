"""
Configuration constants and environment parsing for tiiscan.

All TIISCAN_* environment variables are parsed here and exported as module-level
constants. The CLI uses them as argparse defaults, so explicit flags always win.
"""
from __future__ import annotations

import os
from typing import Optional


def _float_env(name: str, default: Optional[float]) -> Optional[float]:
    """Parse a float from environment, returning default on missing/invalid."""
    val = os.getenv(name)
    if not val:
        return default
    try:
        return float(val)
    except ValueError:
        return default


def _str_env(name: str, default: str) -> str:
    val = os.getenv(name)
    return val.strip() if val and val.strip() else default


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
DB_PATH: str = _str_env("TIISCAN_DB", "tiiscan.db")
"""SQLite file holding the transmitter database."""

SCAN_LOG_JSONL: str = os.getenv("TIISCAN_SCAN_JSONL", "")
"""Optional extra JSON-lines target mirrored by the structured scan log."""


# ---------------------------------------------------------------------------
# Receiver position
# ---------------------------------------------------------------------------
RECEIVER_LATITUDE: Optional[float] = _float_env("TIISCAN_RX_LAT", None)
"""Receiver latitude in decimal degrees (unset disables geolocation)."""

RECEIVER_LONGITUDE: Optional[float] = _float_env("TIISCAN_RX_LON", None)
"""Receiver longitude in decimal degrees."""


# ---------------------------------------------------------------------------
# Scan defaults
# ---------------------------------------------------------------------------
DEFAULT_MODE: str = _str_env("TIISCAN_MODE", "normal").lower()
"""Precision mode: fast, normal or precise."""

DEFAULT_DETECTOR: str = _str_env("TIISCAN_DETECTOR", "reliable").lower()
"""TII detector profile: reliable or sensitive."""

DEFAULT_SNR_THRESHOLD: Optional[float] = _float_env("TIISCAN_SNR_THRESHOLD", None)
"""Minimum channel SNR in dB before decoding; unset disables the check."""

DEFAULT_SNR_POLICY: str = _str_env("TIISCAN_SNR_POLICY", "skip").lower()
"""What to do below the SNR threshold: skip the channel or decode and flag."""
