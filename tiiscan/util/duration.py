"""Duration arguments ('250ms', '2', '2s', '1.5m') for the scan timing overrides."""

from __future__ import annotations

import argparse
from typing import Any, Optional

_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0}


def parse_seconds(value: Optional[Any]) -> Optional[float]:
    """Return the duration in seconds, or None for an empty value."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip().lower()
        if not text:
            return None
        unit = "s"
        for suffix in ("ms", "s", "m"):
            if text.endswith(suffix):
                unit, text = suffix, text[: -len(suffix)]
                break
        try:
            seconds = float(text) * _UNITS[unit]
        except ValueError as exc:
            raise argparse.ArgumentTypeError(f"invalid duration '{value}'") from exc
    if seconds <= 0:
        raise argparse.ArgumentTypeError(f"duration must be positive: '{value}'")
    return seconds
