"""Precision-mode and detector-sensitivity profiles."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, Dict, Optional, Union


@dataclass(frozen=True)
class ScanModeProfile:
    """Per-channel timing policy selected by the scan precision mode.

    sync_timeout_s bounds one synchronization attempt, tii_dwell_s is the time
    spent sampling TII after sync, sample_interval_s is the decoder cadence
    (also the cancellation tick), and sync_attempts > 1 re-tunes after a
    failed attempt.
    """

    name: str
    sync_timeout_s: float
    tii_dwell_s: float
    sample_interval_s: float
    sync_attempts: int = 1

    @property
    def tick_s(self) -> float:
        return self.sample_interval_s

    @property
    def decode_rounds(self) -> int:
        return max(1, int(round(self.tii_dwell_s / self.sample_interval_s)))


@dataclass(frozen=True)
class DetectorProfile:
    """Thresholds used by the TII decoder.

    min_snr_db is the pattern energy over the comb noise floor, min_contrast_db
    the ratio of the weakest pattern block to the strongest non-pattern block.
    """

    name: str
    min_snr_db: float
    min_contrast_db: float


def default_scan_modes() -> Dict[str, ScanModeProfile]:
    modes = [
        ScanModeProfile(name="fast", sync_timeout_s=2.0, tii_dwell_s=2.0, sample_interval_s=0.25),
        ScanModeProfile(name="normal", sync_timeout_s=4.0, tii_dwell_s=5.0, sample_interval_s=0.25),
        ScanModeProfile(name="precise", sync_timeout_s=6.0, tii_dwell_s=10.0, sample_interval_s=0.5, sync_attempts=2),
    ]
    return {m.name: m for m in modes}


def default_detector_profiles() -> Dict[str, DetectorProfile]:
    profiles = [
        DetectorProfile(name="reliable", min_snr_db=9.0, min_contrast_db=6.0),
        DetectorProfile(name="sensitive", min_snr_db=5.0, min_contrast_db=3.0),
    ]
    return {p.name: p for p in profiles}


def scan_mode(value: Union[str, ScanModeProfile]) -> ScanModeProfile:
    if isinstance(value, ScanModeProfile):
        return value
    modes = default_scan_modes()
    key = str(getattr(value, "value", value)).strip().lower()
    if key not in modes:
        raise ValueError(f"unknown scan mode '{value}' (expected one of {', '.join(modes)})")
    return modes[key]


def detector_profile(value: Union[str, DetectorProfile]) -> DetectorProfile:
    if isinstance(value, DetectorProfile):
        return value
    profiles = default_detector_profiles()
    key = str(getattr(value, "value", value)).strip().lower()
    if key not in profiles:
        raise ValueError(f"unknown detector profile '{value}' (expected one of {', '.join(profiles)})")
    return profiles[key]


def serialize_profiles() -> Dict[str, Any]:
    return {
        "modes": [asdict(m) for m in default_scan_modes().values()],
        "detectors": [asdict(p) for p in default_detector_profiles().values()],
    }


def customize_mode(
    base: Union[str, ScanModeProfile],
    *,
    sync_timeout_s: Optional[float] = None,
    tii_dwell_s: Optional[float] = None,
    sample_interval_s: Optional[float] = None,
) -> ScanModeProfile:
    """Copy a mode with individual timings overridden; the name gets a '+custom' suffix."""
    profile = scan_mode(base)
    overrides = {
        key: value
        for key, value in (
            ("sync_timeout_s", sync_timeout_s),
            ("tii_dwell_s", tii_dwell_s),
            ("sample_interval_s", sample_interval_s),
        )
        if value is not None
    }
    if not overrides:
        return profile
    for key, value in overrides.items():
        if value <= 0:
            raise ValueError(f"{key} must be positive, got {value}")
    return replace(profile, name=f"{profile.name}+custom", **overrides)
