"""Validated inputs of one scan run."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Optional, Tuple, Union

from tiiscan.io.channels import ChannelId, parse_channel_list
from tiiscan.io.profiles import DetectorProfile, ScanModeProfile, detector_profile, scan_mode
from tiiscan.scan.errors import InvalidConfiguration
from tiiscan.util.geo import GeoPosition

SNR_POLICIES = ("skip", "decode")
INFINITE_TOKENS = ("inf", "infinite", "loop", "forever", "unbounded")


def parse_cycle_limit(value: Any) -> Optional[int]:
    """Return a positive cycle count, or None for an unbounded scan."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise InvalidConfiguration(f"invalid cycle limit: {value!r}")
    if isinstance(value, str):
        text = value.strip().lower()
        if text in INFINITE_TOKENS:
            return None
        try:
            value = int(text)
        except ValueError:
            raise InvalidConfiguration(f"invalid cycle limit: {value!r}") from None
    if isinstance(value, float):
        if math.isinf(value) and value > 0:
            return None
        if not value.is_integer():
            raise InvalidConfiguration(f"cycle limit must be a whole number: {value!r}")
        value = int(value)
    if not isinstance(value, int):
        raise InvalidConfiguration(f"invalid cycle limit: {value!r}")
    if value <= 0:
        raise InvalidConfiguration(f"cycle limit must be positive, got {value}")
    return value


def _channels(value: Union[str, Iterable[Any]]) -> Tuple[ChannelId, ...]:
    try:
        channels = parse_channel_list(value)
    except ValueError as exc:
        raise InvalidConfiguration(str(exc)) from exc
    if not channels:
        raise InvalidConfiguration("channel list is empty")
    return tuple(channels)


def _receiver(value: Any) -> Optional[GeoPosition]:
    if value is None or isinstance(value, GeoPosition):
        return value
    try:
        lat, lon = value
        return GeoPosition(float(lat), float(lon))
    except (TypeError, ValueError) as exc:
        raise InvalidConfiguration(f"invalid receiver position {value!r}: {exc}") from exc


@dataclass(frozen=True)
class ScanConfig:
    channels: Tuple[ChannelId, ...]
    mode: ScanModeProfile
    cycle_limit: Optional[int] = 1
    snr_threshold: Optional[float] = None
    snr_policy: str = "skip"
    detector: DetectorProfile = detector_profile("reliable")
    receiver: Optional[GeoPosition] = None
    clear_results: bool = True
    autosave_csv: Optional[Path] = None

    @property
    def infinite(self) -> bool:
        return self.cycle_limit is None

    @classmethod
    def build(
        cls,
        channels: Union[str, Iterable[Any]],
        mode: Union[str, ScanModeProfile] = "normal",
        cycle_limit: Any = 1,
        snr_threshold: Optional[float] = None,
        *,
        snr_policy: str = "skip",
        detector: Union[str, DetectorProfile] = "reliable",
        receiver: Any = None,
        clear_results: bool = True,
        autosave_csv: Optional[Union[str, Path]] = None,
    ) -> "ScanConfig":
        try:
            mode_profile = scan_mode(mode)
            detector_prof = detector_profile(detector)
        except ValueError as exc:
            raise InvalidConfiguration(str(exc)) from exc

        policy = str(snr_policy or "skip").strip().lower()
        if policy not in SNR_POLICIES:
            raise InvalidConfiguration(f"unknown SNR policy '{snr_policy}' (expected skip or decode)")

        threshold: Optional[float] = None
        if snr_threshold is not None:
            try:
                threshold = float(snr_threshold)
            except (TypeError, ValueError):
                raise InvalidConfiguration(f"invalid SNR threshold: {snr_threshold!r}") from None
            if math.isnan(threshold):
                raise InvalidConfiguration("SNR threshold must be a number")

        return cls(
            channels=_channels(channels),
            mode=mode_profile,
            cycle_limit=parse_cycle_limit(cycle_limit),
            snr_threshold=threshold,
            snr_policy=policy,
            detector=detector_prof,
            receiver=_receiver(receiver),
            clear_results=bool(clear_results),
            autosave_csv=Path(autosave_csv) if autosave_csv else None,
        )

    def describe(self) -> List[str]:
        limit = "infinite" if self.cycle_limit is None else str(self.cycle_limit)
        threshold = "off" if self.snr_threshold is None else f"{self.snr_threshold:.1f} dB"
        return [
            f"channels={','.join(ch.name for ch in self.channels)}",
            f"mode={self.mode.name}",
            f"cycles={limit}",
            f"snr_threshold={threshold}",
            f"snr_policy={self.snr_policy}",
            f"detector={self.detector.name}",
        ]
