"""Tuner driver that replays a recorded (or hand written) JSON capture.

Capture layout::

    {
      "channels": {
        "5C": {"sync": true, "ecc": "E0", "eid": "10B1", "label": "DR Deutschland",
               "snr": 18.5, "noise_power": 1e-7, "seed": 1,
               "windows": [{"codes": [[3, 7, -40.0]]}, {"spectrum": [...2048 values...]}]},
        "5D": {"sync": false}
      }
    }

Channels missing from the capture never synchronize. Windows are replayed
round-robin; "codes" windows are rendered as synthetic null-symbol spectra.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

import numpy as np

from tiiscan.dsp.tii_patterns import FFT_SIZE, render_spectrum
from tiiscan.io.channels import ChannelId, resolve_channel
from tiiscan.scan.tuner import NOT_SYNCED, SyncState
from tiiscan.txdb.model import EnsembleIdentity
from tiiscan.util.logging import get_logger

log = get_logger(__name__)

DEFAULT_SNR_DB = 20.0


def _hex(value: Any) -> int:
    if isinstance(value, int):
        return value
    text = str(value).strip()
    if text.lower().startswith("0x"):
        text = text[2:]
    return int(text, 16)


class _ReplayChannel:
    def __init__(self, channel: ChannelId, entry: Mapping[str, Any]):
        self.channel = channel
        ensemble = None
        if entry.get("ecc") is not None and entry.get("eid") is not None:
            ensemble = EnsembleIdentity(_hex(entry["ecc"]), _hex(entry["eid"]))
        self.ensemble = ensemble
        self.synced = bool(entry.get("sync", ensemble is not None))
        self.label = str(entry.get("label") or "")
        self.snr_db = float(entry.get("snr", DEFAULT_SNR_DB))
        self.noise_power = float(entry.get("noise_power", 1e-7))
        self.rng = np.random.default_rng(entry.get("seed"))
        self.windows = list(entry.get("windows") or [])
        self.position = 0

    def next_window(self) -> np.ndarray:
        if not self.windows:
            return render_spectrum([], self.noise_power, self.rng)
        window = self.windows[self.position % len(self.windows)]
        self.position += 1
        if "spectrum" in window:
            spectrum = np.asarray(window["spectrum"], dtype=np.float64)
            if spectrum.size != FFT_SIZE:
                raise ValueError(f"replay spectrum for {self.channel.name} has {spectrum.size} bins")
            return spectrum
        codes = [(int(m), int(s), float(level)) for m, s, level in window.get("codes", [])]
        return render_spectrum(codes, self.noise_power, self.rng)


class ReplayTuner:
    """Tuner protocol implementation backed by a capture dictionary."""

    def __init__(self, capture: Mapping[str, Any]):
        channels = capture.get("channels") or {}
        self._channels: Dict[str, _ReplayChannel] = {}
        for name, entry in channels.items():
            ch = resolve_channel(name)
            self._channels[ch.name] = _ReplayChannel(ch, entry or {})
        self._current: Optional[_ReplayChannel] = None
        self._tuned: Optional[ChannelId] = None
        self.tune_count = 0
        self.release_count = 0

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "ReplayTuner":
        with Path(path).expanduser().open("r", encoding="utf-8") as fh:
            capture = json.load(fh)
        tuner = cls(capture)
        log.info("loaded replay capture %s (%d channels)", path, len(tuner._channels))
        return tuner

    @property
    def channel(self) -> Optional[ChannelId]:
        return self._tuned

    def tune(self, channel: ChannelId) -> bool:
        self._tuned = channel
        self._current = self._channels.get(channel.name)
        self.tune_count += 1
        return True

    def wait_for_sync(self, timeout: float) -> SyncState:
        cur = self._current
        if cur is None or not cur.synced:
            return NOT_SYNCED
        return SyncState(True, cur.ensemble, cur.label)

    def sample_tii_window(self) -> np.ndarray:
        if self._current is None:
            raise RuntimeError("no replay data for the tuned channel")
        return self._current.next_window()

    def read_snr(self) -> float:
        if self._current is None:
            return 0.0
        return self._current.snr_db

    def release(self) -> None:
        self._current = None
        self._tuned = None
        self.release_count += 1
