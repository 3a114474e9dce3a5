"""TII decoding from per-carrier null-symbol energies."""

from __future__ import annotations

from typing import List, Union

import numpy as np

from tiiscan.detection.types import TiiCode
from tiiscan.dsp.tii_patterns import BLOCK_INDEX, FFT_SIZE, NUM_BLOCKS, NUM_COMBS, PATTERN_BLOCKS
from tiiscan.io.profiles import DetectorProfile, detector_profile
from tiiscan.util.math import POWER_FLOOR, db10, db_ratio

# Reported contrast when nothing but the pattern carries energy
MAX_CONFIDENCE_DB = 99.0


def carrier_power(window) -> np.ndarray:
    """Normalize a sample window to a 1-D power spectrum of FFT_SIZE bins.

    Accepts real energies or complex bins, either one symbol (shape (2048,))
    or a stack of symbols (shape (n, 2048)) which is averaged.
    """
    arr = np.asarray(window)
    if np.iscomplexobj(arr):
        arr = np.abs(arr) ** 2
    arr = arr.astype(np.float64, copy=False)
    if arr.ndim == 2:
        if arr.shape[0] == 0:
            raise ValueError("empty TII window")
        arr = arr.mean(axis=0)
    if arr.ndim != 1 or arr.size != FFT_SIZE:
        raise ValueError(f"TII window must have {FFT_SIZE} bins, got shape {np.shape(window)}")
    return np.clip(arr, 0.0, None)


def comb_block_energy(spectrum: np.ndarray) -> np.ndarray:
    """Mean carrier energy per (block, comb), folded over the four groups and pairs."""
    folded = spectrum[BLOCK_INDEX]
    return folded.mean(axis=(0, 3))


class TiiDecoder:
    """Stateless TII detector; one call per sample window.

    A block of a comb is lit when its energy clears the comb-matrix noise
    floor by min_snr_db. Codes sharing a comb (co-channel SFN transmitters
    with the same sub id) are separated by peeling: the pattern of lit blocks
    with the strongest weakest block is reported, its power is taken off its
    blocks and the remaining lit blocks are searched again. A pattern is only
    reported when its weakest block clears the strongest unlit block of the
    comb by min_contrast_db.
    """

    def __init__(self, profile: Union[str, DetectorProfile] = "reliable"):
        self.profile = detector_profile(profile)

    def decode(self, window) -> List[TiiCode]:
        spectrum = carrier_power(window)
        blocks = comb_block_energy(spectrum)
        noise = max(float(np.median(blocks)), POWER_FLOOR)
        lit_excess = noise * (10.0 ** (self.profile.min_snr_db / 10.0) - 1.0)

        codes: List[TiiCode] = []
        for comb in range(NUM_COMBS):
            codes.extend(self._decode_comb(comb, blocks[:, comb], noise, lit_excess))
        codes.sort(key=lambda c: c.level, reverse=True)
        return codes

    def _decode_comb(self, comb: int, column: np.ndarray, noise: float, lit_excess: float) -> List[TiiCode]:
        # power above the floor not yet attributed to a reported code
        residual = np.clip(column - noise, 0.0, None)
        found: List[TiiCode] = []
        for _ in range(NUM_BLOCKS - 3):
            lit = residual >= lit_excess
            if np.count_nonzero(lit) < 4:
                break
            candidates = np.flatnonzero(lit[PATTERN_BLOCKS].all(axis=1))
            if candidates.size == 0:
                break
            weakest = residual[PATTERN_BLOCKS[candidates]].min(axis=1)
            main_id = int(candidates[int(np.argmax(weakest))])
            power = float(weakest.max())

            unlit = residual[~lit]
            clutter = noise + (float(unlit.max()) if unlit.size else 0.0)
            contrast_db = min(db_ratio(power + noise, clutter), MAX_CONFIDENCE_DB)
            if contrast_db < self.profile.min_contrast_db:
                break

            found.append(
                TiiCode(
                    main_id=main_id,
                    sub_id=comb,
                    level=round(float(db10(power + noise)), 2),
                    confidence=round(contrast_db, 2),
                )
            )
            residual[PATTERN_BLOCKS[main_id]] -= power
            np.clip(residual, 0.0, None, out=residual)
        return found

    def __call__(self, window) -> List[TiiCode]:
        return self.decode(window)
