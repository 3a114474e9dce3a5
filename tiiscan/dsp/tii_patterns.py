"""Transmission mode I TII carrier layout.

The TII null symbol uses four groups of 384 carriers. Each group holds eight
48-carrier blocks (b = 0..7) and each block 24 carrier pairs, one per comb
(c = 0..23, the sub id). A pattern (the main id, 0..69) switches on four of
the eight blocks; the 70 patterns are the 8-bit words with exactly four bits
set, in ascending order, with bit b selecting block b.
"""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

FFT_SIZE = 2048
NUM_BLOCKS = 8
NUM_COMBS = 24
BLOCK_WIDTH = 48
GROUP_BASES = (-768, -384, 1, 385)

PATTERNS: Tuple[int, ...] = tuple(v for v in range(256) if bin(v).count("1") == 4)
PATTERN_INDEX: Dict[int, int] = {mask: idx for idx, mask in enumerate(PATTERNS)}


def pattern_blocks(main_id: int) -> List[int]:
    """Blocks switched on by a main id."""
    mask = PATTERNS[int(main_id)]
    return [b for b in range(NUM_BLOCKS) if mask & (1 << b)]


# blocks of every main id, shape (70, 4)
PATTERN_BLOCKS = np.array([pattern_blocks(i) for i in range(len(PATTERNS))], dtype=np.int64)


def main_id_for_blocks(blocks) -> int:
    mask = 0
    for b in blocks:
        mask |= 1 << int(b)
    if mask not in PATTERN_INDEX:
        raise ValueError(f"blocks {sorted(blocks)} do not form a TII pattern")
    return PATTERN_INDEX[mask]


def tii_carriers(main_id: int, sub_id: int) -> List[int]:
    """Carrier indices k (-768..768, no DC) occupied by one TII code."""
    carriers: List[int] = []
    for base in GROUP_BASES:
        for b in pattern_blocks(main_id):
            k = base + 2 * int(sub_id) + BLOCK_WIDTH * b
            carriers.extend((k, k + 1))
    return sorted(carriers)


def carrier_to_bin(k: int) -> int:
    """FFT bin holding carrier k (FFT order, negative carriers wrap to the top half)."""
    return int(k) % FFT_SIZE


def _build_block_index() -> np.ndarray:
    index = np.zeros((len(GROUP_BASES), NUM_BLOCKS, NUM_COMBS, 2), dtype=np.int64)
    for g, base in enumerate(GROUP_BASES):
        for b in range(NUM_BLOCKS):
            for c in range(NUM_COMBS):
                k = base + 2 * c + BLOCK_WIDTH * b
                index[g, b, c, 0] = carrier_to_bin(k)
                index[g, b, c, 1] = carrier_to_bin(k + 1)
    return index


# FFT bins indexed by (group, block, comb, pair member)
BLOCK_INDEX = _build_block_index()


def render_spectrum(
    codes: Iterable[Tuple[int, int, float]],
    noise_power: float = 1e-7,
    rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Build a null-symbol power spectrum carrying the given (main, sub, level_db) codes.

    Every carrier of a code gets 10**(level_db/10) on top of exponentially
    distributed noise of mean noise_power. Used by the replay driver and tests.
    """
    rng = rng if rng is not None else np.random.default_rng()
    spectrum = rng.exponential(noise_power, FFT_SIZE) if noise_power > 0 else np.zeros(FFT_SIZE)
    for main_id, sub_id, level_db in codes:
        power = 10.0 ** (float(level_db) / 10.0)
        for k in tii_carriers(main_id, sub_id):
            spectrum[carrier_to_bin(k)] += power
    return spectrum
