"""DAB Band III channel plan and channel-list parsing."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union


@dataclass(frozen=True, order=True)
class ChannelId:
    """One tunable channel: plan name plus centre frequency in kHz."""

    frequency_khz: int
    name: str

    @property
    def ordinal(self) -> int:
        return _ORDINALS[self.name]

    @property
    def frequency_mhz(self) -> float:
        return self.frequency_khz / 1000.0

    def __str__(self) -> str:
        return self.name


# Band III block allocation (EN 300 401 Table 1), frequencies in kHz
_BAND_III = [
    ("5A", 174928), ("5B", 176640), ("5C", 178352), ("5D", 180064),
    ("6A", 181936), ("6B", 183648), ("6C", 185360), ("6D", 187072),
    ("7A", 188928), ("7B", 190640), ("7C", 192352), ("7D", 194064),
    ("8A", 195936), ("8B", 197648), ("8C", 199360), ("8D", 201072),
    ("9A", 202928), ("9B", 204640), ("9C", 206352), ("9D", 208064),
    ("10A", 209936), ("10N", 210096), ("10B", 211648), ("10C", 213360), ("10D", 215072),
    ("11A", 216928), ("11N", 217088), ("11B", 218640), ("11C", 220352), ("11D", 222064),
    ("12A", 223936), ("12N", 224096), ("12B", 225648), ("12C", 227360), ("12D", 229072),
    ("13A", 230784), ("13B", 232496), ("13C", 234208), ("13D", 235776), ("13E", 237488), ("13F", 239200),
]

BAND_III: List[ChannelId] = [ChannelId(frequency_khz=freq, name=name) for name, freq in _BAND_III]
_ORDINALS: Dict[str, int] = {ch.name: idx for idx, ch in enumerate(BAND_III)}
_BY_NAME: Dict[str, ChannelId] = {ch.name: ch for ch in BAND_III}
_BY_FREQ: Dict[int, ChannelId] = {ch.frequency_khz: ch for ch in BAND_III}


def channel_by_name(name: str) -> Optional[ChannelId]:
    return _BY_NAME.get(str(name).strip().upper())


def channel_by_frequency(frequency_khz: int) -> Optional[ChannelId]:
    return _BY_FREQ.get(int(frequency_khz))


def resolve_channel(value: Union[str, int, ChannelId]) -> ChannelId:
    """Resolve a channel name ('5A') or a centre frequency in kHz ('174928')."""

    if isinstance(value, ChannelId):
        return value
    text = str(value).strip()
    if not text:
        raise ValueError("empty channel")
    ch = channel_by_name(text)
    if ch is not None:
        return ch
    try:
        freq = int(float(text))
    except ValueError:
        raise ValueError(f"unknown channel '{value}'") from None
    # MHz values such as 174.928 are accepted as well
    if freq < 1000:
        freq = int(round(float(text) * 1000.0))
    ch = channel_by_frequency(freq)
    if ch is None:
        raise ValueError(f"no channel at {freq} kHz")
    return ch


def parse_channel_list(spec: Union[str, Iterable[Union[str, int, ChannelId]]]) -> List[ChannelId]:
    """Parse 'all', '5A,6B', '5A-7D' (inclusive plan range) or an iterable of channels.

    Order is preserved and duplicates are dropped.
    """

    if isinstance(spec, str):
        parts = [p.strip() for p in spec.split(",") if p.strip()]
    else:
        parts = list(spec)

    result: List[ChannelId] = []
    seen = set()

    def _add(ch: ChannelId) -> None:
        if ch.name not in seen:
            seen.add(ch.name)
            result.append(ch)

    for part in parts:
        if isinstance(part, str) and part.lower() == "all":
            for ch in BAND_III:
                _add(ch)
            continue
        if isinstance(part, str) and "-" in part:
            low_text, high_text = part.split("-", 1)
            low = resolve_channel(low_text)
            high = resolve_channel(high_text)
            if low.ordinal > high.ordinal:
                low, high = high, low
            for ch in BAND_III[low.ordinal : high.ordinal + 1]:
                _add(ch)
            continue
        _add(resolve_channel(part))
    return result
