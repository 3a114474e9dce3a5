"""Channel scheduling for scan cycles."""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

from tiiscan.io.channels import ChannelId


@dataclass(frozen=True)
class ScanStep:
    """Single channel visit emitted by the scheduler."""

    cycle: int
    index: int
    channel: ChannelId


class ChannelScheduler:
    """Generate ordered channel visits, cycle after cycle.

    Cycles are numbered from 1. With cycle_limit None the schedule never ends
    and the caller is expected to stop iterating (cancel).
    """

    def __init__(self, channels: Sequence[ChannelId], cycle_limit: Optional[int] = 1) -> None:
        if not channels:
            raise ValueError("channel list must not be empty")
        if cycle_limit is not None and cycle_limit <= 0:
            raise ValueError("cycle_limit must be positive")
        self._channels = list(channels)
        self._cycle_limit = cycle_limit

    @property
    def channels(self) -> List[ChannelId]:
        return list(self._channels)

    @property
    def cycle_limit(self) -> Optional[int]:
        return self._cycle_limit

    @property
    def infinite(self) -> bool:
        return self._cycle_limit is None

    def cycles(self) -> Iterator[int]:
        if self._cycle_limit is None:
            return itertools.count(1)
        return iter(range(1, self._cycle_limit + 1))

    def __iter__(self) -> Iterator[ScanStep]:
        for cycle in self.cycles():
            for idx, channel in enumerate(self._channels):
                yield ScanStep(cycle=cycle, index=idx, channel=channel)

    def steps_for(self, cycle: int) -> List[ScanStep]:
        return [ScanStep(cycle=cycle, index=i, channel=ch) for i, ch in enumerate(self._channels)]

    @property
    def count(self) -> Optional[int]:
        """Total number of channel visits, or None when unbounded."""

        if self._cycle_limit is None:
            return None
        return len(self._channels) * self._cycle_limit
