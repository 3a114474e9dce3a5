"""Join decoded TII codes with transmitter database entries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple, Union

from tiiscan.detection.types import TiiCode
from tiiscan.io.channels import ChannelId
from tiiscan.txdb.database import TransmitterDatabase, TxDbSnapshot
from tiiscan.txdb.model import EnsembleIdentity, TransmitterKey, TransmitterRecord
from tiiscan.util.logging import get_logger

log = get_logger(__name__)


@dataclass(frozen=True)
class KnownTransmitter:
    record: TransmitterRecord

    @property
    def locally_known(self) -> bool:
        return self.record.locally_known


@dataclass(frozen=True)
class UnknownTransmitter:
    pass


MatchResult = Union[KnownTransmitter, UnknownTransmitter]


class TransmitterMatcher:
    """Exact-key matcher over a database or a snapshot of one.

    Pass a TxDbSnapshot to pin the view for a whole dwell; a live
    TransmitterDatabase is read through its current snapshot on each call.
    """

    def __init__(self, source: Union[TransmitterDatabase, TxDbSnapshot]):
        self.source = source

    def _candidates(self, key: TransmitterKey) -> Tuple[TransmitterRecord, ...]:
        if isinstance(self.source, TransmitterDatabase):
            return self.source.snapshot().records_for(key)
        return self.source.records_for(key)

    def match(self, ensemble: EnsembleIdentity, channel: ChannelId, code: TiiCode) -> MatchResult:
        key = TransmitterKey(ensemble, channel, int(code.main_id), code.sub_id)
        candidates = self._candidates(key)
        if not candidates:
            return UnknownTransmitter()
        if len(candidates) > 1:
            log.warning(
                "transmitter key %s has %d conflicting records, using the most recent",
                key,
                len(candidates),
                extra={"channel": channel.name},
            )
        best = max(candidates, key=lambda r: r.revision)
        return KnownTransmitter(best)
