"""Transmitter database model definitions."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple, Optional

from tiiscan.io.channels import ChannelId
from tiiscan.util.geo import GeoPosition

MAIN_ID_MAX = 69
SUB_ID_MAX = 23


@dataclass(frozen=True, order=True)
class EnsembleIdentity:
    """Extended country code plus ensemble id."""

    ecc: int
    eid: int

    def __post_init__(self) -> None:
        if not 0 <= int(self.ecc) <= 0xFF:
            raise ValueError(f"ECC out of range: {self.ecc}")
        if not 0 <= int(self.eid) <= 0xFFFF:
            raise ValueError(f"EID out of range: {self.eid}")

    @property
    def ecc_hex(self) -> str:
        return f"{self.ecc:02X}"

    @property
    def eid_hex(self) -> str:
        return f"{self.eid:04X}"

    def __str__(self) -> str:
        return f"{self.ecc_hex}.{self.eid_hex}"


def validate_tii_ids(main_id: int, sub_id: Optional[int]) -> None:
    if not 0 <= int(main_id) <= MAIN_ID_MAX:
        raise ValueError(f"TII main id out of range: {main_id}")
    if sub_id is not None and not 0 <= int(sub_id) <= SUB_ID_MAX:
        raise ValueError(f"TII sub id out of range: {sub_id}")


def _sub_sort(sub_id: Optional[int]) -> int:
    return -1 if sub_id is None else int(sub_id)


class TransmitterKey(NamedTuple):
    ensemble: EnsembleIdentity
    channel: ChannelId
    main_id: int
    sub_id: Optional[int]

    def sort_key(self):
        return (self.channel.frequency_khz, self.ensemble.ecc, self.ensemble.eid, self.main_id, _sub_sort(self.sub_id))

    def __str__(self) -> str:
        sub = "-" if self.sub_id is None else f"{self.sub_id}"
        return f"{self.channel.name}/{self.ensemble}/{self.main_id}/{sub}"


@dataclass(frozen=True)
class TransmitterRecord:
    """Persistent transmitter entry.

    Optional physical attributes are None when unavailable, never zero.
    `revision` orders imports/edits and does not take part in equality.
    """

    ensemble: EnsembleIdentity
    channel: ChannelId
    main_id: int
    sub_id: Optional[int]
    label: str
    country: str
    latitude: float
    longitude: float
    altitude_m: Optional[float] = None
    antenna_height_m: Optional[float] = None
    erp_kw: Optional[float] = None
    locally_known: bool = False
    revision: int = field(default=0, compare=False)

    def __post_init__(self) -> None:
        validate_tii_ids(self.main_id, self.sub_id)
        # Raises on out-of-range coordinates
        GeoPosition(float(self.latitude), float(self.longitude))

    @property
    def key(self) -> TransmitterKey:
        return TransmitterKey(self.ensemble, self.channel, int(self.main_id), self.sub_id)

    @property
    def position(self) -> GeoPosition:
        return GeoPosition(float(self.latitude), float(self.longitude))
