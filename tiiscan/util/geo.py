"""Great-circle distance and bearing between receiver and transmitter."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

EARTH_RADIUS_KM = 6371.0


@dataclass(frozen=True)
class GeoPosition:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        if not -90.0 <= float(self.latitude) <= 90.0:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180.0 <= float(self.longitude) <= 180.0:
            raise ValueError(f"longitude out of range: {self.longitude}")

    @classmethod
    def maybe(cls, latitude: Optional[float], longitude: Optional[float]) -> Optional["GeoPosition"]:
        """Build a position when both coordinates are present, else None."""
        if latitude is None or longitude is None:
            return None
        return cls(float(latitude), float(longitude))


@dataclass(frozen=True)
class GeoResult:
    distance_km: float
    azimuth_deg: float


def distance_and_azimuth(
    receiver: Optional[GeoPosition],
    transmitter: Optional[GeoPosition],
) -> Optional[GeoResult]:
    """Haversine distance and initial bearing from receiver to transmitter.

    Uses a spherical Earth of radius 6371 km. The azimuth is measured
    clockwise from true north and normalized to [0, 360). Returns None
    (unavailable) when either position is not set.
    """
    if receiver is None or transmitter is None:
        return None

    lat1 = math.radians(receiver.latitude)
    lat2 = math.radians(transmitter.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(transmitter.longitude - receiver.longitude)

    a = math.sin(dlat / 2.0) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2.0) ** 2
    c = 2.0 * math.asin(min(1.0, math.sqrt(a)))
    distance_km = EARTH_RADIUS_KM * c

    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    azimuth = math.degrees(math.atan2(y, x)) % 360.0
    if azimuth >= 360.0:
        azimuth = 0.0

    return GeoResult(distance_km=distance_km, azimuth_deg=azimuth)
