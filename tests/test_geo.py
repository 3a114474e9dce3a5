import pytest

from tiiscan.util.geo import GeoPosition, distance_and_azimuth


def test_one_degree_east_on_equator() -> None:
    result = distance_and_azimuth(GeoPosition(0.0, 0.0), GeoPosition(0.0, 1.0))
    assert result.distance_km == pytest.approx(111.19, abs=0.05)
    assert result.azimuth_deg == pytest.approx(90.0, abs=1e-6)


@pytest.mark.parametrize(
    "tx,azimuth",
    [((1.0, 0.0), 0.0), ((0.0, -1.0), 270.0), ((-1.0, 0.0), 180.0)],
)
def test_cardinal_bearings(tx, azimuth) -> None:
    result = distance_and_azimuth(GeoPosition(0.0, 0.0), GeoPosition(*tx))
    assert result.azimuth_deg == pytest.approx(azimuth, abs=1e-6)
    assert 0.0 <= result.azimuth_deg < 360.0


def test_known_city_pair() -> None:
    berlin = GeoPosition(52.5200, 13.4050)
    munich = GeoPosition(48.1351, 11.5820)
    result = distance_and_azimuth(berlin, munich)
    assert result.distance_km == pytest.approx(504.4, abs=1.0)
    assert 180.0 < result.azimuth_deg < 210.0


def test_same_position_is_zero_distance() -> None:
    pos = GeoPosition(47.0, 8.0)
    result = distance_and_azimuth(pos, pos)
    assert result.distance_km == 0.0
    assert 0.0 <= result.azimuth_deg < 360.0


def test_missing_position_is_unavailable() -> None:
    pos = GeoPosition(47.0, 8.0)
    assert distance_and_azimuth(None, pos) is None
    assert distance_and_azimuth(pos, None) is None
    assert GeoPosition.maybe(None, 8.0) is None


@pytest.mark.parametrize("lat,lon", [(91.0, 0.0), (-90.5, 0.0), (0.0, 180.5)])
def test_invalid_coordinates_rejected(lat, lon) -> None:
    with pytest.raises(ValueError):
        GeoPosition(lat, lon)
