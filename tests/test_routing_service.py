import math

import httpx
import pytest

from batch_engine.models.domain import Coordinates
from batch_engine.services.cache import TTLCache
from batch_engine.services.routing.matrix import DistanceProvider, haversine_matrix, matrix_cache_key
from batch_engine.services.routing.osrm_client import OSRMClient, OSRMError, check_health

COORDS = [Coordinates(40.7506, -73.9971), Coordinates(40.7157, -73.9860), Coordinates(40.7320, -73.9875)]

TABLE = {
    "code": "Ok",
    "durations": [
        [0, 600, 900],
        [600, 0, 300],
        [900, None, 0],
    ],
    "distances": [
        [0, 1000, 1500],
        [1000, 0, 500],
        [1500, None, 0],
    ],
}

ROUTE = {
    "code": "Ok",
    "routes": [
        {
            "distance": 2500.0,
            "duration": 900.0,
            "geometry": "abc~polyline",
            "legs": [
                {
                    "distance": 1000.0,
                    "duration": 600.0,
                    "steps": [
                        {"distance": 1000.0, "duration": 600.0, "name": "Broadway", "maneuver": {"type": "depart"}},
                    ],
                },
                {"distance": 1500.0, "duration": 300.0, "steps": []},
            ],
        }
    ],
}


def _client(handler, **kwargs) -> OSRMClient:
    return OSRMClient(
        base_url="https://osrm.test",
        backoff_seconds=0,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class DummyOSRM:
    def __init__(self, table=None, route=None, error: Exception | None = None) -> None:
        self._table = table or TABLE
        self._route = route or ROUTE
        self.error = error
        self.table_calls = 0

    def table(self, coordinates):
        self.table_calls += 1
        if self.error:
            raise self.error
        return self._table

    def route(self, coordinates):
        if self.error:
            raise self.error
        return self._route


def test_osrm_table_request_shape():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["annotations"] = request.url.params["annotations"]
        return httpx.Response(200, json=TABLE)

    data = _client(handler).table(COORDS[:2])

    assert data["durations"][0][1] == 600
    assert seen["path"] == "/table/v1/driving/-73.997100,40.750600;-73.986000,40.715700"
    assert seen["annotations"] == "duration,distance"


def test_osrm_retries_server_errors_then_succeeds():
    responses = iter([httpx.Response(503), httpx.Response(200, json=TABLE)])

    data = _client(lambda request: next(responses), max_retries=1).table(COORDS)

    assert data["code"] == "Ok"


def test_osrm_client_errors_fail_fast():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"code": "InvalidQuery"})

    with pytest.raises(httpx.HTTPStatusError):
        _client(handler, max_retries=3).table(COORDS)
    assert len(calls) == 1


def test_osrm_non_ok_code_raises():
    with pytest.raises(OSRMError):
        _client(lambda request: httpx.Response(200, json={"code": "NoRoute"})).route(COORDS)


def test_check_health_reports_unreachable_service():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert check_health("https://osrm.test", transport=httpx.MockTransport(handler)) is False
    assert check_health("https://osrm.test", transport=httpx.MockTransport(lambda r: httpx.Response(200, json=TABLE)))


def test_matrix_converts_units_and_marks_unreachable_pairs():
    provider = DistanceProvider(TTLCache("matrix"), DummyOSRM())

    matrix = provider.matrix(COORDS)

    assert matrix.durations[0][1] == pytest.approx(10.0)
    assert matrix.distances[0][2] == pytest.approx(1.5)
    assert math.isinf(matrix.distances[2][1])


def test_matrix_is_cached_by_rounded_coordinates():
    osrm = DummyOSRM()
    cache = TTLCache("matrix")
    provider = DistanceProvider(cache, osrm)

    provider.matrix(COORDS)
    nudged = [Coordinates(c.latitude + 0.00001, c.longitude) for c in COORDS]
    provider.matrix(nudged)

    assert osrm.table_calls == 1
    assert matrix_cache_key(COORDS) == matrix_cache_key(nudged)
    assert matrix_cache_key(COORDS).startswith("osrm:matrix:")


def test_matrix_failure_returns_none_and_is_not_cached():
    cache = TTLCache("matrix")
    provider = DistanceProvider(cache, DummyOSRM(error=httpx.ConnectTimeout("timeout")))

    assert provider.matrix(COORDS) is None
    assert cache.size() == 0


def test_matrix_requires_two_coordinates_and_a_client():
    assert DistanceProvider(TTLCache("matrix"), DummyOSRM()).matrix(COORDS[:1]) is None
    assert DistanceProvider(TTLCache("matrix"), None).matrix(COORDS) is None


def test_route_converts_legs_and_steps():
    route = DistanceProvider(TTLCache("matrix"), DummyOSRM()).route(COORDS)

    assert route.distance_km == pytest.approx(2.5)
    assert route.duration_min == pytest.approx(15.0)
    assert route.geometry == "abc~polyline"
    assert [leg.duration_min for leg in route.legs] == pytest.approx([10.0, 5.0])
    assert route.legs[0].steps[0].instruction == "depart Broadway"


def test_route_failure_returns_none():
    provider = DistanceProvider(TTLCache("matrix"), DummyOSRM(error=OSRMError("NoRoute")))

    assert provider.route(COORDS) is None


def test_haversine_matrix_is_symmetric_with_zero_diagonal():
    matrix = haversine_matrix(COORDS, average_speed_kmh=40)

    for i in range(3):
        assert matrix.distances[i][i] == pytest.approx(0.0)
        for j in range(3):
            assert matrix.distances[i][j] == pytest.approx(matrix.distances[j][i])
    assert matrix.durations[0][1] == pytest.approx(matrix.distances[0][1] / 40 * 60)
