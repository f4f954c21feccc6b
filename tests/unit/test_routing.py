# tests/unit/test_routing.py
import threading

import numpy as np
import pytest
import requests
import responses

from src.dispatch.models import Coordinate
from src.dispatch.routing import MatrixUnit, OsrmRouter, RouteMatrixBuilder, parallel_map
from src.dispatch.services import ThreadLocalSession

OSRM = "http://osrm.test"
MIKULOV = Coordinate(lat=48.8056, lon=16.6378)
HUSTOPECE = Coordinate(lat=48.9408, lon=16.7376)
BRNO = Coordinate(lat=49.1906, lon=16.6129)


def _ok(distance, duration):
    return {"code": "Ok", "routes": [{"distance": distance, "duration": duration}]}


@pytest.fixture
def osrm():
    return OsrmRouter(OSRM, requests.Session(), timeout=2)


class TestOsrmRouter:

    @responses.activate
    def test_route_url_is_lon_lat(self, osrm):
        url = f"{OSRM}/route/v1/driving/16.6378,48.8056;16.7376,48.9408"
        responses.add(responses.GET, url, json=_ok(18234.5, 1260.0))
        leg = osrm.route([MIKULOV, HUSTOPECE])
        assert leg.distance_meters == pytest.approx(18234.5)
        assert leg.duration_seconds == pytest.approx(1260.0)
        assert "overview=false" in responses.calls[0].request.url

    @responses.activate
    def test_no_route_is_none(self, osrm):
        responses.add(responses.GET, f"{OSRM}/route/v1/driving/16.6378,48.8056;16.7376,48.9408",
                      json={"code": "NoRoute", "routes": []})
        assert osrm.between(MIKULOV, HUSTOPECE) is None

    @responses.activate
    def test_http_failure_is_none(self, osrm):
        responses.add(responses.GET, f"{OSRM}/route/v1/driving/16.6378,48.8056;16.7376,48.9408", status=502)
        assert osrm.between(MIKULOV, HUSTOPECE) is None

    @responses.activate
    def test_timeout_is_none(self, osrm):
        responses.add(responses.GET, f"{OSRM}/route/v1/driving/16.6378,48.8056;16.7376,48.9408",
                      body=requests.exceptions.ReadTimeout("slow"))
        assert osrm.between(MIKULOV, HUSTOPECE) is None

    @responses.activate
    def test_garbled_payload_is_none(self, osrm):
        responses.add(responses.GET, f"{OSRM}/route/v1/driving/16.6378,48.8056;16.7376,48.9408",
                      json={"code": "Ok", "routes": [{"distance": "far"}]})
        assert osrm.between(MIKULOV, HUSTOPECE) is None

    def test_single_point_is_none(self, osrm):
        assert osrm.route([MIKULOV]) is None


class TestMatrix:

    def test_matrix_seconds_and_minutes(self, router):
        builder = RouteMatrixBuilder(router, max_workers=4)
        points = [MIKULOV, HUSTOPECE, BRNO]
        seconds = builder.matrix(points, MatrixUnit.SECONDS)
        minutes = builder.matrix(points, MatrixUnit.MINUTES)
        assert seconds.shape == (3, 3)
        assert np.all(np.diag(seconds) == 0)
        assert seconds[0, 1] == pytest.approx(router.between(MIKULOV, HUSTOPECE).duration_seconds)
        assert minutes[0, 1] == round(seconds[0, 1] / 60)

    def test_failed_legs_get_sentinel(self):
        from conftest import FakeRouter
        builder = RouteMatrixBuilder(FakeRouter(down=True), max_workers=2)
        m_s = builder.matrix([MIKULOV, HUSTOPECE], MatrixUnit.SECONDS)
        m_m = builder.matrix([MIKULOV, HUSTOPECE], MatrixUnit.MINUTES)
        assert m_s[0, 1] == 99999 and m_s[1, 0] == 99999
        assert m_m[0, 1] == 999
        assert m_s[0, 0] == 0


def test_parallel_map_keeps_order_and_bounds_workers():
    active, peak = [0], [0]
    lock = threading.Lock()

    def work(x):
        with lock:
            active[0] += 1
            peak[0] = max(peak[0], active[0])
        try:
            return x * 2
        finally:
            with lock:
                active[0] -= 1

    assert parallel_map(work, list(range(20)), max_workers=3) == [x * 2 for x in range(20)]
    assert peak[0] <= 3


def test_parallel_map_surfaces_first_failure():
    def work(x):
        if x == 2:
            raise LookupError("boom")
        return x

    with pytest.raises(LookupError):
        parallel_map(work, [1, 2, 3], max_workers=2)


def test_each_worker_thread_gets_its_own_session():
    shared = ThreadLocalSession("rapid-dispatch-test")
    barrier = threading.Barrier(3)

    def grab(_):
        barrier.wait(timeout=5)
        return shared.session()

    sessions = parallel_map(grab, [0, 1, 2], max_workers=3)
    assert len({id(s) for s in sessions}) == 3
    assert shared.session() is shared.session()
    assert all(s.headers["User-Agent"] == "rapid-dispatch-test" for s in sessions)


@responses.activate
def test_router_over_thread_local_session_sends_user_agent():
    url = f"{OSRM}/route/v1/driving/16.6378,48.8056;16.7376,48.9408"
    responses.add(responses.GET, url, json=_ok(1000.0, 60.0))
    router = OsrmRouter(OSRM, ThreadLocalSession("rapid-dispatch-test"), timeout=2)
    assert router.route([MIKULOV, HUSTOPECE]).distance_meters == pytest.approx(1000.0)
    assert responses.calls[0].request.headers["User-Agent"] == "rapid-dispatch-test"
