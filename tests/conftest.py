# tests/conftest.py
import json
from datetime import datetime
from importlib import reload
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient

from src.dispatch.config import DEFAULT_FUEL_PRICES, DEFAULT_TARIFF, DispatchSettings
from src.dispatch.errors import AssistantError
from src.dispatch.geo import GeoResolver
from src.dispatch.models import AddressSuggestion, Coordinate, RideRequest, RouteLeg, Tariff, Vehicle
from src.dispatch.navigation import UrlShortener
from src.dispatch.routing import RouteMatrixBuilder
from src.dispatch.services import DispatchServices

PRAGUE = ZoneInfo("Europe/Prague")
NOW = datetime(2025, 6, 12, 14, 0, tzinfo=PRAGUE)
NOW_MS = int(NOW.timestamp() * 1000)

# Everything sits inside South Moravia so candidate selection never skips a result.
PLACES: Dict[str, Coordinate] = {
    "Náměstí, Mikulov": Coordinate(lat=48.8056, lon=16.6378),
    "Dukelské náměstí, Hustopeče": Coordinate(lat=48.9408, lon=16.7376),
    "Brno, Hlavní nádraží": Coordinate(lat=49.1906, lon=16.6129),
    "Velké Pavlovice": Coordinate(lat=48.9050, lon=16.8160),
    "Zaječí, diskotéka Retro": Coordinate(lat=48.8730, lon=16.7670),
    "Nádražní, Mikulov": Coordinate(lat=48.8070, lon=16.6420),
    "Husova, Mikulov": Coordinate(lat=48.8100, lon=16.6350),
    "Břeclav, nádraží": Coordinate(lat=48.7530, lon=16.8830),
}


@pytest.fixture(autouse=True)
def _env_test_data(monkeypatch, tmp_path: Path):
    """
    Isolate every test from the developer's environment and point the
    data loaders at a temp dir holding the default tariff.
    """
    data_root = tmp_path / "data"
    data_root.mkdir(parents=True, exist_ok=True)
    (data_root / "tariff.json").write_text(json.dumps(DEFAULT_TARIFF, ensure_ascii=False), encoding="utf-8")
    (data_root / "fuel_prices.json").write_text(json.dumps(DEFAULT_FUEL_PRICES), encoding="utf-8")

    monkeypatch.setenv("PRIVATE_DATA_DIR", str(data_root))
    for name in ("GOOGLE_MAPS_API_KEY", "OPENAI_API_KEY", "DISPATCH_MAX_WORKERS", "ASSISTANT_MODEL"):
        monkeypatch.delenv(name, raising=False)

    # nothing in the suite may reach these
    monkeypatch.setenv("OSRM_URL", "http://osrm.test")
    monkeypatch.setenv("NOMINATIM_URL", "http://nominatim.test")
    monkeypatch.setenv("SHORTEN_URLS", "0")
    yield data_root


# ------------------- Fake providers -------------------

class FakeGeocoder:
    """Text geocoder, detail lookup and suggester over a fixed address book."""

    name = "fake"

    def __init__(self, places: Optional[Dict[str, Coordinate]] = None):
        self.places = dict(PLACES if places is None else places)
        self.calls: List[str] = []

    def search(self, text: str, language: str) -> List[Coordinate]:
        self.calls.append(text)
        coord = self.places.get(text)
        return [coord] if coord is not None else []

    def accepts(self, place_id: str) -> bool:
        return False

    def detail(self, place_id: str, language: str) -> Optional[Coordinate]:
        return None

    def suggest(self, query: str, language: str) -> List[AddressSuggestion]:
        q = query.lower()
        return [AddressSuggestion(text=k) for k in self.places if q in k.lower()]


class FakeRouter:
    """
    Deterministic router: 0.01° of Manhattan distance is 1 km and 1 minute.
    ``slow`` adds seconds to any leg starting at a given coordinate,
    ``down`` makes every call fail.
    """

    def __init__(self, down: bool = False, slow: Optional[Dict[Tuple[float, float], float]] = None):
        self.down = down
        self.slow = dict(slow or {})
        self.calls: List[Tuple[Coordinate, ...]] = []

    def _leg(self, a: Coordinate, b: Coordinate) -> Tuple[float, float]:
        deg = abs(a.lat - b.lat) + abs(a.lon - b.lon)
        seconds = deg * 6000.0 + self.slow.get((a.lat, a.lon), 0.0)
        return deg * 100000.0, seconds

    def route(self, points: Sequence[Coordinate]) -> Optional[RouteLeg]:
        self.calls.append(tuple(points))
        if self.down or len(points) < 2:
            return None
        meters = seconds = 0.0
        for a, b in zip(points, points[1:]):
            m, s = self._leg(a, b)
            meters += m
            seconds += s
        return RouteLeg(distance_meters=meters, duration_seconds=seconds)

    def between(self, origin: Coordinate, destination: Coordinate) -> Optional[RouteLeg]:
        return self.route([origin, destination])


class FakeAssistant:
    def __init__(self, order: Optional[List[int]] = None, vehicle_id: Optional[int] = None,
                 fail: bool = False):
        self.order = order
        self.vehicle_id = vehicle_id
        self.fail = fail
        self.prompts: List[str] = []

    def order_stops(self, matrix_minutes, stops):
        self.prompts.append("order_stops")
        if self.fail or self.order is None:
            raise AssistantError("assistant unavailable")
        return list(self.order)

    def choose_vehicle(self, candidates, passengers):
        self.prompts.append("choose_vehicle")
        if self.fail or self.vehicle_id is None:
            raise AssistantError("assistant unavailable")
        return self.vehicle_id


def make_services(
    geocoder: Optional[FakeGeocoder] = None,
    router: Optional[FakeRouter] = None,
    assistant: Optional[FakeAssistant] = None,
) -> DispatchServices:
    geocoder = geocoder or FakeGeocoder()
    settings = DispatchSettings(max_workers=4, openai_api_key="sk-test" if assistant else None)
    return DispatchServices(
        settings=settings,
        geo=GeoResolver([geocoder], place_details=[geocoder], suggesters=[geocoder]),
        matrices=RouteMatrixBuilder(router or FakeRouter(), max_workers=4),
        shortener=UrlShortener(enabled=False),
        assistant=assistant,
        fuel_prices=dict(DEFAULT_FUEL_PRICES),
    )


@pytest.fixture
def geocoder():
    return FakeGeocoder()


@pytest.fixture
def router():
    return FakeRouter()


@pytest.fixture
def services(geocoder, router):
    return make_services(geocoder, router)


@pytest.fixture
def tariff() -> Tariff:
    return Tariff.model_validate(DEFAULT_TARIFF)


@pytest.fixture
def ride() -> RideRequest:
    return RideRequest(
        stops=["Náměstí, Mikulov", "Dukelské náměstí, Hustopeče"],
        customer_name="Jana Nováková",
        customer_phone="+420 777 123 456",
        passengers=1,
    )


@pytest.fixture
def fleet() -> List[Vehicle]:
    return [
        Vehicle(id=1, name="Škoda Octavia", license_plate="1BA 1111", type="CAR", status="AVAILABLE",
                location="Nádražní, Mikulov", capacity=4, driver_id=11, fuel_type="DIESEL", fuel_consumption=5.5),
        Vehicle(id=2, name="VW Transporter", license_plate="2BB 2222", type="VAN", status="BUSY",
                location="Husova, Mikulov", capacity=6, driver_id=12, free_at=NOW_MS + 10 * 60000),
    ]


# ------------------- App / client -------------------

@pytest.fixture
def app(_env_test_data):
    # Import AFTER env vars/files so startup readers find our temp data
    import backend.main as main
    main = reload(main)
    return main


@pytest.fixture
def client(app):
    with TestClient(app.app) as c:
        r = c.post("/admin/reload")
        assert r.status_code == 200, f"/admin/reload failed: {r.status_code} {r.text}"
        # swap the network-backed services for in-process fakes
        app.STATE["services"] = make_services()
        yield c
