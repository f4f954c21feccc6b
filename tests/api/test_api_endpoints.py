# tests/api/test_api_endpoints.py
import pytest

pytestmark = pytest.mark.api

RIDE = {
    "stops": ["Náměstí, Mikulov", "Dukelské náměstí, Hustopeče"],
    "customerName": "Jana Nováková",
    "customerPhone": "+420 777 123 456",
    "passengers": 1,
    "pickupTime": "ihned",
}
VEHICLES = [
    {"id": 1, "name": "Škoda Octavia", "licensePlate": "1BA 1111", "type": "CAR", "status": "AVAILABLE",
     "location": "Nádražní, Mikulov", "capacity": 4, "driverId": 11, "fuelType": "DIESEL", "fuelConsumption": 5.5},
    {"id": 2, "name": "VW Transporter", "licensePlate": "2BB 2222", "type": "VAN", "status": "BUSY",
     "location": "Husova, Mikulov", "capacity": 6, "freeAt": 4102444800000},
]


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["osrm"] == "http://osrm.test"
    assert body["assisted_available"] is False
    assert body["tariff_loaded"] is True


def test_reload_reports_dataset(client, _env_test_data):
    r = client.post("/admin/reload")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "ok"
    assert body["reloaded"]["dataset_dir"] == str(_env_test_data.resolve())
    assert body["reloaded"]["flat_rates"] == 3


def test_tariff(client):
    r = client.get("/dispatch/tariff")
    assert r.status_code == 200
    body = r.json()
    assert body["startingFee"] == 50
    assert [f["name"] for f in body["flatRates"]][1] == "V rámci Mikulova"


def test_assign(client):
    r = client.post("/dispatch/assign", json={"ride": RIDE, "vehicles": VEHICLES, "driverNames": {"11": "Petr"}})
    assert r.status_code == 200
    body = r.json()
    assert body["vehicle"]["id"] == 1
    assert body["waitTime"] == 0
    assert [a["vehicle"]["id"] for a in body["alternatives"]] == [2]
    assert body["vehicleLocationCoords"] == {"lat": 48.807, "lon": 16.642}
    assert body["sms"].startswith("Trasa: ")
    assert "Petr" in body["customerSms"]


def test_assign_business_error_is_200(client):
    ride = dict(RIDE, passengers=7)
    r = client.post("/dispatch/assign", json={"ride": ride, "vehicles": VEHICLES})
    assert r.status_code == 200
    assert r.json() == {"messageKey": "error.insufficientCapacity", "message": "7"}


def test_assign_with_tariff_override_and_waze(client):
    tariff = {"startingFee": 0, "pricePerKmCar": 10, "pricePerKmVan": 20, "flatRates": [], "timeBasedTariffs": []}
    r = client.post("/dispatch/assign", json={
        "ride": RIDE, "vehicles": VEHICLES, "tariff": tariff, "language": "en", "navApp": "waze",
    })
    body = r.json()
    assert body["estimatedPrice"] == round(body["rideDistance"] * 10)
    assert body["navigationUrl"].startswith("https://waze.com/ul?")
    assert body["sms"].startswith("Route: ")


def test_assign_rejects_single_stop(client):
    r = client.post("/dispatch/assign", json={"ride": dict(RIDE, stops=["Mikulov"]), "vehicles": VEHICLES})
    assert r.status_code == 422


def test_price_flat_rate(client):
    r = client.post("/dispatch/price", json={
        "pickup": "Náměstí, Mikulov", "destination": "Husova, Mikulov", "distanceKm": 42, "vehicleType": "van",
    })
    assert r.status_code == 200
    assert r.json() == {"price": 150}


def test_price_per_km(client):
    r = client.post("/dispatch/price", json={
        "pickup": "Mikulov", "destination": "Brno", "distanceKm": 10, "vehicleType": "CAR", "passengers": 2,
    })
    assert r.json() == {"price": 450}


def test_geocode(client):
    r = client.get("/dispatch/geocode", params={"address": "Velké Pavlovice"})
    assert r.status_code == 200
    assert r.json() == {"lat": 48.905, "lon": 16.816}


def test_geocode_unknown_is_404(client):
    r = client.get("/dispatch/geocode", params={"address": "Atlantida"})
    assert r.status_code == 404
    assert "Atlantida" in r.json()["detail"]


def test_suggest(client):
    r = client.get("/dispatch/suggest", params={"q": "mikulov"})
    assert r.status_code == 200
    texts = [s["text"] for s in r.json()]
    assert "Náměstí, Mikulov" in texts and "Husova, Mikulov" in texts
    assert client.get("/dispatch/suggest", params={"q": "mi"}).json() == []


def test_sms_preview(client):
    r = client.post("/dispatch/sms", json={"ride": dict(RIDE, notes="Kočárek"), "language": "de"})
    assert r.status_code == 200
    lines = r.json()["sms"].split("\n")
    assert lines[2] == "Abholung: SOFORT"
    assert lines[3] == "Notiz: Kočárek"


def test_services_missing_is_503(client, app):
    app.STATE["services"] = None
    r = client.post("/dispatch/price", json={"pickup": "a", "destination": "b", "distanceKm": 1})
    assert r.status_code == 503


def test_mileage_summary(client):
    r = client.post("/dispatch/mileage/summary", json={
        "rideLogs": [
            {"vehicleId": 1, "distance": 42, "fuelCost": 84.5, "status": "COMPLETED", "rideType": "BUSINESS"},
            {"vehicleId": 2, "distance": 8, "fuelCost": 20, "status": "COMPLETED", "rideType": "PRIVATE"},
        ],
        "vehicles": VEHICLES,
    })
    assert r.status_code == 200
    body = r.json()
    assert body["totalBusinessDistance"] == 42
    assert body["totalPrivateDistance"] == 8
    assert [v["vehicleId"] for v in body["vehicleSummaries"]] == [1, 2]
    assert body["vehicleSummaries"][0]["fuelCost"] == 84.5


def test_service_check(client):
    van = dict(VEHICLES[1], mileage=131500, serviceInterval=30000, lastServiceMileage=100000)
    r = client.post("/dispatch/mileage/service-check", json=[VEHICLES[0], van])
    assert r.status_code == 200
    first, second = r.json()
    assert first["required"] is False
    assert second == {"vehicleId": 2, "required": True, "kmOverdue": 1500, "message": "Servis po termínu o 1500 km"}
