#!/usr/bin/env python3

from __future__ import annotations

import argparse
import json
import os
import sys
from dataclasses import dataclass
from importlib import reload
from pathlib import Path
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.parse import urlencode
from urllib.request import Request, urlopen


PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


@dataclass
class HttpResponse:
    status_code: int
    body: Any
    text: str


def _http_json_request(method: str, url: str, payload: dict[str, Any] | None = None, timeout: int = 30) -> HttpResponse:
    data: bytes | None = None
    headers = {"Content-Type": "application/json"}
    if payload is not None:
        data = json.dumps(payload).encode("utf-8")

    request = Request(url=url, method=method, data=data, headers=headers)
    try:
        with urlopen(request, timeout=timeout) as response:
            text = response.read().decode("utf-8")
            try:
                body = json.loads(text) if text else {}
            except json.JSONDecodeError:
                body = {}
            return HttpResponse(status_code=int(response.status), body=body, text=text)
    except HTTPError as exc:
        text = exc.read().decode("utf-8") if exc.fp else ""
        try:
            body = json.loads(text) if text else {}
        except json.JSONDecodeError:
            body = {}
        return HttpResponse(status_code=int(exc.code), body=body, text=text)
    except URLError as exc:
        raise RuntimeError(f"Request failed for {url}: {exc}") from exc


class LiveClient:
    def __init__(self, api_base_url: str, timeout: int):
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout = timeout

    def get(self, path: str, params: dict[str, str] | None = None) -> HttpResponse:
        query = f"?{urlencode(params)}" if params else ""
        return _http_json_request("GET", f"{self.api_base_url}{path}{query}", timeout=self.timeout)

    def post(self, path: str, payload: dict[str, Any]) -> HttpResponse:
        return _http_json_request("POST", f"{self.api_base_url}{path}", payload=payload, timeout=self.timeout)


class InProcessClient:
    def __init__(self):
        from fastapi.testclient import TestClient
        import backend.main as main

        main = reload(main)
        self._client = TestClient(main.app)
        self._client.__enter__()

    def _wrap(self, response) -> HttpResponse:
        try:
            body = response.json()
        except ValueError:
            body = {}
        return HttpResponse(status_code=int(response.status_code), body=body, text=response.text)

    def get(self, path: str, params: dict[str, str] | None = None) -> HttpResponse:
        return self._wrap(self._client.get(path, params=params))

    def post(self, path: str, payload: dict[str, Any]) -> HttpResponse:
        return self._wrap(self._client.post(path, json=payload))


def _require_keys(obj: Any, keys: list[str], label: str) -> list[str]:
    if not isinstance(obj, dict):
        return [f"{label}: expected an object, got {type(obj).__name__}"]
    missing = [key for key in keys if key not in obj]
    if missing:
        return [f"{label}: missing keys {missing}"]
    return []


def _sample_fleet(vehicle_location: str) -> list[dict[str, Any]]:
    return [
        {"id": 1, "name": "Smoke Car", "licensePlate": "SMOKE 1", "type": "CAR", "status": "AVAILABLE",
         "location": vehicle_location, "capacity": 4, "fuelType": "DIESEL", "fuelConsumption": 5.5},
        {"id": 2, "name": "Smoke Van", "licensePlate": "SMOKE 2", "type": "VAN", "status": "AVAILABLE",
         "location": vehicle_location, "capacity": 8},
    ]


def run_smoke(
    *,
    api_base_url: str,
    in_process: bool,
    timeout_seconds: int,
    pickup: str,
    destination: str,
    vehicle_location: str,
    passengers: int,
    language: str,
    optimize: bool,
    output_path: str | None,
) -> int:
    client: LiveClient | InProcessClient
    client = InProcessClient() if in_process else LiveClient(api_base_url=api_base_url, timeout=timeout_seconds)

    reload_resp = client.post("/admin/reload", payload={})
    if reload_resp.status_code not in {200, 204}:
        print(f"FAIL: POST /admin/reload returned {reload_resp.status_code}")
        return 2

    errors: list[str] = []

    geocode_resp = client.get("/dispatch/geocode", params={"address": pickup, "language": language})
    if geocode_resp.status_code != 200:
        errors.append(f"/dispatch/geocode returned {geocode_resp.status_code}: {geocode_resp.text}")
    else:
        errors.extend(_require_keys(geocode_resp.body, ["lat", "lon"], "geocode"))

    assign_payload = {
        "ride": {
            "stops": [pickup, destination],
            "customerName": "Smoke Test",
            "customerPhone": "+420 000 000 000",
            "passengers": passengers,
        },
        "vehicles": _sample_fleet(vehicle_location),
        "language": language,
        "optimize": optimize,
    }
    assign_resp = client.post("/dispatch/assign", payload=assign_payload)
    if assign_resp.status_code != 200:
        errors.append(f"/dispatch/assign returned {assign_resp.status_code}")

    body = assign_resp.body if isinstance(assign_resp.body, dict) else {}
    if "messageKey" in body:
        errors.append(f"/dispatch/assign answered {body['messageKey']}: {body.get('message')}")
    else:
        errors.extend(
            _require_keys(
                body,
                [
                    "vehicle",
                    "eta",
                    "waitTime",
                    "estimatedPrice",
                    "rideDuration",
                    "rideDistance",
                    "sms",
                    "alternatives",
                    "navigationUrl",
                    "vehicleLocationCoords",
                    "stopCoords",
                ],
                "assign",
            )
        )

    summary = {
        "api_base_url": api_base_url,
        "in_process": in_process,
        "route": {"pickup": pickup, "destination": destination, "vehicle_location": vehicle_location},
        "inputs": {"passengers": passengers, "language": language, "optimize": optimize},
        "status_codes": {
            "geocode": geocode_resp.status_code,
            "assign": assign_resp.status_code,
        },
        "recommendation": {
            "vehicle_id": (body.get("vehicle") or {}).get("id"),
            "eta": body.get("eta"),
            "price": body.get("estimatedPrice"),
            "distance_km": body.get("rideDistance"),
        },
        "errors": errors,
    }

    if output_path:
        out = Path(output_path).expanduser().resolve()
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(summary, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"Wrote smoke report: {out}")

    if errors:
        print("FAIL: dispatch smoke checks failed")
        for err in errors:
            print(f"  - {err}")
        return 1

    rec = summary["recommendation"]
    print("PASS: dispatch smoke checks passed")
    print(f"Route: {pickup} -> {destination}")
    print(f"Recommended vehicle {rec['vehicle_id']}: eta={rec['eta']} min, price={rec['price']}, distance={rec['distance_km']} km")
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(description="Smoke test for the dispatch endpoints against live providers")
    parser.add_argument("--api-base-url", default="http://localhost:8000", help="Base URL for live backend")
    parser.add_argument("--in-process", action="store_true", help="Use in-process FastAPI TestClient instead of live HTTP")
    parser.add_argument("--timeout-seconds", type=int, default=60)
    parser.add_argument("--pickup", default="Náměstí, Mikulov")
    parser.add_argument("--destination", default="Dukelské náměstí, Hustopeče")
    parser.add_argument("--vehicle-location", default="Nádražní, Mikulov")
    parser.add_argument("--passengers", type=int, default=1)
    parser.add_argument("--language", default="cs", choices=["cs", "en", "de"])
    parser.add_argument("--optimize", action="store_true")
    parser.add_argument("--output", default="artifacts/smoke/dispatch_report.json")
    args = parser.parse_args()

    code = run_smoke(
        api_base_url=args.api_base_url,
        in_process=bool(args.in_process),
        timeout_seconds=max(1, int(args.timeout_seconds)),
        pickup=args.pickup,
        destination=args.destination,
        vehicle_location=args.vehicle_location,
        passengers=max(1, int(args.passengers)),
        language=args.language,
        optimize=bool(args.optimize),
        output_path=args.output,
    )
    raise SystemExit(code)


if __name__ == "__main__":
    main()
