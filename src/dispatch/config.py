from __future__ import annotations
import os, json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from .models import Tariff

logger = logging.getLogger(__name__)

def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    v = os.getenv(name)
    if v is None or not v.strip():
        return default
    return v.strip()

def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name, str(default)).strip().lower()
    return v in ("1", "true", "yes", "y", "on")

def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, str(default)))
    except Exception:
        return float(default)

def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return int(default)


@dataclass(frozen=True)
class DispatchSettings:
    osrm_url: str = "https://router.project-osrm.org"
    osrm_timeout_s: float = 10.0
    google_maps_api_key: Optional[str] = None
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    geocode_timeout_s: float = 10.0
    user_agent: str = "rapid-dispatch/0.3 (dispatch console)"
    max_workers: int = 8
    openai_api_key: Optional[str] = None
    assistant_model: str = "gpt-4o-mini"
    assistant_timeout_s: float = 30.0
    shorten_urls: bool = True
    url_shortener_url: str = "https://tinyurl.com/api-create.php"
    shortener_timeout_s: float = 5.0
    timezone: str = "Europe/Prague"

    @property
    def assisted_available(self) -> bool:
        return bool(self.openai_api_key)


def load_settings() -> DispatchSettings:
    return DispatchSettings(
        osrm_url=_env_str("OSRM_URL", DispatchSettings.osrm_url).rstrip("/"),
        osrm_timeout_s=_env_float("OSRM_TIMEOUT_SEC", DispatchSettings.osrm_timeout_s),
        google_maps_api_key=_env_str("GOOGLE_MAPS_API_KEY", None),
        nominatim_url=_env_str("NOMINATIM_URL", DispatchSettings.nominatim_url).rstrip("/"),
        geocode_timeout_s=_env_float("GEOCODE_TIMEOUT_SEC", DispatchSettings.geocode_timeout_s),
        user_agent=_env_str("HTTP_USER_AGENT", DispatchSettings.user_agent),
        max_workers=max(1, _env_int("DISPATCH_MAX_WORKERS", DispatchSettings.max_workers)),
        openai_api_key=_env_str("OPENAI_API_KEY", None),
        assistant_model=_env_str("ASSISTANT_MODEL", DispatchSettings.assistant_model),
        assistant_timeout_s=_env_float("ASSISTANT_TIMEOUT_SEC", DispatchSettings.assistant_timeout_s),
        shorten_urls=_env_bool("SHORTEN_URLS", True),
        url_shortener_url=_env_str("URL_SHORTENER_URL", DispatchSettings.url_shortener_url),
        shortener_timeout_s=_env_float("SHORTENER_TIMEOUT_SEC", DispatchSettings.shortener_timeout_s),
        timezone=_env_str("DISPATCH_TIMEZONE", DispatchSettings.timezone),
    )


# ------------------- Data files -------------------

DEFAULT_TARIFF: Dict[str, Any] = {
    "startingFee": 50,
    "pricePerKmCar": 40,
    "pricePerKmVan": 60,
    "flatRates": [
        {"id": 1, "name": "V rámci Hustopečí", "priceCar": 80, "priceVan": 120, "keyword": "hustopeč"},
        {"id": 2, "name": "V rámci Mikulova", "priceCar": 100, "priceVan": 150, "keyword": "mikulov"},
        {"id": 3, "name": "Zaječí - diskotéka Retro", "priceCar": 200, "priceVan": 300,
         "keyword": "zaječí", "partnerKeyword": "retro"},
    ],
    "timeBasedTariffs": [],
    "vanPassengerThreshold": 4,
}

DEFAULT_FUEL_PRICES: Dict[str, float] = {"DIESEL": 36.5, "PETROL": 38.9}

def dataset_dir() -> Path:
    base = Path(os.getenv("PRIVATE_DATA_DIR", "./data/private")).resolve()
    d = base / "active"
    return d if d.exists() else base

def _load_json(path: Path, default: Any) -> Any:
    try:
        if path.exists():
            return json.loads(path.read_text(encoding="utf-8"))
    except Exception as e:
        logger.warning("Could not read %s, using defaults: %s", path, e)
    return default

def load_tariff() -> Tariff:
    raw = _load_json(dataset_dir() / "tariff.json", DEFAULT_TARIFF)
    try:
        return Tariff.model_validate(raw)
    except ValidationError as e:
        logger.warning("tariff.json is invalid, using the default tariff: %s", e)
        return Tariff.model_validate(DEFAULT_TARIFF)

def load_fuel_prices() -> Dict[str, float]:
    raw = _load_json(dataset_dir() / "fuel_prices.json", DEFAULT_FUEL_PRICES)
    out: Dict[str, float] = {}
    for k, v in (raw or {}).items():
        try:
            out[str(k).upper()] = float(v)
        except (TypeError, ValueError):
            continue
    return out or dict(DEFAULT_FUEL_PRICES)
