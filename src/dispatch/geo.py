"""
Address → coordinate resolution.

Providers are tried in order and the first one producing a coordinate wins:
place detail (when the address carries a ``|placeId`` suffix), the primary
text geocoder, the secondary geocoder, and finally the same chain again on
shortened variants of the address (first comma segment, then the bare city).

When a provider returns several candidates the one inside the home region
wins, then one inside the home country, then simply the first.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple, TypeVar

import requests

from .errors import GeocodingError, ProviderError
from .models import AddressSuggestion, Coordinate

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SUGGESTIONS = 8
MIN_SUGGEST_QUERY = 3


@dataclass(frozen=True)
class BoundingBox:
    lon_min: float
    lat_min: float
    lon_max: float
    lat_max: float

    def contains(self, c: Coordinate) -> bool:
        return self.lon_min <= c.lon <= self.lon_max and self.lat_min <= c.lat <= self.lat_max

    def as_viewbox(self) -> str:
        return f"{self.lon_min},{self.lat_min},{self.lon_max},{self.lat_max}"

    def as_google_bounds(self) -> str:
        return f"{self.lat_min},{self.lon_min}|{self.lat_max},{self.lon_max}"


# South Moravia, where the fleet operates
HOME_REGION = BoundingBox(16.3, 48.7, 17.2, 49.3)
HOME_COUNTRY = BoundingBox(12.0, 48.5, 18.9, 51.1)
# CZ plus the neighbouring parts of AT/SK/DE/PL rides occasionally go to
SEARCH_VIEWBOX = BoundingBox(12.0, 46.0, 24.0, 52.0)


# ------------------- Caches -------------------

class GeocodeCache:
    """Append-only address+language → coordinate map, lives as long as the process."""

    def __init__(self) -> None:
        self._data: Dict[str, Coordinate] = {}

    @staticmethod
    def key(address: str, language: str) -> str:
        return f"{' '.join(address.split()).lower()}_{language}"

    def get(self, address: str, language: str) -> Optional[Coordinate]:
        return self._data.get(self.key(address, language))

    def put(self, address: str, language: str, coord: Coordinate) -> None:
        self._data[self.key(address, language)] = coord

    def clear(self) -> None:
        self._data.clear()

    def __len__(self) -> int:
        return len(self._data)


class SuggestionCache:
    def __init__(self) -> None:
        self._data: Dict[str, List[AddressSuggestion]] = {}

    def get(self, query: str, language: str) -> Optional[List[AddressSuggestion]]:
        return self._data.get(f"{query.lower()}_{language}")

    def put(self, query: str, language: str, items: List[AddressSuggestion]) -> None:
        self._data[f"{query.lower()}_{language}"] = list(items)

    def clear(self) -> None:
        self._data.clear()


# ------------------- Helpers -------------------

def split_place_id(address: str) -> Tuple[str, Optional[str]]:
    """'Náměstí 1, Mikulov|ChIJ…' → ('Náměstí 1, Mikulov', 'ChIJ…')"""
    text, sep, tail = address.partition("|")
    place_id = tail.strip() if sep else ""
    return text.strip(), (place_id or None)


def select_candidate(
    candidates: Iterable[Coordinate],
    region: BoundingBox = HOME_REGION,
    country: BoundingBox = HOME_COUNTRY,
) -> Optional[Coordinate]:
    items = list(candidates)
    if not items:
        return None
    for c in items:
        if region.contains(c):
            return c
    for c in items:
        if country.contains(c):
            return c
    return items[0]


_POSTCODE_RE = re.compile(r"\b\d{3}\s?\d{2}\b")
_COUNTRY_NAMES = {
    "česko", "česká republika", "czechia", "czech republic", "cz",
    "rakousko", "austria", "österreich", "slovensko", "slovakia",
}

def _city_from_tail(parts: List[str]) -> Optional[str]:
    for part in reversed(parts[1:]):
        cleaned = _POSTCODE_RE.sub("", part).strip()
        if cleaned and not cleaned.isdigit() and cleaned.lower() not in _COUNTRY_NAMES:
            return cleaned
    return None

def _city_from_head(parts: List[str]) -> Optional[str]:
    words = parts[0].split() if parts else []
    if len(words) > 1 and words[-1][:1].isupper():
        return words[-1]
    return None

def shortened_queries(address: str) -> List[str]:
    """Less specific variants of an address, most specific first."""
    parts = [p.strip() for p in address.split(",") if p.strip()]
    out: List[str] = []
    if len(parts) > 1:
        out.append(parts[0])
    city = _city_from_tail(parts) or _city_from_head(parts)
    if city and city not in out and city != address.strip():
        out.append(city)
    return out


def first_success(attempts: Sequence[Tuple[str, Callable[[], Optional[T]]]]) -> Optional[T]:
    """Run named attempts in order; the first non-empty result wins, failures are logged and skipped."""
    for name, attempt in attempts:
        try:
            result = attempt()
        except (ProviderError, requests.RequestException, ValueError, KeyError, TypeError) as e:
            logger.warning("Lookup via %s failed: %s", name, e)
            continue
        if result:
            return result
        logger.debug("Lookup via %s returned nothing", name)
    return None


# ------------------- Providers -------------------

class TextGeocoder(Protocol):
    name: str

    def search(self, text: str, language: str) -> List[Coordinate]: ...


class PlaceDetailLookup(Protocol):
    name: str

    def accepts(self, place_id: str) -> bool: ...

    def detail(self, place_id: str, language: str) -> Optional[Coordinate]: ...


class Suggester(Protocol):
    name: str

    def suggest(self, query: str, language: str) -> List[AddressSuggestion]: ...


def _get_json(session: requests.Session, provider: str, url: str, params: Dict[str, str], timeout: float):
    response = session.get(url, params=params, timeout=timeout)
    if response.status_code != 200:
        raise ProviderError(provider, f"HTTP {response.status_code}")
    return response.json()


class GoogleMapsClient:
    """Google Geocoding, Place Details and Places Autocomplete behind one key."""

    name = "google"
    BASE = "https://maps.googleapis.com/maps/api"

    def __init__(self, api_key: str, session: requests.Session, timeout: float = 10.0,
                 region: str = "cz", bounds: BoundingBox = HOME_REGION):
        self.api_key = api_key
        self.session = session
        self.timeout = timeout
        self.region = region
        self.bounds = bounds

    def _call(self, path: str, params: Dict[str, str]) -> dict:
        data = _get_json(self.session, self.name, f"{self.BASE}/{path}", {**params, "key": self.api_key}, self.timeout)
        status = data.get("status")
        if status == "ZERO_RESULTS":
            return {}
        if status != "OK":
            raise ProviderError(self.name, f"{status}: {data.get('error_message', '')}".strip(": "))
        return data

    def search(self, text: str, language: str) -> List[Coordinate]:
        data = self._call("geocode/json", {
            "address": text,
            "language": language,
            "region": self.region,
            "bounds": self.bounds.as_google_bounds(),
        })
        return [
            Coordinate(lat=r["geometry"]["location"]["lat"], lon=r["geometry"]["location"]["lng"])
            for r in data.get("results", [])
        ]

    def accepts(self, place_id: str) -> bool:
        return not place_id.isdigit()

    def detail(self, place_id: str, language: str) -> Optional[Coordinate]:
        data = self._call("place/details/json", {"place_id": place_id, "fields": "geometry", "language": language})
        loc = (data.get("result") or {}).get("geometry", {}).get("location")
        return Coordinate(lat=loc["lat"], lon=loc["lng"]) if loc else None

    def suggest(self, query: str, language: str) -> List[AddressSuggestion]:
        data = self._call("place/autocomplete/json", {
            "input": query,
            "language": language,
            "region": self.region,
            "bounds": self.bounds.as_google_bounds(),
        })
        return [
            AddressSuggestion(text=p["description"], place_id=p.get("place_id"))
            for p in data.get("predictions", [])
            if p.get("description", "").strip()
        ]


class NominatimClient:
    name = "nominatim"

    def __init__(self, base_url: str, session: requests.Session, timeout: float = 10.0,
                 countrycodes: str = "cz", viewbox: BoundingBox = SEARCH_VIEWBOX, limit: int = 10):
        self.base_url = base_url.rstrip("/")
        self.session = session
        self.timeout = timeout
        self.countrycodes = countrycodes
        self.viewbox = viewbox
        self.limit = limit

    def _search(self, text: str, language: str, limit: int) -> list:
        data = _get_json(self.session, self.name, f"{self.base_url}/search", {
            "format": "json",
            "q": text,
            "limit": str(limit),
            "countrycodes": self.countrycodes,
            "bounded": "1",
            "viewbox": self.viewbox.as_viewbox(),
            "accept-language": language,
        }, self.timeout)
        if not isinstance(data, list):
            raise ProviderError(self.name, "unexpected payload")
        return data

    def search(self, text: str, language: str) -> List[Coordinate]:
        return [Coordinate(lat=float(r["lat"]), lon=float(r["lon"])) for r in self._search(text, language, self.limit)]

    def accepts(self, place_id: str) -> bool:
        return place_id.isdigit()

    def detail(self, place_id: str, language: str) -> Optional[Coordinate]:
        data = _get_json(self.session, self.name, f"{self.base_url}/details", {
            "place_id": place_id, "format": "json", "accept-language": language,
        }, self.timeout)
        coords = (data.get("centroid") or {}).get("coordinates")
        return Coordinate(lat=float(coords[1]), lon=float(coords[0])) if coords else None

    def suggest(self, query: str, language: str) -> List[AddressSuggestion]:
        return [
            AddressSuggestion(text=r["display_name"], place_id=str(r["place_id"]) if r.get("place_id") is not None else None)
            for r in self._search(query, language, MAX_SUGGESTIONS)
            if r.get("display_name")
        ]


# ------------------- Resolver -------------------

class GeoResolver:
    def __init__(
        self,
        geocoders: Sequence[TextGeocoder],
        place_details: Sequence[PlaceDetailLookup] = (),
        suggesters: Sequence[Suggester] = (),
        cache: Optional[GeocodeCache] = None,
        suggestion_cache: Optional[SuggestionCache] = None,
        region: BoundingBox = HOME_REGION,
        country: BoundingBox = HOME_COUNTRY,
        max_depth: int = 2,
    ):
        self.geocoders = list(geocoders)
        self.place_details = list(place_details)
        self.suggesters = list(suggesters)
        self.cache = cache if cache is not None else GeocodeCache()
        self.suggestion_cache = suggestion_cache if suggestion_cache is not None else SuggestionCache()
        self.region = region
        self.country = country
        self.max_depth = max_depth

    def resolve(self, address: str, language: str) -> Coordinate:
        text, place_id = split_place_id(address)
        if text != address.strip():
            logger.debug("Stripped place id from address %r", address)

        # a bare "|placeId" has no text to key on
        cache_key = text if text.strip() or not place_id else f"place:{place_id}"
        cached = self.cache.get(cache_key, language)
        if cached is not None:
            return cached

        coord = self._lookup(text, place_id, language, depth=0, seen=set())
        if coord is None:
            raise GeocodingError(text or address)
        self.cache.put(cache_key, language, coord)
        return coord

    def _attempts(self, text: str, place_id: Optional[str], language: str):
        attempts = []
        if place_id:
            for p in self.place_details:
                if p.accepts(place_id):
                    attempts.append((f"{p.name}:detail", lambda p=p: p.detail(place_id, language)))
        for g in self.geocoders:
            attempts.append((
                g.name,
                lambda g=g: select_candidate(g.search(text, language), self.region, self.country),
            ))
        return attempts

    def _lookup(self, text: str, place_id: Optional[str], language: str, depth: int, seen: set) -> Optional[Coordinate]:
        seen.add(text)
        coord = first_success(self._attempts(text, place_id, language)) if text or place_id else None
        if coord is not None or depth >= self.max_depth:
            return coord
        for variant in shortened_queries(text):
            if variant in seen:
                continue
            logger.info("Retrying geocode of %r as %r", text, variant)
            coord = self._lookup(variant, None, language, depth + 1, seen)
            if coord is not None:
                return coord
        return None

    def suggest(self, query: str, language: str) -> List[AddressSuggestion]:
        query = (query or "").strip()
        if len(query) < MIN_SUGGEST_QUERY:
            return []
        cached = self.suggestion_cache.get(query, language)
        if cached is not None:
            return cached
        found = first_success([(s.name, lambda s=s: s.suggest(query, language)) for s in self.suggesters])
        if not found:
            return []
        items = found[:MAX_SUGGESTIONS]
        self.suggestion_cache.put(query, language, items)
        return items
