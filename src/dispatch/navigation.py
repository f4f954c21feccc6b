from __future__ import annotations

import logging
import re
from typing import Dict, Optional, Sequence
from urllib.parse import parse_qs, urlencode, urlsplit

import requests

from .models import Coordinate, NavigationApp

logger = logging.getLogger(__name__)

HOME_URLS = {
    NavigationApp.GOOGLE: "https://maps.google.com",
    NavigationApp.WAZE: "https://waze.com",
    NavigationApp.MAPY: "https://mapy.cz",
}

_COORD_RE = re.compile(r"(-?\d+\.\d+),\s*(-?\d+\.\d+)")


def generate_navigation_url(
    vehicle_coords: Optional[Coordinate],
    stop_coords: Sequence[Coordinate],
    app: NavigationApp = NavigationApp.GOOGLE,
) -> str:
    """Turn-by-turn link for the driver. The origin is left to the phone's own position."""
    if not stop_coords:
        return HOME_URLS[app]

    destination = stop_coords[-1]

    if app is NavigationApp.WAZE:
        url = f"https://waze.com/ul?ll={destination.as_latlon()}&from={stop_coords[0].as_latlon()}&navigate=yes"
        via = stop_coords[1:-1]
        if via:
            url += "&via=" + "|".join(c.as_latlon() for c in via)
        return url

    if app is NavigationApp.MAPY:
        url = f"https://mapy.cz/zakladni?x={destination.lon}&y={destination.lat}&z=15"
        for i, wp in enumerate(stop_coords[:-1], start=1):
            url += f"&rl{i}={wp.lon}%2C{wp.lat}"
        return url

    params: Dict[str, str] = {"api": "1", "destination": destination.as_latlon()}
    waypoints = stop_coords[:-1]
    if waypoints:
        params["waypoints"] = "|".join(c.as_latlon() for c in waypoints)
    params["travelmode"] = "driving"
    return f"https://www.google.com/maps/dir/?{urlencode(params)}"


def to_waze_url(url: str) -> str:
    """Google directions link → Waze link to the same destination; anything else unchanged."""
    if not url:
        return ""
    parts = urlsplit(url)
    dest = parse_qs(parts.query).get("destination", [None])[0]
    match = _COORD_RE.search(dest) if dest else None
    if match is None:
        match = _COORD_RE.search(parts.path)
    if match is None:
        return url
    return f"https://waze.com/ul?ll={match.group(1)},{match.group(2)}&navigate=yes"


def compress_navigation_url(url: str) -> str:
    """Keep only what a directions link needs so it fits an SMS."""
    parts = urlsplit(url)
    query = parse_qs(parts.query)
    dest = query.get("destination", [None])[0]
    if not dest or not parts.scheme:
        return url
    params = {"api": "1", "destination": dest}
    waypoints = query.get("waypoints", [None])[0]
    if waypoints:
        params["waypoints"] = waypoints
    params["travelmode"] = query.get("travelmode", ["driving"])[0]
    return f"{parts.scheme}://{parts.netloc}{parts.path}?{urlencode(params)}"


class UrlShortener:
    def __init__(self, api_url: str = "https://tinyurl.com/api-create.php",
                 session: Optional[requests.Session] = None, timeout: float = 5.0, enabled: bool = True):
        self.api_url = api_url
        self.session = session or requests.Session()
        self.timeout = timeout
        self.enabled = enabled
        self._cache: Dict[str, str] = {}

    def shorten(self, long_url: str) -> str:
        if not self.enabled or not long_url.startswith("http") or long_url in HOME_URLS.values():
            return long_url
        if long_url in self._cache:
            return self._cache[long_url]
        try:
            response = self.session.get(self.api_url, params={"url": long_url}, timeout=self.timeout)
            short = response.text.strip() if response.ok else ""
        except requests.RequestException as e:
            logger.warning("URL shortening failed, keeping the long URL: %s", e)
            return long_url
        if not short.startswith("http"):
            logger.warning("URL shortener returned %s, keeping the long URL", response.status_code)
            return long_url
        self._cache[long_url] = short
        return short
