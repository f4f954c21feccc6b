from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional
from zoneinfo import ZoneInfo

import requests

from .assistant import DispatchAssistant
from .config import DispatchSettings, load_fuel_prices, load_settings
from .geo import GeocodeCache, GeoResolver, GoogleMapsClient, NominatimClient, SuggestionCache
from .navigation import UrlShortener
from .routing import OsrmRouter, RouteMatrixBuilder

logger = logging.getLogger(__name__)


@dataclass
class DispatchServices:
    """Everything an assignment call talks to. Built once, shared across calls."""
    settings: DispatchSettings
    geo: GeoResolver
    matrices: RouteMatrixBuilder
    shortener: UrlShortener
    assistant: Optional[DispatchAssistant] = None
    fuel_prices: Dict[str, float] = field(default_factory=dict)

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.settings.timezone)


class ThreadLocalSession:
    """One requests.Session per thread, so parallel_map workers never share one."""

    def __init__(self, user_agent: str):
        self.user_agent = user_agent
        self._local = threading.local()

    def session(self) -> requests.Session:
        s = getattr(self._local, "session", None)
        if s is None:
            s = requests.Session()
            s.headers.update({"User-Agent": self.user_agent})
            self._local.session = s
        return s

    def get(self, url: str, **kwargs) -> requests.Response:
        return self.session().get(url, **kwargs)


def build_services(
    settings: Optional[DispatchSettings] = None,
    geocode_cache: Optional[GeocodeCache] = None,
    suggestion_cache: Optional[SuggestionCache] = None,
) -> DispatchServices:
    settings = settings or load_settings()
    session = ThreadLocalSession(settings.user_agent)

    nominatim = NominatimClient(settings.nominatim_url, session, timeout=settings.geocode_timeout_s)
    geocoders, details, suggesters = [], [], []
    if settings.google_maps_api_key:
        google = GoogleMapsClient(settings.google_maps_api_key, session, timeout=settings.geocode_timeout_s)
        geocoders.append(google)
        details.append(google)
        suggesters.append(google)
    else:
        logger.warning("GOOGLE_MAPS_API_KEY not configured, geocoding with Nominatim only")
    geocoders.append(nominatim)
    details.append(nominatim)
    suggesters.append(nominatim)

    geo = GeoResolver(
        geocoders,
        place_details=details,
        suggesters=suggesters,
        cache=geocode_cache,
        suggestion_cache=suggestion_cache,
    )
    router = OsrmRouter(settings.osrm_url, session, timeout=settings.osrm_timeout_s)
    shortener = UrlShortener(
        settings.url_shortener_url,
        session,
        timeout=settings.shortener_timeout_s,
        enabled=settings.shorten_urls,
    )
    assistant = None
    if settings.assisted_available:
        assistant = DispatchAssistant(
            settings.openai_api_key,
            model=settings.assistant_model,
            timeout=settings.assistant_timeout_s,
        )
    return DispatchServices(
        settings=settings,
        geo=geo,
        matrices=RouteMatrixBuilder(router, max_workers=settings.max_workers),
        shortener=shortener,
        assistant=assistant,
        fuel_prices=load_fuel_prices(),
    )
