# tests/unit/test_navigation.py
from urllib.parse import parse_qs, urlsplit

import requests
import responses

from src.dispatch.models import Coordinate, NavigationApp
from src.dispatch.navigation import (
    HOME_URLS, UrlShortener, compress_navigation_url, generate_navigation_url, to_waze_url,
)

SHORTENER = "https://tinyurl.com/api-create.php"
VEHICLE = Coordinate(lat=48.807, lon=16.642)
STOPS = [
    Coordinate(lat=48.8056, lon=16.6378),
    Coordinate(lat=48.905, lon=16.816),
    Coordinate(lat=48.9408, lon=16.7376),
]


class TestGenerate:

    def test_google_directions(self):
        url = generate_navigation_url(VEHICLE, STOPS, NavigationApp.GOOGLE)
        parts = urlsplit(url)
        q = {k: v[0] for k, v in parse_qs(parts.query).items()}
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == "https://www.google.com/maps/dir/"
        assert q == {
            "api": "1",
            "destination": "48.9408,16.7376",
            "waypoints": "48.8056,16.6378|48.905,16.816",
            "travelmode": "driving",
        }

    def test_waze(self):
        url = generate_navigation_url(VEHICLE, STOPS, NavigationApp.WAZE)
        assert url == (
            "https://waze.com/ul?ll=48.9408,16.7376&from=48.8056,16.6378&navigate=yes&via=48.905,16.816"
        )

    def test_mapy(self):
        url = generate_navigation_url(VEHICLE, STOPS[:2], NavigationApp.MAPY)
        assert url == "https://mapy.cz/zakladni?x=16.816&y=48.905&z=15&rl1=16.6378%2C48.8056"

    def test_no_stops_is_home_url(self):
        for app in NavigationApp:
            assert generate_navigation_url(VEHICLE, [], app) == HOME_URLS[app]


def test_to_waze_url():
    google = generate_navigation_url(None, STOPS)
    assert to_waze_url(google) == "https://waze.com/ul?ll=48.9408,16.7376&navigate=yes"
    assert to_waze_url("https://www.google.com/maps/place/48.1,16.2") == "https://waze.com/ul?ll=48.1,16.2&navigate=yes"
    assert to_waze_url("https://example.com") == "https://example.com"
    assert to_waze_url("") == ""


def test_compress_drops_extra_parameters():
    long_url = generate_navigation_url(None, STOPS) + "&dir_action=navigate&utm_source=console"
    short = compress_navigation_url(long_url)
    assert "utm_source" not in short and "dir_action" not in short
    assert parse_qs(urlsplit(short).query)["destination"] == ["48.9408,16.7376"]


class TestShortener:

    @responses.activate
    def test_shortens_and_caches(self):
        responses.add(responses.GET, SHORTENER, body="https://tinyurl.com/abc123")
        s = UrlShortener(SHORTENER, requests.Session(), timeout=2)
        long_url = generate_navigation_url(None, STOPS)
        assert s.shorten(long_url) == "https://tinyurl.com/abc123"
        assert s.shorten(long_url) == "https://tinyurl.com/abc123"
        assert len(responses.calls) == 1

    @responses.activate
    def test_failure_keeps_long_url(self):
        responses.add(responses.GET, SHORTENER, body="Error", status=500)
        s = UrlShortener(SHORTENER, requests.Session(), timeout=2)
        long_url = generate_navigation_url(None, STOPS)
        assert s.shorten(long_url) == long_url

    @responses.activate
    def test_connection_error_keeps_long_url(self):
        responses.add(responses.GET, SHORTENER, body=requests.exceptions.ConnectionError("offline"))
        s = UrlShortener(SHORTENER, requests.Session(), timeout=2)
        assert s.shorten("https://www.google.com/maps/dir/?api=1&destination=1,2") == (
            "https://www.google.com/maps/dir/?api=1&destination=1,2"
        )

    @responses.activate
    def test_home_urls_and_disabled_are_untouched(self):
        assert UrlShortener(SHORTENER).shorten("https://maps.google.com") == "https://maps.google.com"
        assert UrlShortener(SHORTENER, enabled=False).shorten("https://x.test/a") == "https://x.test/a"
        assert len(responses.calls) == 0
