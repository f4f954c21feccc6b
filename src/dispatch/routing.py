from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional, Sequence, TypeVar

import numpy as np
import requests

from .models import Coordinate, RouteLeg

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class MatrixUnit(str, Enum):
    SECONDS = "seconds"
    MINUTES = "minutes"

    @property
    def sentinel(self) -> float:
        # stands in for an unknown leg so it sorts last instead of failing the call
        return 99999.0 if self is MatrixUnit.SECONDS else 999.0

    def from_seconds(self, seconds: float) -> float:
        return float(round(seconds / 60.0)) if self is MatrixUnit.MINUTES else float(seconds)


def parallel_map(fn: Callable[[T], R], items: Sequence[T], max_workers: int) -> List[R]:
    """Run fn over items on a bounded pool, results in input order.

    The first exception is re-raised once the batch is joined; siblings already
    in flight run to completion and their results are dropped.
    """
    if not items:
        return []
    if max_workers <= 1 or len(items) == 1:
        return [fn(x) for x in items]
    with ThreadPoolExecutor(max_workers=min(max_workers, len(items))) as executor:
        return list(executor.map(fn, items))


class OsrmRouter:
    """Point-to-point routes from an OSRM server. Never raises: failures come back as None."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None,
                 timeout: float = 10.0, profile: str = "driving"):
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.timeout = timeout
        self.profile = profile

    def route(self, points: Sequence[Coordinate]) -> Optional[RouteLeg]:
        if len(points) < 2:
            return None
        coords = ";".join(p.as_osrm() for p in points)
        url = f"{self.base_url}/route/v1/{self.profile}/{coords}"
        try:
            response = self.session.get(url, params={"overview": "false"}, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
            if data.get("code") != "Ok" or not data.get("routes"):
                logger.warning("OSRM returned no route: %s", data.get("code"))
                return None
            best = data["routes"][0]
            return RouteLeg(distance_meters=float(best["distance"]), duration_seconds=float(best["duration"]))
        except requests.exceptions.Timeout:
            logger.warning("OSRM request timed out after %.1fs", self.timeout)
            return None
        except requests.exceptions.RequestException as e:
            logger.warning("OSRM request failed: %s", e)
            return None
        except (KeyError, ValueError, TypeError) as e:
            logger.warning("OSRM response parsing failed: %s", e)
            return None

    def between(self, origin: Coordinate, destination: Coordinate) -> Optional[RouteLeg]:
        return self.route([origin, destination])


class RouteMatrixBuilder:
    """N×N travel-time matrices built from one route call per ordered pair.

    O(N²) remote calls: fine for a ride's handful of stops, not for hundreds of points.
    """

    def __init__(self, router: OsrmRouter, max_workers: int = 8):
        self.router = router
        self.max_workers = max_workers

    def route(self, origin: Coordinate, destination: Coordinate) -> Optional[RouteLeg]:
        return self.router.between(origin, destination)

    def matrix(self, points: Sequence[Coordinate], unit: MatrixUnit = MatrixUnit.SECONDS) -> np.ndarray:
        n = len(points)
        out = np.zeros((n, n), dtype=float)
        pairs = [(i, j) for i in range(n) for j in range(n) if i != j]
        legs = parallel_map(lambda ij: self.router.between(points[ij[0]], points[ij[1]]), pairs, self.max_workers)
        for (i, j), leg in zip(pairs, legs):
            out[i, j] = unit.from_seconds(leg.duration_seconds) if leg is not None else unit.sentinel
        return out
