from __future__ import annotations

import logging
import math
from typing import List, Optional, Protocol, Sequence

import numpy as np

from .errors import AssistantError
from .models import Coordinate
from .routing import MatrixUnit, RouteMatrixBuilder

logger = logging.getLogger(__name__)


def nearest_neighbor_order(matrix: np.ndarray) -> List[int]:
    """Greedy tour from index 0: always hop to the closest unvisited point.

    Entries that are NaN or negative never win; when no usable entry is left
    the remaining points are appended in their original order.
    """
    n = int(matrix.shape[0]) if matrix.ndim == 2 else 0
    if n < 3:
        return list(range(n))

    path = [0]
    visited = {0}
    last = 0
    while len(path) < n:
        nearest, best = -1, math.inf
        for i in range(n):
            if i in visited:
                continue
            cost = float(matrix[last, i])
            if math.isnan(cost) or cost < 0:
                continue
            if cost < best:
                nearest, best = i, cost
        if nearest == -1:
            path.extend(i for i in range(n) if i not in visited)
            break
        path.append(nearest)
        visited.add(nearest)
        last = nearest
    return path


def is_destination_permutation(order: Sequence[int], n: int) -> bool:
    return len(order) == n - 1 and sorted(order) == list(range(1, n))


class RouteStrategy(Protocol):
    name: str

    def reorder(self, stops: Sequence[str], coords: Sequence[Coordinate]) -> List[int]: ...


class HeuristicRouteStrategy:
    name = "heuristic"

    def __init__(self, matrices: RouteMatrixBuilder):
        self.matrices = matrices

    def reorder(self, stops: Sequence[str], coords: Sequence[Coordinate]) -> List[int]:
        matrix = self.matrices.matrix(coords, MatrixUnit.SECONDS)
        return nearest_neighbor_order(matrix)


class AssistedRouteStrategy:
    """Lets the assistant order the destinations; identity order whenever its answer can't be used."""

    name = "assisted"

    def __init__(self, matrices: RouteMatrixBuilder, assistant):
        self.matrices = matrices
        self.assistant = assistant

    def reorder(self, stops: Sequence[str], coords: Sequence[Coordinate]) -> List[int]:
        n = len(stops)
        identity = list(range(n))
        matrix = self.matrices.matrix(coords, MatrixUnit.MINUTES)
        try:
            order = self.assistant.order_stops(matrix.tolist(), list(stops))
        except AssistantError as e:
            logger.warning("Assisted route optimization failed, keeping the original order: %s", e)
            return identity
        if not is_destination_permutation(order, n):
            logger.warning("Assisted route order %s is not a permutation of 1..%d, keeping the original order", order, n - 1)
            return identity
        return [0] + [int(i) for i in order]


class RouteOptimizer:
    def __init__(self, strategy: RouteStrategy):
        self.strategy = strategy

    def optimize(self, stops: Sequence[str], coords: Sequence[Coordinate],
                 strategy: Optional[RouteStrategy] = None) -> List[int]:
        """Return a visiting order of stop indices with the pickup (0) pinned first."""
        n = len(stops)
        if n <= 2:
            return list(range(n))
        order = (strategy or self.strategy).reorder(stops, coords)
        if order[:1] != [0] or sorted(order) != list(range(n)):
            logger.warning("Route strategy returned an invalid order %s, keeping the original order", order)
            return list(range(n))
        return order
