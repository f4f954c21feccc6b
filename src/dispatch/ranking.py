from __future__ import annotations

import logging
from typing import List, Optional, Protocol, Sequence

from .errors import AssistantError, DispatchFailure, ErrorKey
from .models import AssignmentAlternative, RideRequest, Vehicle, VehicleStatus
from .pricing import round_half_up

logger = logging.getLogger(__name__)

# minutes; a vehicle whose route to the pickup is unknown sorts last
UNKNOWN_ETA_MINUTES = 999


def in_service(vehicles: Sequence[Vehicle]) -> List[Vehicle]:
    return [v for v in vehicles if v.status.in_service]


def with_capacity(vehicles: Sequence[Vehicle], passengers: int) -> List[Vehicle]:
    suitable = [v for v in vehicles if v.capacity >= passengers]
    if not suitable:
        raise DispatchFailure(ErrorKey.INSUFFICIENT_CAPACITY, str(passengers))
    return suitable


def wait_minutes(vehicle: Vehicle, now_ms: int) -> int:
    if vehicle.status != VehicleStatus.BUSY or not vehicle.free_at:
        return 0
    return max(0, round_half_up((vehicle.free_at - now_ms) / 60000))


def rank(
    ride: RideRequest,
    vehicles: Sequence[Vehicle],
    etas: Sequence[Optional[float]],
    prices: Sequence[int],
    now_ms: int,
    fuel_costs: Optional[Sequence[Optional[float]]] = None,
) -> List[AssignmentAlternative]:
    """Capacity-filtered alternatives sorted by effective ETA (travel + wait).

    ``etas``/``prices``/``fuel_costs`` are aligned with ``vehicles``; a missing
    travel time becomes UNKNOWN_ETA_MINUTES.
    """
    alternatives: List[AssignmentAlternative] = []
    for idx, vehicle in enumerate(vehicles):
        if vehicle.capacity < ride.passengers:
            continue
        travel = etas[idx]
        travel_min = UNKNOWN_ETA_MINUTES if travel is None else round_half_up(travel)
        wait = wait_minutes(vehicle, now_ms)
        alternatives.append(AssignmentAlternative(
            vehicle=vehicle,
            eta=travel_min + wait,
            wait_time=wait,
            estimated_price=prices[idx],
            estimated_fuel_cost=fuel_costs[idx] if fuel_costs else None,
        ))
    if not alternatives:
        raise DispatchFailure(ErrorKey.INSUFFICIENT_CAPACITY, str(ride.passengers))
    alternatives.sort(key=lambda a: a.eta)
    return alternatives


class VehicleSelector(Protocol):
    name: str

    def select(self, ride: RideRequest, alternatives: Sequence[AssignmentAlternative]) -> AssignmentAlternative: ...


class HeuristicVehicleSelector:
    name = "heuristic"

    def select(self, ride: RideRequest, alternatives: Sequence[AssignmentAlternative]) -> AssignmentAlternative:
        return alternatives[0]


class AssistedVehicleSelector:
    name = "assisted"

    def __init__(self, assistant, fallback: Optional[VehicleSelector] = None):
        self.assistant = assistant
        self.fallback = fallback or HeuristicVehicleSelector()

    def select(self, ride: RideRequest, alternatives: Sequence[AssignmentAlternative]) -> AssignmentAlternative:
        candidates = [
            {
                "id": a.vehicle.id,
                "name": a.vehicle.name,
                "type": a.vehicle.type.value,
                "capacity": a.vehicle.capacity,
                "eta": a.eta,
                "waitTime": a.wait_time,
                "price": a.estimated_price,
            }
            for a in alternatives
        ]
        try:
            chosen_id = self.assistant.choose_vehicle(candidates, ride.passengers)
        except AssistantError as e:
            logger.warning("Assisted vehicle selection failed, using the fastest vehicle: %s", e)
            return self.fallback.select(ride, alternatives)
        for a in alternatives:
            if a.vehicle.id == chosen_id:
                return a
        logger.warning("Assistant chose unknown vehicle id %s, using the fastest vehicle", chosen_id)
        return self.fallback.select(ride, alternatives)
