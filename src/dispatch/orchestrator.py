"""
Ride assignment: the single entry point the console calls.

Stages run in order, any of them may end the call with an ErrorResult:

    INIT → GEOCODING_STOPS → [OPTIMIZING_ROUTE] → COMPUTING_MAIN_ROUTE
         → COMPUTING_VEHICLE_ETAS → PRICING → RANKING → SELECTING
         → FINALIZING → DONE

Vehicles, ride and tariff are read-only snapshots. Marking the chosen vehicle
busy is the caller's job once the dispatcher accepts the recommendation.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Sequence, Union

from .errors import DispatchFailure, ErrorKey, GeocodingError
from .messages import generate_customer_sms, generate_sms
from .models import (
    AssignmentAlternative, AssignmentResultData, Coordinate, ErrorResult,
    NavigationApp, RideRequest, Tariff, Vehicle,
)
from .navigation import generate_navigation_url
from .optimize import AssistedRouteStrategy, HeuristicRouteStrategy, RouteOptimizer
from .pricing import TariffPricer, round_half_up, vehicle_fuel_cost
from .ranking import AssistedVehicleSelector, HeuristicVehicleSelector, in_service, rank, with_capacity
from .routing import parallel_map
from .services import DispatchServices

logger = logging.getLogger(__name__)


class AssignmentStage(str, Enum):
    INIT = "init"
    GEOCODING_STOPS = "geocoding_stops"
    OPTIMIZING_ROUTE = "optimizing_route"
    COMPUTING_MAIN_ROUTE = "computing_main_route"
    COMPUTING_VEHICLE_ETAS = "computing_vehicle_etas"
    PRICING = "pricing"
    RANKING = "ranking"
    SELECTING = "selecting"
    FINALIZING = "finalizing"
    DONE = "done"
    FAILED = "failed"


class AssignmentOrchestrator:
    def __init__(self, services: DispatchServices):
        self.services = services
        self.stage = AssignmentStage.INIT

    def _enter(self, stage: AssignmentStage) -> None:
        logger.debug("assignment stage %s → %s", self.stage.value, stage.value)
        self.stage = stage

    def find_best_vehicle(
        self,
        ride: RideRequest,
        vehicles: Sequence[Vehicle],
        tariff: Tariff,
        language: str = "cs",
        optimize: bool = False,
        assisted: bool = False,
        nav_app: NavigationApp = NavigationApp.GOOGLE,
        now: Optional[datetime] = None,
        driver_names: Optional[Dict[int, str]] = None,
    ) -> Union[AssignmentResultData, ErrorResult]:
        self.stage = AssignmentStage.INIT
        try:
            result = self._run(ride, vehicles, tariff, language, optimize, assisted, nav_app, now, driver_names or {})
        except DispatchFailure as e:
            logger.info("Assignment failed in stage %s: %s %s", self.stage.value, e.key.value, e.detail or "")
            self._enter(AssignmentStage.FAILED)
            return ErrorResult(message_key=e.key.value, message=e.detail)
        self._enter(AssignmentStage.DONE)
        return result

    def _run(
        self,
        ride: RideRequest,
        vehicles: Sequence[Vehicle],
        tariff: Tariff,
        language: str,
        optimize: bool,
        assisted: bool,
        nav_app: NavigationApp,
        now: Optional[datetime],
        driver_names: Dict[int, str],
    ) -> AssignmentResultData:
        svc = self.services
        tz = svc.tz
        now = now or datetime.now(tz)
        now_ms = int(now.timestamp() * 1000)
        workers = svc.settings.max_workers

        if assisted and svc.assistant is None:
            raise DispatchFailure(ErrorKey.MISSING_API_KEY)

        fleet = in_service(vehicles)
        if not fleet:
            raise DispatchFailure(ErrorKey.NO_VEHICLES_IN_SERVICE)
        fleet = with_capacity(fleet, ride.passengers)

        # --- geocode every stop and every candidate vehicle
        self._enter(AssignmentStage.GEOCODING_STOPS)
        try:
            stop_coords: List[Coordinate] = parallel_map(lambda s: svc.geo.resolve(s, language), ride.stops, workers)
            vehicle_coords: List[Coordinate] = parallel_map(lambda v: svc.geo.resolve(v.location, language), fleet, workers)
        except GeocodingError as e:
            raise DispatchFailure(ErrorKey.GEOCODING_FAILED, str(e)) from e

        stops = list(ride.stops)
        optimized_stops: Optional[List[str]] = None
        if optimize and len(stops) > 2:
            self._enter(AssignmentStage.OPTIMIZING_ROUTE)
            strategy = (
                AssistedRouteStrategy(svc.matrices, svc.assistant) if assisted
                else HeuristicRouteStrategy(svc.matrices)
            )
            order = RouteOptimizer(strategy).optimize(stops, stop_coords)
            stops = [stops[i] for i in order]
            stop_coords = [stop_coords[i] for i in order]
            optimized_stops = stops

        self._enter(AssignmentStage.COMPUTING_MAIN_ROUTE)
        main_route = svc.matrices.router.route(stop_coords)
        if main_route is None:
            raise DispatchFailure(ErrorKey.MAIN_ROUTE_CALCULATION_FAILED)
        ride_distance_km = main_route.distance_meters / 1000.0
        ride_duration_min = round_half_up(main_route.duration_seconds / 60.0)

        self._enter(AssignmentStage.COMPUTING_VEHICLE_ETAS)
        pickup = stop_coords[0]
        legs = parallel_map(lambda c: svc.matrices.route(c, pickup), vehicle_coords, workers)
        etas = [leg.duration_seconds / 60.0 if leg is not None else None for leg in legs]

        self._enter(AssignmentStage.PRICING)
        pricer = TariffPricer(tz, clock=lambda: now)
        prices = [
            pricer.price(stops[0], stops[-1], ride_distance_km, v.type, ride.passengers, tariff)
            for v in fleet
        ]
        fuel_costs = [
            vehicle_fuel_cost(ride_distance_km, v.fuel_type, v.fuel_consumption, svc.fuel_prices)
            for v in fleet
        ]

        self._enter(AssignmentStage.RANKING)
        alternatives = rank(ride, fleet, etas, prices, now_ms, fuel_costs)

        self._enter(AssignmentStage.SELECTING)
        selector = AssistedVehicleSelector(svc.assistant) if assisted else HeuristicVehicleSelector()
        best = selector.select(ride, alternatives)
        logger.info(
            "Recommending vehicle %s (%s): eta %d min, wait %d min, price %d",
            best.vehicle.id, best.vehicle.name, best.eta, best.wait_time, best.estimated_price,
        )

        self._enter(AssignmentStage.FINALIZING)
        return self._finalize(
            ride, fleet, vehicle_coords, stops, stop_coords, optimized_stops, alternatives, best,
            ride_distance_km, ride_duration_min, language, nav_app, driver_names,
        )

    def _finalize(
        self,
        ride: RideRequest,
        fleet: List[Vehicle],
        vehicle_coords: List[Coordinate],
        stops: List[str],
        stop_coords: List[Coordinate],
        optimized_stops: Optional[List[str]],
        alternatives: List[AssignmentAlternative],
        best: AssignmentAlternative,
        ride_distance_km: float,
        ride_duration_min: int,
        language: str,
        nav_app: NavigationApp,
        driver_names: Dict[int, str],
    ) -> AssignmentResultData:
        svc = self.services
        idx = next(i for i, v in enumerate(fleet) if v.id == best.vehicle.id)
        best_coords = vehicle_coords[idx]

        long_url = generate_navigation_url(best_coords, stop_coords, nav_app)
        navigation_url = svc.shortener.shorten(long_url)
        sms = generate_sms(ride.model_copy(update={"stops": stops}), language, navigation_url, nav_app, svc.tz)
        driver_name = driver_names.get(best.vehicle.driver_id) if best.vehicle.driver_id is not None else None

        return AssignmentResultData(
            vehicle=best.vehicle,
            eta=best.eta,
            wait_time=best.wait_time,
            estimated_price=best.estimated_price,
            estimated_fuel_cost=best.estimated_fuel_cost,
            ride_duration=ride_duration_min,
            ride_distance=ride_distance_km,
            sms=sms,
            customer_sms=generate_customer_sms(best.vehicle, best.eta, driver_name),
            navigation_url=navigation_url,
            alternatives=[a for a in alternatives if a.vehicle.id != best.vehicle.id],
            ride_request=ride,
            optimized_stops=optimized_stops,
            vehicle_location_coords=best_coords,
            stop_coords=stop_coords,
        )


def find_best_vehicle(
    services: DispatchServices,
    ride: RideRequest,
    vehicles: Sequence[Vehicle],
    tariff: Tariff,
    language: str = "cs",
    optimize: bool = False,
    **kwargs,
) -> Union[AssignmentResultData, ErrorResult]:
    return AssignmentOrchestrator(services).find_best_vehicle(ride, vehicles, tariff, language, optimize, **kwargs)
