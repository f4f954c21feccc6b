from __future__ import annotations

import logging
from typing import Callable, List, Optional, Union

from fastapi import APIRouter, HTTPException, Query

from .errors import GeocodingError
from .messages import generate_sms
from .mileage import mileage_summary, service_check
from .models import (
    AddressSuggestion, AssignmentResultData, AssignRequest, Coordinate, ErrorResult, MileageSummary,
    MileageSummaryRequest, PriceRequest, PriceResponse, ServiceCheck, SmsRequest, SmsResponse, Tariff, Vehicle,
)
from .orchestrator import AssignmentOrchestrator
from .pricing import TariffPricer
from .services import DispatchServices

logger = logging.getLogger(__name__)


def create_router(
    get_services: Callable[[], Optional[DispatchServices]],
    get_tariff: Callable[[], Tariff],
) -> APIRouter:
    """
    Factory that returns the /dispatch router. Uses callables to fetch the
    current services and tariff from the backend so /admin/reload takes effect.
    """
    router = APIRouter(prefix="/dispatch", tags=["Dispatch"])

    def ensure_ready() -> DispatchServices:
        svc = get_services()
        if svc is None:
            raise HTTPException(
                status_code=503,
                detail="Dispatch services not initialised. POST /admin/reload.",
            )
        return svc

    # ------------------- Endpoints -------------------

    @router.post("/assign", response_model=Union[AssignmentResultData, ErrorResult])
    def assign(req: AssignRequest):
        """Recommend a vehicle for the ride. Business failures come back as an ErrorResult."""
        svc = ensure_ready()
        tariff = req.tariff or get_tariff()
        logger.info(
            "assign: %d stops, %d passengers, %d vehicles, optimize=%s assisted=%s",
            len(req.ride.stops), req.ride.passengers, len(req.vehicles), req.optimize, req.assisted,
        )
        return AssignmentOrchestrator(svc).find_best_vehicle(
            req.ride,
            req.vehicles,
            tariff,
            language=req.language,
            optimize=req.optimize,
            assisted=req.assisted,
            nav_app=req.nav_app,
            driver_names=req.driver_names,
        )

    @router.post("/price", response_model=PriceResponse)
    def price(req: PriceRequest):
        svc = ensure_ready()
        tariff = req.tariff or get_tariff()
        value = TariffPricer(svc.tz).price(
            req.pickup, req.destination, req.distance_km, req.vehicle_type, req.passengers, tariff,
        )
        return PriceResponse(price=value)

    @router.get("/tariff", response_model=Tariff)
    def tariff():
        return get_tariff()

    @router.get("/geocode", response_model=Coordinate)
    def geocode(address: str = Query(..., min_length=1), language: str = "cs"):
        svc = ensure_ready()
        try:
            return svc.geo.resolve(address, language)
        except GeocodingError as e:
            raise HTTPException(status_code=404, detail=str(e)) from e

    @router.get("/suggest", response_model=List[AddressSuggestion])
    def suggest(q: str = "", language: str = "cs"):
        svc = ensure_ready()
        return svc.geo.suggest(q, language)

    @router.post("/sms", response_model=SmsResponse)
    def sms_preview(req: SmsRequest):
        svc = ensure_ready()
        return SmsResponse(sms=generate_sms(req.ride, req.language, req.navigation_url, req.nav_app, svc.tz))

    @router.post("/mileage/summary", response_model=MileageSummary)
    def summarize_mileage(req: MileageSummaryRequest):
        return mileage_summary(req.ride_logs, req.vehicles)

    @router.post("/mileage/service-check", response_model=List[ServiceCheck])
    def check_service(vehicles: List[Vehicle]):
        return [service_check(v) for v in vehicles]

    return router
