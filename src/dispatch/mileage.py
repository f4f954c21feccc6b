from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence

from .models import (
    MileageCheck, MileageSummary, RideLogEntry, RideType, ServiceCheck, Vehicle, VehicleMileage,
)

logger = logging.getLogger(__name__)

SERVICE_WARNING_SHARE = 0.9


def _km(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else f"{value:.1f}"


def ride_distance(start_mileage: Optional[float], end_mileage: Optional[float]) -> Optional[float]:
    if not start_mileage or not end_mileage or end_mileage < start_mileage:
        return None
    return end_mileage - start_mileage


def validate_mileage(start_mileage: Optional[float] = None, end_mileage: Optional[float] = None,
                     vehicle_mileage: Optional[float] = None) -> MileageCheck:
    """Odometer readings are optional; when both are given they must be consistent."""
    if not start_mileage or not end_mileage:
        return MileageCheck(is_valid=True)
    if end_mileage < start_mileage:
        return MileageCheck(is_valid=False, error="Konečný stav km nemůže být menší než počáteční stav km")
    if vehicle_mileage and start_mileage < vehicle_mileage:
        return MileageCheck(is_valid=False, error="Počáteční stav km nemůže být menší než aktuální stav vozidla")
    return MileageCheck(is_valid=True)


def mileage_summary(ride_logs: Sequence[RideLogEntry], vehicles: Sequence[Vehicle]) -> MileageSummary:
    """Business/private km and fuel cost of completed rides, overall and per vehicle."""
    rows: Dict[int, VehicleMileage] = {}
    for v in vehicles:
        rows.setdefault(v.id, VehicleMileage(vehicle_id=v.id, vehicle_name=v.name))

    summary = MileageSummary()
    for log in ride_logs:
        if not log.distance or log.status.strip().upper() != "COMPLETED":
            continue
        cost = log.fuel_cost or 0
        row = rows.get(log.vehicle_id) if log.vehicle_id is not None else None
        if row is None:
            logger.debug("Ride log for unknown vehicle %s counted in totals only", log.vehicle_id)

        if log.ride_type == RideType.BUSINESS:
            summary.total_business_distance += log.distance
            if row is not None:
                row.business_distance += log.distance
        elif log.ride_type == RideType.PRIVATE:
            summary.total_private_distance += log.distance
            if row is not None:
                row.private_distance += log.distance

        summary.total_fuel_cost += cost
        if row is not None:
            row.fuel_cost += cost

    summary.vehicle_summaries = list(rows.values())
    return summary


def service_check(vehicle: Vehicle) -> ServiceCheck:
    if not vehicle.mileage or not vehicle.service_interval or not vehicle.last_service_mileage:
        return ServiceCheck(vehicle_id=vehicle.id, required=False,
                            message="Nedostatečná data pro kontrolu servisu")

    since_service = vehicle.mileage - vehicle.last_service_mileage
    overdue = since_service - vehicle.service_interval
    if overdue > 0:
        return ServiceCheck(vehicle_id=vehicle.id, required=True, km_overdue=overdue,
                            message=f"Servis po termínu o {_km(overdue)} km")
    if since_service >= vehicle.service_interval * SERVICE_WARNING_SHARE:
        return ServiceCheck(vehicle_id=vehicle.id, required=False,
                            message=f"Servis za {_km(vehicle.service_interval - since_service)} km")
    return ServiceCheck(vehicle_id=vehicle.id, required=False, message="Servis v pořádku")
