from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


def _normalize_token(value: Any) -> str:
    return str(value).strip().upper().replace("-", "_").replace(" ", "_")


class _WireEnum(str, Enum):
    """Enum parsed case-insensitively from whatever the stores hand us."""

    @classmethod
    def parse(cls, value: Any):
        if isinstance(value, cls):
            return value
        token = _normalize_token(value)
        for member in cls:
            if token in (_normalize_token(member.value), member.name):
                return member
        raise ValueError(f"Unknown {cls.__name__}: {value!r}")


class VehicleType(_WireEnum):
    CAR = "CAR"
    VAN = "VAN"


class VehicleStatus(_WireEnum):
    AVAILABLE = "AVAILABLE"
    BUSY = "BUSY"
    OUT_OF_SERVICE = "OUT_OF_SERVICE"
    NOT_DRIVING_TODAY = "NOT_DRIVING_TODAY"

    @property
    def in_service(self) -> bool:
        return self in (VehicleStatus.AVAILABLE, VehicleStatus.BUSY)


class FuelType(_WireEnum):
    DIESEL = "DIESEL"
    PETROL = "PETROL"


class NavigationApp(_WireEnum):
    GOOGLE = "google"
    WAZE = "waze"
    MAPY = "mapy"


class MessagingApp(_WireEnum):
    SMS = "SMS"
    TELEGRAM = "Telegram"
    WHATSAPP = "WhatsApp"


class RideType(_WireEnum):
    BUSINESS = "BUSINESS"
    PRIVATE = "PRIVATE"


class WireModel(BaseModel):
    """snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# -----------------------------
# Geography
# -----------------------------

class Coordinate(WireModel):
    model_config = ConfigDict(frozen=True)

    lat: float
    lon: float

    def as_osrm(self) -> str:
        return f"{self.lon},{self.lat}"

    def as_latlon(self) -> str:
        return f"{self.lat},{self.lon}"


class RouteLeg(WireModel):
    distance_meters: float
    duration_seconds: float


class AddressSuggestion(WireModel):
    text: str
    place_id: Optional[str] = None


# -----------------------------
# Fleet and requests
# -----------------------------

class Vehicle(WireModel):
    id: int
    name: str
    license_plate: str = ""
    type: VehicleType = VehicleType.CAR
    status: VehicleStatus = VehicleStatus.AVAILABLE
    location: str = Field(..., description="Current location as a free-text address")
    capacity: int = Field(4, ge=0)
    driver_id: Optional[int] = None
    free_at: Optional[int] = Field(None, description="Epoch millis when a busy vehicle frees up")
    fuel_type: Optional[FuelType] = None
    fuel_consumption: Optional[float] = Field(None, description="Litres per 100 km")
    mileage: Optional[float] = Field(None, description="Odometer reading in km")
    service_interval: Optional[float] = Field(None, description="Km between services")
    last_service_mileage: Optional[float] = None

    @field_validator("type", mode="before")
    @classmethod
    def _parse_type(cls, v):
        return VehicleType.parse(v)

    @field_validator("status", mode="before")
    @classmethod
    def _parse_status(cls, v):
        return VehicleStatus.parse(v)

    @field_validator("fuel_type", mode="before")
    @classmethod
    def _parse_fuel(cls, v):
        return None if v in (None, "") else FuelType.parse(v)


class RideRequest(WireModel):
    model_config = ConfigDict(frozen=True)

    stops: List[str] = Field(..., min_length=2, description="stops[0] is the pickup")
    customer_name: str = ""
    customer_phone: str = ""
    passengers: int = Field(1, ge=1)
    pickup_time: str = Field("ihned", description="'ihned'/ASAP or a parseable timestamp")
    notes: Optional[str] = None

    @property
    def pickup(self) -> str:
        return self.stops[0]


# -----------------------------
# Tariff
# -----------------------------

class FlatRateRule(WireModel):
    id: int = 0
    name: str
    price_car: float
    price_van: float
    keyword: Optional[str] = Field(None, description="Defaults to a keyword derived from the name")
    partner_keyword: Optional[str] = Field(None, description="Other end of a point-to-point flat rate")


class TimeBasedTariff(WireModel):
    id: int = 0
    name: str = ""
    start_time: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")
    end_time: str = Field(..., pattern=r"^\d{1,2}:\d{2}$")
    starting_fee: float
    price_per_km_car: float
    price_per_km_van: float


class Tariff(WireModel):
    starting_fee: float
    price_per_km_car: float
    price_per_km_van: float
    flat_rates: List[FlatRateRule] = []
    time_based_tariffs: List[TimeBasedTariff] = []
    van_passenger_threshold: int = Field(4, ge=1)

    @field_validator("flat_rates", "time_based_tariffs", mode="before")
    @classmethod
    def _none_is_empty(cls, v):
        return [] if v is None else v


# -----------------------------
# Results
# -----------------------------

class AssignmentAlternative(WireModel):
    vehicle: Vehicle
    eta: int = Field(..., description="Minutes to pickup including any wait")
    wait_time: int = 0
    estimated_price: int
    estimated_fuel_cost: Optional[float] = None


class AssignmentResultData(WireModel):
    vehicle: Vehicle
    eta: int
    wait_time: int = 0
    estimated_price: int
    estimated_fuel_cost: Optional[float] = None
    ride_duration: int
    ride_distance: float
    sms: str
    customer_sms: str = ""
    navigation_url: str
    alternatives: List[AssignmentAlternative] = []
    ride_request: RideRequest
    optimized_stops: Optional[List[str]] = None
    vehicle_location_coords: Coordinate
    stop_coords: List[Coordinate] = []


class ErrorResult(WireModel):
    message_key: str
    message: Optional[str] = None


# -----------------------------
# HTTP bodies
# -----------------------------

class AssignRequest(WireModel):
    ride: RideRequest
    vehicles: List[Vehicle]
    tariff: Optional[Tariff] = Field(None, description="Overrides the stored tariff for this call")
    language: str = "cs"
    optimize: bool = False
    assisted: bool = False
    nav_app: NavigationApp = NavigationApp.GOOGLE
    driver_names: Dict[int, str] = {}

    @field_validator("nav_app", mode="before")
    @classmethod
    def _parse_nav(cls, v):
        return NavigationApp.parse(v)


class PriceRequest(WireModel):
    pickup: str
    destination: str
    distance_km: float = Field(..., ge=0)
    vehicle_type: VehicleType = VehicleType.CAR
    passengers: int = Field(1, ge=1)
    tariff: Optional[Tariff] = None

    @field_validator("vehicle_type", mode="before")
    @classmethod
    def _parse_type(cls, v):
        return VehicleType.parse(v)


class PriceResponse(WireModel):
    price: int


class SmsRequest(WireModel):
    ride: RideRequest
    language: str = "cs"
    navigation_url: Optional[str] = None
    nav_app: NavigationApp = NavigationApp.GOOGLE

    @field_validator("nav_app", mode="before")
    @classmethod
    def _parse_nav(cls, v):
        return NavigationApp.parse(v)


class SmsResponse(WireModel):
    sms: str


# -----------------------------
# Mileage bookkeeping
# -----------------------------

class RideLogEntry(WireModel):
    vehicle_id: Optional[int] = None
    distance: Optional[float] = Field(None, description="Driven km, from the odometer readings")
    fuel_cost: Optional[float] = None
    status: str = "COMPLETED"
    ride_type: Optional[RideType] = None

    @field_validator("ride_type", mode="before")
    @classmethod
    def _parse_ride_type(cls, v):
        return None if v in (None, "") else RideType.parse(v)


class VehicleMileage(WireModel):
    vehicle_id: int
    vehicle_name: str
    business_distance: float = 0
    private_distance: float = 0
    fuel_cost: float = 0


class MileageSummary(WireModel):
    total_business_distance: float = 0
    total_private_distance: float = 0
    total_fuel_cost: float = 0
    vehicle_summaries: List[VehicleMileage] = []


class MileageSummaryRequest(WireModel):
    ride_logs: List[RideLogEntry] = []
    vehicles: List[Vehicle] = []


class MileageCheck(WireModel):
    is_valid: bool
    error: Optional[str] = None


class ServiceCheck(WireModel):
    vehicle_id: Optional[int] = None
    required: bool
    km_overdue: float = 0
    message: str
