from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Callable, Dict, Optional, Sequence, Tuple
from zoneinfo import ZoneInfo

from .models import FlatRateRule, FuelType, Tariff, TimeBasedTariff, VehicleType

DEFAULT_TZ = ZoneInfo("Europe/Prague")

_DECLENSION_ENDINGS = ("a", "í", "i", "u", "e", "y", "ě")
_ROUTE_SEPARATOR = re.compile(r"\s+[-–—]\s+")


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def keyword_from_name(name: str) -> str:
    """'V rámci Mikulova' → 'mikulov': last word minus one Czech case ending."""
    words = name.strip().lower().split()
    if not words:
        return ""
    word = words[-1]
    if len(word) > 4 and word.endswith(_DECLENSION_ENDINGS):
        word = word[:-1]
    return word


def rule_keywords(rule: FlatRateRule) -> Tuple[str, Optional[str]]:
    """Keyword pair of a rule. A name like 'Zaječí - diskotéka Retro' with no
    explicit keywords yields one keyword per half."""
    if rule.keyword:
        return rule.keyword.lower(), rule.partner_keyword.lower() if rule.partner_keyword else None
    halves = [h for h in _ROUTE_SEPARATOR.split(rule.name.strip(), maxsplit=1) if h.strip()]
    if len(halves) == 2:
        partner = rule.partner_keyword or keyword_from_name(halves[1])
        return keyword_from_name(halves[0]), partner.lower()
    return keyword_from_name(rule.name), rule.partner_keyword.lower() if rule.partner_keyword else None


def rule_matches(rule: FlatRateRule, pickup: str, destination: str) -> bool:
    keyword, partner = rule_keywords(rule)
    if not keyword:
        return False
    p, d = pickup.lower(), destination.lower()
    if partner:
        return (keyword in p and partner in d) or (partner in p and keyword in d)
    return keyword in p and keyword in d


def match_flat_rate(pickup: str, destination: str, rules: Sequence[FlatRateRule]) -> Optional[FlatRateRule]:
    for rule in rules:
        if rule_matches(rule, pickup, destination):
            return rule
    return None


def clock_minutes(hhmm: str) -> int:
    hh, mm = hhmm.strip().split(":")
    return int(hh) * 60 + int(mm)


def band_contains(band: TimeBasedTariff, minute_of_day: int) -> bool:
    start, end = clock_minutes(band.start_time), clock_minutes(band.end_time)
    if start > end:
        # overnight, e.g. 22:00-06:00
        return minute_of_day >= start or minute_of_day <= end
    return start <= minute_of_day <= end


def match_time_band(minute_of_day: int, bands: Sequence[TimeBasedTariff]) -> Optional[TimeBasedTariff]:
    for band in bands:
        if band_contains(band, minute_of_day):
            return band
    return None


def charges_van_price(vehicle_type: VehicleType, passengers: int, threshold: int = 4) -> bool:
    return vehicle_type == VehicleType.VAN or passengers > threshold


def price_ride(
    pickup: str,
    destination: str,
    distance_km: float,
    vehicle_type: VehicleType,
    passengers: int,
    tariff: Tariff,
    now: Optional[datetime] = None,
    tz: ZoneInfo = DEFAULT_TZ,
) -> int:
    """Price of a ride: flat-rate zone, else time-of-day band, else the default per-km rate.

    ``now`` pins the wall clock used for time bands; it defaults to the current
    time in ``tz``.
    """
    van = charges_van_price(vehicle_type, passengers, tariff.van_passenger_threshold)

    rule = match_flat_rate(pickup, destination, tariff.flat_rates)
    if rule is not None:
        return round_half_up(rule.price_van if van else rule.price_car)

    if tariff.time_based_tariffs:
        clock = now.astimezone(tz) if now is not None and now.tzinfo else (now or datetime.now(tz))
        band = match_time_band(clock.hour * 60 + clock.minute, tariff.time_based_tariffs)
        if band is not None:
            per_km = band.price_per_km_van if van else band.price_per_km_car
            return round_half_up(band.starting_fee + distance_km * per_km)

    per_km = tariff.price_per_km_van if van else tariff.price_per_km_car
    return round_half_up(tariff.starting_fee + distance_km * per_km)


def fuel_cost(distance_km: Optional[float], consumption: Optional[float], fuel_price: Optional[float]) -> float:
    if not distance_km or not consumption or not fuel_price:
        return 0.0
    litres = distance_km * consumption / 100.0
    return round(litres * fuel_price, 2)


def vehicle_fuel_cost(distance_km: float, fuel_type: Optional[FuelType], consumption: Optional[float],
                      fuel_prices: Dict[str, float]) -> Optional[float]:
    if fuel_type is None or not consumption:
        return None
    return fuel_cost(distance_km, consumption, fuel_prices.get(fuel_type.value))


class TariffPricer:
    """Prices rides on the dispatch wall clock. ``clock`` is injectable for tests."""

    def __init__(self, tz: ZoneInfo = DEFAULT_TZ, clock: Optional[Callable[[], datetime]] = None):
        self.tz = tz
        self.clock = clock

    def price(self, pickup: str, destination: str, distance_km: float, vehicle_type: VehicleType,
              passengers: int, tariff: Tariff) -> int:
        now = self.clock() if self.clock else None
        return price_ride(pickup, destination, distance_km, vehicle_type, passengers, tariff, now=now, tz=self.tz)
