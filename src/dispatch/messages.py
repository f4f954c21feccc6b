"""
Driver and customer message text.

The driver SMS is parsed by the driver app, keep its line layout stable:

    {route}: A → B
    {name} • {phone} • {n} {passengers}
    {pickupTime}: HH:MM
    {note}: …            (only with notes)
    {navigation}: url    (only with a real link)
"""

from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo

from dateutil import parser as du

from .models import MessagingApp, NavigationApp, RideRequest, Vehicle
from .navigation import HOME_URLS, compress_navigation_url, to_waze_url

TRANSLATIONS: Dict[str, Dict[str, str]] = {
    "cs": {
        "sms.route": "Trasa",
        "sms.passengers": "os.",
        "sms.pickupTime": "Vyzvednutí",
        "sms.pickupASAP": "IHNED",
        "sms.note": "Poznámka",
        "sms.navigation": "Navigace",
    },
    "en": {
        "sms.route": "Route",
        "sms.passengers": "pax",
        "sms.pickupTime": "Pickup",
        "sms.pickupASAP": "ASAP",
        "sms.note": "Note",
        "sms.navigation": "Navigation",
    },
    "de": {
        "sms.route": "Route",
        "sms.passengers": "Pers.",
        "sms.pickupTime": "Abholung",
        "sms.pickupASAP": "SOFORT",
        "sms.note": "Notiz",
        "sms.navigation": "Navigation",
    },
}

ASAP_SENTINELS = {"ihned", "asap"}
ARROW = " → "


def translate(key: str, language: str) -> str:
    table = TRANSLATIONS.get(language) or TRANSLATIONS["en"]
    return table.get(key, key)


def shorten_address(address: str) -> str:
    return ", ".join(part.strip() for part in address.split(",")[:3])


def format_pickup_time(pickup_time: str, language: str, tz: Optional[ZoneInfo] = None) -> str:
    pt = (pickup_time or "").strip()
    if pt.lower() in ASAP_SENTINELS:
        return translate("sms.pickupASAP", language)
    if pt.startswith("sms."):
        # a translation key stored as data by an older console build
        return translate(pt, language)
    try:
        dt = du.parse(pt)
    except (ValueError, OverflowError):
        return pickup_time
    if dt.tzinfo is not None and tz is not None:
        dt = dt.astimezone(tz)
    return f"{dt.hour:02d}:{dt.minute:02d}"


def generate_sms(
    ride: RideRequest,
    language: str = "cs",
    navigation_url: Optional[str] = None,
    nav_app: NavigationApp = NavigationApp.GOOGLE,
    tz: Optional[ZoneInfo] = None,
) -> str:
    if navigation_url and nav_app is NavigationApp.WAZE:
        navigation_url = to_waze_url(navigation_url)

    lines = [
        f"{translate('sms.route', language)}: {ARROW.join(shorten_address(s) for s in ride.stops)}",
        f"{ride.customer_name} • {ride.customer_phone} • {ride.passengers} {translate('sms.passengers', language)}",
        f"{translate('sms.pickupTime', language)}: {format_pickup_time(ride.pickup_time, language, tz)}",
    ]
    if ride.notes:
        lines.append(f"{translate('sms.note', language)}: {ride.notes}")
    sms = "\n".join(lines)

    if navigation_url and navigation_url != HOME_URLS[NavigationApp.GOOGLE]:
        sms += f"\n{translate('sms.navigation', language)}: {compress_navigation_url(navigation_url)}"
    return sms


def generate_customer_sms(vehicle: Vehicle, eta: float, driver_name: Optional[str] = None) -> str:
    return (
        f"Vaše jízda byla přidělena. Vůz: {vehicle.name} ({vehicle.license_plate}). "
        f"Řidič: {driver_name or 'Neznámý'}. Odhadovaný příjezd: {int(round(eta))} min."
    )


def generate_share_link(app: MessagingApp, phone: str, text: str) -> str:
    encoded = quote(text, safe="-_.!~*'()")
    clean_phone = "".join(phone.split())
    if app is MessagingApp.WHATSAPP:
        # wa.me wants the international number without '+'
        digits = clean_phone.lstrip("+")
        if not digits.startswith("420"):
            digits = f"420{digits}"
        return f"https://wa.me/{digits}?text={encoded}"
    if app is MessagingApp.TELEGRAM:
        return f"tg://share/url?text={encoded}"
    return f"sms:{clean_phone}?body={encoded}"
