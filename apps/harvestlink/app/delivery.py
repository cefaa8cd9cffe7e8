"""Distance gate, delivery estimate and price for a buyer's order.

Everything here is pure: callers pass plain numbers and get a
:class:`DeliveryQuote` back or an :class:`~app.errors.AppError` describing
why the order cannot be placed.
"""
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from .config import settings
from .errors import AppError


EARTH_RADIUS_KM = 6371.0
CENT = Decimal("0.01")


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


def estimate_minutes(distance_km: float, avg_speed_kmph: float | None = None) -> int:
    speed = avg_speed_kmph or settings.AVG_SPEED_KMPH
    # Drop float noise so an exact 20 km stays 30 minutes
    return math.ceil(round(distance_km / speed * 60, 6))


def total_price(quantity: int, price_per_unit) -> Decimal:
    return (Decimal(quantity) * Decimal(str(price_per_unit))).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class DeliveryQuote:
    distance_km: float
    estimated_minutes: int
    pickup_time: datetime
    total_price: Decimal
    max_km: float


def quote_order(
    *,
    origin_lat: float | None,
    origin_lng: float | None,
    delivery_address: str | None,
    dest_lat: float | None,
    dest_lng: float | None,
    quantity: int,
    available_quantity: int,
    price_per_unit,
    now: datetime,
    max_km: float | None = None,
) -> DeliveryQuote:
    if not (delivery_address or "").strip() or dest_lat is None or dest_lng is None:
        raise AppError("invalid_address", "Please fill in all address details", 422)
    if quantity < 1 or quantity > available_quantity:
        raise AppError(
            "invalid_quantity",
            f"Please enter a valid quantity (1-{available_quantity})",
            422,
            {"min": 1, "max": available_quantity},
        )
    if origin_lat is None or origin_lng is None:
        raise AppError(
            "listing_location_missing",
            "This product doesn't have location information. Cannot calculate delivery.",
        )

    limit = settings.MAX_DELIVERY_KM if max_km is None else max_km
    distance = haversine_km(origin_lat, origin_lng, dest_lat, dest_lng)
    if distance > limit:
        raise AppError(
            "out_of_range",
            f"Sorry, this farmer's product is too far away ({distance:.1f} km). "
            f"We can only deliver within {limit:g} km.",
            400,
            {"distance_km": round(distance, 1), "max_km": limit},
        )

    minutes = estimate_minutes(distance)
    return DeliveryQuote(
        distance_km=distance,
        estimated_minutes=minutes,
        pickup_time=now + timedelta(minutes=minutes),
        total_price=total_price(quantity, price_per_unit),
        max_km=limit,
    )
