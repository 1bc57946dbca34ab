"""Location verification — great-circle distance between the professional's
reported position and the booking address.

Pure functions, no side effects. Callers decide what to do with an
unverified result (check-in/check-out only log it today).
"""

import math
import numbers
from dataclasses import dataclass

EARTH_RADIUS_METERS = 6_371_000
DEFAULT_MAX_DISTANCE_METERS = 150  # ~0.09 miles


@dataclass(frozen=True)
class LocationVerification:
    verified: bool
    distance: float | None  # meters, None when the address has no coordinates
    max_distance: float
    reason: str


def _is_number(value):
    # JSON true/false arrive as bool, which is an int subclass.
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def is_valid_coordinate(latitude, longitude):
    """True if both are real numbers, latitude in [-90, 90] and longitude
    in [-180, 180]. Strings and booleans are rejected."""
    if not (_is_number(latitude) and _is_number(longitude)):
        return False
    lat = float(latitude)
    lng = float(longitude)
    if math.isnan(lat) or math.isnan(lng):
        return False
    return -90 <= lat <= 90 and -180 <= lng <= 180


def haversine_distance(lat1, lng1, lat2, lng2):
    """Distance in meters between two lat/lng points."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)

    a = (
        math.sin(d_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.asin(math.sqrt(a))


def extract_coordinates(address):
    """Pull (lat, lng) out of a booking address dict.

    Accepts ``latitude``/``longitude`` or the short ``lat``/``lng`` keys.
    Returns None if either is missing or unusable.
    """
    if not isinstance(address, dict):
        return None
    lat = address.get("latitude", address.get("lat"))
    lng = address.get("longitude", address.get("lng"))
    if lat is None or lng is None or not is_valid_coordinate(lat, lng):
        return None
    return float(lat), float(lng)


def verify_location(latitude, longitude, address, max_distance=DEFAULT_MAX_DISTANCE_METERS):
    """Compare a reported position against the booking address.

    Returns a LocationVerification. Never raises for bad address data —
    an address without coordinates is simply unverified.
    """
    target = extract_coordinates(address)
    if target is None:
        return LocationVerification(
            verified=False,
            distance=None,
            max_distance=max_distance,
            reason="Booking address has no coordinates",
        )

    distance = haversine_distance(float(latitude), float(longitude), *target)
    if distance <= max_distance:
        return LocationVerification(
            verified=True,
            distance=round(distance, 1),
            max_distance=max_distance,
            reason="Within allowed distance",
        )
    return LocationVerification(
        verified=False,
        distance=round(distance, 1),
        max_distance=max_distance,
        reason=f"{distance:.0f}m from service address (max {max_distance:.0f}m)",
    )
