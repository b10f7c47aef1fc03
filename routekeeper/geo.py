"""Geographic and formatting helpers."""

import math

EARTH_RADIUS_KM = 6371


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float,
                       radius_km: float = EARTH_RADIUS_KM) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    R = radius_km * 1000

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2 +
         math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return R * c


def offset_north(lat: float, lon: float, meters: float,
                 radius_km: float = EARTH_RADIUS_KM) -> tuple[float, float]:
    """Return the point `meters` due north of (lat, lon)"""
    return lat + math.degrees(meters / (radius_km * 1000)), lon


def format_distance(distance_km: float) -> str:
    if distance_km < 0.001:
        return "0 m"
    if distance_km < 1:
        return f"{round(distance_km * 1000)} m"
    return f"{distance_km:.2f} km"


def format_duration(milliseconds: float) -> str:
    """Format a duration as `1h 2m 3s`, dropping leading zero units"""
    total_seconds = int(milliseconds // 1000)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60

    if hours > 0:
        return f"{hours}h {minutes}m {seconds}s"
    elif minutes > 0:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def format_clock(milliseconds: float) -> str:
    """Format a duration as `HH:MM:SS` for the running timer display"""
    total_seconds = int(milliseconds // 1000)
    hours = total_seconds // 3600
    minutes = (total_seconds % 3600) // 60
    seconds = total_seconds % 60
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
