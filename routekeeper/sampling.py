"""Sample filtering and distance accumulation."""

from dataclasses import dataclass
from typing import Optional

from .config import CONFIG
from .geo import haversine_distance
from .models import Coords, PositionSample


@dataclass
class FilterResult:
    accepted: bool
    reason: Optional[str] = None
    distance: float = 0.0  # meters from the last accepted fix


class SampleFilter:
    """Noise gate in front of the route buffer"""

    def __init__(self, max_accuracy: float = CONFIG["max_accuracy"],
                 min_movement: float = CONFIG["min_movement"],
                 radius_km: float = CONFIG["earth_radius_km"]):
        self.max_accuracy = max_accuracy
        self.min_movement = min_movement
        self.radius_km = radius_km

    def check(self, sample: PositionSample, last_coords: Optional[Coords]) -> FilterResult:
        if sample.accuracy > self.max_accuracy:
            return FilterResult(False, "low_accuracy")
        if last_coords is None:
            # First fix after tracking starts is never a jitter
            return FilterResult(True)
        distance = haversine_distance(last_coords.lat, last_coords.lng,
                                      sample.lat, sample.lng, self.radius_km)
        if distance < self.min_movement:
            return FilterResult(False, "jitter", distance)
        return FilterResult(True, distance=distance)


class DistanceAccumulator:
    """Adds great-circle segment lengths to the buffer's running total"""

    def __init__(self, radius_km: float = CONFIG["earth_radius_km"]):
        self.radius_km = radius_km

    def segment_km(self, prev: Coords, new: Coords) -> float:
        return haversine_distance(prev.lat, prev.lng, new.lat, new.lng, self.radius_km) / 1000

    def accumulate(self, buffer, prev: Optional[Coords], new: Coords) -> float:
        """Add the prev->new segment to `buffer` and return the new total (km)"""
        if prev is not None:
            buffer.update_distance(buffer.total_distance + self.segment_km(prev, new))
        return buffer.total_distance
