"""
Location provider contract and a replay implementation.

A provider yields GpsFix samples no closer together than the requested
distance filter (5 m by default), the same contract a phone's fused location
API offers. The session only consumes the async iterator; how fixes are
obtained is the provider's concern.
"""
import asyncio
from typing import AsyncIterator, Iterable, List, Optional, Protocol

from runtracker.tracking.events import GpsFix
from runtracker.tracking.geo import GeoPoint, haversine_m


class LocationProvider(Protocol):
    def positions(self, distance_filter_m: float) -> AsyncIterator[GpsFix]:
        ...


def apply_distance_filter(fixes: Iterable[GpsFix], distance_filter_m: float) -> List[GpsFix]:
    """Drop fixes closer than distance_filter_m to the last emitted fix."""
    kept: List[GpsFix] = []
    last: Optional[GeoPoint] = None
    for fix in fixes:
        point = GeoPoint(fix.lat, fix.lon)
        if last is not None and haversine_m(last, point) < distance_filter_m:
            continue
        kept.append(fix)
        last = point
    return kept


class ReplayLocationProvider:
    """Plays back recorded fixes, optionally paced by a fixed delay."""

    def __init__(self, fixes: Iterable[GpsFix], delay_seconds: float = 0.0):
        self._fixes = list(fixes)
        self.delay_seconds = delay_seconds

    async def positions(self, distance_filter_m: float = 5.0) -> AsyncIterator[GpsFix]:
        for fix in apply_distance_filter(self._fixes, distance_filter_m):
            if self.delay_seconds:
                await asyncio.sleep(self.delay_seconds)
            yield fix
