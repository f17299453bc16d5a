"""Tiered geocoder for free-text event locations.

Resolution runs through three tiers, stopping at the first one that
returns ``Resolved``:

1. the known-location table (no network),
2. the geocoding service with ``, <City>, <State>`` appended, bounds checked,
3. the geocoding service with only ``, <City>`` appended, not bounds checked.

Anything still ``Unresolved`` ends up at the campus center.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, NamedTuple, Sequence, Union

from geocoding.known_locations import match_known_location
from geocoding.service import GeocodingService
from processor.errors import GeocodeFailed
from processor.models import CAMPUS_CENTER, Coordinates, Event

logger = logging.getLogger(__name__)


class Bounds(NamedTuple):
    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float

    def contains(self, point: Coordinates) -> bool:
        return (
            self.min_latitude <= point.latitude <= self.max_latitude
            and self.min_longitude <= point.longitude <= self.max_longitude
        )


@dataclass(frozen=True)
class Resolved:
    coordinates: Coordinates
    tier: str


@dataclass(frozen=True)
class Unresolved:
    reason: str = ''


TierResult = Union[Resolved, Unresolved]
Tier = Callable[[str], TierResult]


class EventGeocoder:
    """Attach coordinates to events from their location text."""

    CITY = 'Bloomington'
    STATE = 'Indiana'
    BOUNDS = Bounds(39.1, 39.2, -86.6, -86.4)
    MAX_WORKERS = 4

    def __init__(self, service: GeocodingService, max_workers: int = MAX_WORKERS,
                 fallback: Coordinates = CAMPUS_CENTER):
        """
        Initialize the geocoder.

        Args:
            service: External geocoding service
            max_workers: Cap on concurrent geocoding calls
            fallback: Coordinate used when no tier resolves a location
        """
        self.service = service
        self.max_workers = max(1, max_workers)
        self.fallback = fallback
        self.tiers: Sequence[Tier] = (
            self.lookup_known_location,
            self.geocode_with_state,
            self.geocode_with_city,
        )

    def resolve(self, location: str) -> Coordinates:
        """
        Resolve a location string to coordinates.

        Empty locations return the fallback without contacting the service.
        """
        if not location:
            return self.fallback

        for tier in self.tiers:
            result = tier(location)
            if isinstance(result, Resolved):
                logger.debug(f"Resolved {location!r} via {result.tier}")
                return result.coordinates

        logger.warning(f"Could not geocode {location!r}, using campus center")
        return self.fallback

    def lookup_known_location(self, location: str) -> TierResult:
        known = match_known_location(location)
        if known is None:
            return Unresolved('no known location alias')
        return Resolved(known.coordinates, 'known-location')

    def geocode_with_state(self, location: str) -> TierResult:
        try:
            point = self.service.geocode(f"{location}, {self.CITY}, {self.STATE}")
        except GeocodeFailed as e:
            return Unresolved(str(e))

        if not self.BOUNDS.contains(point):
            logger.info(
                f"Geocoded {location!r} outside {self.CITY} "
                f"({point.latitude}, {point.longitude}), using campus center"
            )
            return Resolved(self.fallback, 'out-of-bounds')
        return Resolved(point, 'city-state')

    def geocode_with_city(self, location: str) -> TierResult:
        # Not bounds checked, unlike geocode_with_state
        try:
            point = self.service.geocode(f"{location}, {self.CITY}")
        except GeocodeFailed as e:
            return Unresolved(str(e))
        return Resolved(point, 'city')

    def geocode_events(self, events: Sequence[Event]) -> List[Event]:
        """
        Geocode events concurrently.

        Args:
            events: Events in display order

        Returns:
            New list in the same order with coordinates attached by identifier
        """
        pending = [event for event in events if event.location]
        if not pending:
            return list(events)

        logger.info(f"Geocoding {len(pending)} of {len(events)} events")

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = {
                event.identifier: pool.submit(self._resolve_event, event)
                for event in pending
            }
            resolved: Dict[str, Coordinates] = {
                identifier: future.result() for identifier, future in futures.items()
            }

        return [
            replace(event, coordinates=resolved[event.identifier])
            if event.identifier in resolved else event
            for event in events
        ]

    def _resolve_event(self, event: Event) -> Coordinates:
        try:
            return self.resolve(event.location)
        except Exception as e:
            logger.warning(f"Geocoding failed for event '{event.title}': {e}")
            return self.fallback
