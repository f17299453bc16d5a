"""Distance helpers against the device coordinate from the location provider."""
from typing import Iterable, List

from geopy.distance import geodesic

from processor.models import Coordinates, Event


def distance_meters(origin: Coordinates, event: Event) -> float:
    """Geodesic distance from ``origin`` to the event in meters."""
    return geodesic(tuple(origin), tuple(event.coordinates)).meters


def events_within_radius(events: Iterable[Event], origin: Coordinates,
                         radius_meters: float) -> List[Event]:
    """Events no further than ``radius_meters`` from ``origin``, order kept."""
    return [
        event for event in events
        if distance_meters(origin, event) <= radius_meters
    ]
