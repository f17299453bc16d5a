"""Geocoding service adapters."""
import logging
from typing import Optional

from geopy.exc import GeopyError
from geopy.extra.rate_limiter import RateLimiter
from geopy.geocoders import Nominatim

from processor.errors import GeocodeFailed
from processor.models import Coordinates

logger = logging.getLogger(__name__)


class GeocodingService:
    """Address string in, coordinates out."""

    def geocode(self, query: str) -> Coordinates:
        """
        Resolve an address string.

        Raises:
            GeocodeFailed: If the service has no result or the call fails
        """
        raise NotImplementedError


class NominatimGeocodingService(GeocodingService):
    """OpenStreetMap Nominatim geocoder, rate limited to its usage policy."""

    MIN_DELAY_SECONDS = 1.0

    def __init__(self, user_agent: str = 'campus-events-pipeline', timeout: int = 10,
                 geolocator: Optional[Nominatim] = None):
        """
        Initialize the Nominatim client.

        Args:
            user_agent: User agent sent to Nominatim (required by its policy)
            timeout: Per-request timeout in seconds
            geolocator: Pre-built geopy geocoder, mainly for tests
        """
        self.geolocator = geolocator or Nominatim(user_agent=user_agent, timeout=timeout)
        self._geocode = RateLimiter(
            self.geolocator.geocode,
            min_delay_seconds=self.MIN_DELAY_SECONDS,
            max_retries=0,
            swallow_exceptions=False,
        )

    def geocode(self, query: str) -> Coordinates:
        try:
            location = self._geocode(query, exactly_one=True)
        except GeopyError as e:
            raise GeocodeFailed(f"Nominatim request failed for {query!r}: {e}") from e

        if location is None:
            raise GeocodeFailed(f"Nominatim returned no result for {query!r}")

        logger.debug(f"Nominatim resolved {query!r} to {location.latitude}, {location.longitude}")
        return Coordinates(location.latitude, location.longitude)
