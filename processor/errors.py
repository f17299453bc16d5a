"""Error taxonomy for the campus events pipeline."""
from typing import List, Optional


class CampusEventsError(Exception):
    """Base class for pipeline errors."""


class InvalidRequest(CampusEventsError):
    """Feed request URL could not be constructed."""


class FetchFailed(CampusEventsError):
    """Network or transport failure while retrieving the feed."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class ParseFailed(CampusEventsError):
    """Feed document is not well-formed XML.

    ``items`` holds whatever was emitted before the failure point.
    """

    def __init__(self, message: str, items: Optional[List] = None):
        super().__init__(message)
        self.items = items or []


class DateParseFailed(CampusEventsError):
    """Feed date text does not match the RSS date format."""


class GeocodeFailed(CampusEventsError):
    """Geocoding service produced no usable result."""
