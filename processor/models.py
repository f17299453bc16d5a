"""Data models for campus event ingestion."""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, tzinfo
from enum import Enum
from typing import FrozenSet, NamedTuple, Optional, Tuple


class Coordinates(NamedTuple):
    """Latitude/longitude pair in decimal degrees."""
    latitude: float
    longitude: float


# Campus center of IU Bloomington, used until an event is geocoded
CAMPUS_CENTER = Coordinates(39.168804, -86.523819)


class EventCategory(str, Enum):
    ACADEMIC = 'Academic'
    SPORTS = 'Sports'
    CULTURAL = 'Cultural'
    SOCIAL = 'Social'
    OTHER = 'Other'


@dataclass(frozen=True)
class RawFeedItem:
    """Item emitted by the feed parser, before normalization."""
    title: str
    description: str
    publish_date_text: str
    end_date_text: str
    location: str
    guid: str
    tags: Tuple[str, ...]
    summary: str
    start_time: datetime
    end_time: datetime
    has_valid_times: bool


@dataclass(frozen=True)
class Event:
    """Normalized campus event."""
    identifier: str
    title: str
    description: str
    start_time: datetime
    end_time: datetime
    location: str
    coordinates: Coordinates = CAMPUS_CENTER
    category: EventCategory = EventCategory.OTHER
    source_url: Optional[str] = None
    is_all_day: bool = False
    has_valid_times: bool = True
    tags: FrozenSet[str] = field(default_factory=frozenset)

    def __post_init__(self):
        if self.end_time < self.start_time:
            raise ValueError(
                f"Event '{self.title}' ends before it starts: "
                f"{self.end_time.isoformat()} < {self.start_time.isoformat()}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end_time - self.start_time

    def time_label(self, tz: Optional[tzinfo] = None) -> str:
        """
        Human readable time range for display.

        Args:
            tz: Timezone to render in (default: host local timezone)

        Returns:
            "All Day", "2:30 PM - 3:30 PM", or a hint to check the source page
            when the feed dates could not be parsed
        """
        if not self.has_valid_times:
            return 'Check source for exact time'
        if self.is_all_day:
            return 'All Day'

        start = self.start_time.astimezone(tz)
        end = self.end_time.astimezone(tz)
        return f"{_format_clock(start)} - {_format_clock(end)}"

    def to_dict(self) -> dict:
        return {
            'id': self.identifier,
            'title': self.title,
            'description': self.description,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'location': self.location,
            'latitude': self.coordinates.latitude,
            'longitude': self.coordinates.longitude,
            'category': self.category.value,
            'url': self.source_url,
            'is_all_day': self.is_all_day,
            'has_valid_times': self.has_valid_times,
            'tags': sorted(self.tags),
        }


def _format_clock(value: datetime) -> str:
    hour = value.hour % 12 or 12
    suffix = 'AM' if value.hour < 12 else 'PM'
    return f"{hour}:{value.minute:02d} {suffix}"


@dataclass(frozen=True)
class PipelineState:
    """Snapshot published to consumers; replaced wholesale on every update."""
    events: Tuple[Event, ...] = ()
    is_loading: bool = False
    error: Optional[Exception] = None
    sequence: int = 0
