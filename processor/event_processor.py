"""Event processor for filtering, deduplicating and normalizing feed items."""
import hashlib
import logging
import re
from datetime import date, datetime, timedelta, tzinfo
from typing import Dict, Iterable, List, Optional, Tuple
from urllib.parse import urlsplit, urlunsplit
from zoneinfo import ZoneInfo

from processor.models import CAMPUS_CENTER, Event, EventCategory, RawFeedItem

logger = logging.getLogger(__name__)

# Local calendar for the day filter; observes daylight saving time
CAMPUS_TIMEZONE = 'America/Indiana/Indianapolis'

# Tags offered by the filter sheet; other strings are accepted but match nothing
AVAILABLE_TAGS = (
    'Free Food',
    'Indoor',
    'Outdoor',
    'Community Engagement',
    'Welcome Week',
    'Admissions',
)

# Checked in order; the first keyword matching a whole word (or its plural) in any tag
# decides the category
CATEGORY_KEYWORDS: Tuple[Tuple[EventCategory, Tuple[str, ...]], ...] = (
    (EventCategory.SPORTS, ('athletic', 'sport', 'recreation', 'fitness', 'game')),
    (EventCategory.ACADEMIC, ('academic', 'lecture', 'seminar', 'workshop',
                              'research', 'admissions', 'career')),
    (EventCategory.CULTURAL, ('art', 'music', 'culture', 'cultural', 'performance',
                              'theatre', 'theater', 'film', 'exhibit', 'exhibition')),
    (EventCategory.SOCIAL, ('social', 'free food', 'welcome week', 'community',
                            'party', 'student life')),
)

CATEGORY_PATTERNS = tuple(
    (category, tuple(re.compile(r"\b" + re.escape(keyword) + r"s?\b") for keyword in keywords))
    for category, keywords in CATEGORY_KEYWORDS
)


class EventProcessor:
    """Processor turning raw feed items into a day's ordered events."""

    MAX_TITLE_LENGTH = 200
    MAX_DESCRIPTION_LENGTH = 2000

    def __init__(self, tz: Optional[tzinfo] = None):
        """
        Initialize the processor.

        Args:
            tz: Timezone of the local calendar (default: campus timezone)
        """
        self.tz = tz or ZoneInfo(CAMPUS_TIMEZONE)

    def process_events(self, raw_items: Iterable[RawFeedItem],
                       target_date: date) -> List[Event]:
        """
        Filter, deduplicate and sort raw feed items.

        Args:
            raw_items: Items in feed order
            target_date: Calendar day to keep, in the local timezone

        Returns:
            Events starting on target_date, first occurrence per guid,
            ascending by start time (ties keep feed order)
        """
        raw_items = list(raw_items)
        unique: Dict[str, Event] = {}
        off_day = 0
        duplicates = 0

        for item in raw_items:
            if self.local_date(item.start_time) != target_date:
                off_day += 1
                continue

            key = canonical_url(item.guid)
            if key in unique:
                duplicates += 1
                logger.debug(f"Dropping duplicate feed item for {key}")
                continue

            unique[key] = self._to_event(item, key)

        # dicts keep insertion order and sorted() is stable
        events = sorted(unique.values(), key=lambda event: event.start_time)

        logger.info(
            f"Kept {len(events)} events for {target_date.isoformat()} out of "
            f"{len(raw_items)} items ({off_day} on other days, "
            f"{duplicates} duplicates)"
        )
        return events

    def local_date(self, value: datetime) -> date:
        return value.astimezone(self.tz).date()

    def _to_event(self, item: RawFeedItem, key: str) -> Event:
        return Event(
            identifier=self.generate_event_id(key),
            title=item.title[:self.MAX_TITLE_LENGTH],
            description=item.summary[:self.MAX_DESCRIPTION_LENGTH],
            start_time=item.start_time,
            end_time=item.end_time,
            location=item.location,
            coordinates=CAMPUS_CENTER,
            category=infer_category(item.tags),
            source_url=item.guid,
            is_all_day=item.has_valid_times and self._is_all_day(item),
            has_valid_times=item.has_valid_times,
            tags=frozenset(item.tags),
        )

    def _is_all_day(self, item: RawFeedItem) -> bool:
        """All-day events start at local midnight and last whole days."""
        start = item.start_time.astimezone(self.tz)
        duration = item.end_time - item.start_time
        return (
            (start.hour, start.minute, start.second) == (0, 0, 0)
            and duration > timedelta(0)
            and duration % timedelta(days=1) == timedelta(0)
        )

    def generate_event_id(self, source_url: str) -> str:
        """
        Generate a stable identifier for an event from its canonical guid URL.

        Args:
            source_url: Canonical guid URL

        Returns:
            Unique event ID (SHA256 hash)
        """
        hash_obj = hashlib.sha256(source_url.encode('utf-8'))
        return hash_obj.hexdigest()


def canonical_url(url: str) -> str:
    """Trim the URL and lowercase its scheme and host."""
    parts = urlsplit(url.strip())
    return urlunsplit((
        parts.scheme.lower(),
        parts.netloc.lower(),
        parts.path,
        parts.query,
        parts.fragment,
    ))


def infer_category(tags: Iterable[str]) -> EventCategory:
    """Map feed category tags onto the closed category enumeration."""
    lowered = [tag.lower() for tag in tags]
    for category, patterns in CATEGORY_PATTERNS:
        for pattern in patterns:
            if any(pattern.search(tag) for tag in lowered):
                return category
    return EventCategory.OTHER
