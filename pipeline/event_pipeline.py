"""Pipeline orchestrator: fetch -> parse -> normalize -> geocode -> publish."""
import logging
import threading
from dataclasses import replace
from datetime import date
from typing import Callable, Iterable, List, Optional

from geocoding.geocoder import EventGeocoder
from processor.errors import CampusEventsError
from processor.event_processor import EventProcessor
from processor.models import Event, PipelineState
from scraper.campus_feed import CampusFeedClient
from scraper.feed_parser import Clock, parse_feed, utc_now

logger = logging.getLogger(__name__)

Listener = Callable[[PipelineState], None]


class EventStore:
    """
    Single-writer container for the published pipeline state.

    Every pipeline run takes a sequence number from ``begin``. Only the run
    holding the most recently issued number may commit or fail; results of
    older runs are discarded. Each update replaces the whole state.
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._state = PipelineState()
        self._issued = 0
        self._listeners: List[Listener] = []

    @property
    def state(self) -> PipelineState:
        with self._lock:
            return self._state

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def begin(self) -> int:
        """Issue a sequence number and mark the store as loading."""
        with self._lock:
            self._issued += 1
            self._publish(replace(self._state, is_loading=True, error=None))
            return self._issued

    def commit(self, sequence: int, events: Iterable[Event]) -> bool:
        """Publish events for ``sequence``; returns False if it is stale."""
        with self._lock:
            if not self._is_current(sequence):
                return False
            self._publish(PipelineState(
                events=tuple(events),
                is_loading=False,
                error=None,
                sequence=sequence,
            ))
            return True

    def fail(self, sequence: int, error: Exception) -> bool:
        """Publish an error for ``sequence``; returns False if it is stale."""
        with self._lock:
            if not self._is_current(sequence):
                return False
            self._publish(replace(self._state, is_loading=False, error=error))
            return True

    def _is_current(self, sequence: int) -> bool:
        if sequence != self._issued:
            logger.info(
                f"Discarding result of run {sequence}, run {self._issued} is newer"
            )
            return False
        return True

    def _publish(self, state: PipelineState) -> None:
        self._state = state
        for listener in self._listeners:
            listener(state)


class EventPipeline:
    """Runs the ingestion pipeline and publishes results to an EventStore."""

    def __init__(self, client: CampusFeedClient, processor: EventProcessor,
                 geocoder: EventGeocoder, store: Optional[EventStore] = None,
                 clock: Clock = utc_now):
        self.client = client
        self.processor = processor
        self.geocoder = geocoder
        self.store = store or EventStore()
        self.clock = clock

    def fetch_events(self, target_date: date, tags: Iterable[str] = ()) -> List[Event]:
        """
        Fetch, normalize and geocode the events for one day.

        Args:
            target_date: Calendar day in the local timezone
            tags: Ordered tag filters

        Returns:
            Events for the day, ascending by start time

        Raises:
            InvalidRequest, FetchFailed, ParseFailed: The run failed as a
                whole; the error is also published to the store
            Exception: Any other error is published to the store the same
                way and re-raised
        """
        tags = list(tags)
        sequence = self.store.begin()
        logger.info(
            f"Pipeline run {sequence} started for {target_date.isoformat()} "
            f"with tags {tags}"
        )

        try:
            data = self.client.fetch_feed(target_date, tags)
            raw_items = parse_feed(data, clock=self.clock)
            events = self.processor.process_events(raw_items, target_date)
            events = self.geocoder.geocode_events(events)
            published = self.store.commit(sequence, events)
        except CampusEventsError as e:
            logger.error(f"Pipeline run {sequence} failed: {e}")
            self.store.fail(sequence, e)
            raise
        except Exception as e:
            logger.error(f"Pipeline run {sequence} failed unexpectedly: {e}", exc_info=True)
            self.store.fail(sequence, e)
            raise

        if published:
            logger.info(f"Pipeline run {sequence} published {len(events)} events")
        return events
