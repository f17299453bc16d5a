"""Integration tests for the event pipeline and its state store."""
import threading
from datetime import date, datetime, timedelta, timezone
from unittest.mock import Mock

import pytest
import responses

from geocoding.geocoder import EventGeocoder
from geocoding.known_locations import INDIANA_MEMORIAL_UNION
from geocoding.service import GeocodingService
from pipeline.event_pipeline import EventPipeline, EventStore
from processor.errors import FetchFailed, GeocodeFailed, ParseFailed
from processor.event_processor import EventProcessor
from processor.models import Coordinates, Event
from scraper.campus_feed import CampusFeedClient

EST = timezone(timedelta(hours=-5))
TARGET_DATE = date(2023, 11, 15)
FOUNTAIN = Coordinates(39.1685, -86.5205)


def make_geocoding_service(results):
    def geocode(query):
        if query not in results:
            raise GeocodeFailed(f"no result for {query!r}")
        return results[query]

    service = Mock(spec=GeocodingService)
    service.geocode.side_effect = geocode
    return service


def make_event(identifier):
    start = datetime(2023, 11, 15, 12, 0, tzinfo=EST)
    return Event(
        identifier=identifier,
        title=identifier,
        description='',
        start_time=start,
        end_time=start + timedelta(hours=1),
        location='',
    )


@pytest.fixture
def geocoding_service():
    return make_geocoding_service({
        'Showalter Fountain, Bloomington, Indiana': FOUNTAIN,
    })


@pytest.fixture
def pipeline(geocoding_service):
    return EventPipeline(
        client=CampusFeedClient(),
        processor=EventProcessor(tz=EST),
        geocoder=EventGeocoder(geocoding_service),
    )


@pytest.fixture
def sample_feed(rss_item, rss_feed):
    """Two events on the 15th, a repost of the first, and one on the 16th."""
    return rss_feed(
        rss_item(
            title='Pizza in the Solarium',
            guid='https://events.iu.edu/event/100-pizza',
            pub_date='Wed, 15 Nov 2023 14:30:00 -0500',
            ends='Wed, 15 Nov 2023 16:00:00 -0500',
            location='IMU Solarium',
            description='<p>Free pizza while it lasts.</p>',
            categories=['Free Food', 'Indoor'],
        ),
        rss_item(
            title='Fountain Meetup',
            guid='https://events.iu.edu/event/200-fountain',
            pub_date='Wed, 15 Nov 2023 10:00:00 -0500',
            location='Showalter Fountain',
            categories=['Free Food', 'Outdoor'],
        ),
        rss_item(
            title='Pizza in the Solarium (repost)',
            guid='https://events.iu.edu/event/100-pizza',
            pub_date='Wed, 15 Nov 2023 09:00:00 -0500',
            location='Wells Library',
            categories=['Free Food'],
        ),
        rss_item(
            title='Tomorrow Breakfast',
            guid='https://events.iu.edu/event/300-breakfast',
            pub_date='Thu, 16 Nov 2023 08:00:00 -0500',
            location='Ballantine Hall',
            categories=['Free Food'],
        ),
    )


class TestEventPipeline:
    """Test cases for EventPipeline.fetch_events."""

    @responses.activate
    def test_end_to_end(self, pipeline, geocoding_service, sample_feed):
        """Test fetch -> parse -> normalize -> geocode -> publish."""
        responses.add(
            responses.GET,
            pipeline.client.build_url(['Free Food']),
            body=sample_feed,
            status=200
        )

        events = pipeline.fetch_events(TARGET_DATE, ['Free Food'])

        assert [event.title for event in events] == [
            'Fountain Meetup',
            'Pizza in the Solarium',
        ]
        assert events[0].coordinates == FOUNTAIN
        assert events[0].end_time == events[0].start_time + timedelta(hours=1)
        assert events[1].coordinates == INDIANA_MEMORIAL_UNION.coordinates
        assert events[1].description == 'Free pizza while it lasts.'
        assert events[1].end_time == datetime(2023, 11, 15, 16, 0, tzinfo=EST)
        geocoding_service.geocode.assert_called_once_with(
            'Showalter Fountain, Bloomington, Indiana'
        )

        state = pipeline.store.state
        assert state.events == tuple(events)
        assert state.is_loading is False
        assert state.error is None
        assert state.sequence == 1

    @responses.activate
    def test_fetch_failure_is_published(self, pipeline):
        """Test transport errors fail the run and keep the last good events."""
        good_events = (make_event('previous'),)
        pipeline.store.commit(pipeline.store.begin(), good_events)
        responses.add(
            responses.GET,
            pipeline.client.build_url(),
            body='Service Unavailable',
            status=503
        )

        with pytest.raises(FetchFailed):
            pipeline.fetch_events(TARGET_DATE)

        state = pipeline.store.state
        assert isinstance(state.error, FetchFailed)
        assert state.is_loading is False
        assert state.events == good_events

    @responses.activate
    def test_parse_failure_publishes_nothing(self, pipeline, geocoding_service):
        """Test malformed feeds fail the whole run."""
        responses.add(
            responses.GET,
            pipeline.client.build_url(),
            body=b'<rss><channel><item><title>Broken',
            status=200
        )

        with pytest.raises(ParseFailed):
            pipeline.fetch_events(TARGET_DATE)

        state = pipeline.store.state
        assert isinstance(state.error, ParseFailed)
        assert state.events == ()
        assert not geocoding_service.geocode.called

    def test_unexpected_error_clears_loading(self, rss_item, rss_feed):
        """Test errors outside fetch and parse still end the loading state."""
        client = Mock(spec=CampusFeedClient)
        client.fetch_feed.return_value = rss_feed(rss_item(
            title='Fountain Meetup',
            guid='https://events.iu.edu/event/200-fountain',
            pub_date='Wed, 15 Nov 2023 10:00:00 -0500',
        ))
        processor = Mock(spec=EventProcessor)
        processor.process_events.side_effect = RuntimeError('boom')
        pipeline = EventPipeline(
            client=client,
            processor=processor,
            geocoder=EventGeocoder(make_geocoding_service({})),
        )
        seen = []
        pipeline.store.subscribe(seen.append)

        with pytest.raises(RuntimeError):
            pipeline.fetch_events(TARGET_DATE)

        state = pipeline.store.state
        assert state.is_loading is False
        assert isinstance(state.error, RuntimeError)
        assert [s.is_loading for s in seen] == [True, False]

    def test_stale_run_does_not_clobber_newer_result(self, rss_item, rss_feed):
        """Test an older run finishing last is discarded."""
        older_day = date(2023, 11, 14)
        feeds = {
            older_day: rss_feed(rss_item(
                title='Older Day',
                guid='https://events.iu.edu/event/1',
                pub_date='Tue, 14 Nov 2023 12:00:00 -0500',
            )),
            TARGET_DATE: rss_feed(rss_item(
                title='Newer Day',
                guid='https://events.iu.edu/event/2',
                pub_date='Wed, 15 Nov 2023 12:00:00 -0500',
            )),
        }
        older_started = threading.Event()
        release_older = threading.Event()

        def fetch_feed(target_date, tags):
            if target_date == older_day:
                older_started.set()
                release_older.wait(5)
            return feeds[target_date]

        client = Mock(spec=CampusFeedClient)
        client.fetch_feed.side_effect = fetch_feed
        pipeline = EventPipeline(
            client=client,
            processor=EventProcessor(tz=EST),
            geocoder=EventGeocoder(make_geocoding_service({})),
        )

        results = {}
        older = threading.Thread(
            target=lambda: results.setdefault('older', pipeline.fetch_events(older_day))
        )
        older.start()
        assert older_started.wait(5)

        newer_events = pipeline.fetch_events(TARGET_DATE)
        release_older.set()
        older.join(5)

        assert [event.title for event in results['older']] == ['Older Day']
        assert pipeline.store.state.events == tuple(newer_events)
        assert pipeline.store.state.sequence == 2


class TestEventStore:
    """Test cases for EventStore."""

    def test_begin_marks_loading(self):
        """Test begin publishes a loading state and clears errors."""
        store = EventStore()
        store.fail(store.begin(), FetchFailed('offline'))

        store.begin()

        assert store.state.is_loading is True
        assert store.state.error is None

    def test_only_newest_sequence_commits(self):
        """Test stale commits and failures are ignored."""
        store = EventStore()
        first = store.begin()
        second = store.begin()

        assert store.commit(second, [make_event('newer')]) is True
        assert store.commit(first, [make_event('older')]) is False
        assert store.fail(first, FetchFailed('late failure')) is False

        assert [event.identifier for event in store.state.events] == ['newer']
        assert store.state.error is None
        assert store.state.sequence == second

    def test_listeners_see_whole_states(self):
        """Test each update is delivered as one replaced snapshot."""
        store = EventStore()
        seen = []
        store.subscribe(seen.append)

        sequence = store.begin()
        store.commit(sequence, [make_event('a'), make_event('b')])

        assert [state.is_loading for state in seen] == [True, False]
        assert len(seen[-1].events) == 2
        assert seen[0].events == ()
