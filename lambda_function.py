"""AWS Lambda handler serving campus events for a single day."""
import json
import logging
import os
import time
from datetime import date, datetime, timezone, tzinfo
from typing import Any, Dict, List, Tuple
from zoneinfo import ZoneInfo

from geocoding.geocoder import EventGeocoder
from geocoding.service import NominatimGeocodingService
from pipeline.event_pipeline import EventPipeline
from processor.errors import CampusEventsError, FetchFailed, InvalidRequest, ParseFailed
from processor.event_processor import AVAILABLE_TAGS, CAMPUS_TIMEZONE, EventProcessor
from scraper.campus_feed import CampusFeedClient


# Configure JSON logging
class JsonFormatter(logging.Formatter):
    """Custom JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            'timestamp': self.formatTime(record),
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def setup_logging(log_level: str = 'INFO') -> None:
    """
    Configure logging with JSON formatter.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
    """
    root_logger = logging.getLogger()

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())
    root_logger.addHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def parse_request(event: Dict[str, Any], tz: tzinfo) -> Tuple[date, List[str]]:
    """
    Read the target date and tag filters from the invocation payload.

    Args:
        event: Payload such as {"date": "2023-11-15", "tags": ["Free Food"]}
        tz: Local timezone used when no date is given

    Returns:
        Tuple of (target date, tags)

    Raises:
        ValueError: If the date or tags are malformed
    """
    raw_date = event.get('date')
    if raw_date:
        if not isinstance(raw_date, str):
            raise ValueError(f"'date' must be a YYYY-MM-DD string, got {raw_date!r}")
        target_date = datetime.strptime(raw_date, '%Y-%m-%d').date()
    else:
        target_date = datetime.now(timezone.utc).astimezone(tz).date()

    tags = event.get('tags') or []
    if not isinstance(tags, list) or not all(isinstance(tag, str) for tag in tags):
        raise ValueError(f"'tags' must be a list of strings, got {tags!r}")

    return target_date, tags


def error_response(status_code: int, message: str, error: Exception,
                   start_time: float) -> Dict[str, Any]:
    return {
        'statusCode': status_code,
        'body': json.dumps({
            'message': message,
            'error': str(error),
            'error_type': type(error).__name__,
            'duration_seconds': round(time.time() - start_time, 2)
        })
    }


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Main Lambda handler returning the events of one day.

    Args:
        event: Invocation payload with optional "date" and "tags"
        context: Lambda context object

    Returns:
        Response dict with statusCode and the events as JSON
    """
    feed_url = os.environ.get('FEED_BASE_URL') or None
    log_level = os.environ.get('LOG_LEVEL', 'INFO')
    user_agent = os.environ.get('GEOCODER_USER_AGENT', 'campus-events-pipeline')

    setup_logging(log_level)
    logger = logging.getLogger(__name__)

    start_time = time.time()

    try:
        timeout_seconds = int(os.environ.get('TIMEOUT_SECONDS', '30'))
        max_workers = int(os.environ.get('GEOCODE_MAX_WORKERS', str(EventGeocoder.MAX_WORKERS)))
        tz = ZoneInfo(os.environ.get('LOCAL_TIMEZONE') or CAMPUS_TIMEZONE)
    except (KeyError, ValueError) as e:
        # ZoneInfoNotFoundError is a KeyError
        logger.error(f"Invalid configuration: {e}", exc_info=True)
        return error_response(500, 'Invalid configuration', e, start_time)

    try:
        target_date, tags = parse_request(event or {}, tz)
    except ValueError as e:
        logger.error(f"Invalid request payload: {e}")
        return error_response(400, 'Invalid request', e, start_time)

    logger.info(f"Lambda execution started for {target_date.isoformat()} with tags {tags}")
    unknown_tags = [tag for tag in tags if tag not in AVAILABLE_TAGS]
    if unknown_tags:
        logger.warning(f"Tags outside the filter vocabulary will match nothing: {unknown_tags}")

    try:
        pipeline = EventPipeline(
            client=CampusFeedClient(base_url=feed_url, timeout=timeout_seconds),
            processor=EventProcessor(tz=tz),
            geocoder=EventGeocoder(
                NominatimGeocodingService(user_agent=user_agent),
                max_workers=max_workers,
            ),
        )
        events = pipeline.fetch_events(target_date, tags)

    except InvalidRequest as e:
        return error_response(400, 'Invalid feed request', e, start_time)
    except (FetchFailed, ParseFailed) as e:
        return error_response(502, 'Failed to load campus feed', e, start_time)
    except CampusEventsError as e:
        return error_response(500, 'Pipeline failed', e, start_time)
    except Exception as e:
        logger.error(f"Lambda execution failed: {e}", exc_info=True)
        return error_response(500, 'Pipeline failed', e, start_time)

    duration = time.time() - start_time
    logger.info(f"Lambda execution completed with {len(events)} events in {duration:.2f}s")

    return {
        'statusCode': 200,
        'body': json.dumps({
            'date': target_date.isoformat(),
            'tags': tags,
            'events': [e.to_dict() for e in events],
            'statistics': {
                'events_returned': len(events),
                'events_with_valid_times': sum(1 for e in events if e.has_valid_times),
                'duration_seconds': round(duration, 2)
            }
        })
    }
