"""Streaming parser for the LiveWhale flavoured RSS feed.

The document is read once, front to back, through ``XMLPullParser``. The
pull events are flattened into ``start``/``text``/``end`` tokens and folded
into immutable item buffers; an item is emitted when its ``item`` element
closes. No DOM is kept: every element is cleared and detached from its
parent as soon as it closes, so only the currently open path stays alive.
"""
import logging
import xml.etree.ElementTree as ET
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator, List, Optional, Tuple
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

from processor.errors import DateParseFailed, ParseFailed
from processor.models import RawFeedItem

logger = logging.getLogger(__name__)

RSS_DATE_FORMAT = '%a, %d %b %Y %H:%M:%S %z'
DEFAULT_DURATION = timedelta(hours=1)
CHUNK_SIZE = 64 * 1024

# Un-namespaced RSS elements -> buffer field
CORE_FIELDS = {
    'title': 'title',
    'description': 'description',
    'pubDate': 'pub_date',
    'guid': 'guid',
}
# Extension elements (livewhale:ends, georss:featurename) matched by local name
EXTENSION_FIELDS = {
    'ends': 'end_date',
    'featurename': 'location',
}

Token = Tuple[str, str, str]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class _ItemBuffer:
    title: str = ''
    description: str = ''
    pub_date: str = ''
    end_date: str = ''
    location: str = ''
    guid: str = ''
    tags: Tuple[str, ...] = ()


def parse_rss_date(text: str) -> datetime:
    """
    Parse an RSS date such as ``Wed, 15 Nov 2023 14:30:00 -0500``.

    Raises:
        DateParseFailed: If the text does not match the RSS date format
    """
    try:
        return datetime.strptime(text.strip(), RSS_DATE_FORMAT)
    except ValueError as e:
        raise DateParseFailed(f"Unparsable feed date: {text!r}") from e


def extract_first_paragraph(html: str) -> str:
    """
    Plain text of the first ``<p>...</p>`` block, or '' if there is none.

    Only the exact lowercase ``<p>`` tag is recognized.
    """
    start = html.find('<p>')
    if start == -1:
        return ''
    start += len('<p>')
    end = html.find('</p>', start)
    if end == -1:
        return ''

    paragraph = html[start:end]
    return BeautifulSoup(paragraph, 'html.parser').get_text().strip()


def is_valid_guid(guid: str) -> bool:
    """True when the guid is an absolute URL with a scheme and host."""
    if not guid or any(ch.isspace() for ch in guid):
        return False
    try:
        parts = urlsplit(guid)
    except ValueError:
        return False
    return bool(parts.scheme and parts.netloc)


def _local_name(tag: str) -> Tuple[str, bool]:
    """Split an ElementTree tag into (local name, is_namespaced)."""
    if tag.startswith('{'):
        return tag.rsplit('}', 1)[1], True
    return tag, False


def _route(tag: str) -> Optional[str]:
    name, namespaced = _local_name(tag)
    if namespaced:
        return EXTENSION_FIELDS.get(name)
    if name == 'category':
        return 'tags'
    return CORE_FIELDS.get(name)


def iter_tokens(data: bytes) -> Iterator[Token]:
    """
    Flatten a feed document into (kind, tag, text) tokens.

    ``text`` tokens carry the character data directly owned by an element
    and are produced just before that element's ``end`` token.

    Raises:
        ParseFailed: If the document is not well-formed XML
    """
    parser = ET.XMLPullParser(events=('start', 'end'))
    open_elements: List[ET.Element] = []
    try:
        for offset in range(0, len(data), CHUNK_SIZE):
            parser.feed(data[offset:offset + CHUNK_SIZE])
            yield from _drain(parser, open_elements)
        parser.close()
        yield from _drain(parser, open_elements)
    except ET.ParseError as e:
        raise ParseFailed(f"Malformed feed document: {e}") from e


def _drain(parser: ET.XMLPullParser,
           open_elements: List[ET.Element]) -> Iterator[Token]:
    """Tokenize pending pull events, pruning each element once it closes."""
    for kind, elem in parser.read_events():
        if kind == 'start':
            open_elements.append(elem)
            yield ('start', elem.tag, '')
        else:
            open_elements.pop()
            if elem.text:
                yield ('text', elem.tag, elem.text)
            yield ('end', elem.tag, '')
            elem.clear()
            if open_elements:
                open_elements[-1].remove(elem)


def step(buffer: Optional[_ItemBuffer], token: Token,
         clock: Clock = utc_now) -> Tuple[Optional[_ItemBuffer], Optional[RawFeedItem]]:
    """
    Advance the parse state by one token.

    Args:
        buffer: Current item buffer, or None outside of an item
        token: (kind, tag, text) token
        clock: Source of "now" for items with unparsable dates

    Returns:
        Tuple of (next buffer, item emitted by this token or None)
    """
    kind, tag, text = token
    name, namespaced = _local_name(tag)
    is_item = name == 'item' and not namespaced

    if kind == 'start':
        if is_item:
            return _ItemBuffer(), None
        return buffer, None

    if kind == 'end':
        if is_item and buffer is not None:
            return None, finalize_item(buffer, clock)
        return buffer, None

    # text token
    if buffer is None:
        return None, None
    target = _route(tag)
    if target is None:
        return buffer, None
    if target == 'tags':
        tag_text = text.strip()
        if not tag_text:
            return buffer, None
        return replace(buffer, tags=buffer.tags + (tag_text,)), None
    return replace(buffer, **{target: getattr(buffer, target) + text}), None


def finalize_item(buffer: _ItemBuffer, clock: Clock = utc_now) -> Optional[RawFeedItem]:
    """
    Turn a closed item buffer into a RawFeedItem.

    Returns None when the guid is missing or not a URL.
    """
    guid = buffer.guid.strip()
    title = buffer.title.strip()
    if not is_valid_guid(guid):
        logger.warning(f"Dropping feed item '{title}' without a usable guid: {guid!r}")
        return None

    has_valid_times = True
    try:
        start_time = parse_rss_date(buffer.pub_date)
        if buffer.end_date.strip():
            end_time = parse_rss_date(buffer.end_date)
        else:
            end_time = start_time + DEFAULT_DURATION
        if end_time < start_time:
            raise DateParseFailed(
                f"End date {buffer.end_date!r} precedes start date {buffer.pub_date!r}"
            )
    except DateParseFailed as e:
        logger.warning(f"Feed item '{title}' has invalid dates, using defaults: {e}")
        has_valid_times = False
        start_time = clock()
        end_time = start_time + DEFAULT_DURATION

    description = buffer.description.strip()
    return RawFeedItem(
        title=title,
        description=description,
        publish_date_text=buffer.pub_date.strip(),
        end_date_text=buffer.end_date.strip(),
        location=buffer.location.strip(),
        guid=guid,
        tags=buffer.tags,
        summary=extract_first_paragraph(description),
        start_time=start_time,
        end_time=end_time,
        has_valid_times=has_valid_times,
    )


def iter_feed_items(data: bytes, clock: Clock = utc_now) -> Iterator[RawFeedItem]:
    """Yield feed items in document order as their elements close."""
    buffer = None
    for token in iter_tokens(data):
        buffer, item = step(buffer, token, clock)
        if item is not None:
            yield item


def parse_feed(data: bytes, clock: Clock = utc_now) -> List[RawFeedItem]:
    """
    Parse a feed document into raw items.

    Args:
        data: Raw feed bytes
        clock: Source of "now" for items with unparsable dates

    Returns:
        List of RawFeedItem in document order

    Raises:
        ParseFailed: If the document is malformed; ``items`` on the exception
            holds the items emitted before the failure point
    """
    items: List[RawFeedItem] = []
    try:
        for item in iter_feed_items(data, clock):
            items.append(item)
    except ParseFailed as e:
        e.items = items
        logger.error(f"Feed parse failed after {len(items)} items: {e}")
        raise

    logger.info(f"Parsed {len(items)} items from campus feed")
    return items
