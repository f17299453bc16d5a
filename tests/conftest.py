"""Shared fixtures for building LiveWhale RSS documents."""
from typing import Iterable, Optional

import pytest

FEED_HEADER = (
    '<?xml version="1.0" encoding="UTF-8"?>\n'
    '<rss version="2.0"'
    ' xmlns:livewhale="https://www.livewhale.com/ns/rss/livewhale"'
    ' xmlns:georss="http://www.georss.org/georss">\n'
    '<channel>\n'
    '<title>IU Events Calendar</title>\n'
    '<link>https://events.iu.edu</link>\n'
)
FEED_FOOTER = '</channel>\n</rss>\n'


def build_item(
    title: str,
    guid: Optional[str],
    pub_date: str,
    ends: Optional[str] = None,
    location: str = '',
    description: str = '',
    categories: Iterable[str] = (),
) -> str:
    parts = ['<item>', f'<title>{title}</title>']
    if description:
        parts.append(f'<description><![CDATA[{description}]]></description>')
    parts.append(f'<pubDate>{pub_date}</pubDate>')
    if ends is not None:
        parts.append(f'<livewhale:ends>{ends}</livewhale:ends>')
    if location:
        parts.append(f'<georss:featurename>{location}</georss:featurename>')
    if guid is not None:
        parts.append(f'<guid isPermaLink="true">{guid}</guid>')
    for category in categories:
        parts.append(f'<category>{category}</category>')
    parts.append('</item>')
    return '\n'.join(parts) + '\n'


def build_feed(*items: str) -> bytes:
    return (FEED_HEADER + ''.join(items) + FEED_FOOTER).encode('utf-8')


@pytest.fixture
def rss_item():
    """Factory for a single <item> element."""
    return build_item


@pytest.fixture
def rss_feed():
    """Factory wrapping <item> elements into a full feed document."""
    return build_feed
