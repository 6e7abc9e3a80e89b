"""
Test helpers: RSS payload builders, a scripted HTTP session and a loopback
feed server.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from email.utils import format_datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Union

import aiohttp
from aiohttp import web
from aiohttp.test_utils import TestServer
from multidict import CIMultiDict

from podfeed.models import FeedSource


# Fixed run start used by tests that depend on the episode window
RUN_STARTED = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)


# ============================================================================
# RSS payloads
# ============================================================================


def make_item(
    title: str,
    published: Optional[datetime],
    link: Optional[str] = None,
    duration: Optional[str] = None,
    enclosure: Optional[str] = None,
) -> str:
    parts = [f"<title>{title}</title>"]
    if link:
        parts.append(f"<link>{link}</link>")
    if published is not None:
        parts.append(f"<pubDate>{format_datetime(published)}</pubDate>")
    if duration:
        parts.append(f"<itunes:duration>{duration}</itunes:duration>")
    if enclosure:
        parts.append(f'<enclosure url="{enclosure}" length="1000" type="audio/mpeg"/>')
    return "<item>" + "".join(parts) + "</item>"


def make_rss(
    title: str,
    items: Sequence[str],
    link: str = "https://example.com/show",
    description: str = "A test podcast",
    cover: Optional[str] = None,
) -> bytes:
    """Build an RSS 2.0 payload with the iTunes namespace."""
    cover_tag = f'<itunes:image href="{cover}"/>' if cover else ""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        '<rss version="2.0" xmlns:itunes="http://www.itunes.com/dtds/podcast-1.0.dtd">'
        "<channel>"
        f"<title>{title}</title>"
        f"<link>{link}</link>"
        f"<description>{description}</description>"
        f"{cover_tag}"
        + "".join(items)
        + "</channel></rss>"
    ).encode("utf-8")


def simple_feed(key: str, latest: datetime, count: int = 3, cover: Optional[str] = None) -> bytes:
    """Feed with ``count`` weekly episodes, newest first, the newest at ``latest``."""
    items = [
        make_item(
            f"{key} episode {count - i}",
            latest - timedelta(days=7 * i),
            link=f"https://example.com/{key}/{count - i}",
            duration="30:00",
            enclosure=f"https://media.example.com/{key}/{count - i}.mp3",
        )
        for i in range(count)
    ]
    return make_rss(f"{key} show", items, cover=cover)


ATOM_FEED = b"""<?xml version="1.0" encoding="UTF-8"?>
<feed xmlns="http://www.w3.org/2005/Atom">
    <title>Atom Feed</title>
    <id>urn:test:atom</id>
    <updated>2024-01-10T00:00:00Z</updated>
    <entry>
        <title>Atom entry</title>
        <id>urn:test:atom:1</id>
        <updated>2024-01-10T00:00:00Z</updated>
    </entry>
</feed>"""

NOT_XML = b"this is not a feed at all"


# ============================================================================
# Scripted HTTP session
# ============================================================================


class FakeResponse:
    """Scripted response; ``delay`` holds the request open before it answers."""

    def __init__(
        self,
        status: int = 200,
        body: bytes = b"",
        headers: Optional[Dict[str, str]] = None,
        delay: float = 0.0,
    ):
        self.status = status
        self._body = body
        self.headers = CIMultiDict(headers or {})
        self.delay = delay

    async def read(self) -> bytes:
        return self._body


Route = Union[FakeResponse, List[FakeResponse], Callable[[Dict[str, str]], FakeResponse], Exception]


class _RequestContext:
    def __init__(self, session: "FakeSession", url: str, response: Union[FakeResponse, Exception]):
        self.session = session
        self.url = url
        self.response = response

    async def __aenter__(self) -> FakeResponse:
        self.session.in_flight += 1
        self.session.max_in_flight = max(self.session.max_in_flight, self.session.in_flight)
        try:
            if isinstance(self.response, Exception):
                raise self.response
            if self.response.delay:
                await asyncio.sleep(self.response.delay)
        except BaseException:
            self.session.in_flight -= 1
            raise
        return self.response

    async def __aexit__(self, exc_type, exc, tb) -> bool:
        self.session.in_flight -= 1
        return False


class FakeSession:
    """Stand-in for ``aiohttp.ClientSession`` serving scripted routes.

    A route is a response, a list of responses served in turn (the last one
    repeats), a callable receiving the request headers, or an exception.
    Unknown URLs fail with a connection error.
    """

    def __init__(self, routes: Optional[Dict[str, Route]] = None):
        self.routes: Dict[str, Route] = dict(routes or {})
        self.calls: List[tuple] = []
        self.in_flight = 0
        self.max_in_flight = 0

    def get(self, url: str, headers: Optional[Dict[str, str]] = None, **kwargs) -> _RequestContext:
        headers = dict(headers or {})
        self.calls.append((url, headers))
        return _RequestContext(self, url, self._resolve(url, headers))

    def calls_to(self, url: str) -> List[Dict[str, str]]:
        return [headers for called, headers in self.calls if called == url]

    def _resolve(self, url: str, headers: Dict[str, str]) -> Union[FakeResponse, Exception]:
        route = self.routes.get(url)
        if route is None:
            return aiohttp.ClientConnectionError(f"Cannot connect to {url}")
        if isinstance(route, list):
            return route.pop(0) if len(route) > 1 else route[0]
        if callable(route) and not isinstance(route, FakeResponse):
            return route(headers)
        return route


def source(key: str, **kwargs) -> FeedSource:
    return FeedSource(key=key, feed=feed_url(key), **kwargs)


def feed_url(key: str) -> str:
    return f"https://feeds.example.com/{key}.xml"


# ============================================================================
# Local HTTP server
# ============================================================================


@asynccontextmanager
async def feed_server(handler: Callable[[web.Request], Awaitable[web.StreamResponse]]) -> AsyncIterator[TestServer]:
    """Serve ``/{key}.xml`` from ``handler`` on a loopback port."""
    app = web.Application()
    app.router.add_get("/{key}.xml", handler)
    server = TestServer(app)
    await server.start_server()
    try:
        yield server
    finally:
        await server.close()
