"""
Feed source collaborator: fetch a URL over HTTP and parse RSS/Atom.

No timeout is applied to fetches. A stalled source only stalls the refresh
chain of the feed that owns it.
"""

from __future__ import annotations

import calendar
import html
import logging
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import feedparser
import httpx

from gathyr.core.config import DEFAULT_USER_AGENT
from gathyr.core.types import ParsedFeed
from gathyr.errors import FeedFetchError

logger = logging.getLogger("Gathyr.Feeds.Fetcher")

_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"\s+")
_ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml, */*"


def strip_markup(value: Optional[str]) -> Optional[str]:
    if not value:
        return value
    text = html.unescape(_TAG_RE.sub(" ", value))
    return _WS_RE.sub(" ", text).strip()


def _iso_from_struct(parsed_time: Any) -> Optional[str]:
    if not parsed_time:
        return None
    try:
        epoch = calendar.timegm(parsed_time)
    except (TypeError, ValueError, OverflowError):
        return None
    stamp = datetime.fromtimestamp(epoch, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _entry_content(entry: Any) -> Optional[str]:
    contents = entry.get("content") or []
    for block in contents:
        value = block.get("value")
        if value:
            return value
    return entry.get("summary") or entry.get("description")


def entry_to_item(entry: Any) -> Dict[str, Any]:
    """Map one feedparser entry to the raw item shape the registry normalizes."""
    summary = entry.get("summary") or entry.get("description")
    return {
        "title": entry.get("title"),
        "link": entry.get("link"),
        "content": _entry_content(entry),
        "contentSnippet": strip_markup(summary),
        "author": entry.get("author"),
        "categories": [tag.get("term") for tag in entry.get("tags", []) if tag.get("term")],
        "pubDate": entry.get("published") or entry.get("updated"),
        "isoDate": _iso_from_struct(
            entry.get("published_parsed") or entry.get("updated_parsed")
        ),
        "guid": entry.get("id"),
    }


def parse_feed_document(content: bytes | str, *, url: Optional[str] = None) -> ParsedFeed:
    """Parse an RSS/Atom document into a :class:`ParsedFeed`."""
    parsed = feedparser.parse(content)
    feed_meta = parsed.get("feed", {})
    entries = parsed.get("entries", [])

    if parsed.get("bozo") and not entries and not feed_meta.get("title"):
        detail = parsed.get("bozo_exception") or "document is not a feed"
        raise FeedFetchError(f"Unable to parse feed: {detail}", url=url)

    items: List[Dict[str, Any]] = [entry_to_item(entry) for entry in entries]
    return ParsedFeed(
        title=feed_meta.get("title"),
        description=feed_meta.get("subtitle") or feed_meta.get("description"),
        link=feed_meta.get("link"),
        items=items,
    )


class FeedFetcher:
    """Fetches and parses feed sources with a shared async HTTP client."""

    def __init__(
        self,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=None,
            follow_redirects=True,
            headers={"User-Agent": user_agent, "Accept": _ACCEPT},
        )

    async def fetch(self, url: str) -> ParsedFeed:
        try:
            response = await self._client.get(url)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise FeedFetchError(
                f"HTTP {exc.response.status_code}", url=url
            ) from exc
        except httpx.HTTPError as exc:
            raise FeedFetchError(f"Unable to reach feed source: {exc}", url=url) from exc

        return parse_feed_document(response.content, url=url)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
