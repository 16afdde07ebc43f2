import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Mapping

from gathyr.core.types import FeedItem, FeedSnapshot

logger = logging.getLogger("Gathyr.mcp.utils")

DEFAULT_TOOL_RESPONSE_MAX_CHARS = 32768
TRUNCATION_SUFFIX = "\n\n[Response truncated due to size limits]"


def truncate_tool_text(text: str, name: str, max_chars: int = DEFAULT_TOOL_RESPONSE_MAX_CHARS) -> str:
    """Apply the tool response length cap."""
    if len(text) > max_chars:
        logger.info("Truncating response for tool '%s' (%d -> %d chars)", name, len(text), max_chars)
        cutoff = max(0, max_chars - len(TRUNCATION_SUFFIX))
        return text[:cutoff] + TRUNCATION_SUFFIX
    return text


def text_content(text: str) -> Dict[str, Any]:
    """Wrap text in the MCP tool result content shape."""
    return {"content": [{"type": "text", "text": text}]}


def format_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M:%S %Z").strip()


def format_item(item: FeedItem) -> str:
    published = f"Published: {item.pub_date}\n" if item.pub_date else ""
    read_more = f"[Read More]({item.link})" if item.link else ""
    return f"## {item.title}\n{published}{item.content_snippet or ''}\n{read_more}\n\n"


def format_items(items: Iterable[FeedItem]) -> str:
    return "".join(format_item(item) for item in items)


def format_feed(snapshot: FeedSnapshot) -> str:
    return (
        f"# {snapshot.title}\n\n"
        f"{snapshot.description or ''}\n\n"
        f"Last Updated: {format_timestamp(snapshot.last_updated_at)}\n\n"
        f"{format_items(snapshot.items)}"
    )


def format_search_results(query: str, items: list) -> str:
    return (
        f'# Search Results for: "{query}"\n\n'
        f"Found {len(items)} matching items\n\n"
        f"{format_items(items)}"
    )


def format_feed_list(snapshots: Mapping[str, FeedSnapshot]) -> str:
    if not snapshots:
        return "No RSS feeds are currently configured."
    entries = []
    for name, snapshot in snapshots.items():
        description = f"Description: {snapshot.description}\n" if snapshot.description else ""
        entries.append(
            f"## {snapshot.title}\n"
            f"Name: {name}\n"
            f"Items: {len(snapshot.items)}\n"
            f"Last Updated: {format_timestamp(snapshot.last_updated_at)}\n"
            f"{description}"
            f"URL: {snapshot.source_uri}\n\n"
        )
    return "# Available RSS Feeds\n\n" + "".join(entries)
