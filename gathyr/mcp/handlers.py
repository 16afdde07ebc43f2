"""
Feed tool and resource handlers.

Each tool has a typed parameter model; the router validates incoming params
against it before the handler runs and publishes its JSON schema in the
capability table. Handlers return the MCP text content shape.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gathyr.errors import FeedFetchError, FeedNotFound
from gathyr.feeds.registry import FeedRegistry

from .router import ProtocolRouter
from .utils import (
    DEFAULT_TOOL_RESPONSE_MAX_CHARS,
    format_feed,
    format_feed_list,
    format_search_results,
    text_content,
    truncate_tool_text,
)

logger = logging.getLogger("Gathyr.mcp.handlers")


# ----------------------------------------------------------------------
# Parameter models
# ----------------------------------------------------------------------


class _ToolParams(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class GetFeedParams(_ToolParams):
    feed_name: str = Field(alias="feedName", description="Name of the feed to retrieve")


class SearchFeedsParams(_ToolParams):
    query: str = Field(description="Search term to look for in feed titles and content")


class ListFeedsParams(_ToolParams):
    pass


class AddFeedParams(_ToolParams):
    name: str = Field(min_length=1, description="Name to identify this feed")
    url: str = Field(description="URL of the RSS feed")
    refresh_interval: Optional[int] = Field(
        default=None,
        gt=0,
        alias="refreshInterval",
        description="Refresh interval in milliseconds (default: 300000)",
    )
    max_items: Optional[int] = Field(
        default=None,
        ge=0,
        alias="maxItems",
        description="Maximum number of items to keep (default: 20)",
    )

    @field_validator("url")
    @classmethod
    def _require_absolute_url(cls, value: str) -> str:
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError("must be an absolute http(s) URL")
        return value


class RemoveFeedParams(_ToolParams):
    feed_name: str = Field(alias="feedName", description="Name of the feed to remove")


class RefreshFeedParams(_ToolParams):
    feed_name: str = Field(alias="feedName", description="Name of the feed to refresh now")


class FeedResourceParams(_ToolParams):
    name: str = Field(description="Name of the feed")


# ----------------------------------------------------------------------
# Handlers
# ----------------------------------------------------------------------


class FeedTools:
    """Tool and resource handlers bound to one feed registry."""

    def __init__(self, registry: FeedRegistry, max_chars: int = DEFAULT_TOOL_RESPONSE_MAX_CHARS):
        self.registry = registry
        self.max_chars = max_chars

    def _reply(self, text: str, tool: str) -> Dict[str, Any]:
        return text_content(truncate_tool_text(text, tool, self.max_chars))

    async def get_feed(self, params: GetFeedParams) -> Dict[str, Any]:
        snapshot = self.registry.get_snapshot(params.feed_name)
        if snapshot is None:
            available = ", ".join(self.registry.get_all())
            return self._reply(
                f"Feed '{params.feed_name}' not found. Available feeds: {available}",
                "get-feed",
            )
        return self._reply(format_feed(snapshot), "get-feed")

    async def search_feeds(self, params: SearchFeedsParams) -> Dict[str, Any]:
        results = self.registry.search(params.query)
        if not results:
            return self._reply(
                f'No results found for search term: "{params.query}"',
                "search-feeds",
            )
        return self._reply(format_search_results(params.query, results), "search-feeds")

    async def list_feeds(self, params: ListFeedsParams) -> Dict[str, Any]:
        return self._reply(format_feed_list(self.registry.get_all()), "list-feeds")

    async def add_feed(self, params: AddFeedParams) -> Dict[str, Any]:
        try:
            config = self.registry.add_or_update(
                {
                    "name": params.name,
                    "url": params.url,
                    "refreshInterval": params.refresh_interval,
                    "maxItems": params.max_items,
                }
            )
        except ValueError as exc:
            return self._reply(f"Error adding feed: {exc}", "add-feed")
        return self._reply(
            f"Successfully added feed: {config.name}\nURL: {config.url}",
            "add-feed",
        )

    async def remove_feed(self, params: RemoveFeedParams) -> Dict[str, Any]:
        if not self.registry.remove(params.feed_name):
            return self._reply(str(FeedNotFound(params.feed_name)), "remove-feed")
        return self._reply(f"Successfully removed feed: {params.feed_name}", "remove-feed")

    async def refresh_feed(self, params: RefreshFeedParams) -> Dict[str, Any]:
        try:
            snapshot = await self.registry.refresh(params.feed_name)
        except FeedNotFound as exc:
            return self._reply(str(exc), "refresh-feed")
        except FeedFetchError as exc:
            return self._reply(f"Error refreshing feed: {exc}", "refresh-feed")
        return self._reply(format_feed(snapshot), "refresh-feed")

    async def feed_resource(self, params: FeedResourceParams) -> Dict[str, Any]:
        snapshot = self.registry.get_snapshot(params.name)
        if snapshot is None:
            raise FeedNotFound(params.name)
        return snapshot.to_wire()


def register_feed_tools(
    router: ProtocolRouter,
    registry: FeedRegistry,
    *,
    max_chars: int = DEFAULT_TOOL_RESPONSE_MAX_CHARS,
) -> FeedTools:
    """Register every feed tool and the ``feed`` resource on ``router``."""
    tools = FeedTools(registry, max_chars=max_chars)
    router.tool("get-feed", "Get content from a specific RSS feed", GetFeedParams, tools.get_feed)
    router.tool(
        "search-feeds",
        "Search for content across all RSS feeds",
        SearchFeedsParams,
        tools.search_feeds,
    )
    router.tool("list-feeds", "List all available RSS feeds", ListFeedsParams, tools.list_feeds)
    router.tool("add-feed", "Add a new RSS feed to monitor", AddFeedParams, tools.add_feed)
    router.tool(
        "remove-feed",
        "Remove an RSS feed from monitoring",
        RemoveFeedParams,
        tools.remove_feed,
    )
    router.tool(
        "refresh-feed",
        "Fetch a feed immediately and return its new content",
        RefreshFeedParams,
        tools.refresh_feed,
    )
    router.resource(
        "feed",
        "Cached snapshot of one feed as JSON",
        tools.feed_resource,
        params=FeedResourceParams,
    )
    logger.debug("Registered feed tools: %s", ", ".join(router.tool_names()))
    return tools
