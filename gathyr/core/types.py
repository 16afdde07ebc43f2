"""
Gathyr Core Types
-----------------
Pydantic models for feed configuration and cached feed state.

Wire note:
  Feed items are exposed to clients with the camelCase field names used by
  RSS tooling ("contentSnippet", "pubDate", "isoDate"). The Python
  attributes are snake_case and serialise via aliases.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


DEFAULT_REFRESH_INTERVAL_MS = 300_000
DEFAULT_MAX_ITEMS = 20


class FeedConfig(BaseModel):
    """Per-feed configuration. ``name`` is the unique registry key."""
    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    url: str = Field(min_length=1)
    refresh_interval_ms: Optional[int] = Field(
        default=None,
        gt=0,
        alias="refreshInterval",
    )
    max_items: Optional[int] = Field(default=None, ge=0, alias="maxItems")

    @property
    def refresh_interval_seconds(self) -> float:
        interval = self.refresh_interval_ms or DEFAULT_REFRESH_INTERVAL_MS
        return interval / 1000.0

    def with_defaults(
        self,
        *,
        refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS,
        max_items: int = DEFAULT_MAX_ITEMS,
    ) -> "FeedConfig":
        return self.model_copy(
            update={
                "refresh_interval_ms": (
                    self.refresh_interval_ms
                    if self.refresh_interval_ms is not None
                    else refresh_interval_ms
                ),
                "max_items": self.max_items if self.max_items is not None else max_items,
            }
        )


class FeedItem(BaseModel):
    """One entry of a feed snapshot. No persisted identity."""
    model_config = ConfigDict(populate_by_name=True)

    title: str = "Untitled"
    link: Optional[str] = None
    content: Optional[str] = None
    content_snippet: Optional[str] = Field(default=None, alias="contentSnippet")
    author: Optional[str] = None
    categories: List[str] = Field(default_factory=list)
    pub_date: Optional[str] = Field(default=None, alias="pubDate")
    iso_date: Optional[str] = Field(default=None, alias="isoDate")
    guid: Optional[str] = None

    def matches(self, lowered_query: str) -> bool:
        for field_value in (self.title, self.content, self.content_snippet):
            if field_value and lowered_query in field_value.lower():
                return True
        return False


class FeedSnapshot(BaseModel):
    """Last successfully fetched, normalized state of one feed."""
    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: Optional[str] = None
    link: Optional[str] = None
    items: List[FeedItem] = Field(default_factory=list)
    last_updated_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        alias="lastUpdated",
    )
    source_uri: str = Field(alias="feedUrl")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ParsedFeed(BaseModel):
    """Raw result of the feed-source collaborator, before normalization."""
    title: Optional[str] = None
    description: Optional[str] = None
    link: Optional[str] = None
    items: List[Dict[str, Any]] = Field(default_factory=list)
