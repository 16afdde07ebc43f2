"""
Gathyr: RSS feeds over a line-delimited MCP wire protocol
"""

from gathyr.errors import (
    FeedFetchError,
    FeedNotFound,
    GathyrError,
    ResourceNotFound,
    ToolNotFound,
    TransportParseError,
    UnknownRequestType,
)
from gathyr.version import __version__

__all__ = [
    "__version__",
    "GathyrError",
    "TransportParseError",
    "UnknownRequestType",
    "ToolNotFound",
    "ResourceNotFound",
    "FeedNotFound",
    "FeedFetchError",
]
