"""
Gathyr exceptions.
"""

from __future__ import annotations

from typing import Any, Optional


class GathyrError(RuntimeError):
    """Base class for Gathyr errors."""


class TransportParseError(GathyrError):
    """Raised when an inbound line is not a decodable protocol message."""


class UnknownRequestType(GathyrError):
    """Raised by the router for a request type it has no state for."""

    def __init__(self, request_type: Any) -> None:
        self.request_type = request_type
        super().__init__(f"Unknown request type: {request_type}")


class ToolNotFound(GathyrError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool not found: {name}")


class ResourceNotFound(GathyrError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Resource not found: {name}")


class FeedNotFound(GathyrError):
    """Raised when a registry operation names an unregistered feed."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"No feed with name '{name}' found.")


class FeedFetchError(GathyrError):
    """Raised when an upstream feed cannot be fetched or parsed."""

    def __init__(
        self,
        detail: str,
        *,
        url: Optional[str] = None,
        name: Optional[str] = None,
    ) -> None:
        self.url = url
        self.name = name
        url_hint = f" [{url}]" if url else ""
        super().__init__(f"{detail}{url_hint}")
