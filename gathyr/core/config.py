"""
Gathyr Configuration
--------------------
Centralized configuration for the protocol server and the feed registry.
Loads from environment variables and YAML config files.
"""

import os
import re
import logging
from typing import Optional, List
import yaml
from pydantic import BaseModel, Field

from gathyr.core.types import DEFAULT_MAX_ITEMS, DEFAULT_REFRESH_INTERVAL_MS, FeedConfig
from gathyr.version import __version__

logger = logging.getLogger("Gathyr.Config")

DEFAULT_SERVER_NAME = "opengathyr"
DEFAULT_USER_AGENT = f"Mozilla/5.0 (compatible; Gathyr/{__version__})"
_FEED_URL_ENV = re.compile(r"^RSS_FEED_URL_(\d+)$")


def _parse_positive_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
        if value <= 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected positive integer. Using %d.",
            name,
            raw,
            default,
        )
        return default


def _parse_non_negative_int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
        if value < 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected non-negative integer. Using %d.",
            name,
            raw,
            default,
        )
        return default


def _parse_positive_float_env(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
        if value < 0:
            raise ValueError
        return value
    except ValueError:
        logger.warning(
            "Invalid %s value '%s'; expected non-negative float. Using %s.",
            name,
            raw,
            default,
        )
        return default


def default_feeds(
    refresh_interval_ms: Optional[int] = None,
    max_items: Optional[int] = None,
) -> List[FeedConfig]:
    """Feeds used when none are configured; unset values come from feed_defaults."""
    return [
        FeedConfig(
            name="news",
            url="https://news.google.com/rss",
            refresh_interval_ms=refresh_interval_ms,
            max_items=max_items,
        )
    ]


def load_feeds_from_env(
    refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS,
    max_items: int = DEFAULT_MAX_ITEMS,
) -> List[FeedConfig]:
    """
    Build feed configs from ``RSS_FEED_URL_<n>`` variables.

    Feeds are named ``feed-<n>`` and ordered by ``n``. Falls back to the
    default feed list when no variable is set.
    """
    numbered = []
    for key, url in os.environ.items():
        match = _FEED_URL_ENV.match(key)
        if match and url.strip():
            numbered.append((int(match.group(1)), match.group(1), url.strip()))
    numbered.sort()

    feeds = [
        FeedConfig(
            name=f"feed-{suffix}",
            url=url,
            refresh_interval_ms=refresh_interval_ms,
            max_items=max_items,
        )
        for _, suffix, url in numbered
    ]
    return feeds or default_feeds(refresh_interval_ms, max_items)


class ServerConfig(BaseModel):
    """Protocol server identity and transport settings."""
    name: str = DEFAULT_SERVER_NAME
    version: str = __version__
    handshake_grace_seconds: float = 0.1
    tool_response_max_chars: int = 32768
    log_level: str = "info"
    log_file: Optional[str] = None


class FeedDefaults(BaseModel):
    """Defaults applied to feeds that leave interval or item cap unset."""
    refresh_interval_ms: int = Field(default=DEFAULT_REFRESH_INTERVAL_MS, gt=0)
    max_items: int = Field(default=DEFAULT_MAX_ITEMS, ge=0)
    user_agent: str = DEFAULT_USER_AGENT


class GathyrConfig(BaseModel):
    """Root configuration for the Gathyr server."""
    server: ServerConfig = Field(default_factory=ServerConfig)
    feed_defaults: FeedDefaults = Field(default_factory=FeedDefaults)
    feeds: List[FeedConfig] = Field(default_factory=default_feeds)

    @classmethod
    def from_env(cls) -> "GathyrConfig":
        """
        Load configuration from environment variables.

        - MCP_SERVER_NAME / MCP_SERVER_VERSION: server identity
        - RSS_FEED_URL_<n>: feed URLs (named feed-<n>)
        - RSS_REFRESH_INTERVAL: refresh interval in milliseconds
        - RSS_MAX_ITEMS: items kept per feed
        - GATHYR_HANDSHAKE_GRACE_SEC: wait before a synthetic initialize
        - GATHYR_TOOL_RESPONSE_MAX_CHARS: cap on tool text output
        - GATHYR_LOG_LEVEL / GATHYR_LOG_FILE: logging
        - GATHYR_USER_AGENT: User-Agent sent to feed sources
        """
        refresh_interval_ms = _parse_positive_int_env(
            "RSS_REFRESH_INTERVAL", DEFAULT_REFRESH_INTERVAL_MS
        )
        max_items = _parse_non_negative_int_env("RSS_MAX_ITEMS", DEFAULT_MAX_ITEMS)

        return cls(
            server=ServerConfig(
                name=os.environ.get("MCP_SERVER_NAME") or DEFAULT_SERVER_NAME,
                version=os.environ.get("MCP_SERVER_VERSION") or __version__,
                handshake_grace_seconds=_parse_positive_float_env(
                    "GATHYR_HANDSHAKE_GRACE_SEC", 0.1
                ),
                tool_response_max_chars=_parse_positive_int_env(
                    "GATHYR_TOOL_RESPONSE_MAX_CHARS", 32768
                ),
                log_level=os.environ.get("GATHYR_LOG_LEVEL", "info"),
                log_file=os.environ.get("GATHYR_LOG_FILE") or None,
            ),
            feed_defaults=FeedDefaults(
                refresh_interval_ms=refresh_interval_ms,
                max_items=max_items,
                user_agent=os.environ.get("GATHYR_USER_AGENT") or DEFAULT_USER_AGENT,
            ),
            feeds=load_feeds_from_env(refresh_interval_ms, max_items),
        )

    @classmethod
    def from_yaml(cls, path: str) -> "GathyrConfig":
        """Load configuration from a YAML file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except FileNotFoundError:
            logger.warning("Config file not found: %s; using environment", path)
            return cls.from_env()
        return cls(**data)
