"""
Feed registry and refresh scheduler.

The registry owns per-feed configuration, the cached snapshot of each feed
and one recurring refresh timer per feed. All state lives on the event loop
thread: every mutation replaces a whole value (config or snapshot) in a
single assignment, so readers never observe a partial snapshot and no locks
are needed.

Known race: ``remove()`` cancels only the timer. A fetch already in flight
for that feed is not torn down and may still write a snapshot after the
config is gone. Snapshot replacement is last-writer-wins.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from gathyr.core.types import (
    DEFAULT_MAX_ITEMS,
    DEFAULT_REFRESH_INTERVAL_MS,
    FeedConfig,
    FeedItem,
    FeedSnapshot,
    ParsedFeed,
)
from gathyr.errors import FeedFetchError, FeedNotFound, GathyrError
from gathyr.feeds.fetcher import FeedFetcher

logger = logging.getLogger("Gathyr.Feeds.Registry")


@dataclass
class RefreshTimer:
    """Fixed-delay recurring refresh for one feed."""

    name: str
    interval_seconds: float
    task: asyncio.Task

    @property
    def active(self) -> bool:
        return not self.task.done()

    def cancel(self) -> None:
        self.task.cancel()


@dataclass
class _FeedStats:
    refresh_count: int = 0
    failure_count: int = 0
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_item(raw: Dict[str, Any]) -> FeedItem:
    categories = raw.get("categories") or []
    if isinstance(categories, str):
        categories = [categories]
    return FeedItem(
        title=raw.get("title") or "Untitled",
        link=raw.get("link"),
        content=raw.get("content"),
        content_snippet=raw.get("contentSnippet", raw.get("content_snippet")),
        author=raw.get("creator") or raw.get("author"),
        categories=[str(category) for category in categories],
        pub_date=raw.get("pubDate", raw.get("pub_date")),
        iso_date=raw.get("isoDate", raw.get("iso_date")),
        guid=raw.get("guid"),
    )


def build_snapshot(
    config: FeedConfig,
    parsed: Union[ParsedFeed, Dict[str, Any]],
    *,
    now: Optional[datetime] = None,
) -> FeedSnapshot:
    """Normalize a fetched feed into a snapshot holding the first ``max_items`` items."""
    if not isinstance(parsed, ParsedFeed):
        parsed = ParsedFeed.model_validate(parsed)
    raw_items = parsed.items
    if config.max_items is not None:
        raw_items = raw_items[: config.max_items]
    return FeedSnapshot(
        title=parsed.title or config.name,
        description=parsed.description,
        link=parsed.link,
        items=[_normalize_item(raw) for raw in raw_items],
        last_updated_at=now or _utc_now(),
        source_uri=config.url,
    )


class FeedRegistry:
    """
    Authoritative store of feed configs, snapshots and refresh timers.

    ``add_or_update`` and ``remove`` must be called from a running event
    loop. Timers are plain asyncio tasks, which the loop never waits on at
    shutdown, so they do not keep the process alive.
    """

    def __init__(
        self,
        fetcher: Any = None,
        *,
        default_refresh_interval_ms: int = DEFAULT_REFRESH_INTERVAL_MS,
        default_max_items: int = DEFAULT_MAX_ITEMS,
        sleep_fn: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        now_fn: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._fetcher = fetcher if fetcher is not None else FeedFetcher()
        self._default_refresh_interval_ms = default_refresh_interval_ms
        self._default_max_items = default_max_items
        self._sleep_fn = sleep_fn
        self._now_fn = now_fn

        self._configs: Dict[str, FeedConfig] = {}
        self._snapshots: Dict[str, FeedSnapshot] = {}
        self._timers: Dict[str, RefreshTimer] = {}
        self._stats: Dict[str, _FeedStats] = {}
        self._background: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def add_or_update(self, config: Union[FeedConfig, Dict[str, Any]]) -> FeedConfig:
        if not isinstance(config, FeedConfig):
            config = FeedConfig.model_validate(config)
        config = config.with_defaults(
            refresh_interval_ms=self._default_refresh_interval_ms,
            max_items=self._default_max_items,
        )
        name = config.name

        if name in self._configs:
            logger.warning("Feed with name '%s' already exists. Updating configuration.", name)
            self._stop_timer(name)

        self._configs[name] = config
        self._stats.setdefault(name, _FeedStats())

        self._spawn(self._refresh_logged(name, reason="initial"), f"gathyr-refresh-{name}")
        self._start_timer(config)
        logger.info(
            "Feed '%s' registered (url=%s, interval=%.1fs, max_items=%d)",
            name,
            config.url,
            config.refresh_interval_seconds,
            config.max_items,
        )
        return config

    def remove(self, name: str) -> bool:
        if name not in self._configs:
            logger.warning("No feed with name '%s' found.", name)
            return False

        self._stop_timer(name)
        del self._configs[name]
        self._snapshots.pop(name, None)
        self._stats.pop(name, None)
        logger.info("Feed '%s' removed.", name)
        return True

    async def refresh(self, name: str) -> FeedSnapshot:
        """
        Fetch, normalize, truncate and replace the snapshot for ``name``.

        Raises FeedNotFound for an unregistered name and FeedFetchError when
        the source fails; the previous snapshot is kept on failure.
        """
        config = self._configs.get(name)
        if config is None:
            raise FeedNotFound(name)

        stats = self._stats.setdefault(name, _FeedStats())
        stats.refresh_count += 1
        stats.last_attempt_at = self._now_fn()
        try:
            parsed = await self._fetcher.fetch(config.url)
            snapshot = build_snapshot(config, parsed, now=self._now_fn())
        except FeedFetchError as exc:
            exc.name = name
            stats.failure_count += 1
            stats.last_error = str(exc)
            raise
        except Exception as exc:
            stats.failure_count += 1
            stats.last_error = str(exc) or type(exc).__name__
            raise FeedFetchError(
                f"Error fetching feed {name}: {stats.last_error}",
                url=config.url,
                name=name,
            ) from exc

        self._snapshots[name] = snapshot
        stats.last_error = None
        return snapshot

    async def close(self) -> None:
        """Cancel every timer and in-flight refresh, then release the fetcher."""
        timers = list(self._timers.values())
        self._timers.clear()
        pending = [timer.task for timer in timers] + list(self._background)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        aclose = getattr(self._fetcher, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("Feed registry closed (%d timers cancelled)", len(timers))

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_snapshot(self, name: str) -> Optional[FeedSnapshot]:
        return self._snapshots.get(name)

    get = get_snapshot

    def get_all(self) -> Dict[str, FeedSnapshot]:
        return dict(self._snapshots)

    def get_items(self, name: str) -> List[FeedItem]:
        snapshot = self._snapshots.get(name)
        return list(snapshot.items) if snapshot else []

    def get_config(self, name: str) -> Optional[FeedConfig]:
        return self._configs.get(name)

    def names(self) -> List[str]:
        return list(self._configs)

    def search(self, query: str) -> List[FeedItem]:
        """Case-insensitive substring match over title, content and snippet."""
        lowered = query.lower()
        results: List[FeedItem] = []
        for name in self._configs:
            snapshot = self._snapshots.get(name)
            if snapshot is None:
                continue
            results.extend(item for item in snapshot.items if item.matches(lowered))
        return results

    @property
    def timers(self) -> Dict[str, RefreshTimer]:
        return dict(self._timers)

    @property
    def status(self) -> Dict[str, Dict[str, Any]]:
        report: Dict[str, Dict[str, Any]] = {}
        for name, config in self._configs.items():
            snapshot = self._snapshots.get(name)
            stats = self._stats.get(name) or _FeedStats()
            timer = self._timers.get(name)
            report[name] = {
                "url": config.url,
                "refresh_interval_ms": config.refresh_interval_ms,
                "max_items": config.max_items,
                "item_count": len(snapshot.items) if snapshot else 0,
                "last_updated_at": snapshot.last_updated_at.isoformat() if snapshot else None,
                "last_attempt_at": (
                    stats.last_attempt_at.isoformat() if stats.last_attempt_at else None
                ),
                "last_error": stats.last_error,
                "refresh_count": stats.refresh_count,
                "failure_count": stats.failure_count,
                "timer_active": bool(timer and timer.active),
            }
        return report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _spawn(self, coro: Awaitable[Any], name: str) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    def _start_timer(self, config: FeedConfig) -> None:
        interval = config.refresh_interval_seconds
        task = asyncio.get_running_loop().create_task(
            self._timer_loop(config.name, interval),
            name=f"gathyr-timer-{config.name}",
        )
        self._timers[config.name] = RefreshTimer(
            name=config.name,
            interval_seconds=interval,
            task=task,
        )

    def _stop_timer(self, name: str) -> None:
        timer = self._timers.pop(name, None)
        if timer is not None:
            timer.cancel()

    async def _timer_loop(self, name: str, interval_seconds: float) -> None:
        # Fixed delay: the next sleep starts only after the previous refresh
        # finished. Cancelling the timer leaves a running refresh untouched.
        while True:
            await self._sleep_fn(interval_seconds)
            refresh = self._spawn(
                self._refresh_logged(name, reason="scheduled"),
                f"gathyr-refresh-{name}",
            )
            await asyncio.shield(refresh)

    async def _refresh_logged(self, name: str, *, reason: str) -> Optional[FeedSnapshot]:
        try:
            snapshot = await self.refresh(name)
        except FeedNotFound:
            logger.warning("Skipping %s refresh for removed feed '%s'", reason, name)
            return None
        except GathyrError as exc:
            logger.error("Error refreshing feed %s (%s): %s", name, reason, exc)
            return None
        logger.info(
            "Successfully fetched feed: %s (%s, %d items)",
            name,
            reason,
            len(snapshot.items),
        )
        return snapshot
