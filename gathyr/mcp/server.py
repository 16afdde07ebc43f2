import sys
import asyncio
import logging
from typing import Any, Optional, Set, TextIO

from gathyr.core.config import GathyrConfig
from gathyr.feeds.fetcher import FeedFetcher
from gathyr.feeds.registry import FeedRegistry

from .handlers import register_feed_tools
from .protocol import Request
from .router import ProtocolRouter
from .transport import StdioTransport

logger = logging.getLogger("Gathyr.mcp.server")

READ_CHUNK_SIZE = 64 * 1024


class McpServer:
    """
    Reads line-delimited requests from a stream and dispatches each one in
    its own task. In-flight requests are neither ordered nor serialized
    against each other.
    """
    def __init__(
        self,
        router: ProtocolRouter,
        registry: FeedRegistry,
        transport: Optional[StdioTransport] = None,
        *,
        config: Optional[GathyrConfig] = None,
        stream: Optional[TextIO] = None,
    ):
        self.router = router
        self.registry = registry
        self.config = config or GathyrConfig()
        if transport is None:
            transport = StdioTransport(
                self.submit,
                stream=stream,
                handshake_grace_seconds=self.config.server.handshake_grace_seconds,
            )
        else:
            transport.on_request = self.submit
        self.transport = transport
        self._inflight: Set[asyncio.Task] = set()

    def start(self) -> None:
        """Register the configured feeds. Needs a running event loop."""
        for feed in self.config.feeds:
            self.registry.add_or_update(feed)

    def submit(self, request: Request) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(
            self._dispatch_guarded(request),
            name=f"gathyr-dispatch-{request.type}",
        )
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _dispatch_guarded(self, request: Request) -> None:
        response = await self.router.handle(request)
        self.transport.send(response)

    async def serve(self, reader: Any) -> None:
        """Serve until ``reader`` hits EOF, then drain and shut down."""
        self.start()
        await self.transport.ready()
        logger.info(
            "%s %s serving on stdio (%d feeds)",
            self.router.name,
            self.router.version,
            len(self.registry.names()),
        )
        try:
            while True:
                chunk = await reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                self.transport.on_chunk(chunk)
            self.transport.feed_eof()
            logger.info("Input closed; waiting for %d in-flight requests", len(self._inflight))
            await self.drain()
        finally:
            await self.stop()

    async def drain(self) -> None:
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    async def stop(self) -> None:
        self.transport.close()
        for task in list(self._inflight):
            task.cancel()
        await self.registry.close()


async def open_stdin_reader() -> asyncio.StreamReader:
    """Attach the process stdin to an asyncio stream reader."""
    loop = asyncio.get_running_loop()
    reader = asyncio.StreamReader()
    protocol = asyncio.StreamReaderProtocol(reader)
    await loop.connect_read_pipe(lambda: protocol, sys.stdin)
    return reader


def build_server(
    config: GathyrConfig,
    *,
    fetcher: Any = None,
    stream: Optional[TextIO] = None,
) -> McpServer:
    """Wire router, registry and feed tools for ``config``."""
    router = ProtocolRouter(config.server.name, config.server.version)
    registry = FeedRegistry(
        fetcher or FeedFetcher(user_agent=config.feed_defaults.user_agent),
        default_refresh_interval_ms=config.feed_defaults.refresh_interval_ms,
        default_max_items=config.feed_defaults.max_items,
    )
    register_feed_tools(router, registry, max_chars=config.server.tool_response_max_chars)
    return McpServer(router, registry, config=config, stream=stream)


async def run_stdio(config: GathyrConfig) -> None:
    server = build_server(config)
    reader = await open_stdin_reader()
    await server.serve(reader)
