"""
Line-delimited JSON transport over stdio.

One JSON message per ``\\n``-terminated line. The first enveloped
(JSON-RPC-shaped) message commits the session to the enveloped dialect;
until then responses are written in the native ``{type, ...}`` shape.

Clients that never send ``initialize`` still get a handshake: the first
unparseable line, or the end of the ``ready()`` grace window, synthesizes a
default ``initialize`` request. At most one handshake is synthesized per
session.
"""

from __future__ import annotations

import asyncio
import codecs
import json
import logging
import sys
from typing import Any, Callable, Optional, TextIO, Union

from gathyr.errors import TransportParseError

from .protocol import INITIALIZE, Dialect, Request, Response, decode_message

logger = logging.getLogger("Gathyr.mcp.transport")


class StdioTransport:
    """Frames inbound chunks into requests and writes serialized responses."""

    def __init__(
        self,
        on_request: Callable[[Request], Any],
        stream: Optional[TextIO] = None,
        handshake_grace_seconds: float = 0.1,
    ) -> None:
        self.on_request = on_request
        self._stream = stream if stream is not None else sys.stdout
        self.handshake_grace_seconds = handshake_grace_seconds

        self.dialect = Dialect.NATIVE
        self.handshake_emitted = False
        self.closed = False

        self._buffer = ""
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._handshake_handle: Optional[asyncio.TimerHandle] = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    def on_chunk(self, data: Union[bytes, str]) -> None:
        """Append a chunk and emit a request for every complete line."""
        if isinstance(data, bytes):
            data = self._decoder.decode(data)
        self._buffer += data

        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            line = line.strip()
            if line:
                self._handle_line(line)

    def feed_eof(self) -> None:
        """Flush the decoder; a trailing unterminated line is discarded."""
        tail = self._decoder.decode(b"", final=True)
        leftover = (self._buffer + tail).strip()
        self._buffer = ""
        if leftover:
            logger.debug("Discarding unterminated line at EOF (%d chars)", len(leftover))

    def _handle_line(self, line: str) -> None:
        try:
            request = decode_message(json.loads(line))
        except (json.JSONDecodeError, TransportParseError) as exc:
            self._on_parse_failure(line, exc)
            return

        if request is None:
            # Notifications only exist in the enveloped dialect.
            self._commit_enveloped()
            logger.debug("Ignoring notification: %s", line[:200])
            return

        if request.dialect is Dialect.ENVELOPED:
            self._commit_enveloped()
        self._emit(request)

    def _on_parse_failure(self, line: str, exc: Exception) -> None:
        if not self.handshake_emitted:
            logger.warning("Unparseable first message (%s); assuming initialize", exc)
            self._emit(Request.default_initialize())
            return
        logger.warning("Dropping unparseable message (%s): %s", exc, line[:200])

    def _commit_enveloped(self) -> None:
        if self.dialect is not Dialect.ENVELOPED:
            logger.debug("Session dialect committed to enveloped")
            self.dialect = Dialect.ENVELOPED

    def _emit(self, request: Request) -> None:
        if request.type == INITIALIZE:
            self.handshake_emitted = True
            self._cancel_handshake_timer()
        self.on_request(request)

    # ------------------------------------------------------------------
    # Handshake recovery
    # ------------------------------------------------------------------

    async def ready(self) -> bool:
        """Arm the one-shot handshake fallback. Always returns True."""
        if not self.handshake_emitted and self._handshake_handle is None:
            loop = asyncio.get_running_loop()
            self._handshake_handle = loop.call_later(
                self.handshake_grace_seconds, self._synthesize_handshake
            )
        return True

    def _synthesize_handshake(self) -> None:
        self._handshake_handle = None
        if self.handshake_emitted or self.closed:
            return
        logger.info(
            "No initialize received within %.2fs; synthesizing handshake",
            self.handshake_grace_seconds,
        )
        self._emit(Request.default_initialize())

    def _cancel_handshake_timer(self) -> None:
        if self._handshake_handle is not None:
            self._handshake_handle.cancel()
            self._handshake_handle = None

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def serialize(self, response: Response) -> dict:
        if self.dialect is Dialect.ENVELOPED:
            return response.to_enveloped()
        return response.to_native()

    def send(self, response: Response) -> None:
        """Write one response line. Write failures are logged, never raised."""
        if self.closed:
            return
        try:
            serialized = json.dumps(self.serialize(response))
            self._stream.write(serialized + "\n")
            self._stream.flush()
        except BrokenPipeError as exc:
            self.closed = True
            logger.warning("Stdio transport closed while sending: %s", exc)
        except (TypeError, ValueError, OSError) as exc:
            if getattr(self._stream, "closed", False):
                self.closed = True
            logger.error("Failed to send %s response: %s", response.type, exc)

    def close(self) -> None:
        self._cancel_handshake_timer()
        self.closed = True

