import asyncio
import io
import json
import logging

import pytest

from gathyr.mcp.protocol import (
    CAPABILITIES_RESULT,
    INITIALIZE_RESULT,
    TOOL_RESULT,
    Dialect,
    Response,
)
from gathyr.mcp.transport import StdioTransport


def _transport(grace=0.1):
    requests = []
    stream = io.StringIO()
    transport = StdioTransport(requests.append, stream=stream, handshake_grace_seconds=grace)
    return transport, requests, stream


def _written(stream):
    return [json.loads(line) for line in stream.getvalue().splitlines()]


class _BrokenPipeStream:
    def __init__(self) -> None:
        self.writes = 0

    def write(self, data):
        self.writes += 1
        raise BrokenPipeError(32, "Broken pipe")

    def flush(self):
        pass


class TestFraming:
    def test_partial_line_is_kept_for_the_next_chunk(self):
        transport, requests, _ = _transport()

        transport.on_chunk(b'{"type": "capab')
        assert requests == []

        transport.on_chunk(b'ilities"}\n{"type": "tools/list"}\n{"type": "ini')
        assert [request.type for request in requests] == ["capabilities", "tools/list"]

        transport.on_chunk('tialize"}\n')
        assert [request.type for request in requests] == [
            "capabilities",
            "tools/list",
            "initialize",
        ]

    def test_blank_lines_are_skipped(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b'\n   \n{"type": "capabilities"}\r\n\n')
        assert [request.type for request in requests] == ["capabilities"]

    def test_multibyte_character_split_across_chunks(self):
        transport, requests, _ = _transport()
        line = json.dumps(
            {"type": "tool", "name": "get-feed", "params": {"feedName": "café"}},
            ensure_ascii=False,
        ).encode("utf-8") + b"\n"
        split_at = line.index("é".encode("utf-8")) + 1

        transport.on_chunk(line[:split_at])
        transport.on_chunk(line[split_at:])

        assert len(requests) == 1
        assert requests[0].params == {"feedName": "café"}


class TestDecoding:
    def test_native_message_fields_are_lifted(self):
        transport, requests, _ = _transport()
        transport.on_chunk(
            b'{"type": "tool", "id": "a1", "name": "get-feed", "params": {"feedName": "news"}}\n'
        )

        request = requests[0]
        assert request.type == "tool"
        assert request.id == "a1"
        assert request.name == "get-feed"
        assert request.params == {"feedName": "news"}
        assert request.dialect is Dialect.NATIVE
        assert transport.dialect is Dialect.NATIVE

    def test_enveloped_tool_call_is_normalized(self):
        transport, requests, _ = _transport()
        transport.on_chunk(
            b'{"jsonrpc": "2.0", "id": 3, "method": "tool",'
            b' "params": {"name": "search-feeds", "params": {"query": "tech"}}}\n'
        )

        request = requests[0]
        assert request.type == "tool"
        assert request.id == 3
        assert request.name == "search-feeds"
        assert request.params == {"query": "tech"}
        assert transport.dialect is Dialect.ENVELOPED

    def test_tools_call_is_accepted_as_tool_alias(self):
        transport, requests, _ = _transport()
        transport.on_chunk(
            b'{"jsonrpc": "2.0", "id": 4, "method": "tools/call",'
            b' "params": {"name": "get-feed", "arguments": {"feedName": "news"}}}\n'
        )

        assert requests[0].type == "tool"
        assert requests[0].name == "get-feed"
        assert requests[0].params == {"feedName": "news"}

    def test_unknown_enveloped_method_is_passed_through(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 5, "method": "prompts/list"}\n')
        assert requests[0].type == "prompts/list"

    def test_notifications_emit_no_request_but_commit_dialect(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "method": "notifications/initialized"}\n')

        assert requests == []
        assert transport.dialect is Dialect.ENVELOPED

    def test_enveloped_dialect_never_reverts(self):
        transport, requests, stream = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 1, "method": "capabilities"}\n')
        transport.on_chunk(b'{"type": "capabilities", "id": 2}\n')

        assert transport.dialect is Dialect.ENVELOPED
        transport.send(Response(type=CAPABILITIES_RESULT, id=2, body={"capabilities": {}}))
        assert _written(stream) == [{"jsonrpc": "2.0", "id": 2, "result": {}}]

    def test_enveloped_message_with_odd_params_still_commits_dialect(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 3, "method": "tools/list", "params": []}\n')
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 4, "method": "tool", "params": "get-feed"}\n')

        assert [(request.type, request.id) for request in requests] == [
            ("tools/list", 3),
            ("tool", 4),
        ]
        assert requests[0].params == {}
        assert requests[1].name is None
        assert transport.dialect is Dialect.ENVELOPED

    def test_enveloped_non_string_method_is_passed_through(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 5, "method": 42}\n')

        assert requests[0].type == 42
        assert transport.dialect is Dialect.ENVELOPED

    def test_any_json_object_decodes_as_native_request(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b'{"type": 5, "id": 1}\n')
        transport.on_chunk(b'{"type": "tool", "id": 2, "name": "list-feeds", "params": []}\n')
        transport.on_chunk(b'{"type": "capabilities", "id": {"k": 1}}\n')

        assert [request.type for request in requests] == [5, "tool", "capabilities"]
        assert requests[1].params == {}
        assert requests[2].id == {"k": 1}
        assert transport.dialect is Dialect.NATIVE
        assert transport.handshake_emitted is False


class TestHandshakeRecovery:
    def test_unparseable_first_line_synthesizes_initialize(self, caplog):
        transport, requests, _ = _transport()

        with caplog.at_level(logging.WARNING, logger="Gathyr.mcp.transport"):
            transport.on_chunk(b"not json\n")

        assert len(requests) == 1
        assert requests[0].type == "initialize"
        assert requests[0].synthetic is True
        assert transport.handshake_emitted is True

    def test_later_unparseable_lines_are_dropped(self, caplog):
        transport, requests, _ = _transport()
        transport.on_chunk(b'{"type": "initialize"}\n')

        with caplog.at_level(logging.WARNING, logger="Gathyr.mcp.transport"):
            transport.on_chunk(b"still not json\n")

        assert [request.type for request in requests] == ["initialize"]
        assert "Dropping unparseable message" in caplog.text

    def test_non_object_json_counts_as_parse_failure(self):
        transport, requests, _ = _transport()
        transport.on_chunk(b"[1, 2, 3]\n")
        transport.on_chunk(b'"just a string"\n')

        assert [request.type for request in requests] == ["initialize"]

    @pytest.mark.asyncio
    async def test_ready_synthesizes_initialize_once_after_grace(self):
        transport, requests, _ = _transport(grace=0.01)

        assert await transport.ready() is True
        assert await transport.ready() is True
        await asyncio.sleep(0.05)

        assert [request.type for request in requests] == ["initialize"]
        assert requests[0].synthetic is True

    @pytest.mark.asyncio
    async def test_ready_skips_synthesis_when_client_initializes(self):
        transport, requests, _ = _transport(grace=0.01)

        await transport.ready()
        transport.on_chunk(b'{"type": "initialize", "id": 1}\n')
        await asyncio.sleep(0.05)

        assert len(requests) == 1
        assert requests[0].synthetic is False


class TestSend:
    def test_native_response_keeps_its_shape(self):
        transport, _, stream = _transport()
        transport.send(
            Response(type=INITIALIZE_RESULT, body={"server": {"name": "s", "version": "1"}})
        )
        transport.send(Response(type=TOOL_RESULT, id=9, body={"result": {"ok": True}}))

        assert _written(stream) == [
            {"type": "initialize_result", "server": {"name": "s", "version": "1"}},
            {"type": "tool_result", "id": 9, "result": {"ok": True}},
        ]

    def test_enveloped_response_carries_request_id(self):
        transport, requests, stream = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 7, "method": "tool", "params": {"name": "x"}}\n')

        transport.send(Response(type=TOOL_RESULT, id=requests[0].id, body={"result": "done"}))

        assert _written(stream) == [{"jsonrpc": "2.0", "id": 7, "result": "done"}]

    def test_enveloped_initialize_result_shape(self):
        transport, _, stream = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 1, "method": "initialize"}\n')
        transport.send(
            Response(
                type=INITIALIZE_RESULT,
                id=1,
                body={
                    "server": {"name": "opengathyr", "version": "1.0.0"},
                    "capabilities": {
                        "tools": {"list-feeds": {"description": "List", "params": {}}},
                        "resources": {},
                    },
                },
            )
        )

        (message,) = _written(stream)
        assert message["jsonrpc"] == "2.0"
        assert message["id"] == 1
        assert message["result"]["serverInfo"] == {"name": "opengathyr", "version": "1.0.0"}
        assert message["result"]["capabilities"]["tools"] == [
            {"name": "list-feeds", "description": "List", "parameters": {}}
        ]

    def test_enveloped_errors_use_single_internal_code(self):
        transport, _, stream = _transport()
        transport.on_chunk(b'{"jsonrpc": "2.0", "id": 8, "method": "bogus"}\n')
        transport.send(Response.error("Unknown request type: bogus", 8))

        assert _written(stream) == [
            {
                "jsonrpc": "2.0",
                "id": 8,
                "error": {"code": -32603, "message": "Unknown request type: bogus"},
            }
        ]

    def test_broken_pipe_closes_transport_without_raising(self, caplog):
        requests = []
        stream = _BrokenPipeStream()
        transport = StdioTransport(requests.append, stream=stream)

        with caplog.at_level(logging.WARNING, logger="Gathyr.mcp.transport"):
            transport.send(Response(type=TOOL_RESULT, body={"result": 1}))
            transport.send(Response(type=TOOL_RESULT, body={"result": 2}))

        assert transport.closed is True
        assert stream.writes == 1
        assert "closed while sending" in caplog.text

    def test_unserializable_payload_is_logged_and_discarded(self, caplog):
        transport, _, stream = _transport()

        with caplog.at_level(logging.ERROR, logger="Gathyr.mcp.transport"):
            transport.send(Response(type=TOOL_RESULT, body={"result": object()}))

        assert stream.getvalue() == ""
        assert transport.closed is False
        assert "Failed to send tool_result" in caplog.text
