"""
Gathyr MCP Protocol Constants & Message Shapes

Two inbound dialects are accepted on the wire:

* native:    ``{"type": ..., ...fields}``
* enveloped: ``{"jsonrpc": "2.0", "id": ..., "method": ..., "params": ...}``

Any JSON object carrying ``"jsonrpc": "2.0"`` is enveloped; every other
object is native. Field values are taken as sent and never rejected: a
malformed ``type`` or ``method`` reaches the router as an unknown request
type, and non-object ``params`` read as empty. Both dialects decode to the same normalized
:class:`Request`; the router answers with a normalized :class:`Response`
that the transport serializes back in the session's dialect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict

from gathyr.errors import TransportParseError

JSONRPC_VERSION = "2.0"
NOTIFICATION_PREFIX = "notifications/"

# Enveloped errors always carry this code, whatever the failure kind.
INTERNAL_ERROR = -32603

# Request types
INITIALIZE = "initialize"
CAPABILITIES = "capabilities"
TOOLS_LIST = "tools/list"
TOOL = "tool"
RESOURCE = "resource"
TOOLS_CALL = "tools/call"

# Response types
INITIALIZE_RESULT = "initialize_result"
CAPABILITIES_RESULT = "capabilities_result"
TOOLS_LIST_RESULT = "tools/list_result"
TOOL_RESULT = "tool_result"
RESOURCE_RESULT = "resource_result"
ERROR = "error"

# Ids are echoed back verbatim, whatever JSON value the client sent.
RequestId = Any


class Dialect(str, Enum):
    NATIVE = "native"
    ENVELOPED = "enveloped"


class EnvelopedMessage(BaseModel):
    """JSON-RPC-2.0-shaped inbound message."""
    model_config = ConfigDict(extra="ignore")

    jsonrpc: str
    method: Any = None
    id: RequestId = None
    params: Any = None

    @property
    def is_notification(self) -> bool:
        return isinstance(self.method, str) and self.method.startswith(NOTIFICATION_PREFIX)


class NativeMessage(BaseModel):
    """Native inbound message: an object with an optional ``type`` tag."""
    model_config = ConfigDict(extra="allow")

    type: Any = None
    id: RequestId = None
    name: Any = None
    params: Any = None


@dataclass
class Request:
    """Normalized request handed to the router."""

    type: Any
    id: RequestId = None
    name: Any = None
    params: Dict[str, Any] = field(default_factory=dict)
    dialect: Dialect = Dialect.NATIVE
    synthetic: bool = False

    @classmethod
    def default_initialize(cls) -> "Request":
        return cls(type=INITIALIZE, synthetic=True)


@dataclass
class Response:
    """Normalized response produced by the router."""

    type: str
    id: RequestId = None
    body: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def error(cls, message: str, request_id: RequestId = None) -> "Response":
        return cls(type=ERROR, id=request_id, body={"error": {"message": message}})

    @property
    def error_message(self) -> Optional[str]:
        if self.type != ERROR:
            return None
        return self.body.get("error", {}).get("message")

    def to_native(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"type": self.type}
        if self.id is not None:
            message["id"] = self.id
        message.update(self.body)
        return message

    def to_enveloped(self) -> Dict[str, Any]:
        message: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.type == ERROR:
            message["error"] = {
                "code": INTERNAL_ERROR,
                "message": self.error_message or "Unknown error",
            }
        elif self.type == INITIALIZE_RESULT:
            capabilities = self.body.get("capabilities", {})
            message["result"] = {
                "serverInfo": self.body.get("server", {}),
                "capabilities": {
                    "tools": [
                        {
                            "name": name,
                            "description": definition.get("description", ""),
                            "parameters": definition.get("params", {}),
                        }
                        for name, definition in capabilities.get("tools", {}).items()
                    ],
                    "resources": {},
                },
            }
        elif self.type == CAPABILITIES_RESULT:
            message["result"] = self.body.get("capabilities", {})
        else:
            message["result"] = self.body.get("result")
        return message


def _params_dict(value: Any) -> Dict[str, Any]:
    return dict(value) if isinstance(value, dict) else {}


def _from_enveloped(message: EnvelopedMessage) -> Request:
    params = _params_dict(message.params)
    if message.method in (TOOL, RESOURCE):
        return Request(
            type=message.method,
            id=message.id,
            name=params.get("name"),
            params=_params_dict(params.get("params")),
            dialect=Dialect.ENVELOPED,
        )
    if message.method == TOOLS_CALL:
        return Request(
            type=TOOL,
            id=message.id,
            name=params.get("name"),
            params=_params_dict(params.get("arguments")),
            dialect=Dialect.ENVELOPED,
        )
    return Request(
        type=message.method,
        id=message.id,
        params=params,
        dialect=Dialect.ENVELOPED,
    )


def decode_message(payload: Any) -> Optional[Request]:
    """
    Decode one parsed JSON value into a normalized request.

    Returns None for enveloped notifications, which never get a response.
    Raises TransportParseError when the value is not a JSON object; every
    object decodes to a request.
    """
    if not isinstance(payload, dict):
        raise TransportParseError("message is not a JSON object")

    if payload.get("jsonrpc") == JSONRPC_VERSION:
        enveloped = EnvelopedMessage.model_validate(payload)
        if enveloped.is_notification:
            return None
        return _from_enveloped(enveloped)

    native = NativeMessage.model_validate(payload)
    return Request(
        type=native.type,
        id=native.id,
        name=native.name,
        params=_params_dict(native.params),
        dialect=Dialect.NATIVE,
    )
