"""
Protocol router: capability table plus the request dispatch state machine.

Every request gets exactly one response. All failures raised while
dispatching are converted to an error response at ``handle``; nothing
escapes to the transport except task cancellation.
"""

from __future__ import annotations

import copy
import inspect
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Type, Union

from pydantic import BaseModel, ValidationError

from gathyr.errors import ResourceNotFound, ToolNotFound, UnknownRequestType

from .protocol import (
    CAPABILITIES,
    CAPABILITIES_RESULT,
    INITIALIZE,
    INITIALIZE_RESULT,
    RESOURCE,
    RESOURCE_RESULT,
    TOOL,
    TOOL_RESULT,
    TOOLS_LIST,
    TOOLS_LIST_RESULT,
    Request,
    Response,
)

logger = logging.getLogger("Gathyr.mcp.router")

ParamsSpec = Union[Type[BaseModel], Dict[str, Any], None]


@dataclass
class _Registration:
    kind: str
    name: str
    handler: Callable[..., Any]
    params_model: Optional[Type[BaseModel]] = None


def _is_model_class(params: Any) -> bool:
    return inspect.isclass(params) and issubclass(params, BaseModel)


def _params_schema(params: ParamsSpec) -> Dict[str, Any]:
    if _is_model_class(params):
        return params.model_json_schema(by_alias=True)
    return dict(params or {})


class ProtocolRouter:
    """Holds registered tools and resources and dispatches requests to them."""

    def __init__(self, name: str, version: str) -> None:
        self.name = name
        self.version = version
        self._tools: Dict[str, _Registration] = {}
        self._resources: Dict[str, _Registration] = {}
        self._capabilities: Dict[str, Dict[str, Any]] = {"tools": {}, "resources": {}}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        description: str,
        params: ParamsSpec,
        handler: Callable[..., Any],
    ) -> None:
        """Register (or replace) a tool. Last registration wins."""
        if name in self._tools:
            logger.debug("Replacing tool registration: %s", name)
        self._tools[name] = _Registration(
            kind=TOOL,
            name=name,
            handler=handler,
            params_model=params if _is_model_class(params) else None,
        )
        self._capabilities["tools"][name] = {
            "description": description,
            "params": _params_schema(params),
        }

    tool = register

    def resource(
        self,
        name: str,
        description: str,
        handler: Callable[..., Any],
        params: ParamsSpec = None,
    ) -> None:
        self._resources[name] = _Registration(
            kind=RESOURCE,
            name=name,
            handler=handler,
            params_model=params if _is_model_class(params) else None,
        )
        self._capabilities["resources"][name] = {"description": description}

    @property
    def capabilities(self) -> Dict[str, Dict[str, Any]]:
        return copy.deepcopy(self._capabilities)

    def tool_names(self) -> List[str]:
        return list(self._tools)

    def list_tools(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": name,
                "description": definition["description"],
                "parameters": copy.deepcopy(definition["params"]),
            }
            for name, definition in self._capabilities["tools"].items()
        ]

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    async def handle(self, request: Request) -> Response:
        try:
            return await self._dispatch(request)
        except Exception as exc:
            logger.warning(
                "Request %s (id=%r) failed: %s", request.type, request.id, exc
            )
            return Response.error(str(exc) or type(exc).__name__, request.id)

    async def _dispatch(self, request: Request) -> Response:
        request_type = request.type
        if request_type is None or request_type == INITIALIZE:
            return Response(
                type=INITIALIZE_RESULT,
                id=request.id,
                body={
                    "server": {"name": self.name, "version": self.version},
                    "capabilities": self.capabilities,
                },
            )
        if request_type == CAPABILITIES:
            return Response(
                type=CAPABILITIES_RESULT,
                id=request.id,
                body={"capabilities": self.capabilities},
            )
        if request_type == TOOLS_LIST:
            return Response(
                type=TOOLS_LIST_RESULT,
                id=request.id,
                body={"result": self.list_tools()},
            )
        if request_type == TOOL:
            registration = self._lookup(self._tools, request.name, ToolNotFound)
            result = await self._invoke(registration, request.params)
            return Response(type=TOOL_RESULT, id=request.id, body={"result": result})
        if request_type == RESOURCE:
            registration = self._lookup(self._resources, request.name, ResourceNotFound)
            result = await self._invoke(registration, request.params)
            return Response(type=RESOURCE_RESULT, id=request.id, body={"result": result})
        raise UnknownRequestType(request_type)

    @staticmethod
    def _lookup(
        registry: Dict[str, _Registration],
        name: Any,
        not_found: Callable[[Any], Exception],
    ) -> _Registration:
        if not isinstance(name, str) or name not in registry:
            raise not_found(name)
        return registry[name]

    async def _invoke(self, registration: _Registration, params: Optional[Dict[str, Any]]) -> Any:
        arguments: Any = params or {}
        if registration.params_model is not None:
            try:
                arguments = registration.params_model.model_validate(arguments)
            except ValidationError as exc:
                raise ValueError(
                    f"Invalid params for {registration.kind} '{registration.name}': "
                    f"{_summarize_validation(exc)}"
                ) from exc

        result = registration.handler(arguments)
        if inspect.isawaitable(result):
            result = await result
        return result


def _summarize_validation(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ())) or "params"
        parts.append(f"{location}: {error.get('msg', 'invalid')}")
    return "; ".join(parts)
