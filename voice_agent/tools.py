"""
Tool registry and invocation protocol.

A tool is declared with a static parameter list (name, primitive kind,
required/optional). Arguments proposed by the language model are checked
against that list before the handler ever runs; handler failures are turned
into error text the model can verbalize instead of aborting the turn.
"""

from __future__ import annotations

import asyncio
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Iterator, Mapping, Optional

from logging_setup import Component, StructuredLogger, get_logger

from .errors import ToolArgumentError, ToolExecutionError

ToolHandler = Callable[[dict[str, Any]], Awaitable[str]]


class ParameterKind(str, Enum):
    STRING = "string"
    INTEGER = "integer"
    NUMBER = "number"
    BOOLEAN = "boolean"

    def accepts(self, value: Any) -> bool:
        # bool is a subclass of int; never let True pass as a number
        if self is ParameterKind.BOOLEAN:
            return isinstance(value, bool)
        if isinstance(value, bool):
            return False
        if self is ParameterKind.STRING:
            return isinstance(value, str)
        if self is ParameterKind.INTEGER:
            return isinstance(value, int)
        return isinstance(value, (int, float))


@dataclass(frozen=True)
class ParameterSpec:
    name: str
    kind: ParameterKind
    description: str = ""
    required: bool = True


@dataclass(frozen=True)
class ToolDescriptor:
    """A callable function offered to the responder."""

    name: str
    description: str
    parameters: tuple[ParameterSpec, ...]
    handler: ToolHandler

    def json_schema(self) -> dict[str, Any]:
        """Parameters as a JSON-schema object, the shape LLM tool APIs expect."""
        properties: dict[str, Any] = {}
        for param in self.parameters:
            prop: dict[str, Any] = {"type": param.kind.value}
            if param.description:
                prop["description"] = param.description
            properties[param.name] = prop
        return {
            "type": "object",
            "properties": properties,
            "required": [p.name for p in self.parameters if p.required],
            "additionalProperties": False,
        }


@dataclass(frozen=True)
class ToolCallIntent:
    """A tool call requested by the responder."""

    name: str
    arguments: Mapping[str, Any]
    call_id: str = field(default_factory=lambda: f"call_{uuid.uuid4().hex[:12]}")


@dataclass(frozen=True)
class ToolResult:
    intent: ToolCallIntent
    output: str
    is_error: bool = False
    latency_ms: int = 0


class ToolRegistry:
    """Name -> ToolDescriptor. Frozen once a session starts."""

    def __init__(self, tools: Optional[list[ToolDescriptor]] = None):
        self._tools: dict[str, ToolDescriptor] = {}
        self._frozen = False
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: ToolDescriptor) -> None:
        if self._frozen:
            raise RuntimeError("tool registry is frozen; register tools before the session starts")
        if tool.name in self._tools:
            raise ValueError(f"tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __iter__(self) -> Iterator[ToolDescriptor]:
        return iter(list(self._tools.values()))

    def __len__(self) -> int:
        return len(self._tools)


class ToolInvoker:
    """
    Validates and executes tool calls for one session.

    Every call produces a ToolResult; failures come back as error text
    ("Error: ...") rather than exceptions. Cancellation still propagates.
    """

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        logger: Optional[StructuredLogger] = None,
        now: Callable[[], float] = time.perf_counter,
    ):
        self.registry = registry
        self.logger = logger or get_logger(Component.TOOLS)
        self._now = now

    def validate(self, intent: ToolCallIntent) -> ToolDescriptor:
        """Return the descriptor for `intent`, or raise ToolArgumentError."""
        tool = self.registry.get(intent.name)
        if tool is None:
            raise ToolArgumentError(f"unknown tool '{intent.name}'", tool_name=intent.name)
        if not isinstance(intent.arguments, Mapping):
            raise ToolArgumentError("arguments must be an object", tool_name=intent.name)

        declared = {p.name: p for p in tool.parameters}
        for param in tool.parameters:
            if param.name not in intent.arguments:
                if param.required:
                    raise ToolArgumentError(
                        f"missing required argument '{param.name}'", tool_name=intent.name
                    )
                continue
            value = intent.arguments[param.name]
            if not param.kind.accepts(value):
                raise ToolArgumentError(
                    f"argument '{param.name}' must be of type {param.kind.value}, "
                    f"got {type(value).__name__}",
                    tool_name=intent.name,
                )

        unexpected = sorted(set(intent.arguments) - set(declared))
        if unexpected:
            raise ToolArgumentError(
                f"unexpected argument(s): {', '.join(unexpected)}", tool_name=intent.name
            )
        return tool

    async def invoke(self, intent: ToolCallIntent) -> ToolResult:
        t_start = self._now()
        try:
            tool = self.validate(intent)
        except ToolArgumentError as e:
            self.logger.warning(
                "Tool call rejected",
                tool=intent.name,
                call_id=intent.call_id,
                error=str(e),
            )
            return ToolResult(intent=intent, output=f"Error: {e}", is_error=True)

        self.logger.debug_pii("Executing tool", tool=intent.name, arguments=dict(intent.arguments))
        try:
            output = await tool.handler(dict(intent.arguments))
        except ToolExecutionError as e:
            latency_ms = int((self._now() - t_start) * 1000)
            self.logger.warning(
                "Tool execution failed",
                tool=intent.name,
                call_id=intent.call_id,
                error=str(e),
                status_code=e.status_code,
                latency_ms=latency_ms,
            )
            return ToolResult(intent=intent, output=f"Error: {e}", is_error=True, latency_ms=latency_ms)
        except Exception as e:
            latency_ms = int((self._now() - t_start) * 1000)
            self.logger.warning(
                "Tool execution failed",
                tool=intent.name,
                call_id=intent.call_id,
                error=str(e),
                error_type=type(e).__name__,
                latency_ms=latency_ms,
            )
            wrapped = ToolExecutionError(str(e) or type(e).__name__, tool_name=intent.name)
            return ToolResult(intent=intent, output=f"Error: {wrapped}", is_error=True, latency_ms=latency_ms)

        latency_ms = int((self._now() - t_start) * 1000)
        self.logger.info(
            "Tool executed",
            tool=intent.name,
            call_id=intent.call_id,
            latency_ms=latency_ms,
        )
        return ToolResult(intent=intent, output=str(output), latency_ms=latency_ms)

    async def invoke_all(self, intents: list[ToolCallIntent]) -> list[ToolResult]:
        """Run one round of calls concurrently; results keep issue order."""
        return list(await asyncio.gather(*(self.invoke(intent) for intent in intents)))
