"""
Tests for the tool registry and invoker.

Verifies:
- Arguments are validated before the handler runs
- Handler failures come back as error text, never as exceptions
- Results of one round keep issue order regardless of completion order
"""
import asyncio

import pytest

from voice_agent.errors import ToolArgumentError, ToolExecutionError
from voice_agent.tools import (
    ParameterKind,
    ParameterSpec,
    ToolCallIntent,
    ToolDescriptor,
    ToolInvoker,
    ToolRegistry,
)


class RecordingHandler:
    def __init__(self, result="ok", error=None, delay=0.0):
        self.calls = []
        self.result = result
        self.error = error
        self.delay = delay

    async def __call__(self, arguments):
        self.calls.append(arguments)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _tool(name="weather", handler=None, parameters=None):
    return ToolDescriptor(
        name=name,
        description=f"{name} tool",
        parameters=parameters
        if parameters is not None
        else (ParameterSpec(name="location", kind=ParameterKind.STRING),),
        handler=handler or RecordingHandler(),
    )


class TestRegistry:
    def test_register_and_lookup(self):
        tool = _tool()
        registry = ToolRegistry([tool])

        assert "weather" in registry
        assert registry.get("weather") is tool
        assert [t.name for t in registry] == ["weather"]
        assert len(registry) == 1

    def test_duplicate_name_rejected(self):
        registry = ToolRegistry([_tool()])
        with pytest.raises(ValueError):
            registry.register(_tool())

    def test_frozen_registry_rejects_registration(self):
        registry = ToolRegistry()
        registry.freeze()

        assert registry.frozen
        with pytest.raises(RuntimeError):
            registry.register(_tool())

    def test_json_schema(self):
        tool = _tool(
            parameters=(
                ParameterSpec(name="location", kind=ParameterKind.STRING, description="City"),
                ParameterSpec(name="days", kind=ParameterKind.INTEGER, required=False),
            )
        )

        assert tool.json_schema() == {
            "type": "object",
            "properties": {
                "location": {"type": "string", "description": "City"},
                "days": {"type": "integer"},
            },
            "required": ["location"],
            "additionalProperties": False,
        }


class TestParameterKind:
    @pytest.mark.parametrize(
        "kind,value,accepted",
        [
            (ParameterKind.STRING, "Paris", True),
            (ParameterKind.STRING, 3, False),
            (ParameterKind.INTEGER, 3, True),
            (ParameterKind.INTEGER, 3.5, False),
            (ParameterKind.INTEGER, True, False),
            (ParameterKind.NUMBER, 3.5, True),
            (ParameterKind.NUMBER, 3, True),
            (ParameterKind.NUMBER, False, False),
            (ParameterKind.BOOLEAN, True, True),
            (ParameterKind.BOOLEAN, 1, False),
        ],
    )
    def test_accepts(self, kind, value, accepted):
        assert kind.accepts(value) is accepted


class TestValidation:
    def setup_method(self):
        self.handler = RecordingHandler()
        self.invoker = ToolInvoker(ToolRegistry([_tool(handler=self.handler)]))

    def test_valid_call(self):
        tool = self.invoker.validate(ToolCallIntent(name="weather", arguments={"location": "Paris"}))
        assert tool.name == "weather"

    def test_unknown_tool(self):
        with pytest.raises(ToolArgumentError, match="unknown tool 'stocks'"):
            self.invoker.validate(ToolCallIntent(name="stocks", arguments={}))

    def test_missing_required_argument(self):
        with pytest.raises(ToolArgumentError, match="missing required argument 'location'"):
            self.invoker.validate(ToolCallIntent(name="weather", arguments={}))

    def test_wrong_type(self):
        with pytest.raises(ToolArgumentError, match="must be of type string, got int"):
            self.invoker.validate(ToolCallIntent(name="weather", arguments={"location": 75001}))

    def test_unexpected_argument(self):
        with pytest.raises(ToolArgumentError, match="unexpected argument"):
            self.invoker.validate(
                ToolCallIntent(name="weather", arguments={"location": "Paris", "units": "metric"})
            )

    def test_non_object_arguments(self):
        with pytest.raises(ToolArgumentError, match="must be an object"):
            self.invoker.validate(ToolCallIntent(name="weather", arguments='{"location":'))

    def test_optional_argument_may_be_omitted(self):
        registry = ToolRegistry([
            _tool(parameters=(
                ParameterSpec(name="location", kind=ParameterKind.STRING),
                ParameterSpec(name="days", kind=ParameterKind.INTEGER, required=False),
            ))
        ])
        invoker = ToolInvoker(registry)

        invoker.validate(ToolCallIntent(name="weather", arguments={"location": "Paris"}))
        with pytest.raises(ToolArgumentError):
            invoker.validate(ToolCallIntent(name="weather", arguments={"location": "Paris", "days": "two"}))


class TestInvoke:
    @pytest.mark.asyncio
    async def test_success(self):
        handler = RecordingHandler(result="The weather in Paris right now is Sunny +21°C.")
        invoker = ToolInvoker(ToolRegistry([_tool(handler=handler)]))
        intent = ToolCallIntent(name="weather", arguments={"location": "Paris"})

        result = await invoker.invoke(intent)

        assert result.intent is intent
        assert result.is_error is False
        assert result.output == "The weather in Paris right now is Sunny +21°C."
        assert handler.calls == [{"location": "Paris"}]

    @pytest.mark.asyncio
    async def test_invalid_call_never_reaches_handler(self):
        handler = RecordingHandler()
        invoker = ToolInvoker(ToolRegistry([_tool(handler=handler)]))

        result = await invoker.invoke(ToolCallIntent(name="weather", arguments={}))

        assert handler.calls == []
        assert result.is_error is True
        assert result.output == "Error: missing required argument 'location'"

    @pytest.mark.asyncio
    async def test_unknown_tool_is_error_text(self):
        invoker = ToolInvoker(ToolRegistry())

        result = await invoker.invoke(ToolCallIntent(name="stocks", arguments={}))

        assert result.is_error is True
        assert result.output == "Error: unknown tool 'stocks'"

    @pytest.mark.asyncio
    async def test_execution_error_is_error_text(self):
        handler = RecordingHandler(
            error=ToolExecutionError("Weather API returned status: 503", tool_name="weather", status_code=503)
        )
        invoker = ToolInvoker(ToolRegistry([_tool(handler=handler)]))

        result = await invoker.invoke(ToolCallIntent(name="weather", arguments={"location": "Paris"}))

        assert result.is_error is True
        assert result.output == "Error: Weather API returned status: 503"

    @pytest.mark.asyncio
    async def test_unexpected_handler_exception_is_error_text(self):
        handler = RecordingHandler(error=KeyError("boom"))
        invoker = ToolInvoker(ToolRegistry([_tool(handler=handler)]))

        result = await invoker.invoke(ToolCallIntent(name="weather", arguments={"location": "Paris"}))

        assert result.is_error is True
        assert result.output.startswith("Error: ")
        assert "boom" in result.output

    @pytest.mark.asyncio
    async def test_latency_measured(self):
        ticks = iter([10.0, 10.25])
        invoker = ToolInvoker(ToolRegistry([_tool()]), now=lambda: next(ticks))

        result = await invoker.invoke(ToolCallIntent(name="weather", arguments={"location": "Paris"}))

        assert result.latency_ms == 250

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        handler = RecordingHandler(delay=10)
        invoker = ToolInvoker(ToolRegistry([_tool(handler=handler)]))

        task = asyncio.create_task(
            invoker.invoke(ToolCallIntent(name="weather", arguments={"location": "Paris"}))
        )
        await asyncio.sleep(0.01)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task


class TestInvokeAll:
    @pytest.mark.asyncio
    async def test_results_keep_issue_order(self):
        slow = _tool(name="slow", handler=RecordingHandler(result="slow done", delay=0.05))
        fast = _tool(name="fast", handler=RecordingHandler(result="fast done"))
        invoker = ToolInvoker(ToolRegistry([slow, fast]))
        intents = [
            ToolCallIntent(name="slow", arguments={"location": "a"}, call_id="call_1"),
            ToolCallIntent(name="fast", arguments={"location": "b"}, call_id="call_2"),
            ToolCallIntent(name="missing", arguments={}, call_id="call_3"),
        ]

        results = await invoker.invoke_all(intents)

        assert [r.intent.call_id for r in results] == ["call_1", "call_2", "call_3"]
        assert [r.output for r in results[:2]] == ["slow done", "fast done"]
        assert results[2].is_error is True

    @pytest.mark.asyncio
    async def test_calls_run_concurrently(self):
        first = _tool(name="first", handler=RecordingHandler(delay=0.2))
        second = _tool(name="second", handler=RecordingHandler(delay=0.2))
        invoker = ToolInvoker(ToolRegistry([first, second]))

        await asyncio.wait_for(
            invoker.invoke_all([
                ToolCallIntent(name="first", arguments={"location": "a"}),
                ToolCallIntent(name="second", arguments={"location": "b"}),
            ]),
            timeout=0.35,
        )

    def test_call_ids_are_unique(self):
        ids = {ToolCallIntent(name="weather", arguments={}).call_id for _ in range(50)}
        assert len(ids) == 50
