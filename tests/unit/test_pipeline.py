# Copyright 2025 Vijaykumar Singh <singhvjd@gmail.com>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the event pipeline."""

import logging

import pytest

from stepgraph.framework.engine import ExecutionEngine
from stepgraph.framework.events import (
    NodeExecutionEndEvent,
    NodeExecutionStartEvent,
    StrategyStartEvent,
    ToolCallEvent,
    ToolCallResultEvent,
)
from stepgraph.framework.graph import StrategyGraph
from stepgraph.framework.pipeline import EventPipeline, MessageProcessor


class FailingOnToolCallProcessor(MessageProcessor):
    """Processor that raises on every ToolCallEvent."""

    def __init__(self):
        super().__init__()
        self.seen = []

    async def process_message(self, event) -> None:
        if isinstance(event, ToolCallEvent):
            raise RuntimeError("cannot handle tool calls")
        self.seen.append(event.event_id)


class FailingCloseProcessor(MessageProcessor):
    async def process_message(self, event) -> None:
        pass

    async def close(self) -> None:
        await super().close()
        raise OSError("close failed")


class TestEventPipelineDispatch:
    """Tests for event dispatch."""

    @pytest.mark.asyncio
    async def test_zero_processors(self):
        """Test intercept with no processors is a no-op."""
        pipeline = EventPipeline()

        await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert pipeline.processors == ()

    @pytest.mark.asyncio
    async def test_registration_order(self):
        """Test processors receive events in registration order."""
        calls = []

        class Tagging(MessageProcessor):
            def __init__(self, tag):
                super().__init__()
                self.tag = tag

            async def process_message(self, event):
                calls.append(self.tag)

        pipeline = EventPipeline()
        pipeline.add_processor(Tagging("first")).add_processor(Tagging("second"))

        await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert calls == ["first", "second"]

    @pytest.mark.asyncio
    async def test_filter_rejects_events(self, recorder):
        """Test events rejected by the filter never reach processors."""
        pipeline = EventPipeline(
            event_filter=lambda event: not isinstance(event, NodeExecutionStartEvent),
            processors=[recorder],
        )

        await pipeline.intercept(NodeExecutionStartEvent(node_name="a", input=1))
        await pipeline.intercept(NodeExecutionEndEvent(node_name="a", input=1, output=2))

        assert recorder.event_ids() == ["NodeExecutionEndEvent"]

    @pytest.mark.asyncio
    async def test_failing_filter_drops_event(self, recorder, caplog):
        """Test a filter that raises drops the event and logs a warning."""

        def broken_filter(event):
            raise KeyError("oops")

        pipeline = EventPipeline(event_filter=broken_filter, processors=[recorder])

        with caplog.at_level(logging.WARNING, logger="stepgraph.framework.pipeline"):
            await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert recorder.events == []
        assert "Event filter failed" in caplog.text

    @pytest.mark.asyncio
    async def test_set_filter_replaces_filter(self, recorder):
        pipeline = EventPipeline(event_filter=lambda event: False, processors=[recorder])
        pipeline.set_filter(None)

        await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert recorder.event_ids() == ["StrategyStartEvent"]


class TestProcessorIsolation:
    """Tests for processor failure isolation."""

    @pytest.mark.asyncio
    async def test_failing_processor_is_isolated(self, recorder, caplog):
        """Test a raising processor is logged and later processors still run."""
        failing = FailingOnToolCallProcessor()
        pipeline = EventPipeline(processors=[failing, recorder])

        with caplog.at_level(logging.WARNING, logger="stepgraph.framework.pipeline"):
            await pipeline.intercept(ToolCallEvent(tool_name="search", tool_args={}))

        assert recorder.event_ids() == ["ToolCallEvent"]
        assert "FailingOnToolCallProcessor" in caplog.text
        assert "cannot handle tool calls" in caplog.text

    @pytest.mark.asyncio
    async def test_failing_processor_does_not_stop_run(self, recorder):
        """Test a processor raising on tool calls neither aborts the run nor starves others."""

        async def use_tool(ctx, query):
            await ctx.emit(ToolCallEvent(tool_name="search", tool_args={"q": query}))
            await ctx.emit(ToolCallResultEvent(tool_name="search", tool_args={"q": query}, result="found"))
            return "found"

        graph = StrategyGraph("tools")
        graph.add_node("search", use_tool)
        graph.add_node("report", lambda ctx, v: f"result: {v}")
        graph.add_edge("search", "report")
        graph.set_entry_point("search").set_finish_point("report")

        failing = FailingOnToolCallProcessor()
        engine = ExecutionEngine(pipeline=EventPipeline(processors=[failing, recorder]))

        result = await engine.run(graph.compile(), "stepgraph")

        assert result == "result: found"
        assert recorder.event_ids() == [
            "AgentStartedEvent",
            "StrategyStartEvent",
            "NodeExecutionStartEvent",
            "ToolCallEvent",
            "ToolCallResultEvent",
            "NodeExecutionEndEvent",
            "NodeExecutionStartEvent",
            "NodeExecutionEndEvent",
            "StrategyFinishedEvent",
            "AgentFinishedEvent",
        ]
        assert "ToolCallEvent" not in failing.seen
        assert "ToolCallResultEvent" in failing.seen


class TestSubscribers:
    """Tests for context-aware subscribers."""

    @pytest.mark.asyncio
    async def test_subscriber_receives_context(self):
        """Test subscribers get the event and the run context."""
        received = []
        pipeline = EventPipeline()
        pipeline.subscribe(StrategyStartEvent, lambda event, ctx: received.append((event.strategy_name, ctx)))
        marker = object()

        await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"), marker)

        assert received == [("s", marker)]

    @pytest.mark.asyncio
    async def test_subscribers_bypass_filter(self):
        """Test the filter only applies to processors."""
        received = []

        async def handler(event, ctx):
            received.append(event.event_id)

        pipeline = EventPipeline(event_filter=lambda event: False)
        pipeline.subscribe(StrategyStartEvent, handler)

        await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert received == ["StrategyStartEvent"]

    @pytest.mark.asyncio
    async def test_failing_subscriber_is_isolated(self, recorder):
        """Test a raising subscriber does not block processors."""

        def handler(event, ctx):
            raise RuntimeError("subscriber failed")

        pipeline = EventPipeline(processors=[recorder])
        pipeline.subscribe(StrategyStartEvent, handler)

        await pipeline.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert recorder.event_ids() == ["StrategyStartEvent"]


class TestPipelineScope:
    """Tests for processor open/close scoping."""

    @pytest.mark.asyncio
    async def test_context_manager_opens_and_closes(self, recorder):
        pipeline = EventPipeline(processors=[recorder])

        async with pipeline:
            assert recorder.is_open

        assert not recorder.is_open
        assert recorder.close_calls == 1

    @pytest.mark.asyncio
    async def test_close_failure_does_not_skip_others(self, recorder):
        """Test every processor is closed even if an earlier one fails to close."""
        pipeline = EventPipeline(processors=[FailingCloseProcessor(), recorder])

        async with pipeline:
            pass

        assert recorder.close_calls == 1
        assert not recorder.is_open

    @pytest.mark.asyncio
    async def test_scope_closes_on_error(self, recorder):
        pipeline = EventPipeline(processors=[recorder])

        with pytest.raises(ValueError):
            async with pipeline:
                raise ValueError("run failed")

        assert recorder.close_calls == 1

    @pytest.mark.asyncio
    async def test_shared_processor_stays_open_until_last_scope_exits(self, recorder):
        """Test a processor shared by two pipelines is closed only when both scopes end."""
        first = EventPipeline(processors=[recorder])
        second = EventPipeline(processors=[recorder])

        async with first:
            async with second:
                assert recorder.is_open
            assert recorder.is_open
            await first.intercept(StrategyStartEvent(run_id="r", strategy_name="s"))

        assert not recorder.is_open
        assert recorder.event_ids() == ["StrategyStartEvent"]


class CountingLifecycleProcessor(MessageProcessor):
    """Processor counting how often its resources are acquired and released."""

    def __init__(self):
        super().__init__()
        self.opened = 0
        self.closed = 0

    async def on_open(self) -> None:
        self.opened += 1

    async def on_close(self) -> None:
        self.closed += 1

    async def process_message(self, event) -> None:
        pass


class TestProcessorLifecycle:
    """Tests for MessageProcessor open counting."""

    @pytest.mark.asyncio
    async def test_resources_acquired_once_for_nested_opens(self):
        processor = CountingLifecycleProcessor()

        await processor.initialize()
        await processor.initialize()
        await processor.close()

        assert processor.is_open
        assert (processor.opened, processor.closed) == (1, 0)

        await processor.close()

        assert not processor.is_open
        assert (processor.opened, processor.closed) == (1, 1)

    @pytest.mark.asyncio
    async def test_close_without_initialize_is_noop(self):
        processor = CountingLifecycleProcessor()

        await processor.close()

        assert processor.closed == 0
        assert not processor.is_open

    @pytest.mark.asyncio
    async def test_reopen_after_full_close(self):
        processor = CountingLifecycleProcessor()

        for _ in range(2):
            await processor.initialize()
            await processor.close()

        assert (processor.opened, processor.closed) == (2, 2)
