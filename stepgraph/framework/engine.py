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

"""Execution engine - drives a strategy graph from its start to its finish node.

Each run is a sequential chain of awaits on a single asyncio task: exactly one
node executes at a time, and every lifecycle event is dispatched through the
pipeline before the run advances.

Example:
    engine = ExecutionEngine(pipeline=pipeline, config=EngineConfig(max_iterations=20))
    result = await engine.run(strategy, "input text")

    # Resume a run whose context was rolled back
    await manager.rollback_to_latest_checkpoint(context)
    result = await engine.resume(context)
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Optional

from stepgraph.config.logging_config import TRACE
from stepgraph.core.errors import (
    AgentAlreadyRunningError,
    MaxIterationsExceededError,
    NodeExecutionError,
    RoutingError,
    RunCancelledError,
    RunTimeoutError,
)
from stepgraph.framework.context import RunContext
from stepgraph.framework.events import (
    AgentFinishedEvent,
    AgentRunErrorEvent,
    AgentStartedEvent,
    ErrorInfo,
    NodeExecutionEndEvent,
    NodeExecutionStartEvent,
    StrategyFinishedEvent,
    StrategyStartEvent,
)
from stepgraph.framework.pipeline import EventPipeline

if TYPE_CHECKING:
    from stepgraph.config.settings import Settings
    from stepgraph.framework.graph import Edge, Node, Strategy

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Configuration for strategy execution.

    Attributes:
        max_iterations: Maximum node executions per run
        run_timeout: Overall run timeout in seconds (None = no limit)
    """

    max_iterations: int = 50
    run_timeout: Optional[float] = None

    @classmethod
    def from_settings(cls, settings: "Settings") -> "EngineConfig":
        return cls(max_iterations=settings.max_iterations, run_timeout=settings.run_timeout)


class ExecutionEngine:
    """Runs strategies for one agent, one run at a time.

    The pipeline is opened before a run starts and closed exactly once when
    it ends, whether it finishes, fails or is cancelled. Distinct engines may
    run concurrently.
    """

    def __init__(
        self,
        pipeline: Optional[EventPipeline] = None,
        config: Optional[EngineConfig] = None,
        agent_id: Optional[str] = None,
    ):
        """Initialize ExecutionEngine.

        Args:
            pipeline: Event pipeline for lifecycle events (default: empty)
            config: Execution limits
            agent_id: Agent identifier used for events and checkpoints
                (default: generated)
        """
        self.pipeline = pipeline or EventPipeline()
        self.config = config or EngineConfig()
        self.agent_id = agent_id or f"agent-{id(self):x}"
        self._running = False
        self._last_context: Optional[RunContext] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def last_context(self) -> Optional[RunContext]:
        """Run context of the most recent run, whatever its outcome."""
        return self._last_context

    def create_context(self, strategy: "Strategy", run_id: Optional[str] = None) -> RunContext:
        """Create a run context bound to this engine's agent and pipeline."""
        return RunContext(
            strategy=strategy,
            agent_id=self.agent_id,
            run_id=run_id,
            pipeline=self.pipeline,
        )

    async def run(
        self,
        strategy: "Strategy",
        input_value: Any,
        *,
        run_id: Optional[str] = None,
    ) -> Any:
        """Execute ``strategy`` from its start node.

        Args:
            strategy: Compiled strategy
            input_value: Input of the start node
            run_id: Optional run identifier (default: generated)

        Returns:
            Output of the finish node

        Raises:
            RoutingError: No outgoing edge matched at a non-finish node
            NodeExecutionError: A node transform raised
            MaxIterationsExceededError: Too many node executions
            RunTimeoutError: The run exceeded ``run_timeout``
            RunCancelledError: ``RunContext.cancel()`` was called
            AgentAlreadyRunningError: The engine is already running
        """
        context = self.create_context(strategy, run_id=run_id)
        context._enter_node(strategy.start, input_value)
        return await self._run_context(context, strategy.start, input_value)

    async def resume(self, context: RunContext) -> Any:
        """Continue a run from the context's execution point.

        The node the context points at is executed again from its start with
        the context's ``last_input``; nodes before it are not re-run.
        """
        context._bind_pipeline(self.pipeline)
        node = context.strategy.find_node(context.current_node_id or "") or context.strategy.start
        value = context.last_input.value if context.last_input is not None else None
        return await self._run_context(context, node, value, reenter=True)

    async def _run_context(
        self,
        context: RunContext,
        node: "Node",
        value: Any,
        reenter: bool = False,
    ) -> Any:
        if self._running:
            raise AgentAlreadyRunningError(self.agent_id)
        self._running = True
        self._last_context = context

        strategy = context.strategy
        try:
            async with self.pipeline:
                logger.info(f"Run started: strategy={strategy.name}, run={context.run_id}")
                try:
                    await context.emit(
                        AgentStartedEvent(
                            agent_id=context.agent_id,
                            run_id=context.run_id,
                            strategy_name=strategy.name,
                        )
                    )
                    await context.emit(StrategyStartEvent(run_id=context.run_id, strategy_name=strategy.name))

                    # An execution point set during startup (restore on start) wins
                    forced = context._take_execution_point()
                    if forced is not None:
                        node, value = forced
                        reenter = True

                    result = await self._execute(context, node, value, reenter)

                    await context.emit(
                        StrategyFinishedEvent(
                            run_id=context.run_id,
                            strategy_name=strategy.name,
                            result=result,
                        )
                    )
                    await context.emit(
                        AgentFinishedEvent(
                            agent_id=context.agent_id,
                            run_id=context.run_id,
                            strategy_name=strategy.name,
                            result=result,
                        )
                    )
                    logger.info(f"Run finished: strategy={strategy.name}, run={context.run_id}")
                    return result

                except asyncio.CancelledError as e:
                    logger.info(f"Run cancelled: strategy={strategy.name}, run={context.run_id}")
                    await self._report_error(context, RunCancelledError(cause=e))
                    raise
                except Exception as e:
                    logger.error(f"Run failed: strategy={strategy.name}, run={context.run_id}: {e}")
                    await self._report_error(context, e)
                    raise
        finally:
            self._running = False

    async def _execute(self, context: RunContext, node: "Node", value: Any, reenter: bool) -> Any:
        strategy = context.strategy
        deadline = (
            time.monotonic() + self.config.run_timeout if self.config.run_timeout is not None else None
        )
        iterations = 0

        while True:
            if context.is_cancelled:
                raise RunCancelledError()

            iterations += 1
            if iterations > self.config.max_iterations:
                raise MaxIterationsExceededError(self.config.max_iterations, node.name)

            # Re-entry keeps the type tag restored from the checkpoint
            if not reenter:
                context._enter_node(node, value)
            reenter = False

            await context.emit(NodeExecutionStartEvent(node_name=node.name, input=value))
            output = await self._execute_node(context, node, value, deadline)
            await context.emit(NodeExecutionEndEvent(node_name=node.name, input=value, output=output))

            forced = context._take_execution_point()
            if forced is not None:
                node, value = forced
                reenter = True
                logger.debug(f"Jumping to execution point: {node.name}")
                continue

            if node is strategy.finish:
                return output

            edge = await self._select_edge(strategy, node, value, output)
            logger.debug(f"Edge selected: {node.name} -> {edge.target.name}")
            node, value = edge.target, edge.forward(output)

    async def _execute_node(
        self,
        context: RunContext,
        node: "Node",
        value: Any,
        deadline: Optional[float],
    ) -> Any:
        timeout = self.config.run_timeout or 0
        if deadline is not None and deadline - time.monotonic() <= 0:
            raise RunTimeoutError(timeout, node.name)

        logger.debug(f"Executing node: {node.name}")
        task = asyncio.ensure_future(node.execute(context, value))
        context._attach_node_task(task)
        try:
            if deadline is None:
                return await task
            return await asyncio.wait_for(task, timeout=deadline - time.monotonic())
        except asyncio.TimeoutError as e:
            if task.cancelled():
                raise RunTimeoutError(timeout, node.name) from e
            raise NodeExecutionError(node.name, e) from e
        except asyncio.CancelledError as e:
            current = asyncio.current_task()
            # Cancelled through RunContext.cancel(), not by cancelling the run task
            if context.is_cancelled and (current is None or not current.cancelling()):
                raise RunCancelledError(cause=e) from e
            task.cancel()
            raise
        except Exception as e:
            raise NodeExecutionError(node.name, e) from e
        finally:
            context._attach_node_task(None)

    async def _select_edge(
        self,
        strategy: "Strategy",
        node: "Node",
        node_input: Any,
        node_output: Any,
    ) -> "Edge":
        for edge in strategy.outgoing(node):
            if await edge.matches(node_input, node_output):
                return edge
            logger.log(TRACE, f"Edge rejected: {node.name} -> {edge.target.name}")
        raise RoutingError(node.name)

    async def _report_error(self, context: RunContext, error: BaseException) -> None:
        await context.emit(
            AgentRunErrorEvent(
                agent_id=context.agent_id,
                run_id=context.run_id,
                strategy_name=context.strategy.name,
                error=ErrorInfo.from_exception(error),
            )
        )


__all__ = [
    "EngineConfig",
    "ExecutionEngine",
]
