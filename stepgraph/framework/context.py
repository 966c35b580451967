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

"""Run context - mutable state owned by exactly one in-flight run.

The context tracks where the run is (current node and the input it was given),
the ordered message history, and a cancellation flag. Node transforms receive
it as their first argument and use it to append messages and to report
model/tool activity through the run's event pipeline.

Example:
    async def ask(context: RunContext, question: str) -> str:
        context.add_message("user", question)
        await context.emit(LLMCallStartEvent(prompt=question, tools=[]))
        answer = await client.complete(question)
        await context.emit(LLMCallEndEvent(responses=[answer]))
        context.add_message("assistant", answer)
        return answer
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Iterable, Optional

from stepgraph.core.errors import UnknownNodeError

if TYPE_CHECKING:
    from stepgraph.framework.events import LifecycleEvent
    from stepgraph.framework.graph import Node, Strategy
    from stepgraph.framework.pipeline import EventPipeline

logger = logging.getLogger(__name__)


def type_tag_for(tp: type) -> str:
    """Stable textual tag for a Python type (builtins keep their short name)."""
    module = getattr(tp, "__module__", "builtins")
    qualname = getattr(tp, "__qualname__", repr(tp))
    if module == "builtins":
        return qualname
    return f"{module}.{qualname}"


@dataclass(frozen=True)
class Message:
    """A single entry of the run's message history."""

    role: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"role": self.role, "content": self.content}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        return cls(role=data["role"], content=data["content"])


@dataclass(frozen=True)
class TypedValue:
    """A value paired with the tag of the type it was declared as."""

    value: Any
    type_tag: str

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "type_tag": self.type_tag}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TypedValue":
        return cls(value=data["value"], type_tag=data["type_tag"])


class RunContext:
    """Mutable state of one run.

    Never shared across concurrent runs. Message history only grows during
    forward execution; rollback replaces it wholesale.

    Attributes:
        strategy: Strategy being executed
        agent_id: Agent identifier (checkpoints are keyed by it)
        run_id: Unique identifier of this run
        current_node_id: Name of the node being (or last) executed
        last_input: Input given to the current node, with its type tag
    """

    def __init__(
        self,
        strategy: "Strategy",
        agent_id: str,
        run_id: Optional[str] = None,
        pipeline: Optional["EventPipeline"] = None,
        message_history: Optional[Iterable[Message]] = None,
    ):
        self.strategy = strategy
        self.agent_id = agent_id
        self.run_id = run_id or uuid.uuid4().hex
        self.current_node_id: Optional[str] = None
        self.last_input: Optional[TypedValue] = None
        self._pipeline = pipeline
        self._messages: list[Message] = list(message_history or [])
        self._forced_point: Optional[tuple["Node", Any]] = None
        self._cancelled = False
        self._node_task: Optional[asyncio.Future[Any]] = None

    # ------------------------------------------------------------------
    # Message history
    # ------------------------------------------------------------------

    @property
    def message_history(self) -> tuple[Message, ...]:
        """Snapshot of the message history in order."""
        return tuple(self._messages)

    def add_message(self, role: str, content: str) -> Message:
        """Append a message to the history."""
        message = Message(role=role, content=content)
        self._messages.append(message)
        return message

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def emit(self, event: "LifecycleEvent") -> None:
        """Send an event through the run's pipeline (no-op without one)."""
        if self._pipeline is not None:
            await self._pipeline.intercept(event, self)

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation of the run.

        The in-flight node (if any) is cancelled immediately; otherwise the
        engine stops before starting the next node.
        """
        self._cancelled = True
        if self._node_task is not None and not self._node_task.done():
            self._node_task.cancel()

    # ------------------------------------------------------------------
    # Execution point
    # ------------------------------------------------------------------

    def set_execution_point(
        self,
        node_id: str,
        message_history: Iterable[Message],
        input_value: Any,
        type_tag: Optional[str] = None,
    ) -> None:
        """Move the run to ``node_id`` with ``input_value``.

        All fields are validated before any is written, so a failure leaves
        the context untouched. The engine re-enters execution at the node
        the next time it picks a node to run.

        Raises:
            UnknownNodeError: If the strategy has no node named ``node_id``
        """
        node = self.strategy.find_node(node_id)
        if node is None:
            raise UnknownNodeError(node_id, strategy_name=self.strategy.name)

        messages = list(message_history)
        tag = type_tag if type_tag is not None else type_tag_for(node.input_type)

        self.current_node_id = node.name
        self.last_input = TypedValue(value=input_value, type_tag=tag)
        self._messages = messages
        self._forced_point = (node, input_value)
        logger.debug(f"Execution point set to node '{node.name}' (run: {self.run_id})")

    @property
    def has_pending_execution_point(self) -> bool:
        """Whether an execution point was set and not yet picked up by the engine."""
        return self._forced_point is not None

    def _take_execution_point(self) -> Optional[tuple["Node", Any]]:
        forced, self._forced_point = self._forced_point, None
        return forced

    def _enter_node(self, node: "Node", value: Any) -> None:
        self.current_node_id = node.name
        self.last_input = TypedValue(value=value, type_tag=type_tag_for(node.input_type))

    def _bind_pipeline(self, pipeline: Optional["EventPipeline"]) -> None:
        self._pipeline = pipeline

    def _attach_node_task(self, task: Optional[asyncio.Future[Any]]) -> None:
        self._node_task = task

    def __repr__(self) -> str:
        return (
            f"RunContext(agent_id={self.agent_id!r}, run_id={self.run_id!r}, "
            f"node={self.current_node_id!r}, messages={len(self._messages)})"
        )


__all__ = [
    "Message",
    "TypedValue",
    "RunContext",
    "type_tag_for",
]
