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

"""Events - lifecycle events emitted while a strategy runs.

The event set is closed: ``LifecycleEvent`` is a discriminated union over the
thirteen event models below, tagged by ``event_id``. Processors are expected
to handle every member, which ``match`` with ``assert_never`` makes explicit:

    match event:
        case NodeExecutionStartEvent(node_name=name):
            ...
        case NodeExecutionEndEvent():
            ...
        ...
        case _:
            assert_never(event)

Events are categorized by their purpose:
- Agent events: AgentStarted, AgentFinished, AgentRunError
- Strategy events: StrategyStart, StrategyFinished
- Node events: NodeExecutionStart, NodeExecutionEnd
- LLM events: LLMCallStart, LLMCallEnd
- Tool events: ToolCall, ToolCallResult, ToolValidationError, ToolCallFailure

``event_to_json`` and ``event_from_json`` round-trip every event shape for
remote consumers.
"""

from __future__ import annotations

import json
import traceback
from datetime import datetime, timezone
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from stepgraph.core.errors import StepGraphError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ErrorInfo(BaseModel):
    """Serializable description of an exception.

    Attributes:
        message: Human-readable error description
        stack_trace: Formatted traceback, if available
        cause: Description of the underlying cause, if any
    """

    model_config = ConfigDict(frozen=True)

    message: str = Field(..., description="Error message")
    stack_trace: Optional[str] = Field(None, description="Formatted traceback")
    cause: Optional[str] = Field(None, description="Underlying cause")

    @classmethod
    def from_exception(cls, error: BaseException) -> "ErrorInfo":
        """Capture message, traceback and cause of an exception.

        For a wrapping ``StepGraphError`` the traceback is the wrapped cause's,
        which points at the failing node code rather than the engine.
        """
        cause: Optional[BaseException] = error.__cause__
        stack: Optional[str] = None
        if isinstance(error, StepGraphError):
            cause = error.cause or cause
            stack = error.stack_trace
        if stack is None:
            stack = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        return cls(
            message=str(error) or type(error).__name__,
            stack_trace=stack or None,
            cause=f"{type(cause).__name__}: {cause}" if cause is not None else None,
        )


class _EventBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime = Field(default_factory=_utcnow, description="Creation time (UTC)")


# =============================================================================
# Agent events
# =============================================================================


class AgentStartedEvent(_EventBase):
    """A run has started."""

    event_id: Literal["AgentStartedEvent"] = "AgentStartedEvent"
    agent_id: str
    run_id: str
    strategy_name: str


class AgentFinishedEvent(_EventBase):
    """A run has finished successfully."""

    event_id: Literal["AgentFinishedEvent"] = "AgentFinishedEvent"
    agent_id: str
    run_id: str
    strategy_name: str
    result: Any = None


class AgentRunErrorEvent(_EventBase):
    """A run was aborted by an error or cancellation."""

    event_id: Literal["AgentRunErrorEvent"] = "AgentRunErrorEvent"
    agent_id: str
    run_id: str
    strategy_name: str
    error: ErrorInfo


# =============================================================================
# Strategy events
# =============================================================================


class StrategyStartEvent(_EventBase):
    """Strategy execution has started."""

    event_id: Literal["StrategyStartEvent"] = "StrategyStartEvent"
    run_id: str
    strategy_name: str


class StrategyFinishedEvent(_EventBase):
    """Strategy execution reached its finish node."""

    event_id: Literal["StrategyFinishedEvent"] = "StrategyFinishedEvent"
    run_id: str
    strategy_name: str
    result: Any = None


# =============================================================================
# Node events
# =============================================================================


class NodeExecutionStartEvent(_EventBase):
    """A node is about to run."""

    event_id: Literal["NodeExecutionStartEvent"] = "NodeExecutionStartEvent"
    node_name: str
    input: Any = None


class NodeExecutionEndEvent(_EventBase):
    """A node has completed."""

    event_id: Literal["NodeExecutionEndEvent"] = "NodeExecutionEndEvent"
    node_name: str
    input: Any = None
    output: Any = None


# =============================================================================
# LLM events
# =============================================================================


class LLMCallStartEvent(_EventBase):
    """A model call is about to be made from inside a node."""

    event_id: Literal["LLMCallStartEvent"] = "LLMCallStartEvent"
    prompt: Any = None
    tools: list[str] = Field(default_factory=list)


class LLMCallEndEvent(_EventBase):
    """A model call has returned."""

    event_id: Literal["LLMCallEndEvent"] = "LLMCallEndEvent"
    responses: list[Any] = Field(default_factory=list)


# =============================================================================
# Tool events
# =============================================================================


class ToolCallEvent(_EventBase):
    """A tool is being invoked."""

    event_id: Literal["ToolCallEvent"] = "ToolCallEvent"
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)


class ToolCallResultEvent(_EventBase):
    """A tool returned a result."""

    event_id: Literal["ToolCallResultEvent"] = "ToolCallResultEvent"
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)
    result: Any = None


class ToolValidationErrorEvent(_EventBase):
    """Tool arguments were rejected before the tool ran."""

    event_id: Literal["ToolValidationErrorEvent"] = "ToolValidationErrorEvent"
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)
    error_message: str


class ToolCallFailureEvent(_EventBase):
    """A tool raised while running."""

    event_id: Literal["ToolCallFailureEvent"] = "ToolCallFailureEvent"
    tool_name: str
    tool_args: dict[str, Any] = Field(default_factory=dict)
    error: ErrorInfo


LifecycleEvent = Annotated[
    Union[
        AgentStartedEvent,
        AgentFinishedEvent,
        AgentRunErrorEvent,
        StrategyStartEvent,
        StrategyFinishedEvent,
        NodeExecutionStartEvent,
        NodeExecutionEndEvent,
        LLMCallStartEvent,
        LLMCallEndEvent,
        ToolCallEvent,
        ToolCallResultEvent,
        ToolValidationErrorEvent,
        ToolCallFailureEvent,
    ],
    Field(discriminator="event_id"),
]

EVENT_TYPES: tuple[type[_EventBase], ...] = (
    AgentStartedEvent,
    AgentFinishedEvent,
    AgentRunErrorEvent,
    StrategyStartEvent,
    StrategyFinishedEvent,
    NodeExecutionStartEvent,
    NodeExecutionEndEvent,
    LLMCallStartEvent,
    LLMCallEndEvent,
    ToolCallEvent,
    ToolCallResultEvent,
    ToolValidationErrorEvent,
    ToolCallFailureEvent,
)

_EVENT_ADAPTER: TypeAdapter[Any] = TypeAdapter(LifecycleEvent)


def event_to_json(event: LifecycleEvent) -> str:
    """Serialize an event to JSON.

    Raises:
        pydantic_core.PydanticSerializationError: If a payload value is not
            JSON-serializable
    """
    return event.model_dump_json()


def event_to_json_lenient(event: LifecycleEvent) -> str:
    """Serialize an event, rendering non-JSON payload values with ``str()``."""
    return json.dumps(event.model_dump(), default=_json_default)


def event_from_json(data: Union[str, bytes]) -> LifecycleEvent:
    """Parse an event serialized by ``event_to_json``."""
    return _EVENT_ADAPTER.validate_json(data)


def event_from_dict(data: dict[str, Any]) -> LifecycleEvent:
    """Build an event from a plain dictionary carrying ``event_id``."""
    return _EVENT_ADAPTER.validate_python(data)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, BaseModel):
        return value.model_dump()
    return str(value)


__all__ = [
    "ErrorInfo",
    "AgentStartedEvent",
    "AgentFinishedEvent",
    "AgentRunErrorEvent",
    "StrategyStartEvent",
    "StrategyFinishedEvent",
    "NodeExecutionStartEvent",
    "NodeExecutionEndEvent",
    "LLMCallStartEvent",
    "LLMCallEndEvent",
    "ToolCallEvent",
    "ToolCallResultEvent",
    "ToolValidationErrorEvent",
    "ToolCallFailureEvent",
    "LifecycleEvent",
    "EVENT_TYPES",
    "event_to_json",
    "event_to_json_lenient",
    "event_from_json",
    "event_from_dict",
]
