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

"""Concrete message processors.

- LogMessageProcessor: one-line, scannable log entry per event
- JSONLFileMessageProcessor: one JSON object per line, for offline analysis

``configure_event_logging`` applies the configured log level and returns a
ready-to-register LogMessageProcessor.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import IO, Any, Optional, Union, assert_never

from pydantic_core import PydanticSerializationError

from stepgraph.config.logging_config import configure_logging_levels
from stepgraph.config.settings import Settings, load_settings
from stepgraph.framework.events import (
    AgentFinishedEvent,
    AgentRunErrorEvent,
    AgentStartedEvent,
    LifecycleEvent,
    LLMCallEndEvent,
    LLMCallStartEvent,
    NodeExecutionEndEvent,
    NodeExecutionStartEvent,
    StrategyFinishedEvent,
    StrategyStartEvent,
    ToolCallEvent,
    ToolCallFailureEvent,
    ToolCallResultEvent,
    ToolValidationErrorEvent,
    event_to_json,
    event_to_json_lenient,
)
from stepgraph.framework.pipeline import MessageProcessor

logger = logging.getLogger(__name__)


def _preview(value: Any, max_len: int = 80) -> str:
    """Truncate a value's text with indicator."""
    text = str(value).replace("\n", " ").strip()
    if len(text) <= max_len:
        return text
    return f"{text[:max_len]}..."


def format_event(event: LifecycleEvent, max_preview: int = 80) -> str:
    """Render an event as a single log line."""
    match event:
        case AgentStartedEvent():
            return f"Agent {event.agent_id} started (strategy: {event.strategy_name}, run: {event.run_id})"
        case AgentFinishedEvent():
            return (
                f"Agent {event.agent_id} finished (strategy: {event.strategy_name}): "
                f"{_preview(event.result, max_preview)}"
            )
        case AgentRunErrorEvent():
            return f"Agent {event.agent_id} failed (strategy: {event.strategy_name}): {event.error.message}"
        case StrategyStartEvent():
            return f"Strategy {event.strategy_name} started"
        case StrategyFinishedEvent():
            return f"Strategy {event.strategy_name} finished: {_preview(event.result, max_preview)}"
        case NodeExecutionStartEvent():
            return f"-> {event.node_name}({_preview(event.input, max_preview)})"
        case NodeExecutionEndEvent():
            return f"<- {event.node_name} = {_preview(event.output, max_preview)}"
        case LLMCallStartEvent():
            tools = ", ".join(event.tools) if event.tools else "none"
            return f"LLM call: {_preview(event.prompt, max_preview)} (tools: {tools})"
        case LLMCallEndEvent():
            return f"LLM responded ({len(event.responses)} response(s))"
        case ToolCallEvent():
            return f"Tool {event.tool_name}({_preview(event.tool_args, max_preview)})"
        case ToolCallResultEvent():
            return f"Tool {event.tool_name} = {_preview(event.result, max_preview)}"
        case ToolValidationErrorEvent():
            return f"Tool {event.tool_name} rejected arguments: {event.error_message}"
        case ToolCallFailureEvent():
            return f"Tool {event.tool_name} failed: {event.error.message}"
        case _:
            assert_never(event)


class LogMessageProcessor(MessageProcessor):
    """Writes every event to a logger as one line.

    Failure events (AgentRunError, ToolValidationError, ToolCallFailure) are
    logged at WARNING; everything else at the configured level.
    """

    _FAILURE_EVENTS = (AgentRunErrorEvent, ToolValidationErrorEvent, ToolCallFailureEvent)

    def __init__(
        self,
        logger: Optional[logging.Logger] = None,
        level: int = logging.INFO,
        max_preview: int = 80,
    ):
        super().__init__()
        self.logger = logger or logging.getLogger("stepgraph.events")
        self.level = level
        self.max_preview = max_preview

    async def process_message(self, event: LifecycleEvent) -> None:
        level = logging.WARNING if isinstance(event, self._FAILURE_EVENTS) else self.level
        self.logger.log(level, format_event(event, self.max_preview))


class JSONLFileMessageProcessor(MessageProcessor):
    """Appends each event as a JSON line to a file.

    The file is opened when the first run initializes the processor and
    closed when the last run closes it, so one processor can be reused
    across runs and shared by concurrent ones. Payload values that are not JSON
    serializable are written as their string form.
    """

    def __init__(self, path: Union[str, Path]):
        super().__init__()
        self.path = Path(path).expanduser()
        self._file: Optional[IO[str]] = None

    async def on_open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")
        logger.debug(f"Opened event log: {self.path}")

    async def process_message(self, event: LifecycleEvent) -> None:
        if self._file is None:
            raise RuntimeError(f"Event log {self.path} is not open")
        try:
            line = event_to_json(event)
        except PydanticSerializationError:
            line = event_to_json_lenient(event)
        self._file.write(line + "\n")
        self._file.flush()

    async def on_close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None
            logger.debug(f"Closed event log: {self.path}")


def configure_event_logging(
    settings: Optional[Settings] = None,
    max_preview: int = 80,
) -> LogMessageProcessor:
    """Configure logging levels and build an event log processor.

    Args:
        settings: Settings supplying ``log_level`` (default: loaded from the
            environment)
        max_preview: Max chars for value previews

    Returns:
        LogMessageProcessor to register on a pipeline
    """
    settings = settings or load_settings()
    configure_logging_levels(settings.log_level)
    return LogMessageProcessor(max_preview=max_preview)


__all__ = [
    "format_event",
    "configure_event_logging",
    "LogMessageProcessor",
    "JSONLFileMessageProcessor",
]
