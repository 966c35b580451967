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

"""Event pipeline - fan-out of lifecycle events to message processors.

The engine awaits ``intercept`` inline at every lifecycle point, so dispatch
is sequential and blocking: processors see events in emission order and the
run does not advance until every processor has returned. A failing processor
is logged and skipped; it never aborts the run or starves later processors.

Two kinds of consumers are supported:
    - Message processors (``add_processor``): observability sinks. They see
      only events accepted by the filter and are opened and closed around
      each run (``async with pipeline:``).
    - Subscribers (``subscribe``): run features that need the run context,
      such as automatic checkpointing. They see every event of their type,
      before the filter is applied.

Example:
    pipeline = EventPipeline()
    pipeline.add_processor(LogMessageProcessor())
    pipeline.set_filter(lambda event: not isinstance(event, LLMCallEndEvent))

    engine = ExecutionEngine(pipeline=pipeline)
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from stepgraph.config.logging_config import TRACE
from stepgraph.core.errors import ProcessorError

if TYPE_CHECKING:
    from stepgraph.framework.context import RunContext
    from stepgraph.framework.events import LifecycleEvent

logger = logging.getLogger(__name__)

EventFilter = Callable[["LifecycleEvent"], bool]
EventHandler = Callable[["LifecycleEvent", Optional["RunContext"]], Union[None, Awaitable[None]]]


class MessageProcessor(ABC):
    """Observer of lifecycle events.

    Subclasses implement ``process_message``. ``initialize`` and ``close``
    bracket each run and may be shared by concurrent runs: the processor is
    opened when the first run initializes it and closed when the last run
    closes it. Override ``on_open`` and ``on_close`` to acquire and release
    resources.
    """

    def __init__(self) -> None:
        self._open_count = 0
        self._lifecycle_lock = asyncio.Lock()

    @property
    def is_open(self) -> bool:
        """Whether at least one run holds the processor open."""
        return self._open_count > 0

    @property
    def name(self) -> str:
        return type(self).__name__

    async def initialize(self) -> None:
        """Open the processor for a run."""
        async with self._lifecycle_lock:
            if self._open_count == 0:
                await self.on_open()
            self._open_count += 1

    @abstractmethod
    async def process_message(self, event: "LifecycleEvent") -> None:
        """Handle one event."""
        ...

    async def close(self) -> None:
        """Release the run's hold on the processor."""
        async with self._lifecycle_lock:
            if self._open_count == 0:
                return
            self._open_count -= 1
            if self._open_count == 0:
                await self.on_close()

    async def on_open(self) -> None:
        """Acquire resources when the first run opens the processor."""

    async def on_close(self) -> None:
        """Release resources when the last run closes the processor."""


class EventPipeline:
    """Filters lifecycle events and dispatches them to processors in order."""

    def __init__(
        self,
        event_filter: Optional[EventFilter] = None,
        processors: Optional[list[MessageProcessor]] = None,
    ):
        """Initialize EventPipeline.

        Args:
            event_filter: Predicate deciding which events reach processors
                (default: accept all)
            processors: Initial processors, in dispatch order
        """
        self._filter = event_filter
        self._processors: list[MessageProcessor] = list(processors or [])
        self._subscribers: dict[type, list[EventHandler]] = {}

    @property
    def processors(self) -> tuple[MessageProcessor, ...]:
        return tuple(self._processors)

    def set_filter(self, event_filter: Optional[EventFilter]) -> "EventPipeline":
        """Replace the event filter (``None`` accepts everything)."""
        self._filter = event_filter
        return self

    def add_processor(self, processor: MessageProcessor) -> "EventPipeline":
        """Register a processor; processors are called in registration order."""
        self._processors.append(processor)
        logger.debug(f"Added message processor: {processor.name}")
        return self

    def subscribe(self, event_type: type, handler: EventHandler) -> "EventPipeline":
        """Call ``handler(event, context)`` for every event of ``event_type``.

        Subscribers are not subject to the filter. Handlers may be sync or async.
        """
        self._subscribers.setdefault(event_type, []).append(handler)
        return self

    async def intercept(self, event: "LifecycleEvent", context: Optional["RunContext"] = None) -> None:
        """Deliver an event to subscribers and, if accepted, to processors.

        Never raises for consumer failures; they are logged and isolated.
        """
        for handler in self._subscribers.get(type(event), ()):
            try:
                result = handler(event, context)
                if inspect.isawaitable(result):
                    await result
            except Exception as e:
                logger.warning(f"Subscriber for {event.event_id} failed: {e}", exc_info=True)

        if not self._accepts(event):
            logger.log(TRACE, f"Filtered out {event.event_id}")
            return

        for processor in self._processors:
            logger.log(TRACE, f"Dispatching {event.event_id} to {processor.name}")
            try:
                await processor.process_message(event)
            except Exception as e:
                error = ProcessorError(processor.name, event.event_id, e)
                logger.warning(str(error), exc_info=True)

    def _accepts(self, event: "LifecycleEvent") -> bool:
        if self._filter is None:
            return True
        try:
            return bool(self._filter(event))
        except Exception as e:
            logger.warning(f"Event filter failed on {event.event_id}, dropping event: {e}")
            return False

    async def initialize(self) -> None:
        """Open every processor for a run."""
        for processor in self._processors:
            try:
                await processor.initialize()
            except Exception as e:
                logger.warning(f"Failed to initialize processor {processor.name}: {e}", exc_info=True)

    async def close(self) -> None:
        """Close every processor, even if some fail to close."""
        for processor in self._processors:
            try:
                await processor.close()
            except Exception as e:
                logger.warning(f"Failed to close processor {processor.name}: {e}", exc_info=True)

    async def __aenter__(self) -> "EventPipeline":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"EventPipeline(processors={[p.name for p in self._processors]})"


__all__ = [
    "MessageProcessor",
    "EventPipeline",
    "EventFilter",
    "EventHandler",
]
