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

"""Graph execution framework.

Building blocks:
    - StrategyGraph / Strategy: graph model and builder
    - ExecutionEngine: runs a strategy, one node at a time
    - EventPipeline / MessageProcessor: lifecycle event fan-out
    - CheckpointManager / StorageProvider: capture and restore run state
"""

from stepgraph.framework.checkpoint import (
    Checkpoint,
    CheckpointManager,
    PersistenceConfig,
    StorageProvider,
)
from stepgraph.framework.checkpointer import (
    InMemoryStorageProvider,
    JSONFileStorageProvider,
    NoPersistenceStorageProvider,
    SQLiteStorageProvider,
)
from stepgraph.framework.context import Message, RunContext, TypedValue, type_tag_for
from stepgraph.framework.engine import EngineConfig, ExecutionEngine
from stepgraph.framework.events import (
    EVENT_TYPES,
    AgentFinishedEvent,
    AgentRunErrorEvent,
    AgentStartedEvent,
    ErrorInfo,
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
    event_from_dict,
    event_from_json,
    event_to_json,
)
from stepgraph.framework.graph import Edge, Node, Strategy, StrategyGraph
from stepgraph.framework.pipeline import EventPipeline, MessageProcessor
from stepgraph.framework.processors import (
    JSONLFileMessageProcessor,
    LogMessageProcessor,
    configure_event_logging,
)

__all__ = [
    # Graph
    "Node",
    "Edge",
    "Strategy",
    "StrategyGraph",
    # Run state
    "RunContext",
    "Message",
    "TypedValue",
    "type_tag_for",
    # Engine
    "ExecutionEngine",
    "EngineConfig",
    # Events
    "LifecycleEvent",
    "EVENT_TYPES",
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
    "event_to_json",
    "event_from_json",
    "event_from_dict",
    # Pipeline
    "EventPipeline",
    "MessageProcessor",
    "LogMessageProcessor",
    "JSONLFileMessageProcessor",
    "configure_event_logging",
    # Checkpoints
    "Checkpoint",
    "CheckpointManager",
    "PersistenceConfig",
    "StorageProvider",
    "NoPersistenceStorageProvider",
    "InMemoryStorageProvider",
    "JSONFileStorageProvider",
    "SQLiteStorageProvider",
]
