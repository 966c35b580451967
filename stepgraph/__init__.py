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

"""
stepgraph - run agent strategies as graphs of nodes and conditional edges.

Every run emits structured lifecycle events to pluggable processors, and its
state can be checkpointed and restored.

Example:
    from stepgraph import ExecutionEngine, StrategyGraph

    graph = StrategyGraph("echo")
    graph.add_node("echo", lambda ctx, text: text.upper())
    graph.set_entry_point("echo").set_finish_point("echo")

    result = await ExecutionEngine().run(graph.compile(), "hi")  # "HI"
"""

__version__ = "0.1.0"
__author__ = "Vijaykumar Singh"
__email__ = "singhvjd@gmail.com"
__license__ = "Apache-2.0"

from stepgraph.config.settings import Settings, load_settings
from stepgraph.core.errors import StepGraphError
from stepgraph.framework import (
    CheckpointManager,
    EngineConfig,
    EventPipeline,
    ExecutionEngine,
    InMemoryStorageProvider,
    JSONFileStorageProvider,
    MessageProcessor,
    PersistenceConfig,
    RunContext,
    SQLiteStorageProvider,
    Strategy,
    StrategyGraph,
)

__all__ = [
    "__version__",
    "Settings",
    "load_settings",
    "StepGraphError",
    "StrategyGraph",
    "Strategy",
    "RunContext",
    "ExecutionEngine",
    "EngineConfig",
    "EventPipeline",
    "MessageProcessor",
    "CheckpointManager",
    "PersistenceConfig",
    "InMemoryStorageProvider",
    "JSONFileStorageProvider",
    "SQLiteStorageProvider",
]
