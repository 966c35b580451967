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

"""Shared pytest fixtures and configuration."""

import pytest

from stepgraph.framework.graph import StrategyGraph
from stepgraph.framework.pipeline import MessageProcessor


class RecordingProcessor(MessageProcessor):
    """Processor that keeps every event it receives."""

    def __init__(self, name: str = "recorder"):
        super().__init__()
        self._name = name
        self.events = []
        self.initialize_calls = 0
        self.close_calls = 0

    @property
    def name(self) -> str:
        return self._name

    async def initialize(self) -> None:
        self.initialize_calls += 1
        await super().initialize()

    async def process_message(self, event) -> None:
        self.events.append(event)

    async def close(self) -> None:
        self.close_calls += 1
        await super().close()

    def event_ids(self):
        return [event.event_id for event in self.events]

    def node_trace(self):
        """(event_id, node_name) pairs of node events, in order."""
        return [
            (event.event_id, event.node_name)
            for event in self.events
            if event.event_id in ("NodeExecutionStartEvent", "NodeExecutionEndEvent")
        ]


def build_linear_strategy(name: str = "linear"):
    """Three-node strategy: a appends 'a', b appends 'b', c appends 'c'."""
    graph = StrategyGraph(name)
    graph.add_node("a", lambda ctx, value: value + "a", input_type=str, output_type=str)
    graph.add_node("b", lambda ctx, value: value + "b", input_type=str, output_type=str)
    graph.add_node("c", lambda ctx, value: value + "c", input_type=str, output_type=str)
    graph.add_edge("a", "b").add_edge("b", "c")
    graph.set_entry_point("a").set_finish_point("c")
    return graph.compile()


@pytest.fixture(autouse=True)
def isolate_environment_variables(monkeypatch):
    """Isolate tests from STEPGRAPH_* environment variables and .env files."""
    monkeypatch.setenv("STEPGRAPH_SKIP_ENV_FILE", "1")
    for var in (
        "STEPGRAPH_LOG_LEVEL",
        "STEPGRAPH_MAX_ITERATIONS",
        "STEPGRAPH_RUN_TIMEOUT",
        "STEPGRAPH_PERSISTENCE_ENABLED",
        "STEPGRAPH_AUTOMATIC_PERSISTENCE",
        "STEPGRAPH_RESTORE_ON_START",
        "STEPGRAPH_CHECKPOINT_DIR",
    ):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def recorder():
    return RecordingProcessor()


@pytest.fixture
def linear_strategy():
    return build_linear_strategy()


@pytest.fixture
def recorder_factory():
    """Build additional named recording processors."""
    return RecordingProcessor


@pytest.fixture
def linear_strategy_factory():
    return build_linear_strategy
