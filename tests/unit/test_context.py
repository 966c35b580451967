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

"""Tests for the run context."""

import pytest

from stepgraph.core.errors import UnknownNodeError
from stepgraph.framework.context import Message, RunContext, TypedValue, type_tag_for
from stepgraph.framework.events import StrategyStartEvent


class Payload:
    pass


class TestTypeTags:
    def test_builtin_types(self):
        assert type_tag_for(str) == "str"
        assert type_tag_for(dict) == "dict"

    def test_user_types_are_qualified(self):
        assert type_tag_for(Payload) == f"{__name__}.Payload"


class TestRunContext:
    """Tests for RunContext."""

    def test_initial_state(self, linear_strategy):
        context = RunContext(linear_strategy, agent_id="agent")

        assert context.current_node_id is None
        assert context.last_input is None
        assert context.message_history == ()
        assert context.is_cancelled is False
        assert context.run_id

    def test_message_history_grows_in_order(self, linear_strategy):
        context = RunContext(linear_strategy, agent_id="agent")

        context.add_message("user", "one")
        context.add_message("assistant", "two")

        assert context.message_history == (Message("user", "one"), Message("assistant", "two"))

    def test_set_execution_point_replaces_history(self, linear_strategy):
        context = RunContext(linear_strategy, agent_id="agent", message_history=[Message("user", "old")])

        context.set_execution_point("b", [Message("user", "new")], "input")

        assert context.current_node_id == "b"
        assert context.last_input == TypedValue("input", "str")
        assert context.message_history == (Message("user", "new"),)
        assert context.has_pending_execution_point

    def test_set_execution_point_unknown_node_leaves_context(self, linear_strategy):
        context = RunContext(linear_strategy, agent_id="agent", message_history=[Message("user", "old")])

        with pytest.raises(UnknownNodeError, match="'ghost'"):
            context.set_execution_point("ghost", [], None)

        assert context.current_node_id is None
        assert context.message_history == (Message("user", "old"),)
        assert not context.has_pending_execution_point

    @pytest.mark.asyncio
    async def test_emit_without_pipeline_is_noop(self, linear_strategy):
        context = RunContext(linear_strategy, agent_id="agent")

        await context.emit(StrategyStartEvent(run_id="r", strategy_name="s"))

    def test_message_serialization(self):
        message = Message("user", "hi")

        assert message.to_dict() == {"role": "user", "content": "hi"}
        assert Message.from_dict(message.to_dict()) == message
        assert TypedValue.from_dict({"value": 1, "type_tag": "int"}) == TypedValue(1, "int")
