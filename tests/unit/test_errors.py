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

"""Tests for the error taxonomy."""

from stepgraph.core.errors import (
    CheckpointNotFoundError,
    ErrorCategory,
    NodeExecutionError,
    ProcessorError,
    StepGraphError,
    UnknownNodeError,
)
from stepgraph.framework.events import ErrorInfo


def _raise_in_node():
    raise ValueError("bad input")


class TestErrors:
    """Tests for the error taxonomy."""

    def test_all_errors_share_base(self):
        assert issubclass(UnknownNodeError, StepGraphError)
        assert issubclass(CheckpointNotFoundError, StepGraphError)

    def test_not_found_messages(self):
        assert str(CheckpointNotFoundError("agent")) == "No checkpoints found for agent 'agent'"
        assert "Checkpoint 'cp'" in str(CheckpointNotFoundError("agent", "cp"))

    def test_to_dict(self):
        error = ProcessorError("sink", "ToolCallEvent", RuntimeError("down"))

        data = error.to_dict()

        assert data["category"] == ErrorCategory.PROCESSOR.value
        assert data["details"] == {"processor": "sink", "event_id": "ToolCallEvent"}
        assert len(data["correlation_id"]) == 8
        assert "RuntimeError: down" in error.stack_trace

    def test_stack_trace_without_cause(self):
        assert StepGraphError("plain").stack_trace is None


class TestErrorInfoFromStepGraphError:
    """Tests for ErrorInfo built from wrapping errors."""

    def test_uses_cause_stack_trace(self):
        """Test the reported traceback is the wrapped cause's."""
        try:
            _raise_in_node()
        except ValueError as e:
            error = NodeExecutionError("parse", e)

        info = ErrorInfo.from_exception(error)

        assert info.stack_trace == error.stack_trace
        assert "_raise_in_node" in info.stack_trace
        assert info.cause == "ValueError: bad input"

    def test_falls_back_to_own_traceback(self):
        try:
            raise StepGraphError("no cause")
        except StepGraphError as e:
            info = ErrorInfo.from_exception(e)

        assert "StepGraphError: no cause" in info.stack_trace
        assert info.cause is None
