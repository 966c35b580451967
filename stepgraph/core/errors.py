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

"""Centralized error handling for stepgraph.

This module provides:
- Error categories for classification
- A base exception carrying structured details and a correlation ID
- One exception type per failure kind of graph execution and persistence

Propagation rules:
    - PreconditionError / GraphValidationError: raised at setup, never at run time
    - RoutingError / NodeExecutionError / run limit errors: abort the run and
      are reported as an AgentRunError event before reaching the caller
    - StorageError: raised for explicit checkpoint calls, logged for
      automatic persistence
    - CheckpointNotFoundError: raised to the caller, run context untouched
"""

from __future__ import annotations

import traceback
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# =============================================================================
# Error Categories
# =============================================================================


class ErrorCategory(Enum):
    """Categories of errors for classification and handling."""

    # Setup errors
    PRECONDITION = "precondition"
    GRAPH_INVALID = "graph_invalid"

    # Run errors
    ROUTING = "routing"
    NODE_EXECUTION = "node_execution"
    RUN_LIMIT = "run_limit"
    RUN_CANCELLED = "run_cancelled"
    RUN_CONFLICT = "run_conflict"

    # Persistence errors
    STORAGE = "storage"
    NOT_FOUND = "not_found"

    # Observability errors
    PROCESSOR = "processor"

    UNKNOWN = "unknown"


# =============================================================================
# Custom Exception Types
# =============================================================================


class StepGraphError(Exception):
    """Base exception for all stepgraph errors.

    Provides structured error information including:
    - Error category
    - Correlation ID for tracking
    - Recovery hint
    - Original exception chain
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        details: Optional[Dict[str, Any]] = None,
        recovery_hint: Optional[str] = None,
        correlation_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.details = details or {}
        self.recovery_hint = recovery_hint
        self.correlation_id = correlation_id or str(uuid.uuid4())[:8]
        self.cause = cause
        self.timestamp = datetime.now(timezone.utc)

    @property
    def stack_trace(self) -> Optional[str]:
        """Formatted traceback of the underlying cause, if any."""
        if self.cause is None:
            return None
        return "".join(
            traceback.format_exception(type(self.cause), self.cause, self.cause.__traceback__)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.message,
            "category": self.category.value,
            "correlation_id": self.correlation_id,
            "recovery_hint": self.recovery_hint,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    def __str__(self) -> str:
        return self.message


class PreconditionError(StepGraphError):
    """A feature was installed on a graph that does not satisfy its requirements."""

    def __init__(self, message: str, **kwargs: Any):
        super().__init__(
            message,
            category=ErrorCategory.PRECONDITION,
            recovery_hint="Give every node in the strategy a distinct name.",
            **kwargs,
        )


class GraphValidationError(StepGraphError):
    """Strategy graph failed structural validation at compile time."""

    def __init__(self, problems: List[str], **kwargs: Any):
        super().__init__(
            f"Invalid graph: {'; '.join(problems)}",
            category=ErrorCategory.GRAPH_INVALID,
            **kwargs,
        )
        self.problems = problems
        self.details["problems"] = problems


class RoutingError(StepGraphError):
    """No outgoing edge accepted a node's output at a non-finish node."""

    def __init__(self, node_name: str, **kwargs: Any):
        super().__init__(
            f"No outgoing edge of node '{node_name}' matched its output",
            category=ErrorCategory.ROUTING,
            recovery_hint="Add an unconditional fallback edge or widen the edge conditions.",
            **kwargs,
        )
        self.node_name = node_name
        self.details["node_name"] = node_name


class NodeExecutionError(StepGraphError):
    """A node transform raised an exception."""

    def __init__(self, node_name: str, cause: BaseException, **kwargs: Any):
        super().__init__(
            f"Node '{node_name}' failed: {cause}",
            category=ErrorCategory.NODE_EXECUTION,
            cause=cause,
            **kwargs,
        )
        self.node_name = node_name
        self.details["node_name"] = node_name
        self.details["cause_type"] = type(cause).__name__


class UnknownNodeError(StepGraphError):
    """A node name does not exist in the active strategy."""

    def __init__(self, node_name: str, strategy_name: Optional[str] = None, **kwargs: Any):
        super().__init__(
            f"Node '{node_name}' not found in strategy '{strategy_name}'",
            category=ErrorCategory.NOT_FOUND,
            **kwargs,
        )
        self.node_name = node_name
        self.details["node_name"] = node_name
        self.details["strategy_name"] = strategy_name


class MaxIterationsExceededError(StepGraphError):
    """The run executed more nodes than the configured limit."""

    def __init__(self, max_iterations: int, node_name: str, **kwargs: Any):
        super().__init__(
            f"Max iterations ({max_iterations}) exceeded at node '{node_name}'",
            category=ErrorCategory.RUN_LIMIT,
            recovery_hint="Check the strategy for unintended cycles or raise max_iterations.",
            **kwargs,
        )
        self.max_iterations = max_iterations
        self.details["max_iterations"] = max_iterations
        self.details["node_name"] = node_name


class RunTimeoutError(StepGraphError):
    """The run did not finish within the configured timeout."""

    def __init__(self, timeout: float, node_name: Optional[str] = None, **kwargs: Any):
        super().__init__(
            f"Run timed out after {timeout} seconds",
            category=ErrorCategory.RUN_LIMIT,
            **kwargs,
        )
        self.timeout = timeout
        self.details["timeout"] = timeout
        self.details["node_name"] = node_name


class RunCancelledError(StepGraphError):
    """The run was cancelled through its run context."""

    def __init__(self, message: str = "Run cancelled", **kwargs: Any):
        super().__init__(message, category=ErrorCategory.RUN_CANCELLED, **kwargs)


class AgentAlreadyRunningError(StepGraphError):
    """An engine was asked to start a run while another is in flight."""

    def __init__(self, agent_id: str, **kwargs: Any):
        super().__init__(
            f"Agent '{agent_id}' is already running",
            category=ErrorCategory.RUN_CONFLICT,
            recovery_hint="Create a separate engine for each concurrent run.",
            **kwargs,
        )
        self.agent_id = agent_id
        self.details["agent_id"] = agent_id


class StorageError(StepGraphError):
    """Checkpoint save or read failure."""

    def __init__(
        self,
        message: str,
        agent_id: Optional[str] = None,
        **kwargs: Any,
    ):
        super().__init__(message, category=ErrorCategory.STORAGE, **kwargs)
        self.agent_id = agent_id
        self.details["agent_id"] = agent_id


class CheckpointNotFoundError(StepGraphError):
    """Requested checkpoint (or any checkpoint, for "latest") does not exist."""

    def __init__(
        self,
        agent_id: str,
        checkpoint_id: Optional[str] = None,
        **kwargs: Any,
    ):
        if checkpoint_id is None:
            message = f"No checkpoints found for agent '{agent_id}'"
        else:
            message = f"Checkpoint '{checkpoint_id}' not found for agent '{agent_id}'"
        super().__init__(message, category=ErrorCategory.NOT_FOUND, **kwargs)
        self.agent_id = agent_id
        self.checkpoint_id = checkpoint_id
        self.details["agent_id"] = agent_id
        self.details["checkpoint_id"] = checkpoint_id


class ProcessorError(StepGraphError):
    """A message processor failed while handling an event.

    Never propagated out of the pipeline; built for logging only.
    """

    def __init__(self, processor_name: str, event_id: str, cause: BaseException, **kwargs: Any):
        super().__init__(
            f"Processor '{processor_name}' failed on {event_id}: {cause}",
            category=ErrorCategory.PROCESSOR,
            cause=cause,
            **kwargs,
        )
        self.processor_name = processor_name
        self.event_id = event_id
        self.details["processor"] = processor_name
        self.details["event_id"] = event_id


__all__ = [
    "ErrorCategory",
    "StepGraphError",
    "PreconditionError",
    "GraphValidationError",
    "RoutingError",
    "NodeExecutionError",
    "UnknownNodeError",
    "MaxIterationsExceededError",
    "RunTimeoutError",
    "RunCancelledError",
    "AgentAlreadyRunningError",
    "StorageError",
    "CheckpointNotFoundError",
    "ProcessorError",
]
