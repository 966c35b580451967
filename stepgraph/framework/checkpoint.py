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

"""Checkpointing of run state.

A checkpoint captures where a run is (node and the input it was given) and
its message history, so the run can later be rolled back and resumed there.
Storage is pluggable through ``StorageProvider``; see
``stepgraph.framework.checkpointer`` for the bundled backends.

Example:
    manager = CheckpointManager(InMemoryStorageProvider(), PersistenceConfig(automatic=True))
    manager.install(engine.pipeline, strategy)

    await engine.run(strategy, "hello")
    checkpoints = await manager.get_checkpoints(engine.agent_id)
"""

from __future__ import annotations

import builtins
import copy
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Iterable, Optional, Protocol, Union

from stepgraph.core.errors import (
    CheckpointNotFoundError,
    PreconditionError,
    StepGraphError,
    StorageError,
)
from stepgraph.framework.context import Message, RunContext, TypedValue, type_tag_for
from stepgraph.framework.events import AgentStartedEvent, NodeExecutionEndEvent

if TYPE_CHECKING:
    from stepgraph.config.settings import Settings
    from stepgraph.framework.graph import Strategy
    from stepgraph.framework.pipeline import EventPipeline

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Checkpoint:
    """Snapshot of a run's position and message history.

    Identified by ``(agent_id, checkpoint_id)``.

    Attributes:
        checkpoint_id: Unique checkpoint identifier within the agent
        agent_id: Agent the checkpoint belongs to
        node_id: Node to resume at
        last_input: Input to give that node, with its type tag
        message_history: Message history at checkpoint time
        created_at: When the checkpoint was created (UTC)
    """

    checkpoint_id: str
    agent_id: str
    node_id: str
    last_input: TypedValue
    message_history: tuple[Message, ...] = ()
    created_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        """Serialize checkpoint to dictionary."""
        return {
            "checkpoint_id": self.checkpoint_id,
            "agent_id": self.agent_id,
            "node_id": self.node_id,
            "last_input": self.last_input.to_dict(),
            "message_history": [message.to_dict() for message in self.message_history],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Checkpoint":
        """Deserialize checkpoint from dictionary."""
        return cls(
            checkpoint_id=data["checkpoint_id"],
            agent_id=data["agent_id"],
            node_id=data["node_id"],
            last_input=TypedValue.from_dict(data["last_input"]),
            message_history=tuple(Message.from_dict(m) for m in data.get("message_history", [])),
            created_at=datetime.fromisoformat(data["created_at"]),
        )


class StorageProvider(Protocol):
    """Protocol for checkpoint persistence."""

    async def save(self, checkpoint: Checkpoint) -> None:
        """Save a checkpoint."""
        ...

    async def list(self, agent_id: str) -> builtins.list[Checkpoint]:
        """List all checkpoints for an agent, oldest first."""
        ...

    async def latest(self, agent_id: str) -> Optional[Checkpoint]:
        """Most recent checkpoint for an agent, if any."""
        ...


@dataclass
class PersistenceConfig:
    """Configuration for checkpointing.

    Attributes:
        enabled: Whether checkpoints are written at all
        automatic: Checkpoint after every node execution
        restore_on_start: Roll new runs back to the agent's latest checkpoint
    """

    enabled: bool = True
    automatic: bool = False
    restore_on_start: bool = False

    @classmethod
    def from_settings(cls, settings: "Settings") -> "PersistenceConfig":
        return cls(
            enabled=settings.persistence_enabled,
            automatic=settings.automatic_persistence,
            restore_on_start=settings.restore_on_start,
        )


TypeRef = Union[type, str]


class CheckpointManager:
    """Creates checkpoints and rolls run contexts back to them.

    Features addressing nodes by name require a strategy whose node names are
    unique; ``install`` and ``create_checkpoint`` enforce that.
    """

    def __init__(self, storage: StorageProvider, config: Optional[PersistenceConfig] = None):
        """Initialize CheckpointManager.

        Args:
            storage: Storage backend
            config: Persistence options (default: enabled, manual)
        """
        self.storage = storage
        self.config = config or PersistenceConfig()

    def install(self, pipeline: "EventPipeline", strategy: "Strategy") -> "CheckpointManager":
        """Hook automatic persistence and restore-on-start into a pipeline.

        Raises:
            PreconditionError: If persistence is enabled and the strategy's
                node names are not unique
        """
        if self.config.enabled:
            self._require_unique_names(strategy)
        if self.config.automatic:
            pipeline.subscribe(NodeExecutionEndEvent, self._on_node_end)
        if self.config.restore_on_start:
            pipeline.subscribe(AgentStartedEvent, self._on_agent_started)
        return self

    # ------------------------------------------------------------------
    # Creating and querying
    # ------------------------------------------------------------------

    async def create_checkpoint(
        self,
        context: RunContext,
        node_id: str,
        last_input: Any,
        last_input_type: TypeRef,
        checkpoint_id: Optional[str] = None,
    ) -> Optional[Checkpoint]:
        """Snapshot the context and save it.

        Args:
            context: Run context to snapshot
            node_id: Node to resume at
            last_input: Input to give that node on resume
            last_input_type: Declared type of ``last_input`` (type or type tag)
            checkpoint_id: Checkpoint id (default: generated)

        Returns:
            The saved checkpoint, or None if persistence is disabled

        Raises:
            PreconditionError: If the strategy's node names are not unique
            StorageError: If the storage backend fails
        """
        self._require_unique_names(context.strategy)
        if not self.config.enabled:
            return None

        type_tag = last_input_type if isinstance(last_input_type, str) else type_tag_for(last_input_type)
        checkpoint = Checkpoint(
            checkpoint_id=checkpoint_id or uuid.uuid4().hex,
            agent_id=context.agent_id,
            node_id=node_id,
            last_input=TypedValue(value=copy.deepcopy(last_input), type_tag=type_tag),
            message_history=context.message_history,
        )

        try:
            await self.storage.save(checkpoint)
        except StepGraphError:
            raise
        except Exception as e:
            raise StorageError(
                f"Failed to save checkpoint '{checkpoint.checkpoint_id}': {e}",
                agent_id=context.agent_id,
                cause=e,
            ) from e

        logger.debug(f"Created checkpoint: {checkpoint.checkpoint_id} (agent: {context.agent_id}, node: {node_id})")
        return checkpoint

    async def get_checkpoints(self, agent_id: str) -> list[Checkpoint]:
        """All checkpoints of an agent, oldest first."""
        return await self._storage_call(agent_id, self.storage.list(agent_id))

    async def get_latest_checkpoint(self, agent_id: str) -> Optional[Checkpoint]:
        """Most recent checkpoint of an agent, if any."""
        return await self._storage_call(agent_id, self.storage.latest(agent_id))

    async def get_checkpoint(self, agent_id: str, checkpoint_id: str) -> Optional[Checkpoint]:
        """Checkpoint by id, if it exists."""
        for checkpoint in await self.get_checkpoints(agent_id):
            if checkpoint.checkpoint_id == checkpoint_id:
                return checkpoint
        return None

    # ------------------------------------------------------------------
    # Rollback
    # ------------------------------------------------------------------

    async def rollback_to_checkpoint(self, checkpoint_id: str, context: RunContext) -> Checkpoint:
        """Restore ``context`` to a checkpoint of its agent.

        Raises:
            CheckpointNotFoundError: If the checkpoint does not exist; the
                context is left untouched
            UnknownNodeError: If the checkpoint's node is not in the strategy
        """
        checkpoint = await self.get_checkpoint(context.agent_id, checkpoint_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(context.agent_id, checkpoint_id)
        self._restore(checkpoint, context)
        return checkpoint

    async def rollback_to_latest_checkpoint(self, context: RunContext) -> Checkpoint:
        """Restore ``context`` to the most recent checkpoint of its agent.

        Raises:
            CheckpointNotFoundError: If the agent has no checkpoints
        """
        checkpoint = await self.get_latest_checkpoint(context.agent_id)
        if checkpoint is None:
            raise CheckpointNotFoundError(context.agent_id)
        self._restore(checkpoint, context)
        return checkpoint

    def set_execution_point(
        self,
        context: RunContext,
        node_id: str,
        message_history: Iterable[Message],
        input_value: Any,
        input_type: Optional[TypeRef] = None,
    ) -> None:
        """Move ``context`` to an arbitrary node without a stored checkpoint.

        Raises:
            UnknownNodeError: If ``node_id`` is not in the strategy
        """
        tag = input_type if input_type is None or isinstance(input_type, str) else type_tag_for(input_type)
        context.set_execution_point(node_id, message_history, input_value, tag)

    def _restore(self, checkpoint: Checkpoint, context: RunContext) -> None:
        context.set_execution_point(
            checkpoint.node_id,
            checkpoint.message_history,
            copy.deepcopy(checkpoint.last_input.value),
            checkpoint.last_input.type_tag,
        )
        logger.info(
            f"Rolled back to checkpoint {checkpoint.checkpoint_id} "
            f"(agent: {checkpoint.agent_id}, node: {checkpoint.node_id})"
        )

    # ------------------------------------------------------------------
    # Pipeline hooks
    # ------------------------------------------------------------------

    async def _on_node_end(self, event: NodeExecutionEndEvent, context: Optional[RunContext]) -> None:
        # A rollback requested by the node itself supersedes its result
        if context is None or context.has_pending_execution_point:
            return
        node = context.strategy.find_node(event.node_name)
        output_type: TypeRef = node.output_type if node is not None else type(event.output)
        try:
            await self.create_checkpoint(context, event.node_name, event.output, output_type)
        except StepGraphError as e:
            logger.warning(f"Automatic checkpoint after '{event.node_name}' failed: {e}", exc_info=True)

    async def _on_agent_started(self, event: AgentStartedEvent, context: Optional[RunContext]) -> None:
        if context is None or context.has_pending_execution_point:
            return
        checkpoint = await self.get_latest_checkpoint(context.agent_id)
        if checkpoint is None:
            logger.debug(f"No checkpoint to restore for agent '{context.agent_id}'")
            return
        self._restore(checkpoint, context)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _require_unique_names(strategy: "Strategy") -> None:
        if not strategy.unique_names:
            raise PreconditionError(
                f"Checkpointing requires unique node names; strategy '{strategy.name}' repeats some"
            )

    @staticmethod
    async def _storage_call(agent_id: str, awaitable: Any) -> Any:
        try:
            return await awaitable
        except StepGraphError:
            raise
        except Exception as e:
            raise StorageError(f"Checkpoint storage failed: {e}", agent_id=agent_id, cause=e) from e


__all__ = [
    "Checkpoint",
    "StorageProvider",
    "PersistenceConfig",
    "CheckpointManager",
]
