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

"""Storage providers for checkpoints.

Implementations:
    - NoPersistenceStorageProvider: discards everything
    - InMemoryStorageProvider: per-process dict, for development and tests
    - JSONFileStorageProvider: one JSON file per checkpoint
    - SQLiteStorageProvider: single SQLite database file

Every provider returns checkpoints oldest first from ``list`` and treats
``(agent_id, checkpoint_id)`` as the identity of a checkpoint.

Example:
    from stepgraph.framework.checkpointer import JSONFileStorageProvider

    storage = JSONFileStorageProvider("~/.stepgraph/checkpoints")
    manager = CheckpointManager(storage, PersistenceConfig(automatic=True))
"""

from __future__ import annotations

import asyncio
import builtins
import json
import logging
import os
import sqlite3
import tempfile
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Optional, Union
from urllib.parse import quote

from stepgraph.core.errors import StorageError
from stepgraph.framework.checkpoint import Checkpoint

if TYPE_CHECKING:
    from stepgraph.config.settings import Settings

logger = logging.getLogger(__name__)


class NoPersistenceStorageProvider:
    """Storage provider that keeps nothing."""

    async def save(self, checkpoint: Checkpoint) -> None:
        pass

    async def list(self, agent_id: str) -> builtins.list[Checkpoint]:
        return []

    async def latest(self, agent_id: str) -> Optional[Checkpoint]:
        return None


class InMemoryStorageProvider:
    """In-memory checkpoint storage.

    Suitable for development and testing. Safe for concurrent runs on one
    event loop.
    """

    def __init__(self) -> None:
        self._checkpoints: dict[str, builtins.list[Checkpoint]] = {}
        self._lock = asyncio.Lock()

    async def save(self, checkpoint: Checkpoint) -> None:
        """Save checkpoint to memory.

        Raises:
            StorageError: If the agent already has a checkpoint with this id
        """
        async with self._lock:
            stored = self._checkpoints.setdefault(checkpoint.agent_id, [])
            if any(c.checkpoint_id == checkpoint.checkpoint_id for c in stored):
                raise StorageError(
                    f"Checkpoint '{checkpoint.checkpoint_id}' already exists",
                    agent_id=checkpoint.agent_id,
                )
            stored.append(checkpoint)

    async def list(self, agent_id: str) -> builtins.list[Checkpoint]:
        """List all checkpoints, oldest first."""
        async with self._lock:
            return sorted(self._checkpoints.get(agent_id, []), key=lambda c: c.created_at)

    async def latest(self, agent_id: str) -> Optional[Checkpoint]:
        """Load latest checkpoint."""
        checkpoints = await self.list(agent_id)
        return checkpoints[-1] if checkpoints else None


class JSONFileStorageProvider:
    """JSON file-based checkpoint storage.

    Stores each checkpoint as a separate JSON file under a directory per
    agent. Writes go to a temporary file that is renamed into place, so a
    checkpoint file is either complete or absent. Each file also records a
    per-agent save sequence that orders checkpoints sharing a timestamp.

    Attributes:
        base_dir: Directory to store checkpoint files
    """

    def __init__(self, base_dir: Union[str, Path] = "~/.stepgraph/checkpoints"):
        """Initialize JSON file storage.

        Args:
            base_dir: Directory for checkpoint files
        """
        self.base_dir = Path(os.path.expanduser(str(base_dir)))
        self.base_dir.mkdir(parents=True, exist_ok=True)
        self._locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    @classmethod
    def from_settings(cls, settings: "Settings") -> "JSONFileStorageProvider":
        """Create storage rooted at ``settings.checkpoint_dir``."""
        return cls(settings.checkpoint_dir)

    def _agent_dir(self, agent_id: str) -> Path:
        """Get directory for an agent's checkpoints."""
        return self.base_dir / quote(agent_id, safe="")

    def _agent_lock(self, agent_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(agent_id, threading.Lock())

    async def save(self, checkpoint: Checkpoint) -> None:
        """Save checkpoint to a JSON file."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save_sync, checkpoint)

    def _save_sync(self, checkpoint: Checkpoint) -> None:
        agent_dir = self._agent_dir(checkpoint.agent_id)
        filepath = agent_dir / f"{quote(checkpoint.checkpoint_id, safe='')}.json"

        with self._agent_lock(checkpoint.agent_id):
            try:
                agent_dir.mkdir(parents=True, exist_ok=True)
                if filepath.exists():
                    raise StorageError(
                        f"Checkpoint '{checkpoint.checkpoint_id}' already exists",
                        agent_id=checkpoint.agent_id,
                    )
                sequence = sum(1 for _ in agent_dir.glob("*.json"))
                payload = json.dumps({**checkpoint.to_dict(), "sequence": sequence}, indent=2)
                fd, tmp_path = tempfile.mkstemp(dir=agent_dir, suffix=".tmp")
                try:
                    with os.fdopen(fd, "w", encoding="utf-8") as f:
                        f.write(payload)
                        f.flush()
                        os.fsync(f.fileno())
                    os.replace(tmp_path, filepath)
                except BaseException:
                    if os.path.exists(tmp_path):
                        os.unlink(tmp_path)
                    raise
            except (OSError, TypeError, ValueError) as e:
                raise StorageError(
                    f"Failed to write checkpoint '{checkpoint.checkpoint_id}': {e}",
                    agent_id=checkpoint.agent_id,
                    cause=e,
                ) from e

        logger.debug(f"Saved checkpoint to: {filepath}")

    async def list(self, agent_id: str) -> builtins.list[Checkpoint]:
        """List all checkpoints for an agent, oldest first."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._list_sync, agent_id)

    def _list_sync(self, agent_id: str) -> builtins.list[Checkpoint]:
        agent_dir = self._agent_dir(agent_id)
        if not agent_dir.is_dir():
            return []

        entries = []
        with self._agent_lock(agent_id):
            for filepath in agent_dir.glob("*.json"):
                try:
                    with open(filepath, encoding="utf-8") as f:
                        data = json.load(f)
                    entries.append((data.get("sequence", 0), Checkpoint.from_dict(data)))
                except (OSError, ValueError, KeyError) as e:
                    raise StorageError(
                        f"Failed to read checkpoint file {filepath}: {e}",
                        agent_id=agent_id,
                        cause=e,
                    ) from e

        entries.sort(key=lambda entry: (entry[1].created_at, entry[0]))
        return [checkpoint for _, checkpoint in entries]

    async def latest(self, agent_id: str) -> Optional[Checkpoint]:
        """Load latest checkpoint for an agent."""
        checkpoints = await self.list(agent_id)
        return checkpoints[-1] if checkpoints else None


class SQLiteStorageProvider:
    """SQLite-based checkpoint storage.

    Stores checkpoints in a SQLite database file for durability and
    queryability. Each save is a single transaction.

    Attributes:
        db_path: Path to SQLite database file
        table_name: Name of the checkpoints table

    Example:
        storage = SQLiteStorageProvider("~/.stepgraph/checkpoints.db")
        await storage.save(checkpoint)
        latest = await storage.latest("agent-1")
    """

    def __init__(
        self,
        db_path: Union[str, Path] = "~/.stepgraph/checkpoints.db",
        table_name: str = "checkpoints",
    ):
        """Initialize SQLite storage.

        Args:
            db_path: Path to database file (created if it does not exist),
                or ``":memory:"``
            table_name: Name for checkpoints table
        """
        db_path = str(db_path)
        self.db_path = db_path if db_path == ":memory:" else str(Path(os.path.expanduser(db_path)))
        self.table_name = table_name
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            if self.db_path != ":memory:":
                Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            self._init_schema(self._conn)

        return self._conn

    def _init_schema(self, conn: sqlite3.Connection) -> None:
        """Initialize database schema."""
        conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table_name} (
                agent_id TEXT NOT NULL,
                checkpoint_id TEXT NOT NULL,
                node_id TEXT NOT NULL,
                created_at TEXT NOT NULL,
                payload TEXT NOT NULL,
                PRIMARY KEY (agent_id, checkpoint_id)
            )
        """)
        conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{self.table_name}_agent_created
            ON {self.table_name}(agent_id, created_at)
        """)
        conn.commit()
        logger.debug(f"Initialized checkpoint schema: {self.db_path}")

    async def save(self, checkpoint: Checkpoint) -> None:
        """Save a checkpoint to SQLite."""
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._save_sync, checkpoint)

    def _save_sync(self, checkpoint: Checkpoint) -> None:
        try:
            payload = json.dumps(checkpoint.to_dict())
            with self._lock:
                conn = self._get_connection()
                with conn:
                    conn.execute(
                        f"""
                        INSERT INTO {self.table_name}
                        (agent_id, checkpoint_id, node_id, created_at, payload)
                        VALUES (?, ?, ?, ?, ?)
                    """,
                        (
                            checkpoint.agent_id,
                            checkpoint.checkpoint_id,
                            checkpoint.node_id,
                            checkpoint.created_at.isoformat(),
                            payload,
                        ),
                    )
        except sqlite3.IntegrityError as e:
            raise StorageError(
                f"Checkpoint '{checkpoint.checkpoint_id}' already exists",
                agent_id=checkpoint.agent_id,
                cause=e,
            ) from e
        except (sqlite3.Error, TypeError, ValueError) as e:
            raise StorageError(
                f"Failed to save checkpoint '{checkpoint.checkpoint_id}': {e}",
                agent_id=checkpoint.agent_id,
                cause=e,
            ) from e

        logger.debug(
            f"Saved checkpoint: {checkpoint.checkpoint_id} "
            f"(agent: {checkpoint.agent_id}, node: {checkpoint.node_id})"
        )

    async def list(self, agent_id: str) -> builtins.list[Checkpoint]:
        """List all checkpoints for an agent, oldest first."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._list_sync, agent_id)

    def _list_sync(self, agent_id: str) -> builtins.list[Checkpoint]:
        try:
            with self._lock:
                rows = (
                    self._get_connection()
                    .execute(
                        f"""
                        SELECT payload FROM {self.table_name}
                        WHERE agent_id = ?
                        ORDER BY rowid
                    """,
                        (agent_id,),
                    )
                    .fetchall()
                )
            checkpoints = [Checkpoint.from_dict(json.loads(row["payload"])) for row in rows]
        except (sqlite3.Error, ValueError, KeyError) as e:
            raise StorageError(f"Failed to list checkpoints: {e}", agent_id=agent_id, cause=e) from e

        # Sorted on parsed timestamps; stored ISO strings may differ in offset.
        # The sort is stable, so equal timestamps keep insertion order.
        return sorted(checkpoints, key=lambda c: c.created_at)

    async def latest(self, agent_id: str) -> Optional[Checkpoint]:
        """Load the latest checkpoint for an agent."""
        checkpoints = await self.list(agent_id)
        return checkpoints[-1] if checkpoints else None

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self._conn:
                self._conn.close()
                self._conn = None


__all__ = [
    "NoPersistenceStorageProvider",
    "InMemoryStorageProvider",
    "JSONFileStorageProvider",
    "SQLiteStorageProvider",
]
