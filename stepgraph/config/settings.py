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

"""Configuration management for stepgraph.

Values are read from the environment (prefix ``STEPGRAPH_``) and an optional
``.env`` file. Set ``STEPGRAPH_SKIP_ENV_FILE`` to ignore the ``.env`` file,
which the test suite does.

Example:
    STEPGRAPH_MAX_ITERATIONS=100 STEPGRAPH_AUTOMATIC_PERSISTENCE=true python app.py
"""

import os
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Default location for file-backed checkpoint storage
DEFAULT_CHECKPOINT_DIR = Path.home() / ".stepgraph" / "checkpoints"

_LOG_LEVELS = {"TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="STEPGRAPH_",
        env_file=".env" if not os.getenv("STEPGRAPH_SKIP_ENV_FILE") else None,
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Execution limits
    max_iterations: int = Field(50, gt=0, description="Maximum node executions per run")
    run_timeout: Optional[float] = Field(
        None, gt=0, description="Overall run timeout in seconds (None = no limit)"
    )

    # Persistence
    persistence_enabled: bool = True
    automatic_persistence: bool = False  # Checkpoint after every node
    restore_on_start: bool = False  # Resume new runs from the latest checkpoint
    checkpoint_dir: Path = DEFAULT_CHECKPOINT_DIR

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and validate the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}, got {v!r}")
        return level


def load_settings() -> Settings:
    """Load application settings.

    Returns:
        Settings instance
    """
    return Settings()
