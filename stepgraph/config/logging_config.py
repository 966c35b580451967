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

"""Logging setup for stepgraph.

Logging Levels (stepgraph convention):
- TRACE (5): Per-edge evaluation and per-event dispatch
- DEBUG (10): Node execution, edge selection, checkpoint writes
- INFO (20): Run start/finish, rollbacks
- WARNING (30): Isolated processor failures, best-effort persistence failures
- ERROR (40): Run failures
"""

import logging

# Custom TRACE level for very verbose logging (below DEBUG)
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# Third-party loggers to silence
NOISY_LOGGERS = [
    "asyncio",
]


def configure_logging_levels(log_level: str = "INFO") -> None:
    """Configure the stepgraph logger level, silencing noisy third-party loggers.

    Args:
        log_level: Desired level name. Supported: TRACE (5), DEBUG, INFO,
            WARNING, ERROR, CRITICAL. Unknown names fall back to INFO.
    """
    level_upper = log_level.upper()
    if level_upper == "TRACE":
        level = TRACE
    else:
        level = getattr(logging, level_upper, logging.INFO)

    logging.getLogger("stepgraph").setLevel(level)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
