"""
Agent execution configuration.

Tunables for the node executor and orchestrator, loaded from the environment
(with .env support) the same way the database URL is.
"""

import os
import logging
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from errors import ValidationError


class NodeTypes:
    """Built-in node type tags."""
    RESEARCH = "RESEARCH"
    ANALYSIS = "ANALYSIS"
    ACTION = "ACTION"
    DECISION = "DECISION"
    VALIDATION = "VALIDATION"


class EdgeTypes:
    """Edge type tags. Only DEPENDS_ON edges gate readiness."""
    DEPENDS_ON = "DEPENDS_ON"
    FLOW = "flow"
    MEMORY_FLOW = "memory_flow"


@dataclass
class AgentConfig:
    """Configuration for node execution and task orchestration."""
    max_retries: int = 3  # total attempts per node
    node_retry_delay: float = 1.0  # backoff base, seconds
    timeout_duration: float = 300.0  # per attempt, seconds
    concurrent_tasks_limit: Optional[int] = 5  # None/0 = unbounded
    check_interval: float = 5.0
    max_rounds: int = 100

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValidationError("max_retries must be at least 1", field="max_retries")
        if self.node_retry_delay < 0:
            raise ValidationError("node_retry_delay must be >= 0", field="node_retry_delay")
        if self.timeout_duration <= 0:
            raise ValidationError("timeout_duration must be > 0", field="timeout_duration")
        if self.concurrent_tasks_limit is not None and self.concurrent_tasks_limit < 0:
            raise ValidationError(
                "concurrent_tasks_limit must be >= 0", field="concurrent_tasks_limit"
            )

    def retry_delay(self, retry_count: int) -> float:
        """Backoff before re-attempt number ``retry_count`` (1-based)."""
        return self.node_retry_delay * (2 ** (retry_count - 1))

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Build a config from AGENT_* environment variables."""
        load_dotenv()

        limit = _env_number("AGENT_CONCURRENT_TASKS_LIMIT", int, 5)
        return cls(
            max_retries=_env_number("AGENT_MAX_RETRIES", int, 3),
            node_retry_delay=_env_number("AGENT_NODE_RETRY_DELAY", float, 1.0),
            timeout_duration=_env_number("AGENT_TIMEOUT_DURATION", float, 300.0),
            concurrent_tasks_limit=limit or None,
            check_interval=_env_number("AGENT_CHECK_INTERVAL", float, 5.0),
            max_rounds=_env_number("AGENT_MAX_ROUNDS", int, 100),
        )


def _env_number(name: str, cast, default):
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}", field=name)


def configure_logging(level: int = logging.INFO) -> None:
    """Attach a console handler for hosts that do not configure logging."""
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(
            logging.Formatter('%(asctime)s [%(name)s] %(levelname)s %(message)s')
        )
        root.addHandler(handler)
    root.setLevel(level)
