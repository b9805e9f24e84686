"""
Configuration for the task graph engine.
"""

from .agent_config import AgentConfig, NodeTypes, EdgeTypes, configure_logging

__all__ = [
    "AgentConfig",
    "NodeTypes",
    "EdgeTypes",
    "configure_logging",
]
