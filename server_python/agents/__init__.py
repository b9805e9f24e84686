from .task_manager import TaskManager
from .orchestrator import AgentOrchestrator, AgentStatus, ActiveTaskRegistry, Planner

__all__ = [
    "TaskManager",
    "AgentOrchestrator",
    "AgentStatus",
    "ActiveTaskRegistry",
    "Planner",
]
