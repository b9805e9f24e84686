"""
Errors - 에러 처리 모듈

스케줄러의 표준화된 예외 계층을 제공합니다.
"""

from .exceptions import (
    EngineError,
    NotFoundError,
    GraphNotFoundError,
    NodeNotFoundError,
    TaskNotFoundError,
    UserNotFoundError,
    InvalidStateError,
    GraphNotActiveError,
    InvalidTransitionError,
    CyclicDependencyError,
    ValidationError,
    InvalidStatusError,
    NodeExecutionError,
    HandlerError,
    NodeTimeoutError,
    UnknownNodeTypeError,
    TaskExecutionError,
    NoExecutableNodesError,
    GraphInitializationError,
)

__all__ = [
    "EngineError",

    # Not Found
    "NotFoundError",
    "GraphNotFoundError",
    "NodeNotFoundError",
    "TaskNotFoundError",
    "UserNotFoundError",

    # Invalid State
    "InvalidStateError",
    "GraphNotActiveError",
    "InvalidTransitionError",
    "CyclicDependencyError",

    # Validation
    "ValidationError",
    "InvalidStatusError",

    # Node Execution
    "NodeExecutionError",
    "HandlerError",
    "NodeTimeoutError",
    "UnknownNodeTypeError",

    # Task Execution
    "TaskExecutionError",
    "NoExecutableNodesError",
    "GraphInitializationError",
]
