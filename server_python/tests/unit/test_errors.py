"""
Exception Hierarchy Unit Tests
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', '..'))

from errors import (
    CyclicDependencyError,
    EngineError,
    GraphNotActiveError,
    HandlerError,
    InvalidStateError,
    InvalidStatusError,
    NodeExecutionError,
    NodeTimeoutError,
    NoExecutableNodesError,
    NotFoundError,
    TaskExecutionError,
    TaskNotFoundError,
    UnknownNodeTypeError,
    ValidationError,
)


class TestErrorTaxonomy:
    """예외 계층 테스트"""

    def test_not_found_family(self):
        error = TaskNotFoundError("t-1")

        assert isinstance(error, NotFoundError)
        assert error.code == "TASK_NOT_FOUND"
        assert error.retryable is False
        assert error.to_dict() == {
            "code": "TASK_NOT_FOUND",
            "message": "Task not found: t-1",
            "details": {"entity": "Task", "id": "t-1"},
        }

    def test_invalid_state_family(self):
        assert isinstance(GraphNotActiveError("g-1", "COMPLETED"), InvalidStateError)
        assert isinstance(CyclicDependencyError("a", "b"), InvalidStateError)

    def test_invalid_status_is_validation_error(self):
        error = InvalidStatusError("DONE", ["PENDING", "COMPLETED"])

        assert isinstance(error, ValidationError)
        assert error.code == "INVALID_STATUS"
        assert error.details == {"field": "status"}

    def test_handler_errors_are_retryable(self):
        """핸들러 실패와 타임아웃은 재시도 대상"""
        assert HandlerError("n-1", RuntimeError("boom")).retryable is True
        assert NodeTimeoutError("n-1", 1.5).retryable is True
        assert UnknownNodeTypeError("TELEPORT").retryable is False

    def test_handler_error_keeps_cause_type(self):
        error = HandlerError("n-1", KeyError("missing"))

        assert isinstance(error, NodeExecutionError)
        assert error.details == {"error_type": "KeyError", "node_id": "n-1"}

    def test_task_execution_error_details(self):
        error = NoExecutableNodesError(task_id="t-1", graph_id="g-1")

        assert isinstance(error, TaskExecutionError)
        assert isinstance(error, EngineError)
        assert error.code == "NO_EXECUTABLE_NODES"
        assert error.details == {"task_id": "t-1", "graph_id": "g-1"}
