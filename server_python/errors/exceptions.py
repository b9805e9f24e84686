"""
Exceptions - 실행 엔진 예외 클래스

태스크 그래프 스케줄러 전체에서 사용하는 표준화된 예외 계층입니다.

- NotFoundError: 참조한 Graph/Node/Task/User가 없음 (재시도 불가)
- InvalidStateError: 현재 상태에서 허용되지 않는 작업 (재시도 불가)
- ValidationError: 잘못된 입력 값 (재시도 불가)
- NodeExecutionError: 노드 핸들러 실행 실패 (재시도 루프에서 처리)
- TaskExecutionError: 오케스트레이터 실행 실패 (호출자에게 전달)
"""

from typing import Optional, Dict, Any


class EngineError(Exception):
    """실행 엔진 기본 에러 클래스"""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: 에러 메시지
            code: 에러 코드
            details: 추가 상세 정보
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        """에러를 딕셔너리로 변환"""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


# =============================================================================
# Not Found
# =============================================================================

class NotFoundError(EngineError):
    """참조한 엔티티가 존재하지 않을 때 발생"""

    def __init__(self, entity: str, entity_id: Any, code: str = "NOT_FOUND"):
        super().__init__(
            message=f"{entity} not found: {entity_id}",
            code=code,
            details={"entity": entity, "id": str(entity_id)}
        )
        self.entity_id = entity_id


class GraphNotFoundError(NotFoundError):
    def __init__(self, graph_id: Any):
        super().__init__("Graph", graph_id, code="GRAPH_NOT_FOUND")


class NodeNotFoundError(NotFoundError):
    def __init__(self, node_id: Any):
        super().__init__("Node", node_id, code="NODE_NOT_FOUND")


class TaskNotFoundError(NotFoundError):
    def __init__(self, task_id: Any):
        super().__init__("Task", task_id, code="TASK_NOT_FOUND")


class UserNotFoundError(NotFoundError):
    def __init__(self, user_id: Any):
        super().__init__("User", user_id, code="USER_NOT_FOUND")


# =============================================================================
# Invalid State
# =============================================================================

class InvalidStateError(EngineError):
    """현재 상태에서 허용되지 않는 작업일 때 발생"""

    def __init__(
        self,
        message: str,
        code: str = "INVALID_STATE",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message=message, code=code, details=details)


class GraphNotActiveError(InvalidStateError):
    """ACTIVE가 아닌 그래프를 변경하려 할 때 발생"""

    def __init__(self, graph_id: Any, status: str):
        super().__init__(
            message=f"Graph {graph_id} is {status}, expected ACTIVE",
            code="GRAPH_NOT_ACTIVE",
            details={"graph_id": str(graph_id), "status": status}
        )


class InvalidTransitionError(InvalidStateError):
    """허용되지 않는 상태 전이"""

    def __init__(self, entity: str, entity_id: Any, current: str, requested: str):
        super().__init__(
            message=f"Cannot move {entity} {entity_id} from {current} to {requested}",
            code="INVALID_TRANSITION",
            details={
                "entity": entity,
                "id": str(entity_id),
                "current": current,
                "requested": requested,
            }
        )


class CyclicDependencyError(InvalidStateError):
    """의존성 엣지가 사이클을 만들 때 발생"""

    def __init__(self, source_id: Any, target_id: Any):
        super().__init__(
            message=f"Dependency {source_id} -> {target_id} would create a cycle",
            code="CYCLIC_DEPENDENCY",
            details={"source_id": str(source_id), "target_id": str(target_id)}
        )


# =============================================================================
# Validation
# =============================================================================

class ValidationError(EngineError):
    """입력 검증 실패 시 발생"""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            details={"field": field} if field else {}
        )


class InvalidStatusError(ValidationError):
    """알 수 없는 상태 값"""

    def __init__(self, status: Any, allowed):
        super().__init__(
            message=f"Invalid status: {status!r} (allowed: {', '.join(allowed)})",
            field="status"
        )
        self.code = "INVALID_STATUS"


# =============================================================================
# Node Execution
# =============================================================================

class NodeExecutionError(EngineError):
    """노드 실행 관련 에러"""

    retryable = True

    def __init__(
        self,
        message: str,
        node_id: Any = None,
        code: str = "NODE_EXECUTION_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        details = dict(details or {})
        if node_id is not None:
            details["node_id"] = str(node_id)
        super().__init__(message=message, code=code, details=details)
        self.node_id = node_id


class HandlerError(NodeExecutionError):
    """핸들러가 예외를 던졌을 때 (재시도 대상)"""

    def __init__(self, node_id: Any, cause: BaseException):
        super().__init__(
            message=str(cause) or type(cause).__name__,
            node_id=node_id,
            code="HANDLER_ERROR",
            details={"error_type": type(cause).__name__}
        )


class NodeTimeoutError(NodeExecutionError):
    """핸들러 실행 시간 초과 (재시도 대상)"""

    def __init__(self, node_id: Any, timeout: float):
        super().__init__(
            message=f"Operation timeout after {timeout}s",
            node_id=node_id,
            code="NODE_TIMEOUT",
            details={"timeout_seconds": timeout}
        )


class UnknownNodeTypeError(NodeExecutionError):
    """등록되지 않은 노드 타입 (재시도 불가)"""

    retryable = False

    def __init__(self, node_type: str, node_id: Any = None):
        super().__init__(
            message=f"Unknown node type: {node_type}",
            node_id=node_id,
            code="UNKNOWN_NODE_TYPE",
            details={"node_type": node_type}
        )


# =============================================================================
# Task Execution
# =============================================================================

class TaskExecutionError(EngineError):
    """오케스트레이터의 태스크 실행 실패"""

    def __init__(
        self,
        message: str,
        task_id: Any = None,
        code: str = "TASK_EXECUTION_ERROR",
        graph_id: Any = None
    ):
        details = {}
        if task_id is not None:
            details["task_id"] = str(task_id)
        if graph_id is not None:
            details["graph_id"] = str(graph_id)
        super().__init__(message=message, code=code, details=details)
        self.task_id = task_id
        self.graph_id = graph_id


class NoExecutableNodesError(TaskExecutionError):
    def __init__(self, task_id: Any = None, graph_id: Any = None):
        super().__init__(
            message="No executable nodes found",
            task_id=task_id,
            code="NO_EXECUTABLE_NODES",
            graph_id=graph_id
        )


class GraphInitializationError(TaskExecutionError):
    def __init__(self, task_id: Any = None, graph_id: Any = None):
        super().__init__(
            message="Task graph initialization failed",
            task_id=task_id,
            code="GRAPH_INITIALIZATION_FAILED",
            graph_id=graph_id
        )
