class FlowException(Exception):
    """
    This is the base exception for all flow exceptions
    """
    def __init__(self, message: str, status_code: int):
        self.message = message
        self.status_code = status_code
        super().__init__(self.message, self.status_code)

    def __str__(self) -> str:
        return self.message

class FlowServiceException(FlowException):
    """
    This is the exception for all flow service exceptions
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=500)

class FlowNotFoundException(FlowException):
    """
    This is the exception when a flow or an execution is not found
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=404)

class FlowValidationException(FlowException):
    """
    This is the exception for flow validation errors
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=400)

class TriggerEvaluationError(FlowException):
    """
    Raised while evaluating one flow's trigger. The flow is skipped, evaluation goes on.
    """
    def __init__(self, message: str, flow_id: str | None = None):
        self.flow_id = flow_id
        super().__init__(message=message, status_code=500)

class NodeExecutionError(FlowException):
    """
    Raised by a node. Fails the execution it belongs to, nothing else.
    """
    def __init__(self, message: str, node_id: str | None = None):
        self.node_id = node_id
        super().__init__(message=message, status_code=500)

class UnknownNodeTypeError(NodeExecutionError):
    """
    Raised when a node type has no executor
    """
    def __init__(self, node_type: str, node_id: str | None = None):
        self.node_type = node_type
        super().__init__(message=f"Unknown node type: {node_type}", node_id=node_id)

class HttpActionError(FlowException):
    """
    Raised by the http_request action. Captured into the execution variables.
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=502)

class CollaboratorError(FlowException):
    """
    Raised when the conversation-state service rejects or cannot be reached
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=502)

class PersistenceError(FlowException):
    """
    This is the exception for all persistence failures. Always propagated.
    """
    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message=message, status_code=status_code)

class ExecutionConflictError(PersistenceError):
    """
    A write lost against a concurrent writer: stale version, or a second running
    execution for the same conversation
    """
    def __init__(self, message: str):
        super().__init__(message=message, status_code=409)
