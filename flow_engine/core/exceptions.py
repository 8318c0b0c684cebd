"""Custom exceptions for the flow engine with detailed error information."""

import traceback
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorSeverity(Enum):
    """Error severity levels for categorizing exceptions."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ErrorCategory(Enum):
    """Categories of errors for better classification."""
    VALIDATION = "validation"
    EXECUTION = "execution"
    STORAGE = "storage"
    CONFIGURATION = "configuration"


class FlowEngineError(Exception):
    """Base exception for all flow engine errors."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        category: ErrorCategory = ErrorCategory.EXECUTION,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or self.__class__.__name__
        self.severity = severity
        self.category = category
        self.details = details or {}
        self.context = context or {}
        self.timestamp = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging and run records."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "severity": self.severity.value,
            "category": self.category.value,
            "details": self.details,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "exception_type": self.__class__.__name__
        }

    def add_context(self, **kwargs):
        """Add additional context to the exception."""
        self.context.update(kwargs)
        return self

    def add_details(self, **kwargs):
        """Add additional details to the exception."""
        self.details.update(kwargs)
        return self


class InvalidGraphError(FlowEngineError):
    """Raised when the supplied nodes or connections are malformed."""

    def __init__(
        self,
        message: str,
        validation_errors: Optional[List[str]] = None,
        workflow_id: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.VALIDATION)
        super().__init__(message, **kwargs)
        self.validation_errors = validation_errors or []
        if workflow_id:
            self.add_context(workflow_id=workflow_id)
        if validation_errors:
            self.add_details(validation_errors=validation_errors)


class CycleDetectedError(InvalidGraphError):
    """Raised when the execution order cannot cover every node."""

    def __init__(self, message: str, cycle_node_ids: Optional[List[str]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.cycle_node_ids = cycle_node_ids or []
        if cycle_node_ids:
            self.add_details(cycle_node_ids=cycle_node_ids)


class NodeRegistryError(FlowEngineError):
    """Raised when node registry operations fail."""

    def __init__(
        self,
        message: str,
        node_type: Optional[str] = None,
        operation: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        kwargs.setdefault("category", ErrorCategory.CONFIGURATION)
        super().__init__(message, **kwargs)
        self.node_type = node_type
        if node_type:
            self.add_context(node_type=node_type)
        if operation:
            self.add_context(operation=operation)


class UnknownNodeTypeError(NodeRegistryError):
    """Raised when no capability is registered for a node's type tag."""

    def __init__(self, node_type: str, node_id: Optional[str] = None, **kwargs):
        message = f"No capability registered for node type '{node_type}'"
        if node_id:
            message += f" (node {node_id})"
        super().__init__(message, node_type=node_type, operation="dispatch", **kwargs)
        if node_id:
            self.add_context(node_id=node_id)


class NodeTimeoutError(FlowEngineError):
    """Raised when a node does not finish within its configured timeout."""

    def __init__(self, node_id: str, timeout: float, **kwargs):
        super().__init__(
            f"Node {node_id} timed out after {timeout} seconds",
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.timeout = timeout
        self.add_context(node_id=node_id)
        self.add_details(timeout=timeout)


class NodeExecutionFailedError(FlowEngineError):
    """Raised when a node fails; wraps the node's own error."""

    def __init__(
        self,
        message: str,
        node_id: str,
        node_name: Optional[str] = None,
        node_type: Optional[str] = None,
        duration: Optional[float] = None,
        original_error: Optional[BaseException] = None,
        execution_id: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.node_id = node_id
        self.node_name = node_name
        self.node_type = node_type
        self.duration = duration
        self.original_error = original_error
        self.add_context(node_id=node_id, node_name=node_name, node_type=node_type)
        if execution_id:
            self.add_context(execution_id=execution_id)
        if duration is not None:
            self.add_details(duration=duration)
        if original_error is not None:
            self.add_details(
                original_error=str(original_error),
                original_error_type=type(original_error).__name__
            )


class LoggerBusyError(FlowEngineError):
    """Raised when a run is started on a logger that still holds an open run."""

    def __init__(self, active_execution_id: str, **kwargs):
        super().__init__(
            f"Execution logger already has an open run: {active_execution_id}",
            severity=ErrorSeverity.MEDIUM,
            category=ErrorCategory.EXECUTION,
            **kwargs
        )
        self.active_execution_id = active_execution_id
        self.add_context(active_execution_id=active_execution_id)


class WorkflowNotFoundError(FlowEngineError):
    """Raised when the workflow store has no flow with the requested ID."""

    def __init__(self, flow_id: str, **kwargs):
        super().__init__(
            f"Flow with ID '{flow_id}' not found",
            severity=ErrorSeverity.LOW,
            category=ErrorCategory.STORAGE,
            **kwargs
        )
        self.add_context(flow_id=flow_id)


class ConfigurationError(FlowEngineError):
    """Raised when configuration is invalid or missing."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        super().__init__(
            message,
            severity=ErrorSeverity.HIGH,
            category=ErrorCategory.CONFIGURATION,
            **kwargs
        )
        if config_key:
            self.add_context(config_key=config_key)


def format_exception_stack(error: BaseException) -> Optional[str]:
    """Return the formatted traceback of an exception, if it has one."""
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))
