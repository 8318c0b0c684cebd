"""Core flow engine components."""

from .exceptions import (
    FlowEngineError,
    InvalidGraphError,
    CycleDetectedError,
    NodeRegistryError,
    UnknownNodeTypeError,
    NodeTimeoutError,
    NodeExecutionFailedError,
    LoggerBusyError,
    WorkflowNotFoundError,
    ConfigurationError,
)
from .logging import (
    setup_logging, setup_logging_from_config, get_logger, reset_logging_context, set_logging_context
)
from .order_resolver import ExecutionOrderResolver
from .port_wiring import PortWiringResolver, ResolvedInputs, ResolvedPort
from .sinks import RunExportSink, FileSystemSink, MemorySink
from .execution_logger import ExecutionLogger
from .node_registry import NodeCapability, FunctionCapability, NodeContext, NodeRegistry
from .flow_executor import FlowExecutor
from .workflow_store import WorkflowStore

__all__ = [
    "FlowEngineError",
    "InvalidGraphError",
    "CycleDetectedError",
    "NodeRegistryError",
    "UnknownNodeTypeError",
    "NodeTimeoutError",
    "NodeExecutionFailedError",
    "LoggerBusyError",
    "WorkflowNotFoundError",
    "ConfigurationError",
    "setup_logging",
    "setup_logging_from_config",
    "get_logger",
    "set_logging_context",
    "reset_logging_context",
    "ExecutionOrderResolver",
    "PortWiringResolver",
    "ResolvedInputs",
    "ResolvedPort",
    "RunExportSink",
    "FileSystemSink",
    "MemorySink",
    "ExecutionLogger",
    "NodeCapability",
    "FunctionCapability",
    "NodeContext",
    "NodeRegistry",
    "FlowExecutor",
    "WorkflowStore",
]
