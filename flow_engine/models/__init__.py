"""Data models for the flow engine."""

from .core import (
    INPUT_NODE_TYPE,
    OUTPUT_NODE_TYPE,
    RunStatus,
    LogLevel,
    LogEventType,
    ValidationResult,
    NodePort,
    FlowNode,
    Connection,
    FlowGraph,
    FlowSummary,
    ErrorDetail,
    LogEntry,
    RunError,
    RunMetadata,
    RunRecord,
)

__all__ = [
    "INPUT_NODE_TYPE",
    "OUTPUT_NODE_TYPE",
    "RunStatus",
    "LogLevel",
    "LogEventType",
    "ValidationResult",
    "NodePort",
    "FlowNode",
    "Connection",
    "FlowGraph",
    "FlowSummary",
    "ErrorDetail",
    "LogEntry",
    "RunError",
    "RunMetadata",
    "RunRecord",
]
