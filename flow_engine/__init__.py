"""Flow execution engine: runs node graphs in dependency order with structured run logs."""

from .core import (
    ExecutionLogger,
    FlowExecutor,
    NodeRegistry,
    WorkflowStore,
)
from .config import EngineConfig, get_config, load_config
from .nodes import create_default_registry

__version__ = "1.0.0"

__all__ = [
    "ExecutionLogger",
    "FlowExecutor",
    "NodeRegistry",
    "WorkflowStore",
    "EngineConfig",
    "get_config",
    "load_config",
    "create_default_registry",
]
