"""Node capability registry: dispatches node execution by type tag."""

import asyncio
import contextvars
import functools
import inspect
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Union

from ..models.core import FlowNode, LogEventType, LogLevel
from .exceptions import NodeRegistryError, UnknownNodeTypeError
from .logging import get_logger, to_python_level

logger = get_logger(__name__)


class NodeContext:
    """Logging handle handed to a capability, scoped to one node."""

    def __init__(self, node: FlowNode, execution_logger=None, execution_id: Optional[str] = None):
        self.node_id = node.id
        self.node_name = node.name
        self.node_type = node.type
        self.config = dict(node.data)
        self.execution_id = execution_id
        self._execution_logger = execution_logger
        self._closed = False

    def close(self) -> None:
        """Stop recording; a capability still running past its timeout logs nothing more."""
        self._closed = True

    def _record(self, level: LogLevel, message: str, data: Any = None) -> None:
        if self._closed:
            logger.debug(f"[{self.node_name}] Dropping message after node finished: {message}")
            return
        if self._execution_logger is None:
            logger.log(to_python_level(level), f"[{self.node_name}] {message}")
            return
        self._execution_logger.record(
            level, f"[{self.node_name}] {message}", data,
            self.node_id, self.node_name, self.node_type,
            event=LogEventType.NODE_MESSAGE,
        )

    def debug(self, message: str, data: Any = None) -> None:
        self._record(LogLevel.DEBUG, message, data)

    def log(self, message: str, data: Any = None) -> None:
        self._record(LogLevel.INFO, message, data)

    def warn(self, message: str, data: Any = None) -> None:
        self._record(LogLevel.WARN, message, data)

    def error(self, message: str, data: Any = None) -> None:
        self._record(LogLevel.ERROR, message, data)


class NodeCapability(ABC):
    """Executes nodes of one type."""

    description: str = ""

    @abstractmethod
    async def execute(self, node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
        """
        Run the node.

        Args:
            node: Node being executed
            inputs: Resolved inputs, addressable by port name or port ID
            context: Logging handle scoped to the node

        Returns:
            The node's output; a dict is treated as one value per output port
        """


class FunctionCapability(NodeCapability):
    """Adapts a plain sync or async callable ``(node, inputs, context)``.

    Sync callables run in the loop's default executor so a node timeout can
    fire while they block. A timed out call is abandoned, not interrupted.
    """

    def __init__(self, function: Callable[..., Any], description: str = ""):
        if not callable(function):
            raise NodeRegistryError(f"Capability {function!r} must be callable")
        self.function = function
        self.description = description or (inspect.getdoc(function) or "").split("\n")[0]

    async def execute(self, node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
        if inspect.iscoroutinefunction(self.function):
            return await self.function(node, inputs, context)

        loop = asyncio.get_running_loop()
        call = functools.partial(contextvars.copy_context().run, self.function, node, inputs, context)
        result = await loop.run_in_executor(None, call)
        if inspect.isawaitable(result):
            result = await result
        return result


class NodeRegistry:
    """Registry of node capabilities keyed by node type tag."""

    def __init__(self):
        self._capabilities: Dict[str, NodeCapability] = {}
        self._descriptions: Dict[str, str] = {}

    def register(
        self,
        node_type: str,
        capability: Union[NodeCapability, Callable[..., Any]],
        description: str = "",
        replace: bool = False,
    ) -> None:
        """
        Register the capability that executes nodes of a type.

        Args:
            node_type: Type tag the capability handles
            capability: A NodeCapability, or a callable taking (node, inputs, context)
            description: Optional description of the capability
            replace: Allow overriding an existing registration

        Raises:
            NodeRegistryError: If the type is empty, already registered, or the
                capability is not usable
        """
        if not node_type or not node_type.strip():
            raise NodeRegistryError("Node type cannot be empty", operation="register")

        node_type = node_type.strip()

        if node_type in self._capabilities and not replace:
            raise NodeRegistryError(
                f"Node type '{node_type}' is already registered",
                node_type=node_type, operation="register"
            )

        if not isinstance(capability, NodeCapability):
            capability = FunctionCapability(capability, description)

        self._capabilities[node_type] = capability
        self._descriptions[node_type] = description.strip() if description else capability.description
        logger.debug(f"Registered capability for node type '{node_type}': {type(capability).__name__}")

    def unregister(self, node_type: str) -> bool:
        """Remove a capability. Returns False if the type was not registered."""
        self._descriptions.pop(node_type, None)
        return self._capabilities.pop(node_type, None) is not None

    def has(self, node_type: str) -> bool:
        return node_type in self._capabilities

    def get(self, node_type: str) -> NodeCapability:
        """
        Retrieve the capability for a type tag.

        Raises:
            UnknownNodeTypeError: If the type is not registered
        """
        try:
            return self._capabilities[node_type]
        except KeyError:
            raise UnknownNodeTypeError(node_type) from None

    def list_types(self) -> Dict[str, str]:
        """Registered type tags with their descriptions."""
        return dict(self._descriptions)

    async def execute(self, node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
        """
        Execute a node with the capability registered for its type.

        Raises:
            UnknownNodeTypeError: If the node's type is not registered
        """
        if node.type not in self._capabilities:
            raise UnknownNodeTypeError(node.type, node_id=node.id)
        return await self._capabilities[node.type].execute(node, inputs, context)
