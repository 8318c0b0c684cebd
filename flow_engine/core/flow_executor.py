"""Flow executor: runs a node graph in dependency order."""

import asyncio
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Union

from pydantic import ValidationError

from ..config import EngineConfig, get_config
from ..models.core import Connection, FlowGraph, FlowNode, LogLevel, RunRecord, RunStatus
from .exceptions import (
    InvalidGraphError, NodeExecutionFailedError, NodeTimeoutError, UnknownNodeTypeError
)
from .execution_logger import ExecutionLogger, LogListener
from .logging import get_logger, reset_logging_context, set_logging_context
from .node_registry import NodeContext, NodeRegistry
from .order_resolver import ExecutionOrderResolver
from .port_wiring import PortWiringResolver
from .sinks import FileSystemSink, RunExportSink

logger = get_logger(__name__)

NodeLike = Union[FlowNode, Dict[str, Any]]
ConnectionLike = Union[Connection, Dict[str, Any]]


class FlowExecutor:
    """Executes flows one node at a time, in dependency order.

    A run:
    1. Opens a run on the execution logger
    2. Validates the nodes and connections
    3. Seeds every input node from the initial inputs
    4. Resolves a topological execution order
    5. Executes the remaining nodes sequentially through the node registry
    6. Collects the values of the output nodes and closes the run

    Any node failure ends the run immediately.
    """

    def __init__(
        self,
        registry: NodeRegistry,
        execution_logger: Optional[ExecutionLogger] = None,
        workflow_id: str = "unknown",
        workflow_name: str = "Unknown Workflow",
        config: Optional[EngineConfig] = None,
        export_sink: Optional[RunExportSink] = None,
        on_run_complete: Optional[Callable[[RunRecord], None]] = None,
    ):
        """Initialize the flow executor.

        Args:
            registry: Registry dispatching nodes to their capabilities
            execution_logger: Caller-owned logger; a private one is created if omitted
            workflow_id: ID recorded on every run
            workflow_name: Name recorded on every run
            config: Engine configuration, defaults to the process configuration
            export_sink: Where completed runs are written; defaults to the export
                directory when auto_export is enabled
            on_run_complete: Called with every completed run record
        """
        self.registry = registry
        self.config = config or get_config()
        self.execution_logger = execution_logger or ExecutionLogger(self.config)
        self.workflow_id = workflow_id
        self.workflow_name = workflow_name
        self.on_run_complete = on_run_complete
        if export_sink is None and self.config.auto_export:
            export_sink = FileSystemSink(self.config.export_dir)
        self.export_sink = export_sink

        self._order_resolver = ExecutionOrderResolver()
        self._wiring = PortWiringResolver()

    @property
    def last_run(self) -> Optional[RunRecord]:
        """Record of the most recent completed run."""
        return self.execution_logger.last_run

    def add_log_listener(self, listener: LogListener) -> None:
        self.execution_logger.add_listener(listener)

    def remove_log_listener(self, listener: LogListener) -> None:
        self.execution_logger.remove_listener(listener)

    async def execute_graph(self, graph: FlowGraph, initial_inputs: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a stored flow, recording the run under the flow's ID and name."""
        previous = (self.workflow_id, self.workflow_name)
        self.workflow_id, self.workflow_name = graph.id, graph.name
        try:
            return await self.execute_flow(graph.nodes, graph.connections, initial_inputs)
        finally:
            self.workflow_id, self.workflow_name = previous

    async def execute_flow(
        self,
        nodes: Sequence[NodeLike],
        connections: Sequence[ConnectionLike],
        initial_inputs: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Execute a flow.

        Args:
            nodes: Nodes of the flow, as models or plain dicts
            connections: Connections of the flow, as models or plain dicts
            initial_inputs: Named inputs, matched to input nodes by name then ID

        Returns:
            Values of the output nodes keyed by node ID

        Raises:
            LoggerBusyError: If the execution logger already has an open run
            InvalidGraphError: If the nodes or connections are malformed
            CycleDetectedError: If the flow cannot be ordered
            UnknownNodeTypeError: If a node type has no registered capability
            NodeExecutionFailedError: If a node fails
        """
        initial_inputs = dict(initial_inputs or {})
        node_count = len(nodes) if isinstance(nodes, (list, tuple)) else 0

        execution_id = self.execution_logger.start(
            self.workflow_id, self.workflow_name, initial_inputs, node_count
        )
        context_token = set_logging_context(workflow_id=self.workflow_id, execution_id=execution_id)
        logger.info(f"Started run {execution_id} of workflow {self.workflow_name} ({self.workflow_id})")

        try:
            outputs = await self._run(nodes, connections, initial_inputs, execution_id)
        except asyncio.CancelledError:
            logger.warning(f"Run {execution_id} cancelled")
            self._finish(status=RunStatus.CANCELLED)
            raise
        except Exception as e:
            logger.error(f"Run {execution_id} failed: {e}")
            self._finish(error=e)
            raise
        else:
            self._finish(outputs=outputs)
            logger.info(f"Run {execution_id} completed successfully")
            return outputs
        finally:
            reset_logging_context(context_token)

    async def _run(
        self,
        nodes: Sequence[NodeLike],
        connections: Sequence[ConnectionLike],
        initial_inputs: Dict[str, Any],
        execution_id: str,
    ) -> Dict[str, Any]:
        graph = self._build_graph(nodes, connections)
        run_logger = self.execution_logger
        run_logger.record(LogLevel.INFO, f"Flow has {len(graph.nodes)} nodes", {"nodeCount": len(graph.nodes)})

        node_outputs: Dict[str, Any] = {}
        executed: Set[str] = set()

        for node in graph.nodes:
            if node.is_input:
                value = self._initial_value(node, initial_inputs)
                output = self._seed_output(node, value)
                node_outputs[node.id] = output
                run_logger.set_node_output(node.id, output)
                executed.add(node.id)
                run_logger.log_input_seeded(node.id, node.name, node.type, value)

        order = self._order_resolver.resolve(graph.nodes, graph.connections)
        run_logger.record(
            LogLevel.INFO,
            f"Execution order: {' -> '.join(node.name for node in order)}",
            {"executionOrder": [{"id": n.id, "name": n.name, "type": n.type} for n in order]},
        )

        self._check_node_types(order, executed)

        for node in order:
            if node.id in executed:
                continue

            inputs = self._wiring.resolve_inputs(node, graph.connections, node_outputs)
            output = await self._execute_node(node, inputs, execution_id)

            node_outputs[node.id] = output
            run_logger.set_node_output(node.id, output)
            executed.add(node.id)

        return {node.id: node_outputs.get(node.id) for node in graph.nodes if node.is_output}

    async def _execute_node(self, node: FlowNode, inputs, execution_id: str) -> Any:
        """Execute one node, recording its start and outcome."""
        run_logger = self.execution_logger
        context = NodeContext(node, run_logger, execution_id)
        timeout = node.timeout or self.config.node_timeout

        run_logger.log_node_start(node.id, node.name, node.type, dict(inputs))
        started = time.perf_counter()

        try:
            call = self.registry.execute(node, inputs, context)
            if timeout:
                try:
                    output = await asyncio.wait_for(call, timeout=timeout)
                except asyncio.TimeoutError:
                    raise NodeTimeoutError(node.id, timeout) from None
            else:
                output = await call
        except Exception as e:
            duration = self._elapsed_ms(started)
            run_logger.log_node_error(node.id, node.name, node.type, e, duration)
            if isinstance(e, UnknownNodeTypeError):
                raise
            raise NodeExecutionFailedError(
                f"Node '{node.name}' ({node.id}) failed: {e}",
                node_id=node.id,
                node_name=node.name,
                node_type=node.type,
                duration=duration,
                original_error=e,
                execution_id=execution_id,
            ) from e
        finally:
            context.close()

        run_logger.log_node_success(node.id, node.name, node.type, output, self._elapsed_ms(started))
        return output

    def _build_graph(self, nodes: Sequence[NodeLike], connections: Sequence[ConnectionLike]) -> FlowGraph:
        """Validate the raw nodes and connections into a flow graph."""
        if not isinstance(nodes, (list, tuple)):
            raise InvalidGraphError(
                f"Invalid flow: nodes must be a list, got {type(nodes).__name__}",
                workflow_id=self.workflow_id
            )
        if connections is None:
            connections = []
        if not isinstance(connections, (list, tuple)):
            raise InvalidGraphError(
                f"Invalid flow: connections must be a list, got {type(connections).__name__}",
                workflow_id=self.workflow_id
            )

        try:
            return FlowGraph(
                id=self.workflow_id,
                name=self.workflow_name,
                nodes=[self._coerce(FlowNode, node) for node in nodes],
                connections=[self._coerce(Connection, conn) for conn in connections],
            )
        except ValidationError as e:
            messages = [f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise InvalidGraphError(
                f"Invalid flow: {'; '.join(messages)}",
                validation_errors=messages,
                workflow_id=self.workflow_id
            ) from e

    @staticmethod
    def _coerce(model, value):
        if isinstance(value, model):
            return value
        if isinstance(value, dict):
            return model.model_validate(value)
        raise InvalidGraphError(f"Invalid flow: expected {model.__name__} or dict, got {type(value).__name__}")

    def _check_node_types(self, order: List[FlowNode], executed: Set[str]) -> None:
        for node in order:
            if node.id not in executed and not self.registry.has(node.type):
                raise UnknownNodeTypeError(node.type, node_id=node.id)

    @staticmethod
    def _initial_value(node: FlowNode, initial_inputs: Dict[str, Any]) -> Any:
        if node.name in initial_inputs:
            return initial_inputs[node.name]
        if node.id in initial_inputs:
            return initial_inputs[node.id]
        return node.data.get("value")

    @staticmethod
    def _seed_output(node: FlowNode, value: Any) -> Dict[str, Any]:
        output = {"output": value}
        for port in node.outputs:
            output[port.id] = value
        return output

    @staticmethod
    def _elapsed_ms(started: float) -> float:
        return (time.perf_counter() - started) * 1000

    def _finish(
        self,
        outputs: Optional[Dict[str, Any]] = None,
        error: Optional[BaseException] = None,
        status: Optional[RunStatus] = None,
    ) -> Optional[RunRecord]:
        """Complete the run, then export it and notify the completion callback."""
        record = self.execution_logger.complete(outputs=outputs, error=error, status=status)
        if record is None:
            return None

        if self.export_sink is not None:
            self.execution_logger.persist(record, self.export_sink)

        if self.on_run_complete is not None:
            try:
                self.on_run_complete(record)
            except Exception as e:
                logger.warning(f"Run completion callback failed for {record.execution_id}: {e}")

        return record
