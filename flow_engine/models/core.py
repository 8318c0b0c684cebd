"""Core Pydantic models for the flow execution engine."""

import uuid
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Dict, List, Mapping, Optional, Set, Tuple
from pydantic import (
    AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer, field_validator, model_validator
)


INPUT_NODE_TYPE = "input"
OUTPUT_NODE_TYPE = "output"


def _read_only(value: Dict[str, Any]) -> Mapping[str, Any]:
    return MappingProxyType(value)


def _plain_dict(value: Mapping[str, Any]) -> Dict[str, Any]:
    return dict(value)


# Dict field exposed as a read-only view; dumps back to a plain dict
ReadOnlyDict = Annotated[
    Dict[str, Any], AfterValidator(_read_only), PlainSerializer(_plain_dict, return_type=Dict[str, Any])
]


class RunStatus(str, Enum):
    """Enumeration of run statuses."""
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"
    CANCELLED = "cancelled"


class LogLevel(str, Enum):
    """Severity of a run log entry."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


class LogEventType(str, Enum):
    """Enumeration of run log event types."""
    WORKFLOW_START = "workflow_start"
    WORKFLOW_COMPLETE = "workflow_complete"
    WORKFLOW_ERROR = "workflow_error"
    INPUT_SEEDED = "input_seeded"
    NODE_START = "node_start"
    NODE_SUCCESS = "node_success"
    NODE_ERROR = "node_error"
    NODE_MESSAGE = "node_message"
    MESSAGE = "message"


class ValidationResult(BaseModel):
    """Result of graph validation."""
    is_valid: bool = Field(..., description="Whether the graph is valid")
    errors: List[str] = Field(default_factory=list, description="List of validation errors")
    warnings: List[str] = Field(default_factory=list, description="List of validation warnings")


class NodePort(BaseModel):
    """An input or output port declared on a node."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Port identifier, unique within the node")
    name: str = Field("", description="Display name used as the input key")
    data_type: str = Field("any", alias="type", description="Declared data type")
    required: bool = Field(False, description="Whether the node needs a value on this port")

    @field_validator('id')
    @classmethod
    def validate_id(cls, port_id):
        """Ensure port ID is not empty."""
        if not port_id or not port_id.strip():
            raise ValueError("Port ID cannot be empty")
        return port_id.strip()

    @model_validator(mode='after')
    def default_name(self):
        """Fall back to the port ID when no name is given."""
        if not self.name:
            self.name = self.id
        return self


class FlowNode(BaseModel):
    """Definition of a flow node."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., description="Unique identifier for the node")
    name: str = Field("", description="Display name of the node")
    type: str = Field(..., description="Type tag selecting the capability that executes the node")
    data: Dict[str, Any] = Field(default_factory=dict, description="Opaque configuration payload")
    inputs: List[NodePort] = Field(default_factory=list, description="Ordered input ports")
    outputs: List[NodePort] = Field(default_factory=list, description="Ordered output ports")
    timeout: Optional[float] = Field(None, description="Timeout in seconds for node execution")

    @field_validator('id', 'type')
    @classmethod
    def validate_not_empty(cls, value):
        """Ensure node ID and type tag are not empty."""
        if not value or not value.strip():
            raise ValueError("Node ID and type cannot be empty")
        return value.strip()

    @field_validator('timeout')
    @classmethod
    def validate_timeout(cls, timeout):
        """Ensure timeout is positive if specified."""
        if timeout is not None and timeout <= 0:
            raise ValueError("Timeout must be a positive number")
        return timeout

    @model_validator(mode='after')
    def default_name(self):
        if not self.name:
            self.name = self.id
        return self

    @property
    def is_input(self) -> bool:
        return self.type == INPUT_NODE_TYPE

    @property
    def is_output(self) -> bool:
        return self.type == OUTPUT_NODE_TYPE

    def find_input_port(self, port_id: str) -> Optional[NodePort]:
        """Return the declared input port with the given ID, if any."""
        for port in self.inputs:
            if port.id == port_id:
                return port
        return None


class Connection(BaseModel):
    """A directed edge from one node's output port to another node's input port."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Connection identifier")
    source_node_id: str = Field(..., alias="sourceNodeId", description="Source node ID")
    source_port_id: str = Field("output", alias="sourcePortId", description="Source output port ID")
    target_node_id: str = Field(..., alias="targetNodeId", description="Target node ID")
    target_port_id: str = Field("input", alias="targetPortId", description="Target input port ID")

    @field_validator('source_node_id', 'target_node_id')
    @classmethod
    def validate_node_ids(cls, node_id):
        """Ensure node IDs are valid."""
        if not node_id or not node_id.strip():
            raise ValueError("Node ID cannot be empty")
        return node_id.strip()


class FlowGraph(BaseModel):
    """Complete definition of a flow: nodes plus connections."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Flow ID")
    name: str = Field("Unknown Workflow", description="Name of the flow")
    description: str = Field("", description="Description of the flow")
    nodes: List[FlowNode] = Field(..., description="List of nodes in the flow")
    connections: List[Connection] = Field(default_factory=list, description="List of connections between nodes")

    @field_validator('nodes')
    @classmethod
    def validate_unique_node_ids(cls, nodes):
        """Ensure all node IDs are unique."""
        node_ids = [node.id for node in nodes]
        if len(node_ids) != len(set(node_ids)):
            duplicates = sorted({node_id for node_id in node_ids if node_ids.count(node_id) > 1})
            raise ValueError(f"All node IDs must be unique, duplicated: {', '.join(duplicates)}")
        return nodes

    @model_validator(mode='after')
    def validate_connection_references(self):
        """Ensure every connection references nodes of this flow."""
        node_ids = {node.id for node in self.nodes}
        for conn in self.connections:
            if conn.source_node_id not in node_ids:
                raise ValueError(f"Connection {conn.id} references non-existent source node: {conn.source_node_id}")
            if conn.target_node_id not in node_ids:
                raise ValueError(f"Connection {conn.id} references non-existent target node: {conn.target_node_id}")
        return self

    def get_node(self, node_id: str) -> Optional[FlowNode]:
        """Find a node by ID."""
        for node in self.nodes:
            if node.id == node_id:
                return node
        return None

    def validate_structure(self) -> ValidationResult:
        """Perform structural checks that do not prevent execution.

        Hard invariants (unique IDs, connection references) are enforced by
        the validators above; everything reported here is either a warning or,
        for cycles, an error the executor would also raise.
        """
        errors = []
        warnings = []

        cycle_nodes = self._find_cycle_nodes()
        if cycle_nodes:
            errors.append(f"Flow contains a cycle involving: {', '.join(cycle_nodes)}")

        isolated = self._find_isolated_nodes()
        if isolated:
            warnings.append(f"Isolated nodes detected: {', '.join(sorted(isolated))}")

        nodes_by_id = {node.id: node for node in self.nodes}
        for conn in self.connections:
            target = nodes_by_id[conn.target_node_id]
            if target.inputs and target.find_input_port(conn.target_port_id) is None:
                warnings.append(
                    f"Connection {conn.id} targets undeclared port '{conn.target_port_id}' "
                    f"on node {target.id}"
                )

        wired_targets = {conn.target_node_id for conn in self.connections}
        for node in self.nodes:
            if node.is_output and node.id not in wired_targets:
                warnings.append(f"Output node {node.id} has no incoming connection")

        return ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def _find_cycle_nodes(self) -> List[str]:
        # Imported lazily: the resolver depends on these models.
        from ..core.order_resolver import ExecutionOrderResolver
        return ExecutionOrderResolver().find_cycle_nodes(self.nodes, self.connections)

    def _find_isolated_nodes(self) -> Set[str]:
        """Find nodes that have no incoming or outgoing connections."""
        node_ids = {node.id for node in self.nodes}
        connected_nodes = set()

        for conn in self.connections:
            connected_nodes.add(conn.source_node_id)
            connected_nodes.add(conn.target_node_id)

        # A lone node is only worth reporting when the flow has wiring at all
        if not self.connections:
            return set()

        return node_ids - connected_nodes


class FlowSummary(BaseModel):
    """Summary information about a stored flow."""
    id: str = Field(..., description="Flow ID")
    name: str = Field(..., description="Flow name")
    description: str = Field("", description="Flow description")
    created_at: datetime = Field(..., description="Creation timestamp")
    node_count: int = Field(..., description="Number of nodes in the flow")
    connection_count: int = Field(..., description="Number of connections in the flow")


class ErrorDetail(BaseModel):
    """Error information attached to a log entry."""
    model_config = ConfigDict(frozen=True)

    message: str = Field(..., description="Error message")
    type: Optional[str] = Field(None, description="Exception class name")
    stack: Optional[str] = Field(None, description="Formatted traceback")
    code: Optional[str] = Field(None, description="Error code, when the error carries one")


class LogEntry(BaseModel):
    """A single event recorded during a run."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Entry identifier")
    timestamp: datetime = Field(..., description="Timestamp of the entry")
    level: LogLevel = Field(..., description="Severity level")
    event: LogEventType = Field(LogEventType.MESSAGE, description="Type of event")
    message: str = Field(..., description="Log message")
    node_id: Optional[str] = Field(None, description="ID of the node the entry belongs to")
    node_name: Optional[str] = Field(None, description="Name of the node the entry belongs to")
    node_type: Optional[str] = Field(None, description="Type tag of the node the entry belongs to")
    duration: Optional[float] = Field(None, description="Elapsed time in milliseconds")
    data: Optional[Any] = Field(None, description="Structured payload")
    error: Optional[ErrorDetail] = Field(None, description="Error detail")

    @property
    def is_node_scoped(self) -> bool:
        return self.node_id is not None


class RunError(BaseModel):
    """Error summary of a failed run."""
    model_config = ConfigDict(frozen=True)

    message: str = Field(..., description="Error message")
    failed_node_id: Optional[str] = Field(None, description="ID of the node that failed")
    failed_node_name: Optional[str] = Field(None, description="Name of the node that failed")
    stack: Optional[str] = Field(None, description="Formatted traceback")
    code: Optional[str] = Field(None, description="Error code")


class RunMetadata(BaseModel):
    """Environment information captured when a run starts."""
    model_config = ConfigDict(frozen=True)

    version: str = Field("1.0.0", description="Engine version")
    environment: str = Field("development", description="development or production")
    host: Optional[str] = Field(None, description="Interpreter and platform description")


class RunRecord(BaseModel):
    """Immutable record of one execution attempt of a flow."""
    model_config = ConfigDict(frozen=True)

    workflow_id: str = Field(..., description="ID of the executed workflow")
    workflow_name: str = Field(..., description="Name of the executed workflow")
    execution_id: str = Field(..., description="Unique identifier of the run")
    start_time: datetime = Field(..., description="Timestamp when the run started")
    end_time: Optional[datetime] = Field(None, description="Timestamp when the run completed")
    duration: Optional[float] = Field(None, description="Run duration in milliseconds")
    status: RunStatus = Field(..., description="Run status")
    node_count: int = Field(..., description="Number of nodes in the flow")
    successful_nodes: int = Field(0, description="Number of nodes that produced an output")
    failed_nodes: int = Field(0, description="Number of nodes that failed")
    inputs: ReadOnlyDict = Field(default_factory=dict, validate_default=True, description="Initial named inputs")
    outputs: Optional[ReadOnlyDict] = Field(None, description="Collected output node values")
    node_outputs: ReadOnlyDict = Field(
        default_factory=dict, validate_default=True, description="Output produced by every executed node"
    )
    logs: Tuple[LogEntry, ...] = Field(default_factory=tuple, description="Ordered log entries")
    error: Optional[RunError] = Field(None, description="Error summary if the run failed")
    metadata: RunMetadata = Field(default_factory=RunMetadata, description="Run environment metadata")

    def node_entries(self) -> List[LogEntry]:
        """Entries associated with a node, in recording order."""
        return [entry for entry in self.logs if entry.is_node_scoped]

    def entries_for(self, node_id: str) -> List[LogEntry]:
        return [entry for entry in self.logs if entry.node_id == node_id]

    def entries_of(self, event: LogEventType) -> List[LogEntry]:
        return [entry for entry in self.logs if entry.event == event]

    def errors(self) -> List[LogEntry]:
        return [entry for entry in self.logs if entry.level == LogLevel.ERROR]

    def warnings(self) -> List[LogEntry]:
        return [entry for entry in self.logs if entry.level == LogLevel.WARN]
