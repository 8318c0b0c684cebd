"""Port wiring: turns upstream node outputs into a node's input map."""

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence

from ..models.core import Connection, FlowNode
from .logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class ResolvedPort:
    """A value delivered to one input port."""

    port_id: str
    name: str
    value: Any
    source_node_id: str
    source_port_id: str

    def __repr__(self) -> str:
        value_repr = repr(self.value)
        if len(value_repr) > 50:
            value_repr = value_repr[:47] + "..."
        return f"ResolvedPort({self.source_node_id}.{self.source_port_id} → {self.port_id}={value_repr})"


class ResolvedInputs(Mapping[str, Any]):
    """Read-only input map addressable by port name or by port ID.

    Every delivered value is stored under the target port's declared name and
    under the raw port ID. When two keys collide the later connection wins.
    """

    def __init__(self, ports: Optional[Sequence[ResolvedPort]] = None):
        self._ports: List[ResolvedPort] = list(ports or [])
        self._values: Dict[str, Any] = {}
        for port in self._ports:
            self._values[port.name] = port.value
            self._values[port.port_id] = port.value

    def __getitem__(self, key: str) -> Any:
        return self._values[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"ResolvedInputs({self._values!r})"

    @property
    def ports(self) -> List[ResolvedPort]:
        return list(self._ports)

    def by_port_id(self) -> Dict[str, Any]:
        return {port.port_id: port.value for port in self._ports}

    def by_name(self) -> Dict[str, Any]:
        return {port.name: port.value for port in self._ports}

    def first(self, default: Any = None) -> Any:
        """Value of the first delivered port, or the default when nothing is wired."""
        if not self._ports:
            return default
        return self._ports[0].value

    def missing_required(self, node: FlowNode) -> List[str]:
        """Names of required input ports of the node that received no value."""
        return [
            port.name for port in node.inputs
            if port.required and port.id not in self._values and port.name not in self._values
        ]


class PortWiringResolver:
    """Computes the inputs of a node by following its incoming connections."""

    def resolve_inputs(
        self,
        node: FlowNode,
        connections: Sequence[Connection],
        node_outputs: Mapping[str, Any],
    ) -> ResolvedInputs:
        """
        Resolve the input values of a node.

        Args:
            node: Node whose inputs are resolved
            connections: All connections of the flow
            node_outputs: Outputs recorded so far, keyed by node ID

        Returns:
            Input map addressable by port name and port ID. Connections whose
            upstream node has no recorded output are omitted.
        """
        resolved: List[ResolvedPort] = []

        for conn in connections:
            if conn.target_node_id != node.id:
                continue

            if conn.source_node_id not in node_outputs:
                logger.debug(
                    f"No output from {conn.source_node_id} yet, "
                    f"leaving {node.id}.{conn.target_port_id} unset"
                )
                continue

            source_output = node_outputs[conn.source_node_id]
            value = self._extract_port_value(source_output, conn.source_port_id)

            target_port = node.find_input_port(conn.target_port_id)
            name = target_port.name if target_port is not None else conn.target_port_id

            resolved.append(ResolvedPort(
                port_id=conn.target_port_id,
                name=name,
                value=value,
                source_node_id=conn.source_node_id,
                source_port_id=conn.source_port_id,
            ))

        return ResolvedInputs(resolved)

    @staticmethod
    def _extract_port_value(source_output: Any, source_port_id: Optional[str]) -> Any:
        """Pick the named field out of a structured output, else pass it whole."""
        if isinstance(source_output, Mapping) and source_port_id and source_port_id in source_output:
            return source_output[source_port_id]
        return source_output
