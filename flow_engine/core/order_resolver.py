"""Execution order resolution for flow graphs."""

import heapq
from typing import Dict, List, Sequence

from ..models.core import Connection, FlowNode
from .exceptions import CycleDetectedError
from .logging import get_logger

logger = get_logger(__name__)


class ExecutionOrderResolver:
    """Computes a dependency-respecting execution order with Kahn's algorithm.

    Ties between simultaneously ready nodes are broken by declaration index,
    so the same graph always yields the same order.
    """

    def sort(self, nodes: Sequence[FlowNode], connections: Sequence[Connection]) -> List[FlowNode]:
        """
        Topologically sort the nodes.

        Nodes that sit on a cycle, or downstream of one, never reach an
        in-degree of zero and are left out of the result.

        Args:
            nodes: Nodes in declaration order
            connections: Connections between the nodes

        Returns:
            Nodes in execution order (possibly fewer than given)
        """
        index_by_id: Dict[str, int] = {}
        for index, node in enumerate(nodes):
            index_by_id.setdefault(node.id, index)

        in_degree = {node_id: 0 for node_id in index_by_id}
        downstream: Dict[str, List[str]] = {node_id: [] for node_id in index_by_id}

        for conn in connections:
            if conn.source_node_id not in index_by_id or conn.target_node_id not in index_by_id:
                logger.warning(
                    f"Skipping connection {conn.id}: "
                    f"{conn.source_node_id} -> {conn.target_node_id} references an unknown node"
                )
                continue
            downstream[conn.source_node_id].append(conn.target_node_id)
            in_degree[conn.target_node_id] += 1

        ready = [index for node_id, index in index_by_id.items() if in_degree[node_id] == 0]
        heapq.heapify(ready)

        ordered: List[FlowNode] = []
        while ready:
            node = nodes[heapq.heappop(ready)]
            ordered.append(node)

            for target_id in downstream[node.id]:
                in_degree[target_id] -= 1
                if in_degree[target_id] == 0:
                    heapq.heappush(ready, index_by_id[target_id])

        return ordered

    def find_cycle_nodes(self, nodes: Sequence[FlowNode], connections: Sequence[Connection]) -> List[str]:
        """Return IDs of nodes the sort cannot place, in declaration order."""
        placed = {node.id for node in self.sort(nodes, connections)}
        return [node.id for node in nodes if node.id not in placed]

    def resolve(self, nodes: Sequence[FlowNode], connections: Sequence[Connection]) -> List[FlowNode]:
        """
        Compute the execution order, failing if any node cannot be placed.

        Args:
            nodes: Nodes in declaration order
            connections: Connections between the nodes

        Returns:
            Every node exactly once, each after all of its upstream nodes

        Raises:
            CycleDetectedError: If the graph contains a cycle
        """
        ordered = self.sort(nodes, connections)
        if len(ordered) < len(nodes):
            placed = {node.id for node in ordered}
            unresolved = [node.id for node in nodes if node.id not in placed]
            raise CycleDetectedError(
                f"Cycle detected: {len(unresolved)} of {len(nodes)} nodes cannot be ordered "
                f"({', '.join(unresolved)})",
                cycle_node_ids=unresolved
            )

        logger.debug(f"Execution order: {' -> '.join(node.id for node in ordered)}")
        return ordered
