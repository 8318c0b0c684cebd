"""In-memory store for flow definitions and their runs."""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from pydantic import ValidationError

from ..models.core import FlowGraph, FlowSummary, RunRecord, RunStatus
from .exceptions import InvalidGraphError, WorkflowNotFoundError
from .logging import get_logger

logger = get_logger(__name__)


class WorkflowStore:
    """Holds flow definitions, keyed by flow ID, with the runs recorded against them."""

    def __init__(self):
        self._flows: Dict[str, FlowGraph] = {}
        self._created_at: Dict[str, datetime] = {}
        self._runs: Dict[str, List[RunRecord]] = {}

    def save(self, graph: FlowGraph) -> str:
        """
        Store a flow, replacing any flow with the same ID.

        Args:
            graph: The flow to store

        Returns:
            str: ID of the stored flow

        Raises:
            InvalidGraphError: If the flow fails structural validation
        """
        logger.info(f"Saving flow: {graph.name} ({graph.id})")

        validation_result = graph.validate_structure()
        if not validation_result.is_valid:
            error_msg = f"Flow validation failed: {'; '.join(validation_result.errors)}"
            logger.error(error_msg)
            raise InvalidGraphError(
                error_msg, validation_errors=validation_result.errors, workflow_id=graph.id
            )

        if validation_result.warnings:
            logger.warning(f"Flow validation warnings: {'; '.join(validation_result.warnings)}")

        self._created_at.setdefault(graph.id, datetime.now(timezone.utc))
        self._flows[graph.id] = graph
        self._runs.setdefault(graph.id, [])
        return graph.id

    def get(self, flow_id: str) -> FlowGraph:
        """
        Retrieve a flow by its ID.

        Raises:
            WorkflowNotFoundError: If no flow has the ID
        """
        try:
            return self._flows[flow_id]
        except KeyError:
            raise WorkflowNotFoundError(flow_id) from None

    def list_flows(self) -> List[FlowSummary]:
        """Summaries of every stored flow, newest first."""
        summaries = [
            FlowSummary(
                id=graph.id,
                name=graph.name,
                description=graph.description,
                created_at=self._created_at[graph.id],
                node_count=len(graph.nodes),
                connection_count=len(graph.connections),
            )
            for graph in self._flows.values()
        ]
        summaries.sort(key=lambda summary: summary.created_at, reverse=True)
        return summaries

    def delete(self, flow_id: str) -> bool:
        """
        Delete a flow and its runs.

        Returns:
            bool: True if the flow was deleted, False if it was not found
        """
        if flow_id not in self._flows:
            logger.warning(f"Flow with ID '{flow_id}' not found for deletion")
            return False

        del self._flows[flow_id]
        self._created_at.pop(flow_id, None)
        self._runs.pop(flow_id, None)
        logger.info(f"Deleted flow with ID: {flow_id}")
        return True

    def load_dict(self, data: Dict[str, Any]) -> FlowGraph:
        """
        Build and store a flow from a graph document.

        Args:
            data: Mapping with ``nodes`` and ``connections`` (camelCase
                connection keys are accepted), plus optional ``id``,
                ``name`` and ``description``

        Raises:
            InvalidGraphError: If the document does not describe a valid flow
        """
        if not isinstance(data, dict) or "nodes" not in data:
            raise InvalidGraphError("Flow document must be an object with a 'nodes' list")

        try:
            graph = FlowGraph.model_validate(data)
        except ValidationError as e:
            messages = [f"{'.'.join(str(loc) for loc in err['loc'])}: {err['msg']}" for err in e.errors()]
            raise InvalidGraphError(
                f"Invalid flow document: {'; '.join(messages)}",
                validation_errors=messages,
                workflow_id=data.get("id")
            ) from e

        self.save(graph)
        return graph

    def load_file(self, path: Union[str, Path]) -> FlowGraph:
        """Load and store a flow from a JSON file."""
        path = Path(path)
        logger.debug(f"Loading flow from {path}")
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise InvalidGraphError(f"Flow file {path} is not valid JSON: {e}") from e
        return self.load_dict(data)

    def record_run(self, flow_id: str, record: RunRecord) -> None:
        """
        Attach a completed run to a stored flow.

        Raises:
            WorkflowNotFoundError: If no flow has the ID
        """
        if flow_id not in self._flows:
            raise WorkflowNotFoundError(flow_id)
        self._runs[flow_id].append(record)
        logger.debug(f"Recorded run {record.execution_id} ({record.status.value}) for flow {flow_id}")

    def get_runs(self, flow_id: str) -> List[RunRecord]:
        """Runs recorded for a flow, oldest first."""
        if flow_id not in self._flows:
            raise WorkflowNotFoundError(flow_id)
        return list(self._runs[flow_id])

    def latest_outputs(self, flow_id: str) -> Optional[Dict[str, Any]]:
        """Outputs of the most recent successful run of a flow, if any."""
        for record in reversed(self.get_runs(flow_id)):
            if record.status == RunStatus.SUCCESS:
                return dict(record.outputs) if record.outputs is not None else None
        return None
