"""Tests for the flow data models."""

import pytest
from pydantic import ValidationError

from flow_engine.models.core import Connection, FlowGraph, FlowNode, NodePort


class TestFlowNode:

    def test_name_defaults_to_id(self):
        node = FlowNode(id="n1", type="math")

        assert node.name == "n1"

    def test_port_type_alias(self):
        port = NodePort.model_validate({"id": "text", "type": "string", "required": True})

        assert port.data_type == "string"
        assert port.name == "text"

    def test_input_output_flags(self):
        assert FlowNode(id="a", type="input").is_input
        assert FlowNode(id="b", type="output").is_output
        assert not FlowNode(id="c", type="math").is_input

    def test_rejects_non_positive_timeout(self):
        with pytest.raises(ValidationError):
            FlowNode(id="a", type="math", timeout=0)

    def test_rejects_empty_type(self):
        with pytest.raises(ValidationError):
            FlowNode(id="a", type="  ")


class TestConnection:

    def test_camel_case_keys(self):
        conn = Connection.model_validate({"sourceNodeId": "a", "targetNodeId": "b", "targetPortId": "left"})

        assert conn.source_node_id == "a"
        assert conn.source_port_id == "output"
        assert conn.target_port_id == "left"
        assert conn.id

    def test_snake_case_keys(self):
        conn = Connection(source_node_id="a", target_node_id="b")

        assert conn.target_port_id == "input"


class TestFlowGraph:

    def test_duplicate_node_ids(self):
        with pytest.raises(ValidationError, match="unique"):
            FlowGraph(nodes=[{"id": "a", "type": "math"}, {"id": "a", "type": "math"}])

    def test_connection_references(self):
        with pytest.raises(ValidationError, match="non-existent target"):
            FlowGraph(
                nodes=[{"id": "a", "type": "math"}],
                connections=[{"sourceNodeId": "a", "targetNodeId": "b"}],
            )

    def test_valid_structure(self, linear_graph):
        result = linear_graph.validate_structure()

        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_structure_warnings(self):
        graph = FlowGraph(
            nodes=[
                {"id": "in", "type": "input"},
                {"id": "m", "type": "math", "inputs": [{"id": "a"}, {"id": "b"}]},
                {"id": "stray", "type": "math"},
                {"id": "out", "type": "output"},
            ],
            connections=[{"sourceNodeId": "in", "targetNodeId": "m", "targetPortId": "c"}],
        )

        result = graph.validate_structure()

        assert result.is_valid
        assert any("stray" in warning and "out" in warning for warning in result.warnings)
        assert any("undeclared port 'c'" in warning for warning in result.warnings)
        assert any("Output node out has no incoming connection" in warning for warning in result.warnings)

    def test_cycle_is_structure_error(self):
        graph = FlowGraph(
            nodes=[{"id": "a", "type": "math"}, {"id": "b", "type": "math"}],
            connections=[
                {"sourceNodeId": "a", "targetNodeId": "b"},
                {"sourceNodeId": "b", "targetNodeId": "a"},
            ],
        )

        result = graph.validate_structure()

        assert not result.is_valid
        assert "a, b" in result.errors[0]

    def test_get_node(self, linear_graph):
        assert linear_graph.get_node("tf").name == "Transform"
        assert linear_graph.get_node("missing") is None
