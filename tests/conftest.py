"""Pytest configuration and fixtures."""

import os

import pytest

from flow_engine.config import get_testing_config, reset_config
from flow_engine.core.execution_logger import ExecutionLogger
from flow_engine.core.flow_executor import FlowExecutor
from flow_engine.core.sinks import MemorySink
from flow_engine.core.workflow_store import WorkflowStore
from flow_engine.models.core import FlowGraph
from flow_engine.nodes import create_default_registry


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Keep FLOW_ENGINE_* variables and the global config out of every test."""
    for key in list(os.environ):
        if key.startswith("FLOW_ENGINE_"):
            monkeypatch.delenv(key, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def config():
    return get_testing_config()


@pytest.fixture
def registry():
    """Registry with the built-in capabilities."""
    return create_default_registry()


@pytest.fixture
def execution_logger(config):
    return ExecutionLogger(config)


@pytest.fixture
def memory_sink():
    return MemorySink()


@pytest.fixture
def executor(registry, execution_logger, config):
    """Flow executor sharing the test registry and logger."""
    return FlowExecutor(
        registry,
        execution_logger=execution_logger,
        workflow_id="wf-test",
        workflow_name="Test Flow",
        config=config,
    )


@pytest.fixture
def workflow_store():
    return WorkflowStore()


@pytest.fixture
def linear_flow():
    """Input("hi") -> Transform(uppercase) -> Output."""
    nodes = [
        {"id": "in", "name": "Input", "type": "input", "data": {"value": "hi"}},
        {"id": "tf", "name": "Transform", "type": "text-transform", "data": {"operation": "uppercase"}},
        {"id": "out", "name": "Output", "type": "output"},
    ]
    connections = [
        {"id": "c1", "sourceNodeId": "in", "sourcePortId": "output", "targetNodeId": "tf", "targetPortId": "input"},
        {"id": "c2", "sourceNodeId": "tf", "sourcePortId": "output", "targetNodeId": "out", "targetPortId": "input"},
    ]
    return nodes, connections


@pytest.fixture
def fan_in_flow():
    """Two inputs wired into one combine node, followed by an output."""
    nodes = [
        {"id": "first", "name": "First", "type": "input", "data": {"value": "hello"}},
        {"id": "second", "name": "Second", "type": "input", "data": {"value": "world"}},
        {
            "id": "combine",
            "name": "Combine",
            "type": "combine",
            "data": {"mode": "join", "separator": " "},
            "inputs": [
                {"id": "left", "name": "Left", "type": "string"},
                {"id": "right", "name": "Right", "type": "string"},
            ],
        },
        {"id": "out", "name": "Output", "type": "output"},
    ]
    connections = [
        {"id": "c1", "sourceNodeId": "first", "targetNodeId": "combine", "targetPortId": "left"},
        {"id": "c2", "sourceNodeId": "second", "targetNodeId": "combine", "targetPortId": "right"},
        {"id": "c3", "sourceNodeId": "combine", "targetNodeId": "out"},
    ]
    return nodes, connections


@pytest.fixture
def linear_graph(linear_flow):
    nodes, connections = linear_flow
    return FlowGraph(
        id="flow-linear",
        name="Linear Flow",
        description="Uppercases its input",
        nodes=nodes,
        connections=connections,
    )
