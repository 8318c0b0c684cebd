"""Tests for core flow engine components."""

import pytest

from flow_engine.core.exceptions import (
    CycleDetectedError, InvalidGraphError, NodeRegistryError, UnknownNodeTypeError
)
from flow_engine.core.node_registry import FunctionCapability, NodeCapability, NodeContext, NodeRegistry
from flow_engine.core.order_resolver import ExecutionOrderResolver
from flow_engine.core.port_wiring import PortWiringResolver, ResolvedInputs
from flow_engine.models.core import Connection, FlowNode, LogEventType, NodePort


def make_node(node_id, node_type="text-transform", **kwargs):
    return FlowNode(id=node_id, type=node_type, **kwargs)


def connect(source, target, source_port="output", target_port="input", conn_id=None):
    return Connection(
        id=conn_id or f"{source}->{target}:{target_port}",
        source_node_id=source,
        source_port_id=source_port,
        target_node_id=target,
        target_port_id=target_port,
    )


class TestExecutionOrderResolver:
    """Test cases for ExecutionOrderResolver."""

    def test_linear_chain(self):
        nodes = [make_node("c"), make_node("a"), make_node("b")]
        connections = [connect("a", "b"), connect("b", "c")]

        order = ExecutionOrderResolver().resolve(nodes, connections)

        assert [node.id for node in order] == ["a", "b", "c"]

    def test_independent_nodes_keep_declaration_order(self):
        nodes = [make_node("z"), make_node("m"), make_node("a")]

        order = ExecutionOrderResolver().resolve(nodes, [])

        assert [node.id for node in order] == ["z", "m", "a"]

    def test_ready_ties_broken_by_declaration_index(self):
        # root fans out to x and y; y is declared before x
        nodes = [make_node("root"), make_node("y"), make_node("x"), make_node("join")]
        connections = [
            connect("root", "x"),
            connect("root", "y"),
            connect("x", "join", target_port="left"),
            connect("y", "join", target_port="right"),
        ]

        order = ExecutionOrderResolver().resolve(nodes, connections)

        assert [node.id for node in order] == ["root", "y", "x", "join"]

    def test_every_node_after_its_upstream(self):
        nodes = [make_node(node_id) for node_id in ["e", "d", "c", "b", "a"]]
        connections = [
            connect("a", "c"), connect("b", "c"), connect("c", "d"),
            connect("a", "e"), connect("d", "e"),
        ]

        order = ExecutionOrderResolver().resolve(nodes, connections)
        position = {node.id: index for index, node in enumerate(order)}

        assert sorted(position) == sorted(node.id for node in nodes)
        for conn in connections:
            assert position[conn.source_node_id] < position[conn.target_node_id]

    def test_duplicate_connections_counted(self):
        nodes = [make_node("a"), make_node("b")]
        connections = [connect("a", "b", conn_id="c1"), connect("a", "b", conn_id="c2")]

        order = ExecutionOrderResolver().resolve(nodes, connections)

        assert [node.id for node in order] == ["a", "b"]

    def test_cycle_detected(self):
        nodes = [make_node("start"), make_node("a"), make_node("b"), make_node("after")]
        connections = [
            connect("start", "a"),
            connect("a", "b"),
            connect("b", "a", target_port="loop"),
            connect("b", "after"),
        ]
        resolver = ExecutionOrderResolver()

        with pytest.raises(CycleDetectedError) as exc_info:
            resolver.resolve(nodes, connections)

        assert exc_info.value.cycle_node_ids == ["a", "b", "after"]
        assert isinstance(exc_info.value, InvalidGraphError)
        assert [node.id for node in resolver.sort(nodes, connections)] == ["start"]

    def test_self_loop_is_a_cycle(self):
        nodes = [make_node("a")]

        assert ExecutionOrderResolver().find_cycle_nodes(nodes, [connect("a", "a")]) == ["a"]

    def test_unknown_connection_endpoints_skipped(self):
        nodes = [make_node("a"), make_node("b")]
        connections = [connect("ghost", "b"), connect("a", "b")]

        order = ExecutionOrderResolver().resolve(nodes, connections)

        assert [node.id for node in order] == ["a", "b"]


class TestPortWiringResolver:
    """Test cases for PortWiringResolver."""

    def test_dual_key_lookup(self):
        node = make_node("t", inputs=[NodePort(id="text_in", name="Text")])
        connections = [connect("s", "t", target_port="text_in")]

        inputs = PortWiringResolver().resolve_inputs(node, connections, {"s": {"output": "hi"}})

        assert inputs["Text"] == "hi"
        assert inputs["text_in"] == "hi"
        assert inputs.by_port_id() == {"text_in": "hi"}
        assert inputs.by_name() == {"Text": "hi"}

    def test_undeclared_port_uses_raw_id(self):
        node = make_node("t")
        connections = [connect("s", "t", target_port="anything")]

        inputs = PortWiringResolver().resolve_inputs(node, connections, {"s": 5})

        assert dict(inputs) == {"anything": 5}

    def test_named_source_port_extracted(self):
        node = make_node("t")
        connections = [connect("s", "t", source_port="sum")]

        inputs = PortWiringResolver().resolve_inputs(node, connections, {"s": {"sum": 3, "output": 1}})

        assert inputs["input"] == 3

    def test_whole_output_when_port_absent(self):
        node = make_node("t")
        connections = [connect("s", "t", source_port="missing")]

        inputs = PortWiringResolver().resolve_inputs(node, connections, {"s": {"a": 1}})

        assert inputs["input"] == {"a": 1}

    def test_missing_upstream_output_omitted(self):
        node = make_node("t")
        connections = [connect("s", "t")]

        inputs = PortWiringResolver().resolve_inputs(node, connections, {})

        assert len(inputs) == 0
        assert inputs.ports == []

    def test_none_output_is_delivered(self):
        node = make_node("t")

        inputs = PortWiringResolver().resolve_inputs(node, [connect("s", "t")], {"s": None})

        assert "input" in inputs
        assert inputs["input"] is None

    def test_fan_in_keyed_by_target_port_names(self):
        node = make_node(
            "combine",
            node_type="combine",
            inputs=[NodePort(id="left", name="Left"), NodePort(id="right", name="Right")],
        )
        connections = [
            connect("first", "combine", target_port="left"),
            connect("second", "combine", target_port="right"),
        ]
        outputs = {"first": {"output": "hello"}, "second": {"output": "world"}}

        inputs = PortWiringResolver().resolve_inputs(node, connections, outputs)

        assert inputs["Left"] == "hello"
        assert inputs["Right"] == "world"
        assert [port.source_node_id for port in inputs.ports] == ["first", "second"]

    def test_later_connection_wins(self):
        node = make_node("t")
        connections = [connect("a", "t", conn_id="c1"), connect("b", "t", conn_id="c2")]

        inputs = PortWiringResolver().resolve_inputs(node, connections, {"a": 1, "b": 2})

        assert inputs["input"] == 2
        assert inputs.first() == 1

    def test_resolution_is_idempotent(self):
        node = make_node("t", inputs=[NodePort(id="x", name="X")])
        connections = [connect("a", "t", target_port="x"), connect("b", "t")]
        outputs = {"a": {"output": [1, 2]}, "b": "text"}
        resolver = PortWiringResolver()

        first = resolver.resolve_inputs(node, connections, outputs)
        second = resolver.resolve_inputs(node, connections, outputs)

        assert first == second
        assert first.ports == second.ports

    def test_missing_required_ports(self):
        node = make_node(
            "m",
            node_type="math",
            inputs=[NodePort(id="a", required=True), NodePort(id="b", required=True), NodePort(id="c")],
        )

        inputs = PortWiringResolver().resolve_inputs(node, [connect("s", "m", target_port="a")], {"s": 1})

        assert inputs.missing_required(node) == ["b"]

    def test_empty_resolved_inputs(self):
        inputs = ResolvedInputs()

        assert dict(inputs) == {}
        assert inputs.first("fallback") == "fallback"


class TestNodeRegistry:
    """Test cases for NodeRegistry."""

    def test_register_and_get_function(self):
        registry = NodeRegistry()

        def shout(node, inputs, context):
            """Shouts its input."""
            return str(inputs["input"]).upper()

        registry.register("shout", shout)

        assert registry.has("shout")
        assert isinstance(registry.get("shout"), FunctionCapability)
        assert registry.list_types() == {"shout": "Shouts its input."}

    def test_duplicate_registration_rejected(self):
        registry = NodeRegistry()
        registry.register("noop", lambda node, inputs, context: None)

        with pytest.raises(NodeRegistryError):
            registry.register("noop", lambda node, inputs, context: 1)

        registry.register("noop", lambda node, inputs, context: 1, replace=True)
        assert registry.has("noop")

    def test_empty_type_rejected(self):
        with pytest.raises(NodeRegistryError):
            NodeRegistry().register("  ", lambda node, inputs, context: None)

    def test_non_callable_rejected(self):
        with pytest.raises(NodeRegistryError):
            NodeRegistry().register("bad", "not callable")

    def test_unknown_type(self):
        registry = NodeRegistry()

        with pytest.raises(UnknownNodeTypeError) as exc_info:
            registry.get("missing")

        assert exc_info.value.node_type == "missing"

    def test_unregister(self):
        registry = NodeRegistry()
        registry.register("noop", lambda node, inputs, context: None)

        assert registry.unregister("noop") is True
        assert registry.unregister("noop") is False
        assert not registry.has("noop")

    @pytest.mark.asyncio
    async def test_execute_sync_and_async_callables(self):
        registry = NodeRegistry()

        async def double(node, inputs, context):
            return inputs["input"] * 2

        registry.register("double", double)
        registry.register("negate", lambda node, inputs, context: -inputs["input"])

        node = make_node("n", node_type="double")
        context = NodeContext(node)
        assert await registry.execute(node, {"input": 4}, context) == 8

        node = make_node("n", node_type="negate")
        assert await registry.execute(node, {"input": 4}, NodeContext(node)) == -4

    @pytest.mark.asyncio
    async def test_execute_unknown_type(self):
        node = make_node("n", node_type="ghost")

        with pytest.raises(UnknownNodeTypeError):
            await NodeRegistry().execute(node, {}, NodeContext(node))

    @pytest.mark.asyncio
    async def test_capability_subclass(self):
        class Constant(NodeCapability):
            description = "Always 42"

            async def execute(self, node, inputs, context):
                return 42

        registry = NodeRegistry()
        registry.register("constant", Constant())
        node = make_node("n", node_type="constant")

        assert await registry.execute(node, {}, NodeContext(node)) == 42
        assert registry.list_types()["constant"] == "Always 42"


class TestNodeContext:
    """Test cases for NodeContext."""

    def test_messages_prefixed_with_node_name(self, execution_logger):
        node = make_node("n1", name="Formatter")
        execution_logger.start("wf", "Flow")
        context = NodeContext(node, execution_logger, execution_logger.active_execution_id)

        context.log("hello")
        context.warn("careful")
        context.error("broken")
        context.debug("details", {"k": 1})

        entries = execution_logger.current_run().entries_of(LogEventType.NODE_MESSAGE)
        assert [entry.message for entry in entries] == [
            "[Formatter] hello", "[Formatter] careful", "[Formatter] broken", "[Formatter] details"
        ]
        assert [entry.level.value for entry in entries] == ["info", "warn", "error", "debug"]
        assert all(entry.node_id == "n1" for entry in entries)
        assert entries[-1].data == {"k": 1}

    def test_without_logger_uses_python_logging(self, caplog):
        node = make_node("n1", name="Loose")

        with caplog.at_level("WARNING"):
            NodeContext(node).warn("no run")

        assert "[Loose] no run" in caplog.text

    def test_closed_context_records_nothing(self, execution_logger):
        node = make_node("n1", name="Finished")
        execution_logger.start("wf", "Flow")
        context = NodeContext(node, execution_logger, execution_logger.active_execution_id)

        context.log("before")
        context.close()
        context.log("after")

        entries = execution_logger.current_run().entries_of(LogEventType.NODE_MESSAGE)
        assert [entry.message for entry in entries] == ["[Finished] before"]
