"""Example flow demonstrating the flow engine capabilities."""

import asyncio

from flow_engine import FlowExecutor, WorkflowStore, create_default_registry, load_config
from flow_engine.core.execution_logger import ExecutionLogger
from flow_engine.core.logging import setup_logging_from_config
from flow_engine.core.sinks import FileSystemSink
from flow_engine.models import FlowGraph


def create_greeting_flow() -> FlowGraph:
    """
    Create an example flow that:
    1. Takes a first and last name
    2. Joins them into one string
    3. Uppercases the result
    4. Exposes it as the flow output
    """
    return FlowGraph.model_validate({
        "id": "greeting",
        "name": "Greeting Flow",
        "description": "Builds an uppercase full name",
        "nodes": [
            {"id": "first", "name": "First Name", "type": "input", "data": {"value": "Ada"}},
            {"id": "last", "name": "Last Name", "type": "input", "data": {"value": "Lovelace"}},
            {
                "id": "join",
                "name": "Join",
                "type": "combine",
                "data": {"mode": "join", "separator": " "},
                "inputs": [{"id": "first", "name": "First"}, {"id": "last", "name": "Last"}],
            },
            {"id": "shout", "name": "Shout", "type": "text-transform", "data": {"operation": "uppercase"}},
            {"id": "result", "name": "Result", "type": "output"},
        ],
        "connections": [
            {"sourceNodeId": "first", "targetNodeId": "join", "targetPortId": "first"},
            {"sourceNodeId": "last", "targetNodeId": "join", "targetPortId": "last"},
            {"sourceNodeId": "join", "targetNodeId": "shout"},
            {"sourceNodeId": "shout", "targetNodeId": "result"},
        ],
    })


async def main():
    config = load_config()
    setup_logging_from_config(config)

    store = WorkflowStore()
    flow_id = store.save(create_greeting_flow())

    execution_logger = ExecutionLogger(config)
    executor = FlowExecutor(
        create_default_registry(),
        execution_logger=execution_logger,
        config=config,
        export_sink=FileSystemSink(config.export_dir),
        on_run_complete=lambda record: store.record_run(flow_id, record),
    )

    outputs = await executor.execute_graph(store.get(flow_id), {"First Name": "Grace", "Last Name": "Hopper"})
    print(f"Outputs: {outputs}")
    print(ExecutionLogger.summary_report(executor.last_run))


if __name__ == "__main__":
    asyncio.run(main())
