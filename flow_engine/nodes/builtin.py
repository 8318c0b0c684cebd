"""Built-in node capabilities."""

import json
from typing import Any, Dict, Mapping, Optional

from ..core.logging import get_logger
from ..core.node_registry import NodeContext, NodeRegistry
from ..models.core import INPUT_NODE_TYPE, OUTPUT_NODE_TYPE, FlowNode

logger = get_logger(__name__)

TEXT_OPERATIONS = {
    "uppercase": str.upper,
    "lowercase": str.lower,
    "trim": str.strip,
    "reverse": lambda text: text[::-1],
    "capitalize": str.capitalize,
}

COMBINE_MODES = ("list", "join", "merge")


def _primary_input(inputs: Mapping[str, Any], key: str = "input") -> Any:
    """Value wired to the named port, else the first wired value."""
    if key in inputs:
        return inputs[key]
    return inputs.first() if hasattr(inputs, "first") else next(iter(inputs.values()), None)


def _require_input(node: FlowNode, inputs: Mapping[str, Any], key: str) -> Any:
    if key not in inputs:
        raise ValueError(f"Node '{node.name}' is missing required input '{key}'")
    return inputs[key]


def _as_number(value: Any, port: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Input '{port}' must be a number, got bool")
    if isinstance(value, (int, float)):
        return value
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Input '{port}' must be a number, got {value!r}") from None


def input_node(node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
    """Return the value configured on the node."""
    return node.data.get("value")


def output_node(node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
    """
    Pass through the value wired to the node.

    Returns:
        The value on the ``input`` port, the first wired value otherwise, or
        None when nothing is connected
    """
    if not inputs:
        context.warn("No input connected")
        return None

    value = _primary_input(inputs)
    context.log(f"Result: {value!r}")
    return value


def text_transform_node(node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> str:
    """
    Apply a text operation to the wired input.

    Node data:
        operation: One of uppercase, lowercase, trim, reverse, capitalize

    Raises:
        ValueError: If nothing is wired or the operation is unknown
    """
    operation = node.data.get("operation", "uppercase")
    transform = TEXT_OPERATIONS.get(operation)
    if transform is None:
        raise ValueError(
            f"Unknown text operation '{operation}', expected one of: {', '.join(TEXT_OPERATIONS)}"
        )

    if not inputs:
        raise ValueError(f"Node '{node.name}' has no input to transform")

    value = _primary_input(inputs)
    text = value if isinstance(value, str) else str(value)
    result = transform(text)

    context.debug(f"{operation}: {text!r} -> {result!r}")
    return result


def combine_node(node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
    """
    Combine every wired input into one value.

    Node data:
        mode: ``list`` (default), ``join`` or ``merge``
        separator: Separator used by ``join`` (default a single space)

    Raises:
        ValueError: If the mode is unknown or ``merge`` receives a non-mapping
    """
    mode = node.data.get("mode", "list")
    if mode not in COMBINE_MODES:
        raise ValueError(f"Unknown combine mode '{mode}', expected one of: {', '.join(COMBINE_MODES)}")

    if hasattr(inputs, "ports"):
        values = [port.value for port in inputs.ports]
    else:
        values = list(inputs.values())

    if mode == "list":
        return values

    if mode == "join":
        separator = node.data.get("separator", " ")
        return separator.join("" if value is None else str(value) for value in values)

    merged: Dict[str, Any] = {}
    for value in values:
        if not isinstance(value, Mapping):
            raise ValueError(f"Merge mode expects mapping inputs, got {type(value).__name__}")
        merged.update(value)
    return merged


def json_parse_node(node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> Any:
    """
    Parse a JSON string, optionally extracting a field.

    Node data:
        field: Optional dotted path into the parsed document (``user.name``)

    Raises:
        ValueError: On missing input, invalid JSON or a missing field
    """
    if not inputs:
        raise ValueError(f"Node '{node.name}' has no JSON input")

    raw = _primary_input(inputs)
    document = json.loads(raw) if isinstance(raw, (str, bytes, bytearray)) else raw

    path: Optional[str] = node.data.get("field")
    if not path:
        return document

    current = document
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            raise ValueError(f"Field '{path}' not found in parsed document")

    context.debug(f"Extracted field '{path}'")
    return current


def math_node(node: FlowNode, inputs: Mapping[str, Any], context: NodeContext) -> float:
    """
    Apply an arithmetic operation to inputs ``a`` and ``b``.

    Node data:
        operation: add (default), subtract, multiply or divide

    Raises:
        ValueError: On missing or non-numeric inputs, an unknown operation or
            division by zero
    """
    operation = node.data.get("operation", "add")
    a = _as_number(_require_input(node, inputs, "a"), "a")
    b = _as_number(_require_input(node, inputs, "b"), "b")

    if operation == "add":
        result = a + b
    elif operation == "subtract":
        result = a - b
    elif operation == "multiply":
        result = a * b
    elif operation == "divide":
        if b == 0:
            context.error("Division by zero attempted")
            raise ValueError("Cannot divide by zero")
        result = a / b
    else:
        raise ValueError(f"Unknown math operation '{operation}'")

    context.debug(f"{a} {operation} {b} = {result}")
    return result


BUILTIN_NODES = {
    INPUT_NODE_TYPE: (input_node, "Provides a flow input value"),
    OUTPUT_NODE_TYPE: (output_node, "Exposes the wired value as a flow output"),
    "text-transform": (text_transform_node, "Applies a text operation to its input"),
    "combine": (combine_node, "Combines all wired inputs into a list, string or mapping"),
    "json-parse": (json_parse_node, "Parses a JSON string input"),
    "math": (math_node, "Applies an arithmetic operation to inputs a and b"),
}


def register_builtin_nodes(registry: NodeRegistry, replace: bool = False) -> NodeRegistry:
    """Register every built-in capability on a registry."""
    for node_type, (function, description) in BUILTIN_NODES.items():
        registry.register(node_type, function, description=description, replace=replace)
    logger.debug(f"Registered {len(BUILTIN_NODES)} built-in node types")
    return registry


def create_default_registry() -> NodeRegistry:
    """Create a registry holding the built-in capabilities."""
    return register_builtin_nodes(NodeRegistry())
