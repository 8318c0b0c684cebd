"""Built-in node capabilities."""

from .builtin import (
    BUILTIN_NODES,
    combine_node,
    create_default_registry,
    input_node,
    json_parse_node,
    math_node,
    output_node,
    register_builtin_nodes,
    text_transform_node,
)

__all__ = [
    "BUILTIN_NODES",
    "combine_node",
    "create_default_registry",
    "input_node",
    "json_parse_node",
    "math_node",
    "output_node",
    "register_builtin_nodes",
    "text_transform_node",
]
