"""JSON-Schema subset used by tool manifests and its runtime validators."""

from m365_mcp.schema.converter import Validator, convert
from m365_mcp.schema.nodes import (
    AnyNode,
    ArrayNode,
    BooleanNode,
    NumberNode,
    ObjectNode,
    SchemaNode,
    StringNode,
    parse_schema,
)

__all__ = [
    "convert",
    "Validator",
    "SchemaNode",
    "AnyNode",
    "StringNode",
    "NumberNode",
    "BooleanNode",
    "ArrayNode",
    "ObjectNode",
    "parse_schema",
]
