"""Microsoft 365 tools: manifest, handlers and the name to handler registry."""

from m365_mcp.tools.context import ToolContext, ToolHandler
from m365_mcp.tools.manifest import (
    NAMESPACE,
    TOOL_DEFINITIONS,
    ToolDefinition,
    create_manifest,
    get_input_validator,
    get_tool_definition,
)
from m365_mcp.tools.registry import TOOL_HANDLERS, get_tool_handler, list_supported_tools

__all__ = [
    "NAMESPACE",
    "TOOL_DEFINITIONS",
    "TOOL_HANDLERS",
    "ToolContext",
    "ToolDefinition",
    "ToolHandler",
    "create_manifest",
    "get_input_validator",
    "get_tool_definition",
    "get_tool_handler",
    "list_supported_tools",
]
