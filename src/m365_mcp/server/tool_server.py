"""Microsoft 365 tool server.

``ToolServer`` is the in-process facade an agent talks to: it lists the
manifest, validates arguments and dispatches to the registered handler.
``M365McpServer`` exposes the same facade over the MCP stdio transport.
"""

import asyncio
import json
import logging
from typing import Any

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool

from m365_mcp.config import M365Settings
from m365_mcp.errors import InputValidationError, UnknownToolError
from m365_mcp.graph.client import GraphClient
from m365_mcp.helpers import safe_json
from m365_mcp.tools.context import ToolContext
from m365_mcp.tools.manifest import create_manifest, get_input_validator, get_tool_definition
from m365_mcp.tools.registry import get_tool_handler, list_supported_tools

logger = logging.getLogger(__name__)

SERVER_NAME = "m365-mcp"


class ToolServer:
    """In-process facade over the Microsoft 365 tools.

    Owns one ``GraphClient`` for its whole lifetime. Use it as an async
    context manager, or call ``bootstrap()`` and ``close()`` yourself.

    Attributes:
        settings: Active settings.
        client: Graph client shared by all handlers.
        context: Context object passed to every handler.
    """

    def __init__(self, settings: M365Settings | None = None, client: GraphClient | None = None) -> None:
        """Initialize the tool server.

        Args:
            settings: Settings to use. Read from the environment if not provided.
            client: Graph client. A new one built from ``settings`` if not provided.
        """
        self.settings = settings or (client.settings if client else M365Settings.from_env())
        self.client = client or GraphClient(self.settings)
        self.context = ToolContext(
            client=self.client,
            settings=self.settings,
            logger=logging.getLogger("m365_mcp.tools"),
        )

    async def __aenter__(self) -> "ToolServer":
        await self.bootstrap()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def bootstrap(self) -> None:
        """Acquire the startup token (``settings.bootstrap_scopes``)."""
        await self.client.bootstrap(self.settings.bootstrap_scopes)

    def list_tools(self) -> dict[str, Any]:
        """Return a fresh copy of the manifest of enabled tools."""
        return create_manifest(self.settings)

    def supported_tools(self) -> list[str]:
        """Names of the tools callable with the current settings."""
        namespaces = self.settings.enabled_namespaces()
        return [
            name
            for name in list_supported_tools()
            if (definition := get_tool_definition(name)) is None
            or definition.namespace in namespaces
        ]

    async def call_tool(self, name: str, arguments: Any = None) -> dict[str, Any]:
        """Invoke a tool.

        Args:
            name: Tool name as listed in the manifest.
            arguments: Tool arguments. Anything but a dict is treated as ``{}``.

        Returns:
            The handler's result.

        Raises:
            InputValidationError: If the name is empty or the arguments are invalid.
            UnknownToolError: If no enabled tool has that name.
        """
        if not name:
            raise InputValidationError("Tool name is required")

        supported = self.supported_tools()
        handler = get_tool_handler(name)
        if handler is None or name not in supported:
            raise UnknownToolError(name, supported)

        data = arguments if isinstance(arguments, dict) else {}
        try:
            if self.settings.validate_input and get_tool_definition(name) is not None:
                data = get_input_validator(name).validate(data)
            return await handler(data, self.context)
        except Exception as e:
            logger.error("Error while executing Microsoft 365 tool %s: %s", name, safe_json(str(e)))
            raise

    async def close(self) -> None:
        await self.client.close()


class M365McpServer:
    """MCP stdio server exposing the Microsoft 365 tools.

    Attributes:
        server: MCP Server instance.
        tools: In-process tool facade.
    """

    def __init__(self, settings: M365Settings | None = None, tools: ToolServer | None = None) -> None:
        """Initialize the MCP server."""
        self.server = Server(SERVER_NAME)
        self.tools = tools or ToolServer(settings)
        self._setup_handlers()

    def _setup_handlers(self) -> None:
        """Register MCP tool handlers."""

        @self.server.list_tools()
        async def list_tools() -> list[Tool]:
            """Return list of available tools."""
            return [
                Tool(
                    name=tool["name"],
                    description=tool["description"],
                    inputSchema=tool["inputSchema"],
                )
                for tool in self.tools.list_tools()["tools"]
            ]

        @self.server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[TextContent]:
            """Handle tool calls."""
            try:
                result = await self.tools.call_tool(name, arguments)
                return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]
            except Exception as e:
                logger.exception(f"Error calling tool {name}")
                return [
                    TextContent(
                        type="text",
                        text=json.dumps({"error": str(e)}, indent=2),
                    )
                ]

    async def run(self) -> None:
        """Bootstrap the Graph client and serve over stdio until the client disconnects."""
        await self.tools.bootstrap()
        try:
            async with stdio_server() as (read_stream, write_stream):
                await self.server.run(
                    read_stream,
                    write_stream,
                    self.server.create_initialization_options(),
                )
        finally:
            await self.tools.close()


def main(settings: M365Settings | None = None) -> None:
    """Entry point for the Microsoft 365 MCP server."""
    settings = settings or M365Settings.from_env()
    logging.basicConfig(level=settings.log_level)
    server = M365McpServer(settings)
    asyncio.run(server.run())


if __name__ == "__main__":
    main()
