"""Tool server for Microsoft 365.

Provides:
- ``ToolServer``: in-process facade (list_tools / call_tool / close)
- ``M365McpServer``: the same tools over the MCP stdio transport
"""

from m365_mcp.config import M365Settings
from m365_mcp.server.tool_server import M365McpServer, ToolServer, main


async def create_server(settings: M365Settings | None = None) -> ToolServer:
    """Build a ``ToolServer`` and acquire its startup token.

    The caller owns the returned server and must ``close()`` it.
    """
    server = ToolServer(settings)
    try:
        await server.bootstrap()
    except BaseException:
        await server.close()
        raise
    return server


__all__ = ["M365McpServer", "ToolServer", "create_server", "main"]
