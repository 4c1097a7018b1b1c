"""Microsoft 365 MCP Server.

Expose Outlook mail and calendar to agents as named, schema-validated tools
backed by Microsoft Graph.
"""

from m365_mcp.__version__ import __version__
from m365_mcp.config import M365Settings
from m365_mcp.server import ToolServer, create_server

__all__ = ["M365Settings", "ToolServer", "__version__", "create_server"]
