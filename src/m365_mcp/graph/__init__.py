"""Microsoft Graph access for the tool handlers."""

from m365_mcp.graph.client import GRAPH_BASE_URL, GraphClient, TokenSource

__all__ = ["GraphClient", "GRAPH_BASE_URL", "TokenSource"]
