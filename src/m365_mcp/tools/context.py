"""Per-process context handed to every tool handler."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from m365_mcp.config import M365Settings
from m365_mcp.graph.client import GraphClient


@dataclass(frozen=True)
class ToolContext:
    """Everything a handler may touch, built once by the tool server.

    Attributes:
        client: Shared Graph client.
        settings: Active settings.
        logger: Logger receiving the per-invocation INFO lines.
    """

    client: GraphClient
    settings: M365Settings
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("m365_mcp.tools"))


ToolHandler = Callable[[dict[str, Any], ToolContext], Awaitable[dict[str, Any]]]
