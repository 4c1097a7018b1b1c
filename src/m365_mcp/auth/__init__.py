"""Authentication for the Microsoft 365 tool server.

Tokens come from the CLI for Microsoft 365 (``m365``); this package only
invokes it and caches the results per scope set.

Quick Start:
    ```python
    from m365_mcp.auth import CliCredentialProvider

    provider = CliCredentialProvider()
    token = await provider.get_access_token(["Mail.Read"])
    ```
"""

from m365_mcp.auth.cli_credentials import (
    GRAPH_RESOURCE,
    CliCredentialProvider,
    build_cli_args,
)
from m365_mcp.auth.models import CredentialStatus, TokenCacheEntry
from m365_mcp.auth.token_cache import TokenCache, cache_key, normalize_scopes

__all__ = [
    "CliCredentialProvider",
    "CredentialStatus",
    "TokenCache",
    "TokenCacheEntry",
    "GRAPH_RESOURCE",
    "build_cli_args",
    "cache_key",
    "normalize_scopes",
]
