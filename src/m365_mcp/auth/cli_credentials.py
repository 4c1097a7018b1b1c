"""Bearer token acquisition through the CLI for Microsoft 365.

The provider shells out to ``m365 util accesstoken get`` and caches the
result per scope set. It never runs an OAuth flow itself: the user logs in
once with ``m365 login`` and the CLI keeps the refresh token.

Platform notes:
    On Windows the npm-installed CLI is a ``.cmd`` shim that has to run
    through ``%ComSpec%``. A bare command name that cannot be found is
    retried once as ``<command>.cmd``.
"""

import asyncio
import logging
import os
import re
import shutil
import sys
from asyncio.subprocess import PIPE, Process

from m365_mcp.auth.models import CredentialStatus
from m365_mcp.auth.token_cache import TokenCache
from m365_mcp.config import M365Settings
from m365_mcp.errors import ClientClosedError, ConfigurationError, CredentialError

logger = logging.getLogger(__name__)

GRAPH_RESOURCE = "https://graph.microsoft.com"
INSTALL_HINT = 'Install it via "npm i -g @pnp/cli-microsoft365".'
LOGIN_HINT = 'Ensure you are logged in with "m365 login".'

# Older CLI releases reject --scope with "Invalid option: 'scope'".
SCOPE_OPTION_REJECTED = re.compile(r"Invalid option: 'scopes?'")
_SHELL_SUFFIXES = (".cmd", ".bat")
_EXECUTABLE_SUFFIX = re.compile(r"\.(cmd|bat|exe)$", re.IGNORECASE)


class CliInvocationError(Exception):
    """The CLI ran but exited with a non-zero status."""

    def __init__(self, returncode: int | None, stderr: str) -> None:
        super().__init__(stderr or f"m365 CLI exited with status {returncode}")
        self.returncode = returncode
        self.stderr = stderr


def build_cli_args(scopes: list[str]) -> list[str]:
    """Arguments for ``m365``; ``--scope`` is added only for a non-empty scope list."""
    args = ["util", "accesstoken", "get", "--resource", GRAPH_RESOURCE]
    if scopes:
        args.extend(["--scope", ",".join(scopes)])
    return args


def _shell_command(command: str, args: list[str]) -> tuple[str, list[str]]:
    if sys.platform == "win32" and command.lower().endswith(_SHELL_SUFFIXES):
        comspec = os.environ.get("ComSpec") or os.environ.get("COMSPEC") or "cmd.exe"
        return comspec, ["/c", command, *args]
    return command, args


def _kill(process: Process) -> None:
    if process.returncode is None:
        try:
            process.kill()
        except ProcessLookupError:
            pass


class CliCredentialProvider:
    """Acquires and caches Graph tokens via the m365 CLI.

    Attributes:
        settings: Active settings (CLI command, TTL, timeouts).
        cache: Scope-keyed token cache.
        scopes_option_supported: Cleared for the rest of the process lifetime
            once the CLI rejects ``--scope``.
    """

    def __init__(self, settings: M365Settings | None = None, cache: TokenCache | None = None) -> None:
        """Initialize the provider.

        Args:
            settings: Settings to use. Read from the environment if not provided.
            cache: Token cache. A new one using ``settings.token_ttl_seconds`` if not provided.

        Raises:
            ConfigurationError: If the configured auth method is not ``cli``.
        """
        self.settings = settings or M365Settings.from_env()
        if self.settings.auth_method != "cli":
            raise ConfigurationError(f"Unsupported M365 auth method: {self.settings.auth_method}")
        self.cache = cache or TokenCache(ttl_seconds=self.settings.token_ttl_seconds)
        self.scopes_option_supported = True
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def get_access_token(self, scopes: list[str] | None = None) -> str:
        """Get a bearer token for the given scopes.

        Args:
            scopes: Requested Graph scopes. Empty means the CLI's default scopes.

        Returns:
            Non-empty bearer token.

        Raises:
            CredentialError: If the CLI is missing, fails or returns no token.
            ClientClosedError: If the provider has been closed.
        """
        if self._closed:
            raise ClientClosedError()
        return await self.cache.get_or_fetch(scopes, self._acquire)

    async def _acquire(self, scopes: list[str]) -> str:
        narrowed = scopes if self.scopes_option_supported else []
        try:
            stdout = await self._run_cli(build_cli_args(narrowed))
        except CliInvocationError as e:
            if narrowed and SCOPE_OPTION_REJECTED.search(e.stderr):
                logger.warning(
                    "m365 CLI does not support the --scope option. "
                    "Falling back to default Graph scopes."
                )
                self.scopes_option_supported = False
                return await self._acquire([])
            raise CredentialError(
                f"Failed to acquire Microsoft Graph token via m365 CLI: {e}",
                stderr=e.stderr,
            ) from e

        token = stdout.strip()
        if not token:
            raise CredentialError(f"m365 CLI returned an empty access token. {LOGIN_HINT}")
        return token

    async def _run_cli(self, args: list[str]) -> str:
        command = self.settings.cli_command
        try:
            return await self._exec(command, args)
        except FileNotFoundError as e:
            if sys.platform == "win32" and not _EXECUTABLE_SUFFIX.search(command):
                retry_command = f"{command}.cmd"
                try:
                    return await self._exec(retry_command, args)
                except OSError as retry_error:
                    raise CredentialError(
                        "Could not find or execute the m365 CLI "
                        f"(tried: {command}, {retry_command}). {retry_error}"
                    ) from retry_error
            raise CredentialError(f"Could not find the m365 CLI ({command}). {INSTALL_HINT}") from e

    async def _exec(self, command: str, args: list[str]) -> str:
        program, argv = _shell_command(command, args)
        process = await asyncio.create_subprocess_exec(  # nosec B603 - fixed argument list
            program,
            *argv,
            stdout=PIPE,
            stderr=PIPE,
            env=dict(os.environ),
        )
        timeout = self.settings.cli_timeout_seconds
        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            _kill(process)
            raise CredentialError(f"m365 CLI did not answer within {timeout:g} seconds") from e
        except asyncio.CancelledError:
            _kill(process)
            raise

        if process.returncode != 0:
            error_text = stderr.decode(errors="replace").strip() or stdout.decode(
                errors="replace"
            ).strip()
            raise CliInvocationError(process.returncode, error_text)
        return stdout.decode(errors="replace")

    async def close(self) -> None:
        """Mark the provider closed and drop cached tokens."""
        self._closed = True
        self.cache.clear()

    async def get_status(self, scopes: list[str] | None = None) -> tuple[CredentialStatus, str | None]:
        """Check whether a token can be acquired.

        Returns:
            Tuple of (CredentialStatus, error message or None).
        """
        command = self.settings.cli_command
        if shutil.which(command) is None and (
            sys.platform != "win32" or shutil.which(f"{command}.cmd") is None
        ):
            return CredentialStatus.CLI_MISSING, f"Could not find the m365 CLI ({command}). {INSTALL_HINT}"
        try:
            await self.get_access_token(scopes)
        except CredentialError as e:
            return CredentialStatus.FAILED, str(e)
        return CredentialStatus.READY, None
