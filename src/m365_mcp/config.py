"""Environment-driven configuration for the Microsoft 365 tool server.

Environment Variables:
    M365_AUTH_METHOD: Credential source (default: cli, the only supported value).
    M365_CLI_COMMAND: m365 CLI executable (default: m365, m365.cmd on Windows).
    M365_BOOTSTRAP_SCOPES: Scopes requested once at startup (default: Mail.Read).
    M365_TOKEN_TTL_SECONDS: Lifetime of a cached token (default: 300).
    M365_CLI_TIMEOUT_SECONDS: Upper bound for one CLI invocation (default: 60).
    M365_REQUEST_TIMEOUT_SECONDS: Default timeout for one Graph request (default: 30).
    M365_ATTACHMENT_BASE_PATH: Root for relative attachment target paths (default: CWD).
    M365_REPLY_REDIRECT_TO: If set, replies are sent as new mails to this address.
    M365_ENABLE_MAIL / M365_ENABLE_CALENDAR: Capability toggles (default: true).
    M365_VALIDATE_INPUT: Validate tool arguments against the manifest (default: true).
    M365_LOG_LEVEL: Logging level for the stdio server (default: INFO).
"""

import os
import sys
from collections.abc import Mapping
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from m365_mcp.errors import ConfigurationError

SUPPORTED_AUTH_METHODS = ("cli",)
DEFAULT_BOOTSTRAP_SCOPES = ["Mail.Read"]
DEFAULT_TOKEN_TTL_SECONDS = 5 * 60

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def default_cli_command() -> str:
    """Return the platform default for the m365 CLI executable.

    On Windows the npm-installed CLI is a CMD shim, so prefer it.
    """
    return "m365.cmd" if sys.platform == "win32" else "m365"


def _split_scopes(raw: str) -> list[str]:
    return [part for part in raw.replace(",", " ").split() if part]


def _parse_bool(name: str, raw: str) -> bool:
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be a boolean (true/false), got {raw!r}")


class M365Settings(BaseModel):
    """Settings shared by the Graph client, the handlers and the server."""

    model_config = {"frozen": True}

    auth_method: str = Field(default="cli", description="Credential source")
    cli_command: str = Field(default_factory=default_cli_command)
    bootstrap_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_BOOTSTRAP_SCOPES))
    token_ttl_seconds: float = Field(default=DEFAULT_TOKEN_TTL_SECONDS, gt=0)
    cli_timeout_seconds: float = Field(default=60.0, gt=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    attachment_base_path: Path | None = None
    reply_redirect_to: str | None = None
    enable_mail: bool = True
    enable_calendar: bool = True
    validate_input: bool = True
    log_level: str = "INFO"

    @field_validator("auth_method")
    @classmethod
    def check_auth_method(cls, v: str) -> str:
        if v not in SUPPORTED_AUTH_METHODS:
            raise ValueError(f"Unsupported M365 auth method: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return v.upper()

    def enabled_namespaces(self) -> set[str]:
        """Return the tool namespaces (``mail``, ``calendar``) that are switched on."""
        namespaces = set()
        if self.enable_mail:
            namespaces.add("mail")
        if self.enable_calendar:
            namespaces.add("calendar")
        return namespaces

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "M365Settings":
        """Build settings from environment variables.

        Args:
            environ: Mapping to read from. Defaults to ``os.environ``.

        Raises:
            ConfigurationError: If a variable holds an invalid value.
        """
        env = os.environ if environ is None else environ
        values: dict[str, object] = {}

        if env.get("M365_AUTH_METHOD"):
            values["auth_method"] = env["M365_AUTH_METHOD"].strip()
        if env.get("M365_CLI_COMMAND"):
            values["cli_command"] = env["M365_CLI_COMMAND"].strip()
        if env.get("M365_BOOTSTRAP_SCOPES") is not None:
            values["bootstrap_scopes"] = _split_scopes(env["M365_BOOTSTRAP_SCOPES"])
        if env.get("M365_TOKEN_TTL_SECONDS"):
            values["token_ttl_seconds"] = env["M365_TOKEN_TTL_SECONDS"]
        if env.get("M365_CLI_TIMEOUT_SECONDS"):
            values["cli_timeout_seconds"] = env["M365_CLI_TIMEOUT_SECONDS"]
        if env.get("M365_REQUEST_TIMEOUT_SECONDS"):
            values["request_timeout_seconds"] = env["M365_REQUEST_TIMEOUT_SECONDS"]
        if env.get("M365_ATTACHMENT_BASE_PATH"):
            values["attachment_base_path"] = Path(env["M365_ATTACHMENT_BASE_PATH"])
        if env.get("M365_REPLY_REDIRECT_TO"):
            values["reply_redirect_to"] = env["M365_REPLY_REDIRECT_TO"].strip()
        if env.get("M365_LOG_LEVEL"):
            values["log_level"] = env["M365_LOG_LEVEL"].strip()

        for var, field in (
            ("M365_ENABLE_MAIL", "enable_mail"),
            ("M365_ENABLE_CALENDAR", "enable_calendar"),
            ("M365_VALIDATE_INPUT", "validate_input"),
        ):
            if env.get(var) is not None:
                values[field] = _parse_bool(var, env[var])

        try:
            return cls.model_validate(values)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid Microsoft 365 configuration: {e}") from e
