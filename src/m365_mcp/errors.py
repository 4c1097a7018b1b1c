"""Error taxonomy for the Microsoft 365 tool server.

Every error raised by this package derives from ``M365Error`` so callers
(typically the agent layer) can catch the whole family at once and decide
on retry or backoff themselves. Nothing in this package retries.
"""

from typing import Any


class M365Error(Exception):
    """Base class for all m365-mcp errors."""


class ConfigurationError(M365Error):
    """A required setting is missing or has an invalid value."""


class CredentialError(M365Error):
    """Acquiring a bearer token from the m365 CLI failed.

    Attributes:
        stderr: Raw stderr emitted by the CLI, if any.
    """

    def __init__(self, message: str, stderr: str | None = None) -> None:
        super().__init__(message)
        self.stderr = stderr


AuthError = CredentialError


class ClientClosedError(CredentialError):
    """The Graph client was used after ``close()``."""

    def __init__(self) -> None:
        super().__init__("GraphClient is closed")


class RequestError(M365Error):
    """Microsoft Graph answered with a non-2xx status.

    Attributes:
        status_code: HTTP status code.
        reason: HTTP status text.
        body: Raw response body text.
    """

    def __init__(self, status_code: int, reason: str, body: str) -> None:
        super().__init__(f"Graph request failed ({status_code} {reason}): {body}")
        self.status_code = status_code
        self.reason = reason
        self.body = body


class InputValidationError(M365Error):
    """Tool input is missing a required field or does not match its schema.

    Attributes:
        errors: Structured error entries (pydantic style) when available.
    """

    def __init__(self, message: str, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class UnknownToolError(M365Error):
    """No handler is registered under the requested tool name."""

    def __init__(self, name: str, supported: list[str]) -> None:
        super().__init__(
            f"Unknown Microsoft 365 tool: {name}. Supported tools: {', '.join(supported)}"
        )
        self.name = name
        self.supported = supported


class AttachmentWriteError(M365Error):
    """An attachment could not be stored at its target path.

    Attributes:
        target_path: Resolved path the attachment was meant for.
    """

    def __init__(self, target_path: str, reason: str) -> None:
        super().__init__(f"Could not write attachment to {target_path}: {reason}")
        self.target_path = target_path
