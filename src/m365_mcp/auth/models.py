"""Data models for cached Microsoft Graph access tokens."""

from datetime import datetime, timedelta, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenCacheEntry(BaseModel):
    """A bearer token acquired from the m365 CLI.

    Entries are immutable; an expired entry is replaced wholesale.

    Attributes:
        token: Opaque bearer token.
        expires_at: Absolute, timezone-aware expiry time.
    """

    model_config = {"frozen": True}

    token: str = Field(..., min_length=1, description="Bearer token")
    expires_at: datetime = Field(..., description="Expiry timestamp (UTC)")

    @classmethod
    def issue(cls, token: str, ttl_seconds: float, now: datetime | None = None) -> "TokenCacheEntry":
        """Create an entry that expires ``ttl_seconds`` after ``now``."""
        issued_at = now or utc_now()
        return cls(token=token, expires_at=issued_at + timedelta(seconds=ttl_seconds))

    def is_expired(self, now: datetime | None = None) -> bool:
        """True once ``now`` has reached ``expires_at``."""
        return (now or utc_now()) >= self.expires_at


class CredentialStatus(str, Enum):
    """Outcome of a credential health check.

    Attributes:
        READY: The CLI returned a token.
        CLI_MISSING: The m365 executable could not be found.
        FAILED: The CLI ran but returned no usable token (typically not logged in).
    """

    READY = "ready"
    CLI_MISSING = "cli_missing"
    FAILED = "failed"
