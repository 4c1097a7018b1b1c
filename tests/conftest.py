"""Shared pytest fixtures for m365-mcp tests.

This module provides reusable fixtures for settings, a fake token source,
a recording Microsoft Graph transport and m365 CLI process mocks.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from m365_mcp.config import M365Settings
from m365_mcp.graph.client import GraphClient

# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def attachment_dir(tmp_path: Path) -> Path:
    """Create a temporary attachment directory."""
    path = tmp_path / "attachments"
    path.mkdir()
    return path


@pytest.fixture
def settings(attachment_dir: Path) -> M365Settings:
    """Create settings with all capabilities enabled and a temp attachment root."""
    return M365Settings(
        cli_command="m365",
        attachment_base_path=attachment_dir,
        cli_timeout_seconds=5,
        request_timeout_seconds=5,
    )


# =============================================================================
# Token Source Fixtures
# =============================================================================


class FakeTokenSource:
    """Token source returning a fixed token and recording requested scopes."""

    def __init__(self, token: str = "test_access_token") -> None:
        self.token = token
        self.requested_scopes: list[list[str]] = []
        self.closed = False

    async def get_access_token(self, scopes: list[str] | None = None) -> str:
        self.requested_scopes.append(list(scopes or []))
        return self.token

    async def close(self) -> None:
        self.closed = True

    @property
    def all_scopes(self) -> set[str]:
        return {scope for scopes in self.requested_scopes for scope in scopes}


@pytest.fixture
def token_source() -> FakeTokenSource:
    """Create a fake token source."""
    return FakeTokenSource()


# =============================================================================
# Microsoft Graph Transport
# =============================================================================


@dataclass
class GraphRouter:
    """Canned Graph responses keyed by (method, path) plus a request log.

    Paths are relative to ``/v1.0`` and compared without query string.
    Unrouted requests get ``404``.
    """

    routes: dict[tuple[str, str], dict[str, Any]] = field(default_factory=dict)
    requests: list[httpx.Request] = field(default_factory=list)

    def add(
        self,
        method: str,
        path: str,
        json_data: Any = None,
        status_code: int = 200,
        content: bytes | None = None,
        content_type: str | None = None,
    ) -> None:
        response: dict[str, Any] = {"status_code": status_code}
        if content is not None:
            response["content"] = content
            response["headers"] = {"content-type": content_type or "application/octet-stream"}
        elif json_data is not None:
            response["json"] = json_data
        self.routes[(method.upper(), path)] = response

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path.removeprefix("/v1.0")
        response = self.routes.get((request.method, path))
        if response is None:
            return httpx.Response(404, text=f"no route for {request.method} {path}")
        return httpx.Response(**response)

    @property
    def last(self) -> httpx.Request:
        return self.requests[-1]

    def json_body(self, index: int = -1) -> Any:
        return json.loads(self.requests[index].content)


@pytest.fixture
def graph_router() -> GraphRouter:
    """Create an empty Graph router."""
    return GraphRouter()


@pytest.fixture
def graph_client(
    settings: M365Settings, token_source: FakeTokenSource, graph_router: GraphRouter
) -> GraphClient:
    """Create a GraphClient talking to the router through httpx.MockTransport."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(graph_router))
    return GraphClient(settings, credentials=token_source, http_client=http_client)


def graph_message(message_id: str = "msg_001", **overrides: Any) -> dict[str, Any]:
    """Build a Graph message resource as returned with the standard $select."""
    message = {
        "id": message_id,
        "subject": "Quarterly report",
        "from": {"emailAddress": {"name": "Alice", "address": "alice@example.com"}},
        "toRecipients": [{"emailAddress": {"name": "Bob", "address": "bob@example.com"}}],
        "ccRecipients": [],
        "bccRecipients": [],
        "receivedDateTime": "2024-05-01T08:30:00Z",
        "hasAttachments": True,
        "bodyPreview": "Please find attached",
        "body": {"contentType": "html", "content": "<p>Please find attached</p>"},
        "isRead": False,
        "webLink": "https://outlook.office.com/mail/msg_001",
        "attachments": [
            {
                "id": "att_001",
                "name": "report.pdf",
                "contentType": "application/pdf",
                "size": 1024,
                "isInline": False,
            }
        ],
    }
    message.update(overrides)
    return message


# =============================================================================
# m365 CLI Process Mocks
# =============================================================================


def make_process(stdout: str = "", stderr: str = "", returncode: int = 0) -> MagicMock:
    """Create a mock asyncio subprocess with canned output."""
    process = MagicMock()
    process.returncode = returncode
    process.communicate = AsyncMock(return_value=(stdout.encode(), stderr.encode()))
    process.kill = MagicMock()
    return process


# =============================================================================
# CLI Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create a Click CLI test runner."""
    from click.testing import CliRunner

    return CliRunner()


@pytest.fixture
def message_factory():
    """Return the Graph message builder."""
    return graph_message


@pytest.fixture
def process_factory():
    """Return the mock subprocess builder."""
    return make_process
