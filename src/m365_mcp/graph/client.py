"""Thin Microsoft Graph client authenticated through the m365 CLI.

``GraphClient.request`` is the generic layer: it resolves a path against the
v1.0 REST root, attaches a bearer token for the requested scopes, encodes
the body and negotiates the response (JSON vs. raw bytes). The domain
operations below it map one-to-one onto Graph resources; their paths,
query parameter names and scopes must stay as they are for wire
compatibility.
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from m365_mcp.auth.cli_credentials import GRAPH_RESOURCE, CliCredentialProvider
from m365_mcp.config import M365Settings
from m365_mcp.errors import (
    AttachmentWriteError,
    ClientClosedError,
    InputValidationError,
    RequestError,
)

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = f"{GRAPH_RESOURCE}/v1.0"

MESSAGE_SELECT = (
    "id,subject,from,toRecipients,ccRecipients,bccRecipients,receivedDateTime,"
    "hasAttachments,bodyPreview,body,isRead,webLink"
)
ATTACHMENT_EXPAND = "attachments($select=id,name,contentType,size,isInline)"
DEFAULT_FOLDER = "inbox"
DEFAULT_MAX_RESULTS = 20
MAX_RESULTS_LIMIT = 200
TEAMS_MEETING_PROVIDER = "teamsForBusiness"


class TokenSource(Protocol):
    """Anything that hands out bearer tokens per scope set."""

    async def get_access_token(self, scopes: list[str] | None = None) -> str: ...

    async def close(self) -> None: ...


def _segment(value: str) -> str:
    return quote(str(value), safe="")


def normalize_content_type(content_type: str | None) -> str:
    """Graph accepts ``Text`` or ``HTML``; anything but HTML becomes Text."""
    return "HTML" if (content_type or "Text").upper() == "HTML" else "Text"


def clamp_max_results(max_results: Any) -> int:
    """Clamp ``$top`` to [1, 200]; non-integers fall back to 20."""
    if isinstance(max_results, bool) or not isinstance(max_results, int):
        return DEFAULT_MAX_RESULTS
    return min(max(max_results, 1), MAX_RESULTS_LIMIT)


def _query_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _email_addresses(entries: Any) -> list[Any]:
    if not isinstance(entries, list):
        return []
    return [entry.get("emailAddress") for entry in entries if isinstance(entry, dict)]


def shape_message(message: dict[str, Any]) -> dict[str, Any]:
    """Project a Graph message onto the fields the tools expose."""
    sender = message.get("from") or {}
    body = message.get("body")
    attachments = message.get("attachments")
    return {
        "id": message.get("id"),
        "subject": message.get("subject"),
        "from": sender.get("emailAddress") if isinstance(sender, dict) else None,
        "toRecipients": _email_addresses(message.get("toRecipients")),
        "ccRecipients": _email_addresses(message.get("ccRecipients")),
        "bccRecipients": _email_addresses(message.get("bccRecipients")),
        "receivedDateTime": message.get("receivedDateTime"),
        "isRead": bool(message.get("isRead")),
        "webLink": message.get("webLink"),
        "hasAttachments": bool(message.get("hasAttachments")),
        "bodyPreview": message.get("bodyPreview") or None,
        "body": (
            {"contentType": body.get("contentType"), "content": body.get("content")}
            if isinstance(body, dict)
            else None
        ),
        "attachments": [
            {
                "id": attachment.get("id"),
                "name": attachment.get("name"),
                "contentType": attachment.get("contentType"),
                "size": attachment.get("size"),
                "isInline": attachment.get("isInline"),
            }
            for attachment in attachments
        ]
        if isinstance(attachments, list)
        else [],
    }


def normalize_attendee(entry: Any) -> dict[str, Any] | None:
    """Turn an attendee given as an email string or a record into Graph form.

    Returns ``None`` for entries without a resolvable address.
    """
    if not entry:
        return None
    if isinstance(entry, str):
        return {"emailAddress": {"address": entry}, "type": "required"}
    if not isinstance(entry, dict):
        return None
    address = (
        entry.get("address") or entry.get("email") or entry.get("mail") or entry.get("emailAddress")
    )
    if not address:
        return None
    email_address: dict[str, Any] = {"address": address}
    name = entry.get("name") or entry.get("displayName")
    if name:
        email_address["name"] = name
    return {"emailAddress": email_address, "type": entry.get("type") or "required"}


def resolve_target_path(target_path: str, base_path: Path | None) -> Path:
    """Resolve an attachment target to an absolute path.

    Relative paths resolve against ``base_path`` when configured, else the
    current working directory.
    """
    target = Path(target_path)
    if not target.is_absolute():
        target = Path(base_path) / target if base_path else Path.cwd() / target
    return Path(os.path.abspath(target))


def _existing_size(path: Path) -> int:
    try:
        return path.stat().st_size if path.is_file() else 0
    except OSError:
        return 0


def _write_bytes(path: Path, content: bytes) -> int:
    """Write ``content`` to ``path`` atomically.

    The bytes land in a temporary file next to the target first, so an
    interrupted write never leaves a partial file behind.

    Raises:
        AttachmentWriteError: If the target is a directory or the write fails.
    """
    if path.is_dir():
        raise AttachmentWriteError(str(path), "target is a directory")
    tmp_name: str | None = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".part", dir=path.parent)
        with os.fdopen(fd, "wb") as tmp:
            tmp.write(content)
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise AttachmentWriteError(str(path), e.strerror or str(e)) from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning("Could not remove temporary file %s", tmp_name)
    return len(content)


class GraphClient:
    """Microsoft Graph client owning token acquisition and the HTTP connection pool.

    One instance per tool server; ``bootstrap()`` once at start, ``close()``
    once at shutdown.

    Attributes:
        settings: Active settings.
        credentials: Token source (the m365 CLI provider by default).
    """

    def __init__(
        self,
        settings: M365Settings | None = None,
        credentials: TokenSource | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings: Settings to use. Read from the environment if not provided.
            credentials: Token source. A ``CliCredentialProvider`` if not provided.
            http_client: Pre-built HTTP client (tests pass one with a mock transport).
                The client does not close a client it did not create.
        """
        self.settings = settings or M365Settings.from_env()
        self.credentials: TokenSource = credentials or CliCredentialProvider(self.settings)
        self._http_client = http_client
        self._owns_http_client = http_client is None
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def _get_http_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client with connection pooling."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                http2=True,
                limits=httpx.Limits(max_connections=100, max_keepalive_connections=20),
                timeout=httpx.Timeout(self.settings.request_timeout_seconds, connect=10.0),
            )
        return self._http_client

    async def bootstrap(self, scopes: list[str] | None = None) -> None:
        """Acquire a first token so that login problems surface at startup.

        Args:
            scopes: Scopes to request. Defaults to ``settings.bootstrap_scopes``.
        """
        logger.info("Initializing Microsoft 365 in-process MCP client...")
        try:
            await self.get_access_token(
                self.settings.bootstrap_scopes if scopes is None else scopes
            )
        except Exception as e:
            logger.error("Failed to initialize Microsoft 365 MCP client: %s", e)
            raise
        logger.info("Microsoft 365 MCP client initialized successfully.")

    async def get_access_token(self, scopes: list[str] | None = None) -> str:
        if self._closed:
            raise ClientClosedError()
        return await self.credentials.get_access_token(scopes or [])

    async def request(
        self,
        method: str,
        path: str,
        *,
        query: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        body: Any = None,
        scopes: list[str] | None = None,
        timeout: float | None = None,
    ) -> Any:
        """Make an authenticated request against the Graph v1.0 root.

        Args:
            method: HTTP method.
            path: Path relative to ``https://graph.microsoft.com/v1.0``.
            query: Query parameters; ``None`` and empty values are dropped.
            headers: Extra headers, overriding the defaults.
            body: ``str`` bodies are sent as-is, anything else JSON-encoded.
            scopes: Scopes the token must carry.
            timeout: Per-request timeout in seconds
                (default: ``settings.request_timeout_seconds``).

        Returns:
            Parsed JSON for ``application/json`` responses (``None`` when the body
            is empty), raw ``bytes`` otherwise.

        Raises:
            RequestError: If Graph answers with a non-2xx status.
            ClientClosedError: If the client has been closed.
        """
        if self._closed:
            raise ClientClosedError()

        url = f"{GRAPH_BASE_URL}/{path.lstrip('/')}"
        params = {
            key: _query_value(value)
            for key, value in (query or {}).items()
            if value is not None and value != ""
        }

        access_token = await self.get_access_token(scopes)
        request_headers = {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
            **(headers or {}),
        }

        content: str | None = None
        if body is not None:
            content = body if isinstance(body, str) else json.dumps(body)
            request_headers["Content-Type"] = "application/json"

        client = await self._get_http_client()
        response = await client.request(
            method,
            url,
            params=params,
            content=content,
            headers=request_headers,
            timeout=timeout if timeout is not None else self.settings.request_timeout_seconds,
        )

        if not response.is_success:
            raise RequestError(response.status_code, response.reason_phrase, response.text)

        if "application/json" in response.headers.get("content-type", ""):
            if not response.content:
                return None
            return response.json()
        return response.content

    # =========================================================================
    # Mail
    # =========================================================================

    async def get_message_by_id(self, message_id: str) -> dict[str, Any] | None:
        """Fetch id and subject of a message, or ``None`` if it has no id."""
        if not message_id:
            return None
        data = await self.request(
            "GET",
            f"/me/messages/{_segment(message_id)}",
            query={"$select": "id,subject"},
            scopes=["Mail.Read"],
        )
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return {"id": data["id"], "subject": data.get("subject")}

    async def get_latest_message(self, folder_id: str = DEFAULT_FOLDER) -> dict[str, Any] | None:
        """Return the newest message of a folder, or ``None`` when it is empty."""
        data = await self.request(
            "GET",
            f"/me/mailFolders/{_segment(folder_id)}/messages",
            query={
                "$top": "1",
                "$orderby": "receivedDateTime desc",
                "$select": MESSAGE_SELECT,
                "$expand": ATTACHMENT_EXPAND,
            },
            scopes=["Mail.Read"],
        )
        messages = data.get("value") if isinstance(data, dict) else None
        if not messages:
            return None
        return shape_message(messages[0])

    async def list_messages(
        self,
        folder_id: str = DEFAULT_FOLDER,
        start_date_time: str | None = None,
        end_date_time: str | None = None,
        max_results: Any = DEFAULT_MAX_RESULTS,
        only_unread: bool = False,
    ) -> list[dict[str, Any]]:
        """List messages of a folder, newest first.

        Args:
            folder_id: Folder id or well-known name.
            start_date_time: Only messages received at or after this ISO-8601 time.
            end_date_time: Only messages received at or before this ISO-8601 time.
            max_results: Page size, clamped to [1, 200].
            only_unread: Only unread messages.
        """
        filter_parts = []
        if start_date_time:
            filter_parts.append(f"receivedDateTime ge {start_date_time}")
        if end_date_time:
            filter_parts.append(f"receivedDateTime le {end_date_time}")
        if only_unread:
            filter_parts.append("isRead eq false")

        query = {
            "$orderby": "receivedDateTime desc",
            "$top": str(clamp_max_results(max_results)),
            "$select": MESSAGE_SELECT,
            "$expand": ATTACHMENT_EXPAND,
        }
        if filter_parts:
            query["$filter"] = " and ".join(filter_parts)

        data = await self.request(
            "GET",
            f"/me/mailFolders/{_segment(folder_id or DEFAULT_FOLDER)}/messages",
            query=query,
            scopes=["Mail.Read"],
        )
        return [shape_message(message) for message in (data.get("value") or [])]

    async def list_unread_messages(
        self, folder_id: str = DEFAULT_FOLDER, max_results: Any = DEFAULT_MAX_RESULTS
    ) -> list[dict[str, Any]]:
        return await self.list_messages(
            folder_id=folder_id, max_results=max_results, only_unread=True
        )

    async def mark_message_read(self, message_id: str, is_read: bool = True) -> dict[str, Any]:
        if not message_id:
            raise InputValidationError("messageId is required")
        await self.request(
            "PATCH",
            f"/me/messages/{_segment(message_id)}",
            body={"isRead": bool(is_read)},
            scopes=["Mail.ReadWrite"],
        )
        return {"id": message_id, "isRead": bool(is_read)}

    async def reply_to_message(
        self,
        message_id: str,
        comment: str | None = "",
        body: str | None = None,
        content_type: str | None = "Text",
        reply_all: bool = False,
    ) -> dict[str, Any]:
        """Reply (or reply-all) to a message.

        Args:
            message_id: Message to answer.
            comment: Plain-text comment placed above the reply.
            body: Full reply body, interpreted according to ``content_type``.
            content_type: ``Text`` or ``HTML``.
            reply_all: Use reply-all instead of reply.
        """
        if not message_id:
            raise InputValidationError("messageId is required to reply to a mail.")

        payload: dict[str, Any] = {"comment": comment or ""}
        if body:
            payload["message"] = {
                "body": {"contentType": normalize_content_type(content_type), "content": body}
            }

        action = "replyAll" if reply_all else "reply"
        await self.request(
            "POST",
            f"/me/messages/{_segment(message_id)}/{action}",
            body=payload,
            scopes=["Mail.Send"],
        )
        return {"status": "sent", "replyAll": bool(reply_all)}

    async def send_mail(
        self,
        to: str | list[str],
        subject: str,
        body: str | None = "",
        content_type: str | None = "Text",
        save_to_sent_items: bool = True,
    ) -> dict[str, Any]:
        """Send a new message to one or more recipients."""
        addresses = [str(address) for address in (to if isinstance(to, list) else [to]) if address]
        if not addresses:
            raise InputValidationError("At least one recipient is required to send a mail.")

        payload = {
            "message": {
                "subject": subject or "",
                "body": {"contentType": normalize_content_type(content_type), "content": body or ""},
                "toRecipients": [{"emailAddress": {"address": address}} for address in addresses],
            },
            "saveToSentItems": bool(save_to_sent_items),
        }
        await self.request("POST", "/me/sendMail", body=payload, scopes=["Mail.Send"])
        return {"status": "sent", "to": addresses, "subject": subject}

    async def download_attachment(
        self, message_id: str, attachment_id: str, target_path: str
    ) -> dict[str, Any]:
        """Download an attachment to disk.

        A non-empty file already at the resolved path is kept and reported
        with status ``exists``; no request is made in that case.

        Returns:
            ``{status, messageId, attachmentId, targetPath, bytesWritten}``.

        Raises:
            AttachmentWriteError: If the target is a directory or cannot be written.
        """
        if not message_id or not attachment_id or not target_path:
            raise InputValidationError(
                "messageId, attachmentId and targetPath are required for attachment download."
            )

        resolved = resolve_target_path(target_path, self.settings.attachment_base_path)
        result = {
            "messageId": message_id,
            "attachmentId": attachment_id,
            "targetPath": str(resolved),
        }

        existing = await asyncio.to_thread(_existing_size, resolved)
        if existing > 0:
            logger.info("Attachment %s already present at %s, skipping download", attachment_id, resolved)
            return {"status": "exists", **result, "bytesWritten": 0, "size": existing}
        if await asyncio.to_thread(resolved.is_dir):
            raise AttachmentWriteError(str(resolved), "target is a directory")

        data = await self.request(
            "GET",
            f"/me/messages/{_segment(message_id)}/attachments/{_segment(attachment_id)}/$value",
            headers={"Accept": "application/octet-stream"},
            scopes=["Mail.Read"],
        )
        if data is None:
            content = b""
        else:
            content = data if isinstance(data, bytes) else json.dumps(data).encode()
        written = await asyncio.to_thread(_write_bytes, resolved, content)
        return {"status": "downloaded", **result, "bytesWritten": written}

    # =========================================================================
    # Calendar
    # =========================================================================

    async def list_calendar_events(
        self, start_date_time: str, end_date_time: str
    ) -> list[dict[str, Any]]:
        """List events between two ISO-8601 times, ordered by start ascending."""
        if not start_date_time or not end_date_time:
            raise InputValidationError("startDateTime and endDateTime are required to list events.")

        data = await self.request(
            "GET",
            "/me/calendarView",
            query={
                "startDateTime": start_date_time,
                "endDateTime": end_date_time,
                "$orderby": "start/dateTime asc",
            },
            scopes=["Calendars.Read"],
        )
        return [
            {
                "id": event.get("id"),
                "subject": event.get("subject"),
                "start": event.get("start"),
                "end": event.get("end"),
                "location": event.get("location"),
                "organizer": event.get("organizer"),
            }
            for event in (data.get("value") or [])
        ]

    def build_event_payload(
        self,
        subject: str,
        start_date_time: str,
        end_date_time: str,
        body: str | None = None,
        content_type: str | None = "Text",
        timezone: str | None = "UTC",
        attendees: list[Any] | None = None,
        teams: bool = False,
        location: Any = None,
        reminder_minutes_before_start: int | None = None,
        allow_new_time_proposals: bool | None = None,
        is_online_meeting: bool | None = None,
        online_meeting_provider: str | None = None,
    ) -> dict[str, Any]:
        """Build the ``POST /me/events`` payload.

        ``teams=True`` always wins over explicit online-meeting settings.
        """
        if not subject:
            raise InputValidationError("subject is required to create an event.")
        if not start_date_time or not end_date_time:
            raise InputValidationError("startDateTime and endDateTime are required.")

        zone = timezone or "UTC"
        normalized = [normalize_attendee(entry) for entry in (attendees or [])]
        payload: dict[str, Any] = {
            "subject": subject,
            "start": {"dateTime": start_date_time, "timeZone": zone},
            "end": {"dateTime": end_date_time, "timeZone": zone},
            "attendees": [entry for entry in normalized if entry],
        }

        if body:
            payload["body"] = {"contentType": normalize_content_type(content_type), "content": body}
        if location:
            payload["location"] = (
                {"displayName": location} if isinstance(location, str) else location
            )
        if isinstance(reminder_minutes_before_start, (int, float)) and not isinstance(
            reminder_minutes_before_start, bool
        ):
            payload["reminderMinutesBeforeStart"] = reminder_minutes_before_start
        if isinstance(allow_new_time_proposals, bool):
            payload["allowNewTimeProposals"] = allow_new_time_proposals
        if isinstance(is_online_meeting, bool):
            payload["isOnlineMeeting"] = is_online_meeting
        if online_meeting_provider:
            payload["onlineMeetingProvider"] = online_meeting_provider

        if teams:
            payload["isOnlineMeeting"] = True
            payload["onlineMeetingProvider"] = TEAMS_MEETING_PROVIDER

        return payload

    async def create_calendar_event(self, subject: str, start_date_time: str, end_date_time: str, **options: Any) -> Any:
        """Create a calendar event; invitations go out when attendees are given.

        Keyword arguments are those of ``build_event_payload``.
        """
        payload = self.build_event_payload(subject, start_date_time, end_date_time, **options)
        # Notify attendees so invites are delivered.
        query = {"sendNotifications": "true"} if options.get("attendees") else {}
        return await self.request(
            "POST", "/me/events", body=payload, query=query, scopes=["Calendars.ReadWrite"]
        )

    async def close(self) -> None:
        """Close the client, drop cached tokens and release the HTTP pool."""
        if self._closed:
            return
        self._closed = True
        await self.credentials.close()
        if self._http_client is not None and self._owns_http_client:
            await self._http_client.aclose()
        self._http_client = None
