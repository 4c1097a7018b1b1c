"""Unit tests for the Microsoft Graph request layer and domain operations."""

from pathlib import Path
from unittest.mock import patch

import pytest

from m365_mcp.errors import (
    AttachmentWriteError,
    ClientClosedError,
    InputValidationError,
    RequestError,
)
from m365_mcp.graph.client import (
    ATTACHMENT_EXPAND,
    MESSAGE_SELECT,
    GraphClient,
    clamp_max_results,
    normalize_attendee,
    resolve_target_path,
)


@pytest.mark.unit
class TestRequest:
    """Tests for GraphClient.request."""

    @pytest.mark.asyncio
    async def test_should_send_bearer_token_and_drop_empty_query(
        self, graph_client: GraphClient, graph_router, token_source
    ) -> None:
        """Verify URL, auth header and query filtering."""
        graph_router.add("GET", "/me/things", json_data={"value": []})

        result = await graph_client.request(
            "GET",
            "/me/things",
            query={"$top": "5", "$filter": "", "$skip": None},
            scopes=["Mail.Read"],
        )

        assert result == {"value": []}
        request = graph_router.last
        assert str(request.url).startswith("https://graph.microsoft.com/v1.0/me/things")
        assert request.headers["Authorization"] == "Bearer test_access_token"
        assert request.headers["Accept"] == "application/json"
        assert dict(request.url.params) == {"$top": "5"}
        assert token_source.requested_scopes == [["Mail.Read"]]

    @pytest.mark.asyncio
    async def test_should_json_encode_object_bodies(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify dict bodies are sent as JSON with a content type."""
        graph_router.add("POST", "/me/things", status_code=202)

        await graph_client.request("POST", "me/things", body={"a": 1})

        assert graph_router.json_body() == {"a": 1}
        assert graph_router.last.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_should_send_string_bodies_verbatim(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify string bodies are not re-encoded."""
        graph_router.add("POST", "/me/things", status_code=202)

        await graph_client.request("POST", "/me/things", body='{"raw": true}')

        assert graph_router.last.content == b'{"raw": true}'

    @pytest.mark.asyncio
    async def test_should_let_headers_override_defaults(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify caller headers win over the default Accept header."""
        graph_router.add("GET", "/me/blob", content=b"\x00\x01")

        await graph_client.request("GET", "/me/blob", headers={"Accept": "application/octet-stream"})

        assert graph_router.last.headers["Accept"] == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_should_return_bytes_for_non_json(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify non-JSON responses come back as raw bytes."""
        graph_router.add("GET", "/me/blob", content=b"%PDF-1.7")

        assert await graph_client.request("GET", "/me/blob") == b"%PDF-1.7"

    @pytest.mark.asyncio
    async def test_should_return_none_for_empty_json_body(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify an empty body with a JSON content type is not parsed."""
        graph_router.add(
            "POST", "/me/sendMail", status_code=202, content=b"", content_type="application/json"
        )

        assert await graph_client.request("POST", "/me/sendMail", body={}) is None

    @pytest.mark.asyncio
    async def test_should_raise_request_error_with_status_and_body(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify non-2xx responses raise with code, reason and raw body."""
        graph_router.add("GET", "/me/missing", json_data={"error": {"code": "NotFound"}}, status_code=404)

        with pytest.raises(RequestError) as exc_info:
            await graph_client.request("GET", "/me/missing")

        error = exc_info.value
        assert error.status_code == 404
        assert error.reason == "Not Found"
        assert "NotFound" in error.body
        assert "404 Not Found" in str(error)

    @pytest.mark.asyncio
    async def test_should_refuse_requests_after_close(
        self, graph_client: GraphClient, token_source
    ) -> None:
        """Verify a closed client raises and closes its token source."""
        await graph_client.close()

        assert token_source.closed is True
        with pytest.raises(ClientClosedError):
            await graph_client.request("GET", "/me")


@pytest.mark.unit
class TestMailOperations:
    """Tests for the mail domain operations."""

    @pytest.mark.asyncio
    async def test_should_shape_latest_message(
        self, graph_client: GraphClient, graph_router, message_factory
    ) -> None:
        """Verify the projection, ordering and attachment expansion."""
        graph_router.add("GET", "/me/mailFolders/inbox/messages", json_data={"value": [message_factory()]})

        message = await graph_client.get_latest_message()

        params = graph_router.last.url.params
        assert params["$top"] == "1"
        assert params["$orderby"] == "receivedDateTime desc"
        assert params["$select"] == MESSAGE_SELECT
        assert params["$expand"] == ATTACHMENT_EXPAND
        assert message["from"] == {"name": "Alice", "address": "alice@example.com"}
        assert message["toRecipients"] == [{"name": "Bob", "address": "bob@example.com"}]
        assert message["isRead"] is False
        assert message["body"] == {"contentType": "html", "content": "<p>Please find attached</p>"}
        assert message["attachments"][0]["name"] == "report.pdf"

    @pytest.mark.asyncio
    async def test_should_return_none_for_empty_folder(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify an empty folder yields None."""
        graph_router.add("GET", "/me/mailFolders/archive/messages", json_data={"value": []})

        assert await graph_client.get_latest_message("archive") is None

    @pytest.mark.asyncio
    async def test_should_build_message_filter(self, graph_client: GraphClient, graph_router) -> None:
        """Verify time bounds and unread flag are joined with and."""
        graph_router.add("GET", "/me/mailFolders/inbox/messages", json_data={"value": []})

        await graph_client.list_messages(
            start_date_time="2024-01-01T00:00:00Z",
            end_date_time="2024-01-31T23:59:59Z",
            only_unread=True,
        )

        assert graph_router.last.url.params["$filter"] == (
            "receivedDateTime ge 2024-01-01T00:00:00Z and "
            "receivedDateTime le 2024-01-31T23:59:59Z and isRead eq false"
        )

    @pytest.mark.asyncio
    async def test_should_omit_filter_without_bounds(self, graph_client: GraphClient, graph_router) -> None:
        """Verify no $filter is sent when nothing restricts the listing."""
        graph_router.add("GET", "/me/mailFolders/inbox/messages", json_data={"value": []})

        await graph_client.list_messages()

        assert "$filter" not in graph_router.last.url.params
        assert graph_router.last.url.params["$top"] == "20"

    @pytest.mark.parametrize(
        ("requested", "expected"),
        [(500, 200), (0, 1), (-3, 1), (50, 50), (None, 20), ("10", 20), (True, 20)],
    )
    def test_should_clamp_max_results(self, requested, expected) -> None:
        """Verify $top is clamped to [1, 200] and non-integers fall back to 20."""
        assert clamp_max_results(requested) == expected

    @pytest.mark.asyncio
    async def test_should_fetch_message_subject(self, graph_client: GraphClient, graph_router) -> None:
        """Verify get_message_by_id selects id and subject."""
        graph_router.add("GET", "/me/messages/msg_001", json_data={"id": "msg_001", "subject": "Hi"})

        assert await graph_client.get_message_by_id("msg_001") == {"id": "msg_001", "subject": "Hi"}
        assert graph_router.last.url.params["$select"] == "id,subject"

    @pytest.mark.asyncio
    async def test_should_reply_all_with_html_body(
        self, graph_client: GraphClient, graph_router, token_source
    ) -> None:
        """Verify replyAll endpoint, payload and Mail.Send scope."""
        graph_router.add("POST", "/me/messages/msg_001/replyAll", status_code=202)

        result = await graph_client.reply_to_message(
            "msg_001", comment="See below", body="<p>Done</p>", content_type="html", reply_all=True
        )

        assert result == {"status": "sent", "replyAll": True}
        assert graph_router.json_body() == {
            "comment": "See below",
            "message": {"body": {"contentType": "HTML", "content": "<p>Done</p>"}},
        }
        assert token_source.requested_scopes[-1] == ["Mail.Send"]

    @pytest.mark.asyncio
    async def test_should_reply_with_comment_only(self, graph_client: GraphClient, graph_router) -> None:
        """Verify a reply without body sends only the comment."""
        graph_router.add("POST", "/me/messages/msg_001/reply", status_code=202)

        await graph_client.reply_to_message("msg_001", comment="Thanks")

        assert graph_router.json_body() == {"comment": "Thanks"}

    @pytest.mark.asyncio
    async def test_should_require_message_id_for_reply(self, graph_client: GraphClient, graph_router) -> None:
        """Verify reply validation happens before any request."""
        with pytest.raises(InputValidationError):
            await graph_client.reply_to_message("")

        assert graph_router.requests == []

    @pytest.mark.asyncio
    async def test_should_send_mail(self, graph_client: GraphClient, graph_router) -> None:
        """Verify the sendMail payload."""
        graph_router.add("POST", "/me/sendMail", status_code=202)

        result = await graph_client.send_mail("bob@example.com", "Hello", body="Hi Bob")

        assert result == {"status": "sent", "to": ["bob@example.com"], "subject": "Hello"}
        assert graph_router.json_body() == {
            "message": {
                "subject": "Hello",
                "body": {"contentType": "Text", "content": "Hi Bob"},
                "toRecipients": [{"emailAddress": {"address": "bob@example.com"}}],
            },
            "saveToSentItems": True,
        }

    @pytest.mark.asyncio
    async def test_should_mark_message_read(
        self, graph_client: GraphClient, graph_router, token_source
    ) -> None:
        """Verify PATCH with isRead and Mail.ReadWrite scope."""
        graph_router.add("PATCH", "/me/messages/msg_001", json_data={"id": "msg_001", "isRead": True})

        result = await graph_client.mark_message_read("msg_001")

        assert result == {"id": "msg_001", "isRead": True}
        assert graph_router.json_body() == {"isRead": True}
        assert token_source.requested_scopes[-1] == ["Mail.ReadWrite"]


@pytest.mark.unit
class TestAttachmentDownload:
    """Tests for download_attachment."""

    @pytest.mark.asyncio
    async def test_should_write_attachment_below_base_path(
        self, graph_client: GraphClient, graph_router, attachment_dir: Path
    ) -> None:
        """Verify relative targets resolve against the base path and parents are created."""
        graph_router.add(
            "GET", "/me/messages/msg_001/attachments/att_001/$value", content=b"%PDF-1.7"
        )

        result = await graph_client.download_attachment("msg_001", "att_001", "2024/report.pdf")

        target = attachment_dir / "2024" / "report.pdf"
        assert target.read_bytes() == b"%PDF-1.7"
        assert result == {
            "status": "downloaded",
            "messageId": "msg_001",
            "attachmentId": "att_001",
            "targetPath": str(target),
            "bytesWritten": 8,
        }
        assert graph_router.last.headers["Accept"] == "application/octet-stream"

    @pytest.mark.asyncio
    async def test_should_skip_existing_file_without_request(
        self, graph_client: GraphClient, graph_router, attachment_dir: Path
    ) -> None:
        """Verify a non-empty file at the target short-circuits the download."""
        (attachment_dir / "report.pdf").write_bytes(b"already here")

        result = await graph_client.download_attachment("msg_001", "att_001", "report.pdf")

        assert result["status"] == "exists"
        assert result["bytesWritten"] == 0
        assert graph_router.requests == []

    @pytest.mark.asyncio
    async def test_should_overwrite_empty_file(
        self, graph_client: GraphClient, graph_router, attachment_dir: Path
    ) -> None:
        """Verify an empty placeholder file is replaced."""
        (attachment_dir / "report.pdf").write_bytes(b"")
        graph_router.add("GET", "/me/messages/msg_001/attachments/att_001/$value", content=b"data")

        result = await graph_client.download_attachment("msg_001", "att_001", "report.pdf")

        assert result["status"] == "downloaded"
        assert (attachment_dir / "report.pdf").read_bytes() == b"data"

    @pytest.mark.asyncio
    async def test_should_reject_directory_target(
        self, graph_client: GraphClient, graph_router, attachment_dir: Path
    ) -> None:
        """Verify a target that is a directory fails before any request."""
        (attachment_dir / "sub").mkdir()

        with pytest.raises(AttachmentWriteError, match="target is a directory"):
            await graph_client.download_attachment("msg_001", "att_001", "sub")

        assert graph_router.requests == []

    @pytest.mark.asyncio
    async def test_should_not_leave_partial_file_on_failed_write(
        self, graph_client: GraphClient, graph_router, attachment_dir: Path
    ) -> None:
        """Verify a failed write leaves neither the target nor a temp file behind."""
        graph_router.add("GET", "/me/messages/msg_001/attachments/att_001/$value", content=b"data")

        with patch(
            "m365_mcp.graph.client.os.replace", side_effect=OSError(28, "No space left on device")
        ):
            with pytest.raises(AttachmentWriteError, match="No space left on device"):
                await graph_client.download_attachment("msg_001", "att_001", "report.pdf")

        assert list(attachment_dir.iterdir()) == []

    def test_should_resolve_absolute_paths_unchanged(self, tmp_path: Path) -> None:
        """Verify absolute targets ignore the base path."""
        target = tmp_path / "x" / ".." / "file.bin"

        assert resolve_target_path(str(target), Path("/elsewhere")) == tmp_path / "file.bin"

    def test_should_resolve_relative_paths_against_cwd(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Verify relative targets use the working directory without a base path."""
        monkeypatch.chdir(tmp_path)

        assert resolve_target_path("file.bin", None) == tmp_path / "file.bin"


@pytest.mark.unit
class TestCalendarOperations:
    """Tests for the calendar domain operations."""

    @pytest.mark.asyncio
    async def test_should_list_calendar_view(
        self, graph_client: GraphClient, graph_router, token_source
    ) -> None:
        """Verify calendarView query and event projection."""
        graph_router.add(
            "GET",
            "/me/calendarView",
            json_data={
                "value": [
                    {
                        "id": "evt_1",
                        "subject": "Standup",
                        "start": {"dateTime": "2024-01-01T09:00:00", "timeZone": "UTC"},
                        "end": {"dateTime": "2024-01-01T09:15:00", "timeZone": "UTC"},
                        "location": {"displayName": "Room 1"},
                        "organizer": {"emailAddress": {"address": "alice@example.com"}},
                        "bodyPreview": "not projected",
                    }
                ]
            },
        )

        events = await graph_client.list_calendar_events(
            "2024-01-01T00:00:00Z", "2024-01-02T00:00:00Z"
        )

        params = graph_router.last.url.params
        assert params["startDateTime"] == "2024-01-01T00:00:00Z"
        assert params["endDateTime"] == "2024-01-02T00:00:00Z"
        assert params["$orderby"] == "start/dateTime asc"
        assert set(events[0]) == {"id", "subject", "start", "end", "location", "organizer"}
        assert token_source.requested_scopes[-1] == ["Calendars.Read"]

    def test_should_force_teams_meeting(self, graph_client: GraphClient) -> None:
        """Verify teams=True overrides explicit online meeting settings."""
        payload = graph_client.build_event_payload(
            "S",
            "2024-01-01T09:00:00Z",
            "2024-01-01T10:00:00Z",
            teams=True,
            is_online_meeting=False,
            online_meeting_provider="skypeForBusiness",
        )

        assert payload["isOnlineMeeting"] is True
        assert payload["onlineMeetingProvider"] == "teamsForBusiness"

    def test_should_build_full_event_payload(self, graph_client: GraphClient) -> None:
        """Verify optional fields and the UTC default time zone."""
        payload = graph_client.build_event_payload(
            "Review",
            "2024-01-01T09:00:00",
            "2024-01-01T10:00:00",
            body="<b>Agenda</b>",
            content_type="HTML",
            location="Room 1",
            reminder_minutes_before_start=15,
            allow_new_time_proposals=False,
        )

        assert payload["start"] == {"dateTime": "2024-01-01T09:00:00", "timeZone": "UTC"}
        assert payload["body"] == {"contentType": "HTML", "content": "<b>Agenda</b>"}
        assert payload["location"] == {"displayName": "Room 1"}
        assert payload["reminderMinutesBeforeStart"] == 15
        assert payload["allowNewTimeProposals"] is False
        assert "isOnlineMeeting" not in payload

    def test_should_normalize_attendees(self) -> None:
        """Verify string and record attendees, dropping entries without address."""
        assert normalize_attendee("bob@example.com") == {
            "emailAddress": {"address": "bob@example.com"},
            "type": "required",
        }
        assert normalize_attendee({"email": "eve@example.com", "displayName": "Eve", "type": "optional"}) == {
            "emailAddress": {"address": "eve@example.com", "name": "Eve"},
            "type": "optional",
        }
        assert normalize_attendee({"name": "Nobody"}) is None
        assert normalize_attendee("") is None

    @pytest.mark.asyncio
    async def test_should_create_event_with_notifications(
        self, graph_client: GraphClient, graph_router, token_source
    ) -> None:
        """Verify attendees trigger sendNotifications and are normalized."""
        graph_router.add("POST", "/me/events", json_data={"id": "evt_new"}, status_code=201)

        result = await graph_client.create_calendar_event(
            "Planning",
            "2024-01-01T09:00:00Z",
            "2024-01-01T10:00:00Z",
            attendees=["bob@example.com", {"name": "No address"}],
        )

        assert result == {"id": "evt_new"}
        assert graph_router.last.url.params["sendNotifications"] == "true"
        assert graph_router.json_body()["attendees"] == [
            {"emailAddress": {"address": "bob@example.com"}, "type": "required"}
        ]
        assert token_source.requested_scopes[-1] == ["Calendars.ReadWrite"]

    @pytest.mark.asyncio
    async def test_should_create_event_without_notifications(
        self, graph_client: GraphClient, graph_router
    ) -> None:
        """Verify no sendNotifications parameter without attendees."""
        graph_router.add("POST", "/me/events", json_data={"id": "evt_new"}, status_code=201)

        await graph_client.create_calendar_event("Focus", "2024-01-01T09:00:00Z", "2024-01-01T10:00:00Z")

        assert "sendNotifications" not in graph_router.last.url.params

    @pytest.mark.asyncio
    async def test_should_require_subject(self, graph_client: GraphClient, graph_router) -> None:
        """Verify missing subject fails before any request."""
        with pytest.raises(InputValidationError):
            await graph_client.create_calendar_event("", "2024-01-01T09:00:00Z", "2024-01-01T10:00:00Z")

        assert graph_router.requests == []


@pytest.mark.unit
class TestBootstrap:
    """Tests for GraphClient.bootstrap."""

    @pytest.mark.asyncio
    async def test_should_request_bootstrap_scopes(self, graph_client: GraphClient, token_source) -> None:
        """Verify bootstrap acquires a token for the configured scopes."""
        await graph_client.bootstrap()

        assert token_source.requested_scopes == [["Mail.Read"]]

    @pytest.mark.asyncio
    async def test_should_log_and_reraise_bootstrap_failure(
        self, graph_client: GraphClient, token_source, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Verify bootstrap failures are logged and propagated."""

        async def fail(scopes=None):
            raise RuntimeError("not logged in")

        token_source.get_access_token = fail

        with pytest.raises(RuntimeError):
            await graph_client.bootstrap()

        assert "Failed to initialize Microsoft 365 MCP client" in caplog.text
