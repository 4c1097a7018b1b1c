"""Mail tool handlers.

Each handler logs its (masked) input, checks required fields before any
request is made and shapes the Graph client's result for the agent.
"""

from typing import Any

from m365_mcp.errors import InputValidationError
from m365_mcp.graph.client import DEFAULT_FOLDER
from m365_mcp.helpers import mask_fields, safe_json
from m365_mcp.tools.context import ToolContext


def _log_invocation(ctx: ToolContext, tool: str, data: dict[str, Any]) -> None:
    ctx.logger.info("M365 %s invoked with input: %s", tool, safe_json(data))


def _require(data: dict[str, Any], *names: str) -> None:
    missing = [name for name in names if not data.get(name)]
    if missing:
        verb = "is" if len(missing) == 1 else "are"
        raise InputValidationError(f"{', '.join(missing)} {verb} required")


async def handle_latest_message(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """mail.latestMessage.get: newest message of a folder, or a "no messages" notice."""
    _log_invocation(ctx, "mail.latestMessage.get", data)
    folder_id = data.get("folderId") or DEFAULT_FOLDER

    message = await ctx.client.get_latest_message(folder_id)
    if message is None:
        return {"message": f'No messages found in folder "{folder_id}"', "folderId": folder_id}
    return {"folderId": folder_id, "message": message}


async def handle_messages_list(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """mail.messages.list: messages of a folder, newest first."""
    _log_invocation(ctx, "mail.messages.list", data)
    folder_id = data.get("folderId") or DEFAULT_FOLDER

    messages = await ctx.client.list_messages(
        folder_id=folder_id,
        start_date_time=data.get("startDateTime"),
        end_date_time=data.get("endDateTime"),
        max_results=data.get("maxResults"),
    )
    return {"folderId": folder_id, "count": len(messages), "messages": messages}


async def handle_unread_messages_list(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _log_invocation(ctx, "mail.messages.listUnread", data)
    folder_id = data.get("folderId") or DEFAULT_FOLDER

    messages = await ctx.client.list_unread_messages(
        folder_id=folder_id, max_results=data.get("maxResults")
    )
    return {"folderId": folder_id, "count": len(messages), "messages": messages}


async def handle_message_mark_read(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    _log_invocation(ctx, "mail.message.markRead", data)
    _require(data, "messageId")

    is_read = data.get("isRead")
    result = await ctx.client.mark_message_read(
        data["messageId"], is_read=True if is_read is None else bool(is_read)
    )
    return {"status": "updated", **result}


async def handle_message_reply(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """mail.message.reply: reply or reply-all to a message.

    With ``reply_redirect_to`` configured the reply is not sent to the
    original sender. A new mail titled ``RE: <original subject>`` goes to
    the configured address instead.
    """
    _log_invocation(
        ctx,
        "mail.message.reply",
        mask_fields(data, {"body": "[redacted]", "comment": "[provided]"}),
    )
    _require(data, "messageId")

    redirect_to = ctx.settings.reply_redirect_to
    if redirect_to:
        return await _send_redirected_reply(data, ctx, redirect_to)

    return await ctx.client.reply_to_message(
        data["messageId"],
        comment=data.get("comment"),
        body=data.get("body"),
        content_type=data.get("contentType"),
        reply_all=bool(data.get("replyAll")),
    )


async def _send_redirected_reply(
    data: dict[str, Any], ctx: ToolContext, redirect_to: str
) -> dict[str, Any]:
    original = await ctx.client.get_message_by_id(data["messageId"])
    subject = (original or {}).get("subject") or ""
    content = data.get("body") or data.get("comment") or ""

    ctx.logger.info("Reply to %s redirected to %s", data["messageId"], redirect_to)
    await ctx.client.send_mail(
        to=redirect_to,
        subject=f"RE: {subject}",
        body=content,
        content_type=data.get("contentType") if data.get("body") else "Text",
    )
    return {"status": "sent", "redirectedTo": redirect_to, "replyAll": False}


async def handle_attachment_download(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """mail.attachment.download: store an attachment on disk."""
    _log_invocation(ctx, "mail.attachment.download", mask_fields(data, {"targetPath": "[redacted]"}))
    _require(data, "messageId", "attachmentId", "targetPath")

    details = await ctx.client.download_attachment(
        data["messageId"], data["attachmentId"], data["targetPath"]
    )
    return {"status": details["status"], "details": details}
