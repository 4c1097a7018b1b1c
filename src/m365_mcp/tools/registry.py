"""Name to handler table for the Microsoft 365 tools."""

from types import MappingProxyType

from m365_mcp.tools.calendar import handle_event_create, handle_events_list
from m365_mcp.tools.context import ToolHandler
from m365_mcp.tools.mail import (
    handle_attachment_download,
    handle_latest_message,
    handle_message_mark_read,
    handle_message_reply,
    handle_messages_list,
    handle_unread_messages_list,
)

TOOL_HANDLERS: MappingProxyType[str, ToolHandler] = MappingProxyType(
    {
        # Mail
        "mail.latestMessage.get": handle_latest_message,
        "mail.attachment.download": handle_attachment_download,
        "mail.messages.list": handle_messages_list,
        "mail.messages.listUnread": handle_unread_messages_list,
        "mail.message.reply": handle_message_reply,
        "mail.message.markRead": handle_message_mark_read,
        # Calendar
        "calendar.events.list": handle_events_list,
        "calendar.event.create": handle_event_create,
    }
)


def get_tool_handler(name: str) -> ToolHandler | None:
    """Return the handler registered under ``name``, or ``None``."""
    return TOOL_HANDLERS.get(name)


def list_supported_tools() -> list[str]:
    return list(TOOL_HANDLERS)
