"""Static description of the tools exposed to the agent.

Input schemas are plain JSON schema dictionaries. The same dictionaries are
converted into the validators the server applies before dispatch, so the
advertised contract and the enforced one cannot drift.
"""

import copy
from functools import lru_cache
from typing import Any

from pydantic import BaseModel, Field

from m365_mcp.__version__ import MANIFEST_VERSION
from m365_mcp.config import M365Settings
from m365_mcp.schema import Validator, convert

NAMESPACE = "m365"


class ToolDefinition(BaseModel):
    """One tool as advertised in the manifest.

    Attributes:
        name: Dotted tool name; the first segment is the capability namespace.
        description: Human-readable description for the agent.
        input_schema: JSON schema of the tool arguments.
        required_scopes: Graph scopes the tool's requests use.
    """

    model_config = {"frozen": True, "populate_by_name": True}

    name: str = Field(..., description="Tool name, e.g. mail.messages.list")
    description: str = Field(..., description="Tool description")
    input_schema: dict[str, Any] = Field(..., alias="inputSchema")
    required_scopes: frozenset[str] = Field(default_factory=frozenset)

    @property
    def namespace(self) -> str:
        return self.name.split(".", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        """JSON form handed to the agent; always a fresh copy."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": copy.deepcopy(self.input_schema),
            "metadata": {"scopes": sorted(self.required_scopes)},
        }


_FOLDER_ID = {
    "type": "string",
    "description": "ID or well-known name of the mail folder, e.g. inbox.",
    "default": "inbox",
}
_MAX_RESULTS = {
    "type": "integer",
    "default": 20,
    "description": "Maximum number of messages to return (1-200, out-of-range values are clamped). Default: 20.",
}
_CONTENT_TYPE = {
    "type": "string",
    "description": "Whether the body is interpreted as Text or HTML.",
    "enum": ["Text", "HTML"],
    "default": "Text",
}

TOOL_DEFINITIONS: tuple[ToolDefinition, ...] = (
    ToolDefinition(
        name="mail.latestMessage.get",
        description="Read the newest message of a mail folder, including metadata and attachment summaries.",
        input_schema={"type": "object", "properties": {"folderId": _FOLDER_ID}},
        required_scopes=frozenset({"Mail.Read"}),
    ),
    ToolDefinition(
        name="mail.messages.list",
        description="List received messages of a folder, newest first, optionally filtered by time range.",
        input_schema={
            "type": "object",
            "properties": {
                "folderId": _FOLDER_ID,
                "startDateTime": {
                    "type": "string",
                    "format": "date-time",
                    "description": "ISO-8601 time. Only messages received at or after it.",
                },
                "endDateTime": {
                    "type": "string",
                    "format": "date-time",
                    "description": "ISO-8601 time. Only messages received at or before it.",
                },
                "maxResults": _MAX_RESULTS,
            },
        },
        required_scopes=frozenset({"Mail.Read"}),
    ),
    ToolDefinition(
        name="mail.messages.listUnread",
        description="List unread messages of a folder, newest first.",
        input_schema={
            "type": "object",
            "properties": {"folderId": _FOLDER_ID, "maxResults": _MAX_RESULTS},
        },
        required_scopes=frozenset({"Mail.Read"}),
    ),
    ToolDefinition(
        name="mail.message.markRead",
        description="Mark a message as read or unread.",
        input_schema={
            "type": "object",
            "required": ["messageId"],
            "properties": {
                "messageId": {"type": "string", "description": "ID of the message."},
                "isRead": {
                    "type": "boolean",
                    "description": "New read state. Default: true.",
                    "default": True,
                },
            },
        },
        required_scopes=frozenset({"Mail.ReadWrite"}),
    ),
    ToolDefinition(
        name="mail.attachment.download",
        description="Download one attachment of a message and store it at the target path.",
        input_schema={
            "type": "object",
            "required": ["messageId", "attachmentId", "targetPath"],
            "properties": {
                "messageId": {"type": "string", "description": "ID of the message."},
                "attachmentId": {"type": "string", "description": "ID of the attachment."},
                "targetPath": {
                    "type": "string",
                    "description": "Where to store the attachment. Relative paths resolve against the configured attachment directory.",
                },
            },
        },
        required_scopes=frozenset({"Mail.Read"}),
    ),
    ToolDefinition(
        name="mail.message.reply",
        description="Reply (optionally reply-all) to an existing message with text or HTML content.",
        input_schema={
            "type": "object",
            "required": ["messageId"],
            "properties": {
                "messageId": {"type": "string", "description": "ID of the message to reply to."},
                "comment": {
                    "type": "string",
                    "description": "Optional plain-text comment placed above the reply.",
                },
                "body": {
                    "type": "string",
                    "description": "Optional full reply body, interpreted according to contentType.",
                },
                "contentType": _CONTENT_TYPE,
                "replyAll": {
                    "type": "boolean",
                    "description": "true to reply to all recipients. Default: false.",
                },
            },
        },
        required_scopes=frozenset({"Mail.Send"}),
    ),
    ToolDefinition(
        name="calendar.events.list",
        description="List calendar events within a time range, ordered by start time.",
        input_schema={
            "type": "object",
            "required": ["startDateTime", "endDateTime"],
            "properties": {
                "startDateTime": {
                    "type": "string",
                    "format": "date-time",
                    "description": "ISO-8601 start time.",
                },
                "endDateTime": {
                    "type": "string",
                    "format": "date-time",
                    "description": "ISO-8601 end time.",
                },
            },
        },
        required_scopes=frozenset({"Calendars.Read"}),
    ),
    ToolDefinition(
        name="calendar.event.create",
        description="Create a calendar event, optionally as a Teams meeting, and invite attendees.",
        input_schema={
            "type": "object",
            "required": ["subject", "startDateTime", "endDateTime"],
            "properties": {
                "subject": {"type": "string", "description": "Event title."},
                "startDateTime": {
                    "type": "string",
                    "format": "date-time",
                    "description": "ISO-8601 start time.",
                },
                "endDateTime": {
                    "type": "string",
                    "format": "date-time",
                    "description": "ISO-8601 end time.",
                },
                "timezone": {
                    "type": "string",
                    "description": "Time zone of start and end. Default: UTC.",
                },
                "body": {"type": "string", "description": "Optional event description."},
                "contentType": _CONTENT_TYPE,
                "attendees": {
                    "type": "array",
                    "items": {
                        "description": "Email address, or an object with address/email and an optional name and type."
                    },
                    "description": "Attendees to invite. Entries without an address are ignored.",
                },
                "teams": {
                    "type": "boolean",
                    "description": "Create a Teams meeting. Overrides isOnlineMeeting and onlineMeetingProvider.",
                },
                "location": {
                    "description": "Location display name, or a Graph location object.",
                },
                "reminderMinutesBeforeStart": {
                    "type": "integer",
                    "minimum": 0,
                    "description": "Reminder offset in minutes.",
                },
                "allowNewTimeProposals": {
                    "type": "boolean",
                    "description": "Whether invitees may propose a new time.",
                },
                "isOnlineMeeting": {"type": "boolean", "description": "Create an online meeting."},
                "onlineMeetingProvider": {
                    "type": "string",
                    "description": "Online meeting provider, e.g. teamsForBusiness.",
                },
            },
        },
        required_scopes=frozenset({"Calendars.ReadWrite"}),
    ),
)

_DEFINITIONS_BY_NAME = {definition.name: definition for definition in TOOL_DEFINITIONS}


def get_tool_definition(name: str) -> ToolDefinition | None:
    return _DEFINITIONS_BY_NAME.get(name)


def enabled_definitions(settings: M365Settings | None = None) -> list[ToolDefinition]:
    """Definitions whose namespace is switched on in ``settings`` (all when ``None``)."""
    if settings is None:
        return list(TOOL_DEFINITIONS)
    namespaces = settings.enabled_namespaces()
    return [definition for definition in TOOL_DEFINITIONS if definition.namespace in namespaces]


def create_manifest(settings: M365Settings | None = None) -> dict[str, Any]:
    """Build the manifest handed to the agent.

    Every call returns an independent deep copy; mutating it never affects
    the registered definitions.

    Args:
        settings: Used to drop tools of disabled namespaces. All tools if ``None``.

    Returns:
        ``{"namespace": "m365", "version": ..., "tools": [...]}``.
    """
    return {
        "namespace": NAMESPACE,
        "version": MANIFEST_VERSION,
        "tools": [definition.to_dict() for definition in enabled_definitions(settings)],
    }


@lru_cache(maxsize=None)
def get_input_validator(name: str) -> Validator:
    """Validator for a tool's arguments, derived from its input schema.

    Raises:
        KeyError: If no tool of that name is defined.
    """
    definition = _DEFINITIONS_BY_NAME[name]
    model_name = "".join(part[:1].upper() + part[1:] for part in name.split(".")) + "Input"
    return convert(definition.input_schema, model_name)
