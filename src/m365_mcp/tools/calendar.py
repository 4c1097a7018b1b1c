"""Calendar tool handlers."""

from typing import Any

from m365_mcp.errors import InputValidationError
from m365_mcp.helpers import mask_fields, safe_json
from m365_mcp.tools.context import ToolContext

# Optional create-event inputs and the client keyword each maps to.
_EVENT_OPTIONS = {
    "body": "body",
    "contentType": "content_type",
    "timezone": "timezone",
    "attendees": "attendees",
    "teams": "teams",
    "location": "location",
    "reminderMinutesBeforeStart": "reminder_minutes_before_start",
    "allowNewTimeProposals": "allow_new_time_proposals",
    "isOnlineMeeting": "is_online_meeting",
    "onlineMeetingProvider": "online_meeting_provider",
}


def _time_bounds(data: dict[str, Any], action: str) -> tuple[str, str]:
    start, end = data.get("startDateTime"), data.get("endDateTime")
    if not isinstance(start, str) or not isinstance(end, str) or not start or not end:
        raise InputValidationError(f"startDateTime and endDateTime are required to {action}.")
    return start, end


async def handle_events_list(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """calendar.events.list: events between two times, by start ascending."""
    ctx.logger.info("M365 calendar.events.list invoked with input: %s", safe_json(data))
    start, end = _time_bounds(data, "list calendar events")

    events = await ctx.client.list_calendar_events(start, end)
    return {"startDateTime": start, "endDateTime": end, "count": len(events), "events": events}


async def handle_event_create(data: dict[str, Any], ctx: ToolContext) -> dict[str, Any]:
    """calendar.event.create: create an event and invite its attendees."""
    ctx.logger.info(
        "M365 calendar.event.create invoked with input: %s",
        safe_json(mask_fields(data, {"body": "[provided]"})),
    )
    if not data.get("subject"):
        raise InputValidationError("subject is required to create a calendar event.")
    start, end = _time_bounds(data, "create a calendar event")

    options = {
        keyword: data[name]
        for name, keyword in _EVENT_OPTIONS.items()
        if data.get(name) is not None
    }
    return await ctx.client.create_calendar_event(data["subject"], start, end, **options)
