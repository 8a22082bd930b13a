"""Calendar event creation for appointment actions (Google Calendar REST API)."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from typing import Any, Optional
from urllib.parse import quote

import httpx

from automation_engine.core.exceptions import ChannelDeliveryError
from automation_engine.core.models import CalendarChannelConfig

logger = logging.getLogger(__name__)

GOOGLE_EVENTS_URL = "https://www.googleapis.com/calendar/v3/calendars/{calendar_id}/events"

DEFAULT_DURATION_MINUTES = 60


@dataclass
class CalendarEvent:
    """A calendar entry derived from an appointment."""

    title: str
    start: datetime
    end: datetime
    description: Optional[str] = None
    location: Optional[str] = None
    attendees: list[str] = field(default_factory=list)


def _parse_start(day: Any, at: Any) -> Optional[datetime]:
    if isinstance(day, datetime):
        return day
    try:
        parsed_day = day if isinstance(day, date) else date.fromisoformat(str(day)[:10])
    except ValueError:
        return None
    try:
        parsed_time = time.fromisoformat(str(at)) if at else time(9, 0)
    except ValueError:
        return None
    return datetime.combine(parsed_day, parsed_time)


def event_from_appointment(values: dict[str, Any]) -> Optional[CalendarEvent]:
    """
    Build an event from appointment column values.

    Returns None when the appointment has no parseable date; ``duration`` is
    read as minutes.
    """
    start = _parse_start(values.get("date"), values.get("time"))
    if start is None:
        return None
    try:
        minutes = int(values.get("duration") or DEFAULT_DURATION_MINUTES)
    except (TypeError, ValueError):
        minutes = DEFAULT_DURATION_MINUTES
    return CalendarEvent(
        title=str(values.get("title") or "Appointment"),
        start=start,
        end=start + timedelta(minutes=minutes),
        description=values.get("notes"),
        location=values.get("address"),
    )


class CalendarSender(ABC):
    """Creates events in a tenant's calendar."""

    @abstractmethod
    async def create_event(self, config: CalendarChannelConfig, event: CalendarEvent) -> Optional[str]:
        """
        Create an event.

        Returns:
            Provider event id, if any

        Raises:
            ChannelDeliveryError: If the provider rejects the request
        """
        pass


class GoogleCalendarSender(CalendarSender):
    """Google Calendar v3 events.insert with an OAuth access token."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    async def create_event(self, config: CalendarChannelConfig, event: CalendarEvent) -> Optional[str]:
        if config.provider != "google":
            raise ChannelDeliveryError("calendar", f"Unsupported calendar provider '{config.provider}'")
        token = config.credentials.get("access_token")
        if not token:
            raise ChannelDeliveryError("calendar", "Missing access_token in calendar credentials")

        body: dict[str, Any] = {
            "summary": event.title,
            "start": {"dateTime": event.start.isoformat(), "timeZone": config.timezone},
            "end": {"dateTime": event.end.isoformat(), "timeZone": config.timezone},
        }
        if event.description:
            body["description"] = event.description
        if event.location:
            body["location"] = event.location
        if event.attendees:
            body["attendees"] = [{"email": address} for address in event.attendees]

        url = GOOGLE_EVENTS_URL.format(calendar_id=quote(config.calendar_id or "primary", safe=""))
        response = await self.client.post(
            url,
            json=body,
            headers={"Authorization": f"Bearer {token}"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise ChannelDeliveryError("calendar", response.text, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            data = None
        event_id = data.get("id") if isinstance(data, dict) else None
        logger.info(f"Created calendar event {event_id} in {config.calendar_id or 'primary'}")
        return event_id
