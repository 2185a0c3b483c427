"""Google Calendar collection: colour categories, time allocation and free slots."""

from __future__ import annotations

import asyncio
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence

import structlog
from bs4 import BeautifulSoup

from .config import Settings
from .google_client import CALENDAR_SCOPES, build_service
from .models import Attendee, CalendarEvent, CalendarSummary, EventCategory, FreeSlot, MeetingKind
from .utils import get_zone, now_in_timezone, parse_timestamp

LOGGER = structlog.get_logger(__name__)

# Google Calendar colorId -> activity bucket.
COLOR_CATEGORIES: Dict[str, EventCategory] = {
    "1": EventCategory.PRODUCT,    # Lavender
    "2": EventCategory.GROWTH,     # Sage
    "3": EventCategory.PRODUCT,    # Grape
    "4": EventCategory.PERSONAL,   # Flamingo
    "5": EventCategory.OPS,        # Banana
    "6": EventCategory.OPS,        # Tangerine
    "7": EventCategory.MEETING,    # Peacock
    "8": EventCategory.OPS,        # Graphite
    "9": EventCategory.MEETING,    # Blueberry
    "10": EventCategory.GROWTH,    # Basil
    "11": EventCategory.PERSONAL,  # Tomato
}

VIDEO_LINK_PATTERN = re.compile(
    r"(zoom\.us/|meet\.google\.com/|teams\.microsoft\.com/|teams\.live\.com/|webex\.com/)",
    re.IGNORECASE,
)
MIN_FREE_SLOT_MINUTES = 30
PAGE_SIZE = 250


def classify_color(color_id: Optional[str]) -> EventCategory:
    """Map a colour id to its category; uncoloured events count as meetings."""
    if not color_id:
        return EventCategory.MEETING
    return COLOR_CATEGORIES.get(str(color_id), EventCategory.MEETING)


def _description_text(description: Optional[str]) -> str:
    if not description:
        return ""
    if "<" in description:
        return BeautifulSoup(description, "html.parser").get_text(" ", strip=True)
    return description


def meeting_kind(raw: Dict[str, Any]) -> MeetingKind:
    """External if a location is set, video if a call link is present, else internal."""
    if (raw.get("location") or "").strip():
        return MeetingKind.EXTERNAL
    if raw.get("hangoutLink") or raw.get("conferenceData"):
        return MeetingKind.VIDEO
    description = _description_text(raw.get("description"))
    if VIDEO_LINK_PATTERN.search(description):
        return MeetingKind.VIDEO
    return MeetingKind.INTERNAL


def _event_bound(value: Dict[str, Any], tz) -> tuple[Optional[datetime], bool]:
    if value.get("dateTime"):
        return parse_timestamp(value["dateTime"], tz), False
    if value.get("date"):
        try:
            day = date.fromisoformat(value["date"])
        except ValueError:
            return None, True
        return datetime.combine(day, time.min, tzinfo=tz), True
    return None, False


def parse_event(raw: Dict[str, Any], tz) -> Optional[CalendarEvent]:
    """Convert a Calendar API event resource; None for cancelled or malformed ones."""
    if raw.get("status") == "cancelled":
        return None

    start, all_day = _event_bound(raw.get("start") or {}, tz)
    end, _ = _event_bound(raw.get("end") or {}, tz)
    if start is None:
        return None
    if end is None or end < start:
        end = start

    attendees = [
        Attendee(
            name=item.get("displayName") or (item.get("email") or "").split("@")[0],
            email=item.get("email") or "",
        )
        for item in raw.get("attendees") or []
        if not item.get("resource")
    ]

    category = classify_color(raw.get("colorId"))
    kind = meeting_kind(raw) if category is EventCategory.MEETING else None

    return CalendarEvent(
        title=(raw.get("summary") or "(제목 없음)").strip(),
        start=start,
        end=end,
        duration_minutes=int((end - start).total_seconds() // 60),
        attendees=attendees,
        category=category,
        meeting_kind=kind,
        is_external=kind is MeetingKind.EXTERNAL,
        all_day=all_day,
        location=(raw.get("location") or None),
    )


def weekly_hours(events: Iterable[CalendarEvent], today: date, tz) -> Dict[str, float]:
    """Hours per category over the seven days ending ``today``; all-day events excluded."""
    first_day = today - timedelta(days=6)
    totals: Dict[str, float] = {category.value: 0.0 for category in EventCategory}
    for event in events:
        if event.all_day:
            continue
        day = event.start.astimezone(tz).date()
        if first_day <= day <= today:
            totals[event.category.value] += event.duration_minutes / 60
    return {name: round(hours, 1) for name, hours in totals.items()}


def free_slots(
    events: Sequence[CalendarEvent],
    day: date,
    tz,
    *,
    start_hour: int = 9,
    end_hour: int = 18,
    min_minutes: int = MIN_FREE_SLOT_MINUTES,
) -> List[FreeSlot]:
    """Gaps inside working hours on ``day`` not covered by timed events."""
    window_start = datetime.combine(day, time(hour=start_hour), tzinfo=tz)
    window_end = datetime.combine(day, time(hour=end_hour), tzinfo=tz)

    busy = sorted(
        (max(event.start, window_start), min(event.end, window_end))
        for event in events
        if not event.all_day and event.end > window_start and event.start < window_end
    )

    slots: List[FreeSlot] = []
    cursor = window_start
    for busy_start, busy_end in busy:
        if busy_start > cursor and (busy_start - cursor) >= timedelta(minutes=min_minutes):
            slots.append(FreeSlot(start=cursor, end=busy_start))
        cursor = max(cursor, busy_end)
    if window_end > cursor and (window_end - cursor) >= timedelta(minutes=min_minutes):
        slots.append(FreeSlot(start=cursor, end=window_end))
    return slots


def summarize_calendar(
    events: Sequence[CalendarEvent],
    now: datetime,
    tz,
    *,
    start_hour: int = 9,
    end_hour: int = 18,
) -> CalendarSummary:
    today = now.astimezone(tz).date()
    todays = [event for event in events if event.start.astimezone(tz).date() == today]
    upcoming = [event for event in events if event.start.astimezone(tz).date() > today]
    return CalendarSummary(
        today=todays,
        upcoming=upcoming,
        weekly_hours=weekly_hours(events, today, tz),
        free_slots=free_slots(todays, today, tz, start_hour=start_hour, end_hour=end_hour),
    )


def _list_events(service: Any, time_min: datetime, time_max: datetime) -> List[Dict[str, Any]]:
    """Blocking, paginated events.list call against the delegated user's primary calendar."""
    items: List[Dict[str, Any]] = []
    page_token: Optional[str] = None
    while True:
        response = service.events().list(
            calendarId="primary",
            timeMin=time_min.isoformat(),
            timeMax=time_max.isoformat(),
            singleEvents=True,
            orderBy="startTime",
            maxResults=PAGE_SIZE,
            pageToken=page_token,
        ).execute()
        items.extend(response.get("items", []))
        page_token = response.get("nextPageToken")
        if not page_token:
            return items


async def collect_calendar(
    settings: Settings,
    *,
    now: Optional[datetime] = None,
    service: Optional[Any] = None,
) -> Optional[CalendarSummary]:
    """Return today's and upcoming events, or None when the calendar is not reachable."""
    if not settings.google_calendar_subject:
        LOGGER.info("calendar.skipped", reason="subject email not configured")
        return None

    tz = get_zone(settings.timezone)
    now = now or now_in_timezone(settings.timezone)
    time_min = now - timedelta(days=settings.calendar_days_back)
    time_max = now + timedelta(days=settings.calendar_days_forward)

    try:
        service = service or build_service(
            settings,
            "calendar",
            "v3",
            CALENDAR_SCOPES,
            subject=settings.google_calendar_subject,
        )
        if service is None:
            LOGGER.info("calendar.skipped", reason="google credentials not configured")
            return None

        LOGGER.info("calendar.fetch.start", time_min=time_min.isoformat(), time_max=time_max.isoformat())
        raw_events = await asyncio.to_thread(_list_events, service, time_min, time_max)

        events = [event for event in (parse_event(raw, tz) for raw in raw_events) if event is not None]
        summary = summarize_calendar(
            events,
            now,
            tz,
            start_hour=settings.workday_start_hour,
            end_hour=settings.workday_end_hour,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("calendar.failed", error=str(exc))
        return None

    LOGGER.info(
        "calendar.fetch.success",
        events=len(events),
        today=len(summary.today),
        upcoming=len(summary.upcoming),
    )
    return summary
