import asyncio
from datetime import date, datetime

from ceo_report_agent.google_calendar import (
    classify_color,
    collect_calendar,
    free_slots,
    meeting_kind,
    parse_event,
    weekly_hours,
)
from ceo_report_agent.models import EventCategory, MeetingKind


def _raw(summary, start, end, **extra):
    return {"summary": summary, "start": {"dateTime": start}, "end": {"dateTime": end}, **extra}


class FakeListRequest:
    def __init__(self, payload):
        self._payload = payload

    def execute(self):
        return self._payload


class FakeEvents:
    def __init__(self, pages):
        self._pages = pages
        self.calls = []

    def list(self, **kwargs):
        self.calls.append(kwargs)
        return FakeListRequest(self._pages[len(self.calls) - 1])


class FakeCalendarService:
    def __init__(self, pages):
        self.events_resource = FakeEvents(pages)

    def events(self):
        return self.events_resource


def test_classify_color():
    assert classify_color("9") is EventCategory.MEETING
    assert classify_color("10") is EventCategory.GROWTH
    assert classify_color("5") is EventCategory.OPS
    assert classify_color("11") is EventCategory.PERSONAL
    assert classify_color("3") is EventCategory.PRODUCT
    assert classify_color(None) is EventCategory.MEETING
    assert classify_color("42") is EventCategory.MEETING


def test_meeting_kind_variants():
    assert meeting_kind({"location": "강남역 카페"}) is MeetingKind.EXTERNAL
    assert meeting_kind({"hangoutLink": "https://meet.google.com/abc-defg-hij"}) is MeetingKind.VIDEO
    assert meeting_kind({"description": '<a href="https://zoom.us/j/123">Join</a>'}) is MeetingKind.VIDEO
    assert meeting_kind({"description": "주간 회의"}) is MeetingKind.INTERNAL


def test_parse_timed_event(seoul):
    raw = _raw(
        "투자자 미팅",
        "2024-01-11T10:00:00+09:00",
        "2024-01-11T11:30:00+09:00",
        location="여의도",
        attendees=[
            {"email": "ceo@example.com", "displayName": "CEO"},
            {"email": "kim@fund.com"},
            {"email": "room-1@resource.calendar.google.com", "resource": True},
        ],
    )

    event = parse_event(raw, seoul)

    assert event.duration_minutes == 90
    assert event.category is EventCategory.MEETING
    assert event.meeting_kind is MeetingKind.EXTERNAL
    assert event.is_external
    assert [(a.name, a.email) for a in event.attendees] == [("CEO", "ceo@example.com"), ("kim", "kim@fund.com")]


def test_parse_all_day_and_cancelled(seoul):
    all_day = parse_event(
        {"summary": "휴가", "start": {"date": "2024-01-12"}, "end": {"date": "2024-01-13"}, "colorId": "11"},
        seoul,
    )
    cancelled = parse_event(_raw("x", "2024-01-11T10:00:00+09:00", "2024-01-11T11:00:00+09:00", status="cancelled"), seoul)

    assert all_day.all_day
    assert all_day.category is EventCategory.PERSONAL
    assert all_day.meeting_kind is None
    assert all_day.duration_minutes == 24 * 60
    assert cancelled is None


def test_free_slots_subtracts_busy_intervals(seoul):
    events = [
        parse_event(_raw("a", "2024-01-11T10:00:00+09:00", "2024-01-11T11:00:00+09:00"), seoul),
        parse_event(_raw("b", "2024-01-11T10:30:00+09:00", "2024-01-11T12:00:00+09:00"), seoul),
        parse_event(_raw("c", "2024-01-11T14:00:00+09:00", "2024-01-11T14:15:00+09:00"), seoul),
        parse_event(_raw("d", "2024-01-11T14:30:00+09:00", "2024-01-11T17:45:00+09:00"), seoul),
    ]

    slots = free_slots(events, date(2024, 1, 11), seoul)

    assert [(f"{s.start:%H:%M}", f"{s.end:%H:%M}") for s in slots] == [("09:00", "10:00"), ("12:00", "14:00")]


def test_weekly_hours_by_category(seoul):
    events = [
        parse_event(_raw("a", "2024-01-05T10:00:00+09:00", "2024-01-05T12:00:00+09:00", colorId="10"), seoul),
        parse_event(_raw("b", "2024-01-10T10:00:00+09:00", "2024-01-10T10:30:00+09:00"), seoul),
        parse_event(_raw("old", "2024-01-01T10:00:00+09:00", "2024-01-01T18:00:00+09:00"), seoul),
    ]

    hours = weekly_hours(events, date(2024, 1, 11), seoul)

    assert hours["growth"] == 2.0
    assert hours["meeting"] == 0.5
    assert hours["ops"] == 0.0


def test_collect_calendar_requires_subject(settings):
    assert asyncio.run(collect_calendar(settings)) is None


def test_collect_calendar_splits_today_and_upcoming(make_settings, fixed_now):
    settings = make_settings(GOOGLE_CALENDAR_SUBJECT="ceo@example.com")
    pages = [
        {
            "items": [
                _raw("지난주 회의", "2024-01-08T10:00:00+09:00", "2024-01-08T11:00:00+09:00"),
                _raw("오늘 스탠드업", "2024-01-11T09:30:00+09:00", "2024-01-11T10:00:00+09:00"),
            ],
            "nextPageToken": "page-2",
        },
        {"items": [_raw("다음 주 리뷰", "2024-01-15T15:00:00+09:00", "2024-01-15T16:00:00+09:00", colorId="1")]},
    ]
    service = FakeCalendarService(pages)

    summary = asyncio.run(collect_calendar(settings, now=fixed_now, service=service))

    assert [event.title for event in summary.today] == ["오늘 스탠드업"]
    assert [event.title for event in summary.upcoming] == ["다음 주 리뷰"]
    assert summary.weekly_hours["meeting"] == 1.5
    assert service.events_resource.calls[1]["pageToken"] == "page-2"
    assert all(call["singleEvents"] for call in service.events_resource.calls)


def test_collect_calendar_swallows_api_errors(make_settings, fixed_now):
    class BrokenService:
        def events(self):
            raise RuntimeError("invalid_grant")

    settings = make_settings(GOOGLE_CALENDAR_SUBJECT="ceo@example.com")

    assert asyncio.run(collect_calendar(settings, now=fixed_now, service=BrokenService())) is None


def test_parse_event_uses_timezone_for_naive_times(seoul):
    event = parse_event(_raw("naive", "2024-01-11T10:00:00", "2024-01-11T10:45:00"), seoul)

    assert event.start == datetime(2024, 1, 11, 10, 0, tzinfo=seoul)
    assert event.duration_minutes == 45


def test_collect_calendar_swallows_malformed_events(make_settings, fixed_now):
    settings = make_settings(GOOGLE_CALENDAR_SUBJECT="ceo@example.com")
    malformed = {"summary": 42, "start": {"dateTime": "2024-01-11T09:00:00+09:00"}, "end": {"dateTime": "2024-01-11T10:00:00+09:00"}}
    service = FakeCalendarService([{"items": [malformed]}])

    assert asyncio.run(collect_calendar(settings, now=fixed_now, service=service)) is None
