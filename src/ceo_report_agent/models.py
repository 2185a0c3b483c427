"""Pydantic models representing the data collected for one report run."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class RevenueDay(BaseModel):
    """One spreadsheet row: a day's revenue split by category."""

    date: str
    total: int
    breakdown: Dict[str, int] = Field(default_factory=dict)
    has_data: bool

    @classmethod
    def from_breakdown(cls, date: str, breakdown: Dict[str, int]) -> "RevenueDay":
        total = sum(breakdown.values())
        return cls(date=date, total=total, breakdown=dict(breakdown), has_data=total != 0)


class RevenueSummary(BaseModel):
    """Recent daily totals plus month-to-date statistics."""

    sheet_name: str
    days: List[RevenueDay] = Field(default_factory=list)
    dates_with_data: List[str] = Field(default_factory=list)
    empty_dates: List[str] = Field(default_factory=list)
    latest: Optional[RevenueDay] = None
    previous: Optional[RevenueDay] = None
    day_over_day_pct: Optional[float] = None
    trailing_avg_7d: int = 0
    mtd_total: int = 0
    monthly_target: int = 0
    target_pct: Optional[float] = None
    projected_month_end: int = 0


class EventCategory(str, Enum):
    """Activity bucket derived from a calendar colour."""

    MEETING = "meeting"
    PRODUCT = "product"
    OPS = "ops"
    GROWTH = "growth"
    PERSONAL = "personal"


class MeetingKind(str, Enum):
    EXTERNAL = "external"
    INTERNAL = "internal"
    VIDEO = "video"


class Attendee(BaseModel):
    name: str = ""
    email: str = ""


class CalendarEvent(BaseModel):
    """Calendar entry tagged with category and duration."""

    title: str
    start: datetime
    end: datetime
    duration_minutes: int
    attendees: List[Attendee] = Field(default_factory=list)
    category: EventCategory = EventCategory.MEETING
    meeting_kind: Optional[MeetingKind] = None
    is_external: bool = False
    all_day: bool = False
    location: Optional[str] = None


class FreeSlot(BaseModel):
    start: datetime
    end: datetime

    @property
    def minutes(self) -> int:
        return int((self.end - self.start).total_seconds() // 60)


class CalendarSummary(BaseModel):
    """Today's schedule, what comes next, and where the week's hours went."""

    today: List[CalendarEvent] = Field(default_factory=list)
    upcoming: List[CalendarEvent] = Field(default_factory=list)
    weekly_hours: Dict[str, float] = Field(default_factory=dict)
    free_slots: List[FreeSlot] = Field(default_factory=list)


class ChatMessage(BaseModel):
    """Slack message with the author already resolved to a display name."""

    channel: str
    channel_id: str = ""
    author: str
    text: str
    timestamp: str
    is_thread_reply: bool = False
    reply_count: int = 0
    is_direct: bool = False


class DocumentComment(BaseModel):
    author: str
    text: str


class DocumentPage(BaseModel):
    """Recently edited Notion page with a truncated body."""

    page_id: str
    title: str
    body_text: str = ""
    last_edited_time: str = ""
    last_edited_by: str = ""
    comments: List[DocumentComment] = Field(default_factory=list)
    depth: int = 0
    source_method: str = "search"
    url: Optional[str] = None


class DocumentStats(BaseModel):
    """Counters for a single documents collection call."""

    search_pages: int = 0
    traversal_pages: int = 0
    database_pages: int = 0
    blocks_read: int = 0
    comments_read: int = 0
    skipped: int = 0
    elapsed_seconds: float = 0.0
    timed_out: bool = False


class CollectedData(BaseModel):
    """Everything the collectors produced for one run."""

    revenue: Optional[RevenueSummary] = None
    calendar: Optional[CalendarSummary] = None
    messages: List[ChatMessage] = Field(default_factory=list)
    pages: List[DocumentPage] = Field(default_factory=list)
    document_stats: DocumentStats = Field(default_factory=DocumentStats)

    @property
    def is_empty(self) -> bool:
        return self.revenue is None and self.calendar is None and not self.messages and not self.pages


class RunSummary(BaseModel):
    """Outcome of one pipeline run, as reported by the HTTP entrypoint."""

    success: bool = True
    days: int
    counts: Dict[str, int] = Field(default_factory=dict)
    delivered: bool = False
    timestamp: str
