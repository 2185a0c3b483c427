"""Sequential orchestration of one report run: collect, prompt, summarise, deliver."""

from __future__ import annotations

from typing import Any, Optional

import structlog

from .chat import collect_chat
from .config import Settings
from .delivery import deliver_report
from .documents import collect_documents
from .google_calendar import collect_calendar
from .llm import NO_ACTIVITY, ReportWriter
from .models import CollectedData, RunSummary
from .prompt import build_prompt
from .revenue import collect_revenue
from .utils import now_in_timezone

LOGGER = structlog.get_logger(__name__)

MIN_DAYS = 1
MAX_DAYS = 30


def clamp_days(value: Any, default: int = 1) -> int:
    """Coerce a user-supplied lookback to an int within [1, 30]."""
    try:
        days = int(value)
    except (TypeError, ValueError):
        days = default
    return max(MIN_DAYS, min(MAX_DAYS, days))


async def collect_all(settings: Settings, days: int) -> CollectedData:
    """Run every collector one after another."""
    revenue = await collect_revenue(settings, days)
    calendar = await collect_calendar(settings)
    messages = await collect_chat(settings, days)
    pages, document_stats = await collect_documents(settings, days)
    return CollectedData(
        revenue=revenue,
        calendar=calendar,
        messages=messages,
        pages=pages,
        document_stats=document_stats,
    )


async def run_report(
    settings: Settings,
    days: Optional[int] = None,
    *,
    deliver: bool = True,
    writer: Optional[ReportWriter] = None,
) -> tuple[RunSummary, str]:
    """Execute the full pipeline and return the run summary with the report text."""
    days = clamp_days(days if days is not None else settings.default_days, settings.default_days)
    now = now_in_timezone(settings.timezone)
    LOGGER.info("pipeline.start", days=days)

    data = await collect_all(settings, days)

    if data.is_empty:
        LOGGER.warning("pipeline.no_data")
        report = NO_ACTIVITY
    else:
        prompt = build_prompt(data, days=days, now=now)
        report = await (writer or ReportWriter(settings)).write(prompt)

    delivered = await deliver_report(settings, report, days=days, now=now) if deliver else False

    summary = RunSummary(
        success=True,
        days=days,
        counts={
            "messages": len(data.messages),
            "documents": len(data.pages),
            "revenue_days": len(data.revenue.days) if data.revenue else 0,
            "events_today": len(data.calendar.today) if data.calendar else 0,
            "events_upcoming": len(data.calendar.upcoming) if data.calendar else 0,
        },
        delivered=delivered,
        timestamp=now.isoformat(),
    )
    LOGGER.info("pipeline.finish", delivered=delivered, **summary.counts)
    return summary, report
