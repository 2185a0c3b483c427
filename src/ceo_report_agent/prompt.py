"""Prompt assembly: renders every collected section into one instruction block."""

from __future__ import annotations

import textwrap
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Sequence

from .models import CalendarEvent, CalendarSummary, ChatMessage, CollectedData, DocumentPage, RevenueSummary
from .utils import truncate

NO_DATA = "⚠ 데이터 없음"
MESSAGE_CHAR_LIMIT = 500
SECTION_CHAR_LIMITS = {
    "revenue": 6_000,
    "calendar": 8_000,
    "chat": 60_000,
    "documents": 40_000,
}
UPCOMING_LIMIT = 15
WEEKDAYS_KO = ("월", "화", "수", "목", "금", "토", "일")
CATEGORY_LABELS = {
    "meeting": "미팅",
    "product": "제품",
    "ops": "운영",
    "growth": "성장",
    "personal": "개인",
}
MEETING_KIND_LABELS = {"external": "외부", "internal": "내부", "video": "화상"}


def format_money(amount: int) -> str:
    """Korean monetary shorthand: 억 above 100,000,000, 만 above 10,000, digits below."""
    sign = "-" if amount < 0 else ""
    value = abs(amount)
    if value >= 100_000_000:
        return f"{sign}{value / 100_000_000:.1f}억"
    if value >= 10_000:
        return f"{sign}{value // 10_000:,}만"
    return f"{sign}{value:,}"


def _period_label(days: int, today: date) -> str:
    """Lookback window ending yesterday, e.g. ``어제(2024-01-10)``."""
    last = today - timedelta(days=1)
    if days <= 1:
        return f"어제({last.isoformat()})"
    first = today - timedelta(days=days)
    return f"최근 {days}일({first.isoformat()} ~ {last.isoformat()})"


def _short_date(value: datetime) -> str:
    return f"{value:%m/%d}({WEEKDAYS_KO[value.weekday()]})"


# ---- revenue --------------------------------------------------------------


def _breakdown_text(breakdown: Dict[str, int], limit: int = 5) -> str:
    items = sorted(((name, amount) for name, amount in breakdown.items() if amount), key=lambda item: -item[1])
    if len(items) <= 1:
        return ""
    shown = ", ".join(f"{name} {format_money(amount)}" for name, amount in items[:limit])
    if len(items) > limit:
        shown += f" 외 {len(items) - limit}개"
    return f" ({shown})"


def format_revenue_section(revenue: Optional[RevenueSummary], today: date) -> str:
    if revenue is None:
        return f"{NO_DATA}: 매출 시트를 읽을 수 없거나 이번 달 데이터가 없습니다."

    lines = [f"기준 시트: {revenue.sheet_name} (단위: 원)"]
    yesterday = (today - timedelta(days=1)).isoformat()
    if yesterday not in revenue.dates_with_data:
        lines.append(f"⚠ 어제({yesterday}) 매출 데이터 없음")

    if revenue.days:
        lines.append("일별 매출:")
        for day in reversed(revenue.days):
            lines.append(f"- {day.date}: {format_money(day.total)}{_breakdown_text(day.breakdown)}")
    else:
        lines.append("일별 매출: 입력된 매출이 없습니다.")

    if revenue.empty_dates:
        lines.append(f"⚠ 매출 0 또는 미입력: {', '.join(revenue.empty_dates[-7:])}")

    if revenue.day_over_day_pct is not None:
        lines.append(f"전일 대비: {revenue.day_over_day_pct:+.1f}%")
    else:
        lines.append("전일 대비: 비교할 데이터 부족")
    lines.append(f"최근 7일 평균: {format_money(revenue.trailing_avg_7d)}")

    mtd = f"월 누적(MTD): {format_money(revenue.mtd_total)}"
    if revenue.monthly_target > 0 and revenue.target_pct is not None:
        mtd += f" / 목표 {format_money(revenue.monthly_target)} ({revenue.target_pct:.1f}% 달성)"
    lines.append(mtd)
    lines.append(f"월말 예상(7일 평균 기준): {format_money(revenue.projected_month_end)}")
    return "\n".join(lines)


# ---- calendar -------------------------------------------------------------


def _event_line(event: CalendarEvent, with_date: bool = False) -> str:
    if event.all_day:
        when = "종일"
    else:
        when = f"{event.start:%H:%M}-{event.end:%H:%M}"
    if with_date:
        when = f"{_short_date(event.start)} {when}"

    tags = [CATEGORY_LABELS.get(event.category.value, event.category.value)]
    if event.meeting_kind is not None:
        tags.append(MEETING_KIND_LABELS[event.meeting_kind.value])
    line = f"- {when} {event.title} [{'/'.join(tags)}]"
    if event.attendees:
        line += f" (참석자 {len(event.attendees)}명)"
    if event.location:
        line += f" @ {event.location}"
    return line


def format_calendar_section(calendar: Optional[CalendarSummary]) -> str:
    if calendar is None:
        return f"{NO_DATA}: 캘린더가 연결되지 않았습니다."

    lines = ["오늘 일정:"]
    lines.extend(_event_line(event) for event in calendar.today)
    if not calendar.today:
        lines.append("- 없음")

    lines.append("다가오는 일정:")
    lines.extend(_event_line(event, with_date=True) for event in calendar.upcoming[:UPCOMING_LIMIT])
    if not calendar.upcoming:
        lines.append("- 없음")
    elif len(calendar.upcoming) > UPCOMING_LIMIT:
        lines.append(f"- 외 {len(calendar.upcoming) - UPCOMING_LIMIT}건")

    allocation = ", ".join(
        f"{CATEGORY_LABELS.get(name, name)} {hours:g}시간" for name, hours in calendar.weekly_hours.items()
    )
    lines.append(f"최근 7일 시간 배분: {allocation or '기록 없음'}")

    if calendar.free_slots:
        slots = ", ".join(f"{slot.start:%H:%M}-{slot.end:%H:%M}" for slot in calendar.free_slots)
        lines.append(f"오늘 빈 시간: {slots}")
    else:
        lines.append("오늘 빈 시간: 없음")
    return "\n".join(lines)


# ---- chat -----------------------------------------------------------------


def format_chat_section(messages: Sequence[ChatMessage], now: datetime) -> str:
    if not messages:
        return f"{NO_DATA}: 수집된 Slack 메시지가 없습니다."

    grouped: Dict[str, List[ChatMessage]] = {}
    for message in messages:
        grouped.setdefault(message.channel, []).append(message)

    tz = now.tzinfo
    lines: List[str] = []
    for channel, channel_messages in grouped.items():
        lines.append(f"[{channel}]")
        for message in channel_messages:
            sent = datetime.fromtimestamp(float(message.timestamp), tz=tz)
            text = truncate(message.text.replace("\n", " "), MESSAGE_CHAR_LIMIT)
            prefix = "  ↳ " if message.is_thread_reply else "- "
            replies = f" (답글 {message.reply_count})" if message.reply_count else ""
            lines.append(f"{prefix}{message.author} {sent:%m/%d %H:%M}: {text}{replies}")
    return "\n".join(lines)


# ---- documents ------------------------------------------------------------


def _document_block(page: DocumentPage) -> str:
    header = f"### {page.title} (수정: {page.last_edited_time[:16].replace('T', ' ')}, 편집: {page.last_edited_by})"
    parts = [header]
    if page.body_text:
        parts.append(page.body_text)
    for comment in page.comments:
        parts.append(f"💬 {comment.author}: {comment.text}")
    return "\n".join(parts)


def format_documents_section(pages: Sequence[DocumentPage]) -> str:
    if not pages:
        return f"{NO_DATA}: 최근 수정된 Notion 문서가 없습니다."
    return "\n\n".join(_document_block(page) for page in pages)


# ---- prompt ---------------------------------------------------------------


def _capped(name: str, text: str) -> str:
    return truncate(text, SECTION_CHAR_LIMITS[name], marker="\n…(이하 생략)")


def build_prompt(data: CollectedData, *, days: int, now: datetime) -> str:
    """Assemble the full report prompt. Pure function of its inputs."""
    today = now.date()
    period = _period_label(days, today)

    revenue = _capped("revenue", format_revenue_section(data.revenue, today))
    calendar = _capped("calendar", format_calendar_section(data.calendar))
    chat = _capped("chat", format_chat_section(data.messages, now))
    documents = _capped("documents", format_documents_section(data.pages))

    template = textwrap.dedent(
        """
        당신은 CEO의 Chief of Staff로서 조직 전체를 모니터링합니다.
        아래는 {period} 동안 수집된 매출, 일정, Slack 대화, Notion 문서입니다.

        ## 💰 매출 데이터
        {revenue}

        ## 📅 일정 데이터
        {calendar}

        ## 💬 Slack 대화 ({message_count}건)
        {chat}

        ## 📝 Notion 문서 ({page_count}건)
        {documents}

        ---
        다음 형식으로 분석해주세요:

        📌 긴급 이슈 (우선순위 Top 3)
        🔴 [팀명] 이슈 제목
           - 상황: 간단 요약
           - 영향: 비즈니스 임팩트
           - 추천 액션: CEO가 할 일

        🟡 주의 필요
           (같은 형식)

        🟢 칭찬할 점
           - 팀원 이름
           - 기여 내용
           - 추천 액션

        ⚠️ 패턴 감지
           - 반복되는 문제
           - 소통 단절 징후
           - 방향성 혼란

        💰 매출 인사이트
           - 전일 대비, 월 목표 대비 상황과 원인 추정

        📅 일정 인사이트
           - 오늘 꼭 챙길 일정, 시간 배분의 문제, 빈 시간 활용 제안

        작성 규칙:
        - 굵은 글씨(**, *, __) 등 마크다운 강조를 사용하지 마세요.
        - 전체 분량은 2,000자 이내로 작성하세요.
        - 금액은 억/만 단위로 표기하세요 (예: 1.2억, 3,400만).
        - 데이터가 없는 섹션은 "데이터 없음"이라고만 쓰고 추측하지 마세요.
        - 비즈니스 임팩트가 큰 것부터, 감정이 아닌 사실에 기반해 구체적인 액션을 제시하세요.
        - SuperWalk/DeFi/베이직 모드 관련 이슈는 특히 주의해서 살펴보세요.
        """
    ).strip()

    return template.format(
        period=period,
        revenue=revenue,
        calendar=calendar,
        chat=chat,
        documents=documents,
        message_count=len(data.messages),
        page_count=len(data.pages),
    )
