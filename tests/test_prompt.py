from datetime import date, datetime

import pytest

from ceo_report_agent.models import (
    CalendarEvent,
    CalendarSummary,
    ChatMessage,
    CollectedData,
    DocumentComment,
    DocumentPage,
    EventCategory,
    FreeSlot,
    MeetingKind,
    RevenueDay,
    RevenueSummary,
)
from ceo_report_agent.prompt import (
    NO_DATA,
    build_prompt,
    format_calendar_section,
    format_chat_section,
    format_money,
    format_revenue_section,
)


@pytest.mark.parametrize(
    "amount, expected",
    [
        (0, "0"),
        (9_999, "9,999"),
        (10_000, "1만"),
        (34_000_000, "3,400만"),
        (99_999_999, "9,999만"),
        (120_000_000, "1.2억"),
        (-25_000, "-2만"),
    ],
)
def test_format_money(amount, expected):
    assert format_money(amount) == expected


def test_empty_data_marks_every_section(fixed_now):
    prompt = build_prompt(CollectedData(), days=1, now=fixed_now)

    assert prompt.count(NO_DATA) == 4
    assert "어제(2024-01-10) 동안" in prompt
    assert "2024-01-11" not in prompt
    assert "Slack 대화 (0건)" in prompt
    assert "Notion 문서 (0건)" in prompt
    assert "2,000자" in prompt


def test_multi_day_period_label(fixed_now):
    assert "최근 7일(2024-01-04 ~ 2024-01-10)" in build_prompt(CollectedData(), days=7, now=fixed_now)


def test_prompt_keeps_domain_focus_rule(fixed_now):
    assert "SuperWalk/DeFi/베이직 모드" in build_prompt(CollectedData(), days=1, now=fixed_now)


def test_revenue_section_flags_missing_yesterday():
    revenue = RevenueSummary(
        sheet_name="2024년 1월",
        days=[RevenueDay.from_breakdown("2024-01-09", {"인앱결제": 1_500_000, "광고": 500_000})],
        latest=RevenueDay.from_breakdown("2024-01-09", {"인앱결제": 1_500_000, "광고": 500_000}),
        trailing_avg_7d=2_000_000,
        mtd_total=18_000_000,
        monthly_target=60_000_000,
        target_pct=30.0,
        projected_month_end=62_000_000,
    )

    section = format_revenue_section(revenue, date(2024, 1, 11))

    assert "⚠ 어제(2024-01-10) 매출 데이터 없음" in section
    assert "- 2024-01-09: 200만 (인앱결제 150만, 광고 50만)" in section
    assert "월 누적(MTD): 1,800만 / 목표 6,000만 (30.0% 달성)" in section
    assert "전일 대비: 비교할 데이터 부족" in section


def test_revenue_section_without_gap():
    revenue = RevenueSummary(
        sheet_name="2024년 1월",
        days=[RevenueDay.from_breakdown("2024-01-10", {"합계": 900_000})],
        dates_with_data=["2024-01-10"],
        day_over_day_pct=-12.5,
    )

    section = format_revenue_section(revenue, date(2024, 1, 11))

    assert "매출 데이터 없음" not in section
    assert "전일 대비: -12.5%" in section


def test_calendar_section(seoul):
    event = CalendarEvent(
        title="투자자 미팅",
        start=datetime(2024, 1, 11, 14, 0, tzinfo=seoul),
        end=datetime(2024, 1, 11, 15, 0, tzinfo=seoul),
        duration_minutes=60,
        category=EventCategory.MEETING,
        meeting_kind=MeetingKind.EXTERNAL,
        location="여의도",
    )
    calendar = CalendarSummary(
        today=[event],
        weekly_hours={"meeting": 6.5, "product": 2.0},
        free_slots=[FreeSlot(start=datetime(2024, 1, 11, 9, 0, tzinfo=seoul), end=datetime(2024, 1, 11, 11, 0, tzinfo=seoul))],
    )

    section = format_calendar_section(calendar)

    assert "- 14:00-15:00 투자자 미팅 [미팅/외부] @ 여의도" in section
    assert "다가오는 일정:\n- 없음" in section
    assert "최근 7일 시간 배분: 미팅 6.5시간, 제품 2시간" in section
    assert "오늘 빈 시간: 09:00-11:00" in section


def test_chat_section_groups_by_channel(fixed_now):
    base = fixed_now.timestamp()
    messages = [
        ChatMessage(channel="#general", author="Alice", text="배포 완료", timestamp=str(base - 3600), reply_count=1),
        ChatMessage(channel="DM:Bob", author="Bob", text="확인\n부탁드립니다", timestamp=str(base - 1800), is_direct=True),
        ChatMessage(channel="#general", author="Bob", text="수고하셨습니다", timestamp=str(base - 600), is_thread_reply=True),
    ]

    section = format_chat_section(messages, fixed_now)

    assert section.splitlines() == [
        "[#general]",
        "- Alice 01/11 09:00: 배포 완료 (답글 1)",
        "  ↳ Bob 01/11 09:50: 수고하셨습니다",
        "[DM:Bob]",
        "- Bob 01/11 09:30: 확인 부탁드립니다",
    ]


def test_documents_and_counts_in_prompt(fixed_now):
    page = DocumentPage(
        page_id="p1",
        title="채용 계획",
        body_text="백엔드 2명",
        last_edited_time="2024-01-10T20:15:00.000Z",
        last_edited_by="김대표",
        comments=[DocumentComment(author="박매니저", text="확인했습니다")],
    )
    data = CollectedData(pages=[page])

    prompt = build_prompt(data, days=1, now=fixed_now)

    assert "### 채용 계획 (수정: 2024-01-10 20:15, 편집: 김대표)" in prompt
    assert "💬 박매니저: 확인했습니다" in prompt
    assert "Notion 문서 (1건)" in prompt
    assert prompt.count(NO_DATA) == 3
