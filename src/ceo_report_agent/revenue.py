"""Revenue collection from the monthly Google Sheets tab."""

from __future__ import annotations

import asyncio
import calendar
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence

import structlog

from .config import Settings
from .google_client import SHEETS_SCOPES, build_service
from .models import RevenueDay, RevenueSummary
from .utils import now_in_timezone

LOGGER = structlog.get_logger(__name__)

DATE_ROW_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
SENTINEL_MARKERS = ("cumulative", "to-date", "누적", "합계")
TOTAL_LABEL = "합계"
HEADER_SCAN_ROWS = 10
AVERAGE_WINDOW = 7


@dataclass(frozen=True)
class ColumnSpec:
    """A spreadsheet column recognised by keywords in its header text."""

    name: str
    keywords: tuple[str, ...]
    required: bool = False
    is_category: bool = True


REVENUE_COLUMNS: tuple[ColumnSpec, ...] = (
    ColumnSpec("date", ("날짜", "일자", "date"), required=True, is_category=False),
    ColumnSpec("total", ("합계", "총매출", "total"), is_category=False),
    ColumnSpec("인앱결제", ("인앱", "in-app", "iap")),
    ColumnSpec("구독", ("구독", "subscription")),
    ColumnSpec("멤버십", ("멤버십", "membership")),
    ColumnSpec("광고", ("광고", "advert", "ads")),
    ColumnSpec("NFT 판매", ("nft판매", "nftsales", "민팅", "mint")),
    ColumnSpec("NFT 수수료", ("nft수수료", "로열티", "royalty")),
    ColumnSpec("마켓플레이스", ("마켓", "marketplace")),
    ColumnSpec("스왑 수수료", ("스왑", "swap")),
    ColumnSpec("스테이킹", ("스테이킹", "staking")),
    ColumnSpec("DeFi", ("defi", "디파이")),
    ColumnSpec("브릿지", ("브릿지", "bridge")),
    ColumnSpec("B2B", ("b2b", "기업")),
    ColumnSpec("제휴", ("제휴", "partner")),
    ColumnSpec("스폰서십", ("스폰서", "sponsor")),
    ColumnSpec("이벤트", ("이벤트", "event")),
    ColumnSpec("굿즈", ("굿즈", "merch")),
    ColumnSpec("라이선스", ("라이선스", "license")),
    ColumnSpec("API", ("api",)),
    ColumnSpec("컨설팅", ("컨설팅", "consult")),
    ColumnSpec("기타", ("기타", "other", "etc")),
)


@dataclass
class ColumnLayout:
    """Resolved column positions for one header row."""

    indices: Dict[str, int] = field(default_factory=dict)
    missing: tuple[str, ...] = ()

    @property
    def categories(self) -> Dict[str, int]:
        category_names = {spec.name for spec in REVENUE_COLUMNS if spec.is_category}
        return {name: idx for name, idx in self.indices.items() if name in category_names}

    @property
    def is_complete(self) -> bool:
        if self.missing:
            return False
        return "total" in self.indices or bool(self.categories)


def _normalise_header(text: Any) -> str:
    return re.sub(r"\s+", "", str(text or "")).lower()


def resolve_columns(header: Sequence[Any], schema: Sequence[ColumnSpec] = REVENUE_COLUMNS) -> ColumnLayout:
    """Match header cells against ``schema``; each column is claimed at most once."""
    cells = [_normalise_header(cell) for cell in header]
    taken: set[int] = set()
    indices: Dict[str, int] = {}

    for spec in schema:
        keywords = [_normalise_header(k) for k in spec.keywords]
        for idx, cell in enumerate(cells):
            if idx in taken or not cell:
                continue
            if any(keyword in cell for keyword in keywords):
                indices[spec.name] = idx
                taken.add(idx)
                break

    missing = tuple(spec.name for spec in schema if spec.required and spec.name not in indices)
    return ColumnLayout(indices=indices, missing=missing)


def is_valid_date_row(value: Any) -> bool:
    """True for ``YYYY-MM-DD`` cells that are not cumulative/summary rows."""
    text = str(value or "").strip()
    if not text:
        return False
    lowered = text.lower()
    if any(marker in lowered for marker in SENTINEL_MARKERS):
        return False
    return bool(DATE_ROW_PATTERN.match(text))


def parse_amount(value: Any) -> int:
    """Parse a currency cell such as ``₩1,234,000`` or ``56,000원``; 0 on failure."""
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value or "").strip()
    negative = text.startswith("(") and text.endswith(")")
    cleaned = re.sub(r"[^\d.\-]", "", text)
    if not cleaned:
        return 0
    try:
        amount = int(float(cleaned))
    except ValueError:
        return 0
    return -abs(amount) if negative else amount


def _cell(row: Sequence[Any], idx: int) -> Any:
    return row[idx] if 0 <= idx < len(row) else ""


def find_header(rows: Sequence[Sequence[Any]]) -> tuple[Optional[int], ColumnLayout]:
    """Locate the header row among the first rows of the sheet.

    Returns ``(None, layout)`` with the closest attempted layout when none is usable.
    """
    layout = ColumnLayout(missing=tuple(spec.name for spec in REVENUE_COLUMNS if spec.required))
    for row_idx, row in enumerate(rows[:HEADER_SCAN_ROWS]):
        candidate = resolve_columns(row)
        if candidate.is_complete:
            return row_idx, candidate
        if "date" in candidate.indices:
            layout = candidate
    return None, layout


def parse_revenue_rows(rows: Sequence[Sequence[Any]], layout: ColumnLayout) -> List[RevenueDay]:
    """Turn data rows into RevenueDay entries, skipping anything without a valid date."""
    date_idx = layout.indices["date"]
    categories = layout.categories
    by_date: Dict[str, RevenueDay] = {}

    for row in rows:
        raw_date = _cell(row, date_idx)
        if not is_valid_date_row(raw_date):
            continue
        day = str(raw_date).strip()
        if categories:
            breakdown = {name: parse_amount(_cell(row, idx)) for name, idx in categories.items()}
        else:
            breakdown = {TOTAL_LABEL: parse_amount(_cell(row, layout.indices["total"]))}
        by_date[day] = RevenueDay.from_breakdown(day, breakdown)

    return [by_date[key] for key in sorted(by_date)]


def _days_remaining(latest: str, today: date) -> int:
    try:
        anchor = datetime.strptime(latest, "%Y-%m-%d").date()
    except ValueError:
        anchor = today
    days_in_month = calendar.monthrange(anchor.year, anchor.month)[1]
    return max(days_in_month - anchor.day, 0)


def summarize_revenue(
    sheet_name: str,
    revenue_days: Sequence[RevenueDay],
    *,
    days: int,
    monthly_target: int,
    today: date,
) -> RevenueSummary:
    """Compute day-over-day, trailing average, MTD and month-end projection."""
    with_data = [day for day in revenue_days if day.has_data]
    empty_dates = [day.date for day in revenue_days if not day.has_data]

    summary = RevenueSummary(
        sheet_name=sheet_name,
        days=with_data[-max(days, 1):],
        dates_with_data=[day.date for day in with_data],
        empty_dates=empty_dates,
        monthly_target=monthly_target,
    )
    if not with_data:
        return summary

    latest = with_data[-1]
    previous = with_data[-2] if len(with_data) > 1 else None
    summary.latest = latest
    summary.previous = previous
    if previous is not None and previous.total:
        summary.day_over_day_pct = round((latest.total - previous.total) / previous.total * 100, 1)

    window = with_data[-AVERAGE_WINDOW:]
    summary.trailing_avg_7d = round(sum(day.total for day in window) / len(window))
    summary.mtd_total = sum(day.total for day in with_data)
    if monthly_target > 0:
        summary.target_pct = round(summary.mtd_total / monthly_target * 100, 1)
    summary.projected_month_end = summary.mtd_total + summary.trailing_avg_7d * _days_remaining(latest.date, today)
    return summary


def _fetch_sheet_values(service: Any, spreadsheet_id: str, sheet_name: str) -> Optional[List[List[Any]]]:
    """Blocking Sheets API call; None when the month's tab does not exist."""
    meta = service.spreadsheets().get(spreadsheetId=spreadsheet_id, fields="sheets.properties.title").execute()
    titles = [sheet.get("properties", {}).get("title", "") for sheet in meta.get("sheets", [])]
    if sheet_name not in titles:
        LOGGER.warning("revenue.sheet_missing", sheet=sheet_name, available=titles)
        return None

    response = service.spreadsheets().values().get(
        spreadsheetId=spreadsheet_id,
        range=f"'{sheet_name}'",
    ).execute()
    return response.get("values", [])


async def collect_revenue(
    settings: Settings,
    days: int,
    *,
    today: Optional[date] = None,
    sheets: Optional[Any] = None,
) -> Optional[RevenueSummary]:
    """Return revenue statistics for the current month, or None if unavailable."""
    if not settings.revenue_spreadsheet_id:
        LOGGER.info("revenue.skipped", reason="spreadsheet not configured")
        return None

    today = today or now_in_timezone(settings.timezone).date()
    sheet_name = settings.revenue_sheet_name(today.year, today.month)

    try:
        service = sheets or build_service(settings, "sheets", "v4", SHEETS_SCOPES)
        if service is None:
            LOGGER.info("revenue.skipped", reason="google credentials not configured")
            return None

        LOGGER.info("revenue.fetch.start", sheet=sheet_name)
        rows = await asyncio.to_thread(_fetch_sheet_values, service, settings.revenue_spreadsheet_id, sheet_name)
        if not rows:
            return None

        header_idx, layout = find_header(rows)
        if header_idx is None:
            LOGGER.warning("revenue.columns_missing", sheet=sheet_name, missing=list(layout.missing))
            return None

        revenue_days = parse_revenue_rows(rows[header_idx + 1:], layout)
        if not revenue_days:
            LOGGER.info("revenue.no_rows", sheet=sheet_name)
            return None

        summary = summarize_revenue(
            sheet_name,
            revenue_days,
            days=days,
            monthly_target=settings.monthly_revenue_target,
            today=today,
        )
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("revenue.failed", error=str(exc))
        return None

    LOGGER.info(
        "revenue.fetch.success",
        sheet=sheet_name,
        days_with_data=len(summary.days),
        empty_days=len(summary.empty_dates),
    )
    return summary
