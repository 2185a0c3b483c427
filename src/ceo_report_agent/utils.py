"""Time and text helpers shared by the collectors and the prompt builder."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

import structlog
from dateutil import parser as date_parser
from zoneinfo import ZoneInfo

LOGGER = structlog.get_logger(__name__)


def get_zone(timezone_name: str) -> ZoneInfo:
    """ZoneInfo for the report timezone; UTC when the name is unknown."""
    try:
        return ZoneInfo(timezone_name)
    except Exception:  # pragma: no cover - fallback
        LOGGER.warning("timezone.unknown", timezone=timezone_name)
        return ZoneInfo("UTC")


def now_in_timezone(timezone_name: str) -> datetime:
    """Current datetime in the configured timezone."""
    return datetime.now(tz=get_zone(timezone_name))


def parse_timestamp(text: Optional[str], tz: Optional[ZoneInfo] = None) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp, attaching ``tz`` to naive values."""
    if not text:
        return None
    try:
        value = date_parser.isoparse(text)
    except (ValueError, OverflowError):
        LOGGER.debug("timestamp.parse_failed", value=text)
        return None
    if value.tzinfo is None and tz is not None:
        value = value.replace(tzinfo=tz)
    return value


def truncate(text: str, limit: int, marker: str = "…") -> str:
    """Cut ``text`` to at most ``limit`` characters, appending ``marker`` if cut."""
    if len(text) <= limit:
        return text
    return text[: max(limit - len(marker), 0)] + marker
