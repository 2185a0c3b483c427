"""Slack delivery of the finished report as a direct message."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from slack_sdk.web.async_client import AsyncWebClient

from .config import Settings
from .utils import now_in_timezone

LOGGER = structlog.get_logger(__name__)

SECTION_TEXT_LIMIT = 3000


def split_text(text: str, limit: int = SECTION_TEXT_LIMIT) -> List[str]:
    """Split into contiguous chunks of at most ``limit`` characters.

    Cuts land just after a newline when one exists in the chunk, so
    ``"".join(split_text(text)) == text`` always holds.
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    chunks: List[str] = []
    start = 0
    while len(text) - start > limit:
        window = text[start:start + limit]
        cut = window.rfind("\n")
        end = start + cut + 1 if cut > 0 else start + limit
        chunks.append(text[start:end])
        start = end
    if start < len(text) or not chunks:
        chunks.append(text[start:])
    return chunks


def report_title(days: int) -> str:
    return "📊 어제의 조직 모니터링 리포트" if days <= 1 else f"📊 최근 {days}일 종합 분석 리포트"


def build_blocks(title: str, body: str, generated_at: datetime, model: str) -> List[Dict[str, Any]]:
    return [
        {"type": "header", "text": {"type": "plain_text", "text": title}},
        {"type": "section", "text": {"type": "mrkdwn", "text": body}},
        {
            "type": "context",
            "elements": [
                {"type": "mrkdwn", "text": f"생성 시간: {generated_at:%Y-%m-%d %H:%M} | AI: {model}"},
            ],
        },
    ]


async def deliver_report(
    settings: Settings,
    report: str,
    *,
    days: int,
    client: Optional[AsyncWebClient] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Send the report to the CEO; failures are logged and reported as False."""
    if not settings.ceo_slack_id:
        LOGGER.error("delivery.skipped", reason="recipient not configured")
        return False
    if client is None:
        if settings.slack_bot_token is None:
            LOGGER.error("delivery.skipped", reason="bot token not configured")
            return False
        client = AsyncWebClient(token=settings.slack_bot_token.get_secret_value())

    title = report_title(days)
    chunks = split_text(report or " ")
    generated_at = now or now_in_timezone(settings.timezone)

    LOGGER.info("delivery.send.start", recipient=settings.ceo_slack_id, chunks=len(chunks))
    try:
        await client.chat_postMessage(
            channel=settings.ceo_slack_id,
            text=f"{title}\n\n{chunks[0]}",
            blocks=build_blocks(title, chunks[0], generated_at, settings.anthropic_model),
        )
        for index, chunk in enumerate(chunks[1:], start=2):
            await client.chat_postMessage(
                channel=settings.ceo_slack_id,
                text=chunk,
                blocks=[{"type": "section", "text": {"type": "mrkdwn", "text": chunk}}],
            )
            LOGGER.debug("delivery.send.followup", part=index)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("delivery.send.failed", error=str(exc))
        return False

    LOGGER.info("delivery.send.success", chunks=len(chunks))
    return True
