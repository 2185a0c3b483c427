"""Wrapper around the Anthropic Messages API used to write the report."""

from __future__ import annotations

from typing import Optional

import structlog
from anthropic import AsyncAnthropic

from .config import Settings

LOGGER = structlog.get_logger(__name__)

ANALYSIS_FAILED = "분석 중 오류가 발생했습니다."
NO_ACTIVITY = "수집된 데이터가 없습니다. Slack, Notion, 매출, 캘린더 연결 상태를 확인해주세요."


class ReportWriter:
    """Sends the assembled prompt to the model and returns its text."""

    def __init__(self, settings: Settings, client: Optional[AsyncAnthropic] = None):
        self._settings = settings
        self._client = client

    @property
    def model(self) -> str:
        return self._settings.anthropic_model

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            if self._settings.anthropic_api_key is None:
                raise RuntimeError("ANTHROPIC_API_KEY is not configured")
            self._client = AsyncAnthropic(api_key=self._settings.anthropic_api_key.get_secret_value())
        return self._client

    async def write(self, prompt: str) -> str:
        """First text block of the completion, or the fixed fallback on any error."""
        LOGGER.info(
            "llm.request.start",
            model=self.model,
            prompt_chars=len(prompt),
            max_tokens=self._settings.anthropic_max_tokens,
        )
        try:
            message = await self._get_client().messages.create(
                model=self.model,
                max_tokens=self._settings.anthropic_max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
            text = next(block.text for block in message.content if getattr(block, "type", "") == "text")
        except Exception as exc:  # noqa: BLE001
            LOGGER.exception("llm.request.failed", error=str(exc))
            return ANALYSIS_FAILED

        LOGGER.info("llm.request.success", response_chars=len(text))
        return text.strip() or ANALYSIS_FAILED
