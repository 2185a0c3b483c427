"""Configuration objects and helpers for the CEO report agent."""

from __future__ import annotations

import json
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables.

    Every platform credential is optional. A collector whose settings are
    missing returns an empty result instead of failing the run.
    """

    anthropic_api_key: Optional[SecretStr] = Field(None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str = Field("claude-sonnet-4-20250514", alias="ANTHROPIC_MODEL")
    anthropic_max_tokens: int = Field(4000, alias="ANTHROPIC_MAX_TOKENS")

    slack_bot_token: Optional[SecretStr] = Field(None, alias="SLACK_BOT_TOKEN")
    slack_user_token: Optional[SecretStr] = Field(None, alias="SLACK_USER_TOKEN")
    ceo_slack_id: Optional[str] = Field(None, alias="CEO_SLACK_ID")
    slack_request_delay_seconds: float = Field(0.2, alias="SLACK_REQUEST_DELAY_SECONDS")

    notion_api_key: Optional[SecretStr] = Field(None, alias="NOTION_API_KEY")
    notion_root_page_ids: str = Field("", alias="NOTION_ROOT_PAGE_IDS")
    notion_time_budget_seconds: float = Field(60.0, alias="NOTION_TIME_BUDGET_SECONDS")
    notion_page_char_limit: int = Field(1500, alias="NOTION_PAGE_CHAR_LIMIT")
    notion_request_delay_seconds: float = Field(0.1, alias="NOTION_REQUEST_DELAY_SECONDS")

    google_service_account_json: Optional[SecretStr] = Field(None, alias="GOOGLE_SERVICE_ACCOUNT_JSON")
    google_calendar_subject: Optional[str] = Field(None, alias="GOOGLE_CALENDAR_SUBJECT")

    revenue_spreadsheet_id: Optional[str] = Field(None, alias="REVENUE_SPREADSHEET_ID")
    revenue_sheet_name_format: str = Field("{year}년 {month}월", alias="REVENUE_SHEET_NAME_FORMAT")
    monthly_revenue_target: int = Field(0, alias="MONTHLY_REVENUE_TARGET")

    calendar_days_back: int = Field(7, alias="CALENDAR_DAYS_BACK")
    calendar_days_forward: int = Field(7, alias="CALENDAR_DAYS_FORWARD")
    workday_start_hour: int = Field(9, alias="WORKDAY_START_HOUR")
    workday_end_hour: int = Field(18, alias="WORKDAY_END_HOUR")

    timezone: str = Field("Asia/Seoul", alias="REPORT_TIMEZONE")
    default_days: int = Field(1, alias="DEFAULT_DAYS")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    api_host: str = Field("0.0.0.0", alias="API_HOST")
    api_port: int = Field(8000, alias="API_PORT")

    model_config = SettingsConfigDict(
        env_file=(".env",),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    @property
    def root_page_ids(self) -> list[str]:
        """Configured Notion root pages, in declaration order."""
        return [item.strip() for item in self.notion_root_page_ids.split(",") if item.strip()]

    def google_credentials_info(self) -> Optional[dict[str, Any]]:
        """Parsed service-account key, or None when unset."""
        if self.google_service_account_json is None:
            return None
        raw = self.google_service_account_json.get_secret_value().strip()
        if not raw:
            return None
        return json.loads(raw)

    def revenue_sheet_name(self, year: int, month: int) -> str:
        """Name of the spreadsheet tab holding the given month."""
        return self.revenue_sheet_name_format.format(year=year, month=month)


class ServiceInfo(BaseModel):
    """Metadata returned by the status endpoint."""

    name: str
    description: str
    endpoints: dict[str, str]
