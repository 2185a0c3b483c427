"""FastAPI application exposing the scheduled report and Slack event endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from . import __version__
from .config import ServiceInfo, Settings
from .main import configure_logging
from .pipeline import clamp_days, run_report

configure_logging()
LOGGER = structlog.get_logger(__name__)

app = FastAPI(title="CEO Daily Report Bot", version=__version__)

SERVICE_INFO = ServiceInfo(
    name="CEO Daily Report Bot",
    description="Slack/Notion/매출/캘린더 데이터를 분석하여 CEO에게 일일 리포트 발송",
    endpoints={
        "daily": "GET /api/cron - 일일 분석 실행",
        "initial": "GET /api/cron?days=7 - 최초 7일 종합 분석",
        "events": "POST /api/events - Slack 이벤트 수신",
    },
)


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _json_body(request: Request) -> dict[str, Any]:
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


@app.get("/")
async def index() -> dict[str, Any]:
    """Static service description."""
    return {"status": "✅ Running", **SERVICE_INFO.model_dump(), "timestamp": _utc_now()}


@app.api_route("/api/cron", methods=["GET", "POST"])
async def cron(request: Request, days: Optional[str] = None) -> JSONResponse:
    """Run one report and return the collected counts."""
    raw_days: Any = days
    if raw_days is None and request.method == "POST":
        raw_days = (await _json_body(request)).get("days")

    LOGGER.info("cron.start", days=raw_days)
    try:
        settings = Settings()
        lookback = clamp_days(raw_days if raw_days is not None else settings.default_days, settings.default_days)
        summary, _ = await run_report(settings, lookback)
    except Exception as exc:  # noqa: BLE001
        LOGGER.exception("cron.failed", error=str(exc))
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": str(exc), "timestamp": _utc_now()},
        )

    LOGGER.info("cron.complete", delivered=summary.delivered)
    return JSONResponse(content=summary.model_dump())


@app.post("/api/events")
async def slack_events(request: Request):
    """Slack Events API receiver: answers URL verification, acknowledges everything else."""
    body = await _json_body(request)
    if body.get("type") == "url_verification":
        return JSONResponse(content={"challenge": body.get("challenge")})

    if body.get("type") == "event_callback":
        LOGGER.info("events.received", event_type=(body.get("event") or {}).get("type"))
    return PlainTextResponse("OK")


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    server_settings = Settings()
    uvicorn.run(
        "ceo_report_agent.api:app",
        host=server_settings.api_host,
        port=server_settings.api_port,
    )
