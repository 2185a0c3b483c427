"""Google API service construction for the Sheets and Calendar collectors."""

from __future__ import annotations

from typing import Any, Optional, Sequence

import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

from .config import Settings

LOGGER = structlog.get_logger(__name__)

SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets.readonly",)
CALENDAR_SCOPES = ("https://www.googleapis.com/auth/calendar.readonly",)


def build_service(
    settings: Settings,
    api: str,
    version: str,
    scopes: Sequence[str],
    subject: Optional[str] = None,
) -> Optional[Any]:
    """Build an authorised discovery client, or None when no key is configured.

    ``subject`` switches the service account into domain-wide delegation on
    behalf of that user.
    """
    info = settings.google_credentials_info()
    if info is None:
        return None

    credentials = service_account.Credentials.from_service_account_info(info, scopes=list(scopes))
    if subject:
        credentials = credentials.with_subject(subject)

    LOGGER.debug("google.service.build", api=api, version=version, delegated=bool(subject))
    return build(api, version, credentials=credentials, cache_discovery=False)
