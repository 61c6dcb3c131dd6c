"""Per-run reuse of Google API clients."""

from __future__ import annotations

from functools import lru_cache

from core.stage_config import SheetCredentials

SHEETS_SCOPES = ("https://www.googleapis.com/auth/spreadsheets",)


@lru_cache(maxsize=16)
def get_sheets_service(credentials: SheetCredentials):
    """Return a cached Sheets v4 client for one service account."""

    # Campaigns sharing a service account share one client.
    from google.oauth2 import service_account
    from googleapiclient.discovery import build

    creds = service_account.Credentials.from_service_account_info(
        credentials.as_info(), scopes=list(SHEETS_SCOPES)
    )
    return build("sheets", "v4", credentials=creds, cache_discovery=False)
