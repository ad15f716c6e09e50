"""Supabase connection helpers shared by the identity and content facades."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from dateutil import parser as date_parser
from flask import current_app, has_app_context

# Try to import Supabase client
try:
    from supabase import create_client, Client  # type: ignore
except Exception:
    create_client, Client = None, None

PLACEHOLDER_SUPABASE_URL = "https://your-project-id.supabase.co"
PLACEHOLDER_SUPABASE_KEY = "your-anon-key"

PROFILES_TABLE = "user_profiles_auth_2024"
MEDIA_FILES_TABLE = "media_files_auth_2024"
COMPETITIONS_TABLE = "competitions_auth_2024"
ENTRIES_TABLE = "competition_entries_auth_2024"
VOTES_TABLE = "votes_auth_2024"
CAST_VOTE_RPC = "cast_competition_vote"

AVATAR_BUCKET = "avatars"
MEDIA_BUCKET = "media-files"


def credentials_configured(url: Optional[str], key: Optional[str]) -> bool:
    """Static check: both credentials present and not the template placeholders."""
    url = (url or "").strip()
    key = (key or "").strip()
    if not url or not key:
        return False
    return url != PLACEHOLDER_SUPABASE_URL and key != PLACEHOLDER_SUPABASE_KEY


def build_supabase_client(enabled: bool, url: Optional[str], key: Optional[str]):
    """Return a Supabase client, or None when the backend is off or unusable."""
    if not enabled or not create_client or not credentials_configured(url, key):
        return None
    try:
        return create_client(url.strip(), key.strip())
    except Exception as exc:
        _log("warning", "Could not init Supabase client: %s", exc)
        return None


def response_rows(resp) -> list[dict[str, Any]]:
    data = getattr(resp, "data", None)
    if data is None:
        return []
    if isinstance(data, dict):
        return [data]
    return list(data)


def is_conflict(exc: Exception) -> bool:
    message = str(exc).lower()
    return (
        "duplicate key value" in message
        or "unique constraint" in message
        or "23505" in message
    )


def log_supabase_warning(action: str, exc: Exception) -> None:
    _log("warning", "Supabase error while %s: %s", action, exc)


def log_supabase_error(action: str, exc: Exception) -> None:
    _log("error", "Supabase error while %s: %s", action, exc)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        try:
            dt = date_parser.isoparse(str(value))
        except (TypeError, ValueError, OverflowError):
            return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _log(level: str, message: str, *args) -> None:
    if not has_app_context():
        return
    logger = getattr(current_app, "logger", None)
    if logger:
        getattr(logger, level)(message, *args)
