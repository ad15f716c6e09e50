"""Key/value fallback storage used when no Supabase project is configured."""

from __future__ import annotations

import json
from typing import Any

from flask import current_app

from extensions import db
from models import LocalStateEntry

USER_KEY = "user"
COMPETITIONS_KEY = "competitions"
MEDIA_FILES_KEY = "mediaFiles"
VOTES_KEY = "votes"


class LocalStore:
    """JSON collections persisted in the `local_state` table, one row per key."""

    def get(self, key: str, default: Any = None) -> Any:
        entry = db.session.get(LocalStateEntry, key)
        if entry is None:
            return default
        try:
            return json.loads(entry.value)
        except (TypeError, ValueError) as exc:
            current_app.logger.warning("Discarding unreadable local state %r: %s", key, exc)
            return default

    def set(self, key: str, value: Any) -> None:
        payload = json.dumps(value)
        entry = db.session.get(LocalStateEntry, key)
        if entry is None:
            entry = LocalStateEntry(key=key, value=payload)
        else:
            entry.value = payload
        db.session.add(entry)
        db.session.commit()

    def remove(self, key: str) -> None:
        entry = db.session.get(LocalStateEntry, key)
        if entry is None:
            return
        db.session.delete(entry)
        db.session.commit()
