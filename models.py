"""Database models for the local fallback store."""

from __future__ import annotations

from sqlalchemy import func

from extensions import db


class LocalStateEntry(db.Model):
    """One string-serialised collection stored under a well-known key."""

    __tablename__ = "local_state"

    key = db.Column(db.String(64), primary_key=True)
    value = db.Column(db.Text, nullable=False)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:  # pragma: no cover - helper for shell debugging
        return f"<LocalStateEntry key={self.key!r} size={len(self.value or '')}>"
