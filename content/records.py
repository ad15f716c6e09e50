"""Canonical competition, entry, and media-file records.

Supabase rows and records saved by older local builds name the same fields
differently (`file_url` vs `url`, `endDate` vs `end_date`, ...). `from_row`
accepts either spelling so nothing downstream branches on the data source.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from backend import ENTRIES_TABLE, MEDIA_FILES_TABLE, PROFILES_TABLE, parse_datetime

CATEGORIES = ("photo", "video", "audio")
STATUS_ACTIVE = "active"
STATUS_ENDED = "ended"
STATUSES = (STATUS_ACTIVE, STATUS_ENDED)


@dataclass
class MediaFile:
    id: str
    user_id: str
    name: str
    mime_type: str
    size: int
    url: str
    file_path: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "MediaFile":
        return cls(
            id=str(_first(row, "id") or ""),
            user_id=str(_first(row, "user_id", "userId") or ""),
            name=_first(row, "name") or "",
            mime_type=_first(row, "mime_type", "file_type", "type") or "",
            size=_coerce_int(_first(row, "size", "file_size")),
            url=_first(row, "url", "file_url") or "",
            file_path=_first(row, "file_path", "filePath"),
            created_at=_first(row, "created_at", "createdAt"),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def to_remote_row(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "name": self.name,
            "file_type": self.mime_type,
            "file_size": self.size,
            "file_url": self.url,
            "file_path": self.file_path,
        }


@dataclass
class Entry:
    id: str
    competition_id: str
    user_id: str
    user_name: str = ""
    file_id: Optional[str] = None
    file_name: str = ""
    file_url: str = ""
    file_type: str = ""
    submitted_at: Optional[str] = None
    votes: int = 0

    @classmethod
    def from_row(cls, row: Mapping[str, Any], competition_id: Optional[str] = None) -> "Entry":
        author = row.get(PROFILES_TABLE) or {}
        media = row.get(MEDIA_FILES_TABLE) or {}
        return cls(
            id=str(_first(row, "id") or ""),
            competition_id=str(_first(row, "competition_id", "competitionId") or competition_id or ""),
            user_id=str(_first(row, "user_id", "userId") or ""),
            user_name=_first(row, "user_name", "userName") or author.get("name") or "",
            file_id=_first(row, "file_id", "fileId", "media_file_id"),
            file_name=_first(row, "file_name", "fileName") or media.get("name") or "",
            file_url=_first(row, "file_url", "fileUrl") or media.get("file_url") or "",
            file_type=_first(row, "file_type", "fileType") or media.get("file_type") or "",
            submitted_at=_first(row, "submitted_at", "submittedAt", "created_at"),
            votes=_coerce_int(_first(row, "votes")),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class Competition:
    id: str
    title: str
    description: str = ""
    category: str = "photo"
    end_date: Optional[str] = None
    rules: str = ""
    prize: str = ""
    created_by: str = ""
    creator_name: str = ""
    status: str = STATUS_ACTIVE
    created_at: Optional[str] = None
    entries: List[Entry] = field(default_factory=list)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Competition":
        competition_id = str(_first(row, "id") or "")
        raw_entries = _first(row, "entries", ENTRIES_TABLE) or []
        return cls(
            id=competition_id,
            title=_first(row, "title") or "",
            description=_first(row, "description") or "",
            category=_first(row, "category") or "photo",
            end_date=_first(row, "end_date", "endDate") or None,
            rules=_first(row, "rules") or "",
            prize=_first(row, "prize") or "",
            created_by=str(_first(row, "created_by", "createdBy") or ""),
            creator_name=_first(row, "creator_name", "creatorName") or "",
            status=_first(row, "status") or STATUS_ACTIVE,
            created_at=_first(row, "created_at", "createdAt"),
            entries=[Entry.from_row(entry, competition_id) for entry in raw_entries],
        )

    def is_ended(self, reference: Optional[datetime] = None) -> bool:
        """Ended once stored as ended or once the end date has passed."""
        if self.status == STATUS_ENDED:
            return True
        end = parse_datetime(self.end_date)
        if end is None:
            return False
        ref = reference or datetime.now(timezone.utc)
        if ref.tzinfo is None:
            ref = ref.replace(tzinfo=timezone.utc)
        return end < ref

    def effective_status(self, reference: Optional[datetime] = None) -> str:
        return STATUS_ENDED if self.is_ended(reference) else STATUS_ACTIVE

    def find_entry(self, entry_id: str) -> Optional[Entry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def ranked_entries(self) -> List[Entry]:
        """Entries by descending votes; ties keep submission order."""
        return sorted(self.entries, key=lambda entry: entry.votes, reverse=True)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["status"] = self.effective_status()
        return data

    def to_remote_row(self) -> dict:
        return {
            "title": self.title,
            "description": self.description,
            "category": self.category,
            "rules": self.rules or "",
            "prize": self.prize or "",
            "end_date": self.end_date or None,
            "created_by": self.created_by,
            "creator_name": self.creator_name,
            "status": STATUS_ACTIVE,
        }


def vote_key(competition_id: str, entry_id: str, user_id: str) -> str:
    return f"{competition_id}-{entry_id}-{user_id}"


def _first(row: Mapping[str, Any], *names: str) -> Any:
    for name in names:
        if name in row and row[name] is not None:
            return row[name]
    return None


def _coerce_int(value: Any) -> int:
    if value is None or value == "":
        return 0
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0
