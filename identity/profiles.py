"""Canonical profile record, whichever store it came from."""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
from typing import Any, ClassVar, Mapping, Optional


@dataclass
class Profile:
    id: str
    email: str = ""
    name: str = ""
    bio: str = ""
    location: str = ""
    avatar: Optional[str] = None
    created_at: Optional[str] = None

    EDITABLE_FIELDS: ClassVar[tuple[str, ...]] = ("name", "email", "bio", "location", "avatar")

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Profile":
        """Build a profile from a Supabase row or a locally saved record."""
        avatar = row.get("avatar_url") if "avatar_url" in row else row.get("avatar")
        return cls(
            id=str(row.get("id") or ""),
            email=row.get("email") or "",
            name=row.get("name") or "",
            bio=row.get("bio") or "",
            location=row.get("location") or "",
            avatar=avatar or None,
            created_at=row.get("created_at") or row.get("createdAt"),
        )

    @classmethod
    def from_auth_user(cls, user) -> "Profile":
        """Provisional profile built from a Supabase auth user object."""
        metadata = getattr(user, "user_metadata", None) or {}
        return cls(
            id=str(getattr(user, "id", "") or ""),
            email=getattr(user, "email", "") or "",
            name=metadata.get("name") or "",
            bio=metadata.get("bio") or "",
            location=metadata.get("location") or "",
            avatar=metadata.get("avatar_url") or None,
            created_at=_isoformat(getattr(user, "created_at", None)),
        )

    def merged(self, fields: Mapping[str, Any]) -> "Profile":
        """Shallow merge: only the editable keys present in `fields` overwrite."""
        normalized = dict(fields)
        if "avatar_url" in normalized and "avatar" not in normalized:
            normalized["avatar"] = normalized.pop("avatar_url")
        updates = {key: normalized[key] for key in self.EDITABLE_FIELDS if key in normalized}
        for key in ("name", "email", "bio", "location"):
            if key in updates and updates[key] is None:
                updates[key] = ""
        return replace(self, **updates)

    def to_dict(self) -> dict:
        return asdict(self)

    def to_remote_row(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "bio": self.bio or "",
            "location": self.location or "",
            "avatar_url": self.avatar or None,
        }


def _isoformat(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
