"""In-memory competitions, media files and votes, mirrored to Supabase or local storage."""

from __future__ import annotations

import threading
import uuid
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from backend import (
    CAST_VOTE_RPC,
    COMPETITIONS_TABLE,
    ENTRIES_TABLE,
    MEDIA_BUCKET,
    MEDIA_FILES_TABLE,
    VOTES_TABLE,
    is_conflict,
    log_supabase_error,
    log_supabase_warning,
    now_iso,
    parse_datetime,
    response_rows,
)
from content.records import CATEGORIES, STATUS_ACTIVE, Competition, Entry, MediaFile, vote_key
from errors import RemoteDataError, ValidationError
from identity.facade import IdentityFacade
from local_store import COMPETITIONS_KEY, MEDIA_FILES_KEY, VOTES_KEY, LocalStore
from uploads import MEDIA_CLASSES, MEDIA_MAX_BYTES, read_upload, store_file, to_data_url, validate_upload

ANONYMOUS_CREATOR = "anonymous"
DUPLICATE_ENTRY_MESSAGE = "You have already submitted an entry to this competition."
COMPETITION_SELECT = (
    "*, competition_entries_auth_2024 ("
    "id, competition_id, user_id, media_file_id, votes, created_at, "
    "user_profiles_auth_2024 (name), "
    "media_files_auth_2024 (name, file_url, file_type)"
    ")"
)


class _ContentState:
    """Collections shared by a store and every per-identity view of it."""

    def __init__(self):
        self.lock = threading.RLock()
        self.competitions: List[Competition] = []
        self.media_files: List[MediaFile] = []
        self.votes: List[str] = []
        self.loading = False


class ContentStore:
    """Single writer for the competition, media-file and vote collections.

    Remote paths are taken only when a backend is configured *and* the identity
    holds a Supabase session; everything else works against the local store.
    `for_identity()` returns a view acting for another identity over the same
    collections and lock.
    """

    def __init__(self, identity: IdentityFacade, local_store: Optional[LocalStore] = None, *, state=None):
        self._identity = identity
        self._local = local_store or LocalStore()
        self._state = state or _ContentState()

    def for_identity(self, identity: IdentityFacade) -> "ContentStore":
        if identity is self._identity:
            return self
        return ContentStore(identity, self._local, state=self._state)

    @property
    def _lock(self):
        return self._state.lock

    @property
    def competitions(self) -> List[Competition]:
        return self._state.competitions

    @competitions.setter
    def competitions(self, value: List[Competition]) -> None:
        self._state.competitions = value

    @property
    def media_files(self) -> List[MediaFile]:
        return self._state.media_files

    @media_files.setter
    def media_files(self, value: List[MediaFile]) -> None:
        self._state.media_files = value

    @property
    def votes(self) -> List[str]:
        return self._state.votes

    @votes.setter
    def votes(self, value: List[str]) -> None:
        self._state.votes = value

    @property
    def loading(self) -> bool:
        return self._state.loading

    @loading.setter
    def loading(self, value: bool) -> None:
        self._state.loading = value

    @property
    def backend_configured(self) -> bool:
        return self._identity.backend_configured

    @property
    def _client(self):
        return self._identity.client

    def _use_remote(self) -> bool:
        return self._identity.is_remote_backed

    def initialize(self) -> None:
        self.loading = True
        try:
            with self._lock:
                if self.backend_configured:
                    self.media_files = []
                    self.votes = []
                    self.competitions = self._load_remote_competitions() or []
                else:
                    self.competitions = [
                        Competition.from_row(row) for row in self._local.get(COMPETITIONS_KEY) or []
                    ]
                    self.media_files = [
                        MediaFile.from_row(row) for row in self._local.get(MEDIA_FILES_KEY) or []
                    ]
                    self.votes = [str(key) for key in self._local.get(VOTES_KEY) or []]
        finally:
            self.loading = False

    # ------------------------------------------------------------------ reads

    def list_competitions(self, category: Optional[str] = None, status: Optional[str] = None) -> List[Competition]:
        now = datetime.now(timezone.utc)
        results = []
        for competition in self.competitions:
            if category and competition.category != category:
                continue
            if status and competition.effective_status(now) != status:
                continue
            results.append(competition)
        return results

    def get_competition(self, competition_id: str) -> Optional[Competition]:
        for competition in self.competitions:
            if competition.id == competition_id:
                return competition
        return None

    def has_user_submitted(self, competition_id: str, user_id: str) -> bool:
        competition = self.get_competition(competition_id)
        if competition is None or not user_id:
            return False
        return any(entry.user_id == str(user_id) for entry in competition.entries)

    def has_user_voted(self, competition_id: str, entry_id: str, user_id: str) -> bool:
        if self._use_remote():
            try:
                resp = (
                    self._client.table(VOTES_TABLE)
                    .select("id")
                    .eq("competition_id", competition_id)
                    .eq("entry_id", entry_id)
                    .eq("user_id", user_id)
                    .limit(1)
                    .execute()
                )
            except Exception as exc:
                log_supabase_warning("checking vote", exc)
                return False
            return bool(response_rows(resp))
        return vote_key(competition_id, entry_id, user_id) in self.votes

    def get_user_media_files(self, user_id: Optional[str]) -> List[MediaFile]:
        """Never raises: remote failures fall back to the in-memory collection."""
        if not user_id:
            return []
        user_id = str(user_id)
        if self._use_remote():
            try:
                resp = (
                    self._client.table(MEDIA_FILES_TABLE)
                    .select("*")
                    .eq("user_id", user_id)
                    .order("created_at", desc=True)
                    .execute()
                )
                return [MediaFile.from_row(row) for row in response_rows(resp)]
            except Exception as exc:
                log_supabase_warning("fetching user media files", exc)
        return [media for media in self.media_files if media.user_id == user_id]

    # ----------------------------------------------------------------- writes

    def add_competition(self, fields: Mapping[str, Any]) -> Competition:
        competition = self._draft_competition(fields)

        if self._use_remote():
            competition.created_by = self._identity.remote_user_id
            try:
                resp = self._client.table(COMPETITIONS_TABLE).insert(competition.to_remote_row()).execute()
            except Exception as exc:
                log_supabase_error("creating competition", exc)
                raise RemoteDataError("Failed to create competition. Please try again.") from exc
            rows = response_rows(resp)
            if not rows:
                raise RemoteDataError("Failed to create competition. Please try again.")
            created = Competition.from_row({**rows[0], "entries": []})
            with self._lock:
                self.competitions.insert(0, created)
            return created

        competition.id = str(uuid.uuid4())
        with self._lock:
            self.competitions.insert(0, competition)
            self._save_competitions()
        return competition

    def add_media_file(self, fields: Mapping[str, Any]) -> MediaFile:
        """Record locally first; a failed remote insert is raised afterwards."""
        media = MediaFile.from_row({**fields, "id": str(uuid.uuid4()), "created_at": now_iso()})
        remote = self._use_remote()
        if remote:
            media.user_id = self._identity.remote_user_id
        if not media.user_id:
            raise ValidationError("Please sign in to upload files.")

        with self._lock:
            self.media_files.insert(0, media)
            self._local.set(MEDIA_FILES_KEY, [item.to_dict() for item in self.media_files])

        if remote:
            try:
                self._client.table(MEDIA_FILES_TABLE).insert(media.to_remote_row()).execute()
            except Exception as exc:
                log_supabase_error("registering media file", exc)
                raise RemoteDataError(
                    f"{media.name} was saved on this device but could not be registered with the server."
                ) from exc
        return media

    def upload_media(self, file_storage) -> MediaFile:
        """Validate, store (bucket or data URL), then record an uploaded file."""
        profile = self._identity.profile
        if profile is None:
            raise ValidationError("Please sign in to upload files.")

        upload = read_upload(file_storage)
        validate_upload(upload, MEDIA_CLASSES, MEDIA_MAX_BYTES)

        file_path = None
        if self._use_remote():
            user_id = self._identity.remote_user_id
            stored = store_file(self._client, upload, MEDIA_BUCKET, f"user-{user_id}", user_id)
            url, file_path = stored.public_url, stored.path
        else:
            url = to_data_url(upload)

        return self.add_media_file(
            {
                "name": upload.filename,
                "mime_type": upload.mime_type,
                "size": upload.size,
                "url": url,
                "file_path": file_path,
                "user_id": profile.id,
            }
        )

    def add_entry_to_competition(self, competition_id: str, entry_fields: Mapping[str, Any]) -> None:
        with self._lock:
            competition = self.get_competition(competition_id)
            if competition is None:
                return None

            user_id = str(entry_fields.get("user_id") or entry_fields.get("userId") or "")
            if not user_id:
                raise ValidationError("Please sign in to submit an entry.")
            if competition.is_ended():
                raise ValidationError("This competition has ended.")
            if self.has_user_submitted(competition_id, user_id):
                raise ValidationError(DUPLICATE_ENTRY_MESSAGE)

            entry = Entry.from_row(
                {
                    **entry_fields,
                    "id": str(uuid.uuid4()),
                    "competition_id": competition_id,
                    "submitted_at": now_iso(),
                    "votes": 0,
                }
            )

        # The remote insert runs unlocked; the unique constraint guards races there.
        if self._use_remote():
            self._insert_remote_entry(entry)

        with self._lock:
            # A vote may have reloaded the collection while the insert was in flight.
            competition = self.get_competition(competition_id) or competition
            if competition.find_entry(entry.id) is not None:
                return None
            if self.has_user_submitted(competition_id, entry.user_id):
                raise ValidationError(DUPLICATE_ENTRY_MESSAGE)
            competition.entries.append(entry)
            self._save_competitions()
        return None

    def add_vote(self, competition_id: str, entry_id: str, user_id: str) -> bool:
        """Record one vote per (competition, entry, user); False when already cast."""
        if self._use_remote():
            return self._cast_remote_vote(competition_id, entry_id, user_id)

        key = vote_key(competition_id, entry_id, user_id)
        with self._lock:
            if key in self.votes:
                return False
            self.votes.append(key)
            self._local.set(VOTES_KEY, list(self.votes))

            competition = self.get_competition(competition_id)
            entry = competition.find_entry(entry_id) if competition else None
            if entry is not None:
                entry.votes += 1
            self._save_competitions()
        return True

    # --------------------------------------------------------------- internals

    def _draft_competition(self, fields: Mapping[str, Any]) -> Competition:
        title = (fields.get("title") or "").strip()
        description = (fields.get("description") or "").strip()
        category = (fields.get("category") or "").strip().lower()
        end_date = fields.get("end_date") or fields.get("endDate") or None

        if not title:
            raise ValidationError("Please give the competition a title.")
        if not description:
            raise ValidationError("Please add a description.")
        if category not in CATEGORIES:
            raise ValidationError("Category must be photo, video or audio.")
        if end_date and parse_datetime(end_date) is None:
            raise ValidationError("End date is not a valid date.")

        profile = self._identity.profile
        return Competition(
            id="",
            title=title,
            description=description,
            category=category,
            end_date=end_date,
            rules=(fields.get("rules") or "").strip(),
            prize=(fields.get("prize") or "").strip(),
            created_by=profile.id if profile else ANONYMOUS_CREATOR,
            creator_name=profile.name if profile else ANONYMOUS_CREATOR,
            status=STATUS_ACTIVE,
            created_at=now_iso(),
            entries=[],
        )

    def _insert_remote_entry(self, entry: Entry) -> None:
        user_id = self._identity.remote_user_id
        payload = {
            "competition_id": entry.competition_id,
            "user_id": user_id,
            "media_file_id": entry.file_id,
            "votes": 0,
        }
        try:
            resp = self._client.table(ENTRIES_TABLE).insert(payload).execute()
        except Exception as exc:
            if is_conflict(exc):
                raise ValidationError(DUPLICATE_ENTRY_MESSAGE) from exc
            log_supabase_error("submitting entry", exc)
            raise RemoteDataError("Failed to submit entry. Please try again.") from exc

        rows = response_rows(resp)
        if rows:
            entry.id = str(rows[0].get("id") or entry.id)
            entry.submitted_at = rows[0].get("created_at") or entry.submitted_at
        entry.user_id = user_id

    def _cast_remote_vote(self, competition_id: str, entry_id: str, user_id: str) -> bool:
        params = {
            "p_competition_id": competition_id,
            "p_entry_id": entry_id,
            "p_user_id": user_id,
        }
        try:
            resp = self._client.rpc(CAST_VOTE_RPC, params).execute()
        except Exception as exc:
            if is_conflict(exc):
                return False
            log_supabase_error("casting vote", exc)
            raise RemoteDataError("Failed to record your vote. Please try again.") from exc

        if not _rpc_flag(getattr(resp, "data", None)):
            return False

        refreshed = self._load_remote_competitions()
        if refreshed is not None:
            with self._lock:
                self.competitions = refreshed
        return True

    def _load_remote_competitions(self) -> Optional[List[Competition]]:
        try:
            resp = (
                self._client.table(COMPETITIONS_TABLE)
                .select(COMPETITION_SELECT)
                .order("created_at", desc=True)
                .execute()
            )
        except Exception as exc:
            log_supabase_warning("fetching competitions", exc)
            return None

        competitions = [Competition.from_row(row) for row in response_rows(resp)]
        for competition in competitions:
            competition.entries.sort(key=_submitted_sort_key)
        return competitions

    def _save_competitions(self) -> None:
        self._local.set(COMPETITIONS_KEY, [competition.to_dict() for competition in self.competitions])


def _rpc_flag(data: Any) -> bool:
    if isinstance(data, list):
        data = data[0] if data else None
    if isinstance(data, dict):
        data = next(iter(data.values()), None)
    return bool(data)


def _submitted_sort_key(entry: Entry) -> datetime:
    return parse_datetime(entry.submitted_at) or datetime.min.replace(tzinfo=timezone.utc)


