"""Current-profile ownership on top of Supabase Auth, with a local fallback record."""

from __future__ import annotations

import uuid
from typing import Any, Callable, List, Mapping, Optional

from flask import current_app

from backend import (
    AVATAR_BUCKET,
    PROFILES_TABLE,
    log_supabase_error,
    log_supabase_warning,
    now_iso,
    response_rows,
)
from errors import (
    AuthRequiresBackend,
    ConfigurationError,
    InvalidCredentials,
    RemoteAuthError,
    RemoteDataError,
    ValidationError,
)
from identity.profiles import Profile
from local_store import USER_KEY, LocalStore
from uploads import (
    AVATAR_MAX_BYTES,
    IMAGE_CLASSES,
    delete_file,
    path_from_public_url,
    read_upload,
    store_file,
    to_data_url,
    validate_upload,
)

AVATAR_FOLDER = "profiles"

ProfileListener = Callable[[Optional[Profile]], None]


class IdentityFacade:
    """Owns the single current profile (or none) and every auth operation.

    With a Supabase client the profile is driven by the auth-state listener
    registered at construction: `login()` returns a provisional profile built
    from the auth user, and the stored profile row arrives through the
    `SIGNED_IN` notification. Consumers that need the final record should
    `subscribe()` rather than rely on return values.
    """

    def __init__(
        self,
        client=None,
        local_store: Optional[LocalStore] = None,
        *,
        password_reset_redirect: Optional[str] = None,
        user_key: str = USER_KEY,
        backend_error: Optional[str] = None,
    ):
        self._client = client
        self._local = local_store or LocalStore()
        self._password_reset_redirect = password_reset_redirect
        self._user_key = user_key
        # Set when Supabase is enabled and configured but no client could be built.
        self._backend_error = backend_error
        self._listeners: List[ProfileListener] = []
        self._profile: Optional[Profile] = None
        self._remote_user_id: Optional[str] = None
        self.loading = True
        self.busy = False
        self._auth_subscription = None
        if self._client is not None:
            self._auth_subscription = self._client.auth.on_auth_state_change(self._handle_auth_event)

    # ------------------------------------------------------------------ state

    @property
    def backend_configured(self) -> bool:
        return self._client is not None

    @property
    def client(self):
        return self._client

    @property
    def profile(self) -> Optional[Profile]:
        return self._profile

    @property
    def is_authenticated(self) -> bool:
        return self._profile is not None

    @property
    def is_remote_backed(self) -> bool:
        return self.backend_configured and self._remote_user_id is not None

    @property
    def backend_error(self) -> Optional[str]:
        return self._backend_error

    @property
    def remote_user_id(self) -> Optional[str]:
        return self._remote_user_id

    def subscribe(self, listener: ProfileListener) -> Callable[[], None]:
        """Register for profile changes; returns a callable that unsubscribes."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def initialize(self) -> Optional[Profile]:
        """Resolve the starting session from Supabase or the saved local record."""
        self.loading = True
        try:
            if self.backend_configured:
                self._restore_remote_session()
            else:
                saved = self._local.get(self._user_key)
                if isinstance(saved, dict) and saved.get("id"):
                    self._set_profile(Profile.from_row(saved))
        finally:
            self.loading = False
        return self._profile

    # ------------------------------------------------------------- operations

    def register(self, email: str, password: str, profile_fields: Optional[Mapping[str, Any]] = None) -> Profile:
        fields = dict(profile_fields or {})
        email = _clean_email(email)
        name = (fields.get("name") or "").strip()
        if not email:
            raise ValidationError("Please enter a valid email address.")
        if not name:
            raise ValidationError("Please enter your name.")
        self._check_backend_reachable()

        self.busy = True
        try:
            if self.backend_configured:
                return self._register_remote(email, password, name, fields)
            return self._register_local(email, name, fields)
        finally:
            self.busy = False

    def login(self, email: str, password: str) -> Profile:
        """Sign in against Supabase. The returned profile is provisional."""
        self._check_backend_reachable()
        if not self.backend_configured:
            raise AuthRequiresBackend("Sign in needs a connected backend. Create a profile instead.")
        email = _clean_email(email)
        if not email or not password:
            raise ValidationError("Please enter your email and password.")

        self.busy = True
        try:
            try:
                resp = self._client.auth.sign_in_with_password({"email": email, "password": password})
            except Exception as exc:
                if _is_invalid_credentials(exc):
                    raise InvalidCredentials("Invalid email or password.") from exc
                log_supabase_error("signing in", exc)
                raise RemoteAuthError("Sign in failed. Please try again.") from exc
        finally:
            self.busy = False

        user = getattr(resp, "user", None)
        if user is None:
            raise InvalidCredentials("Invalid email or password.")
        return Profile.from_auth_user(user)

    def logout(self) -> None:
        """Always clears the local session, even if the remote sign-out fails."""
        self.busy = True
        try:
            if self.backend_configured:
                try:
                    self._client.auth.sign_out()
                except Exception as exc:
                    log_supabase_warning("signing out", exc)
            self._remote_user_id = None
            self._local.remove(self._user_key)
            self._set_profile(None)
        finally:
            self.busy = False

    def update_profile(self, fields: Mapping[str, Any]) -> Profile:
        current = self._profile
        if current is None:
            raise ValidationError("Please sign in before updating your profile.")

        merged = current.merged(fields)
        self.busy = True
        try:
            if self.is_remote_backed:
                self._save_remote_profile(merged)
            else:
                self._local.set(self._user_key, merged.to_dict())
        finally:
            self.busy = False
        self._set_profile(merged)
        return merged

    def send_password_reset(self, email: str) -> None:
        self._check_backend_reachable()
        if not self.backend_configured:
            raise AuthRequiresBackend("Password reset needs a connected backend.")
        email = _clean_email(email)
        if not email:
            raise ValidationError("Please enter a valid email address.")

        options = {"redirect_to": self._password_reset_redirect} if self._password_reset_redirect else {}
        self.busy = True
        try:
            self._client.auth.reset_password_for_email(email, options)
        except Exception as exc:
            log_supabase_error("sending password reset", exc)
            raise RemoteAuthError("Failed to send password reset email.") from exc
        finally:
            self.busy = False

    def upload_avatar(self, file_storage) -> str:
        """Store an avatar image and return the URL (or data URL) to put on the profile."""
        upload = read_upload(file_storage)
        validate_upload(upload, IMAGE_CLASSES, AVATAR_MAX_BYTES)
        if self.is_remote_backed:
            stored = store_file(self._client, upload, AVATAR_BUCKET, AVATAR_FOLDER, self._remote_user_id)
            return stored.public_url
        return to_data_url(upload)

    def remove_avatar(self) -> Profile:
        """Clear the avatar; a replaced bucket object is deleted best-effort."""
        current = self._profile
        if current is None:
            raise ValidationError("Please sign in before updating your profile.")

        stored_path = path_from_public_url(current.avatar, AVATAR_BUCKET) if self.is_remote_backed else None
        profile = self.update_profile({"avatar": None})
        if stored_path:
            try:
                delete_file(self._client, stored_path, AVATAR_BUCKET)
            except RemoteDataError as exc:
                current_app.logger.warning("Old avatar %s was not removed: %s", stored_path, exc)
        return profile

    # --------------------------------------------------------------- internals

    def _check_backend_reachable(self) -> None:
        if self._backend_error:
            raise ConfigurationError(self._backend_error)

    def _register_local(self, email: str, name: str, fields: dict) -> Profile:
        profile = Profile(
            id=str(uuid.uuid4()),
            email=email,
            name=name,
            bio=fields.get("bio") or "",
            location=fields.get("location") or "",
            avatar=fields.get("avatar") or None,
            created_at=now_iso(),
        )
        self._local.set(self._user_key, profile.to_dict())
        self._set_profile(profile)
        return profile

    def _register_remote(self, email: str, password: str, name: str, fields: dict) -> Profile:
        try:
            resp = self._client.auth.sign_up(
                {
                    "email": email,
                    "password": password,
                    "options": {
                        "data": {
                            "name": name,
                            "bio": fields.get("bio") or "",
                            "location": fields.get("location") or "",
                        }
                    },
                }
            )
        except Exception as exc:
            log_supabase_error("signing up", exc)
            raise RemoteAuthError(_auth_error_message(exc, "Registration failed. Please try again.")) from exc

        user = getattr(resp, "user", None)
        if user is None:
            raise RemoteAuthError("Registration failed. Please try again.")

        profile = Profile.from_auth_user(user).merged(
            {
                "name": name,
                "bio": fields.get("bio") or "",
                "location": fields.get("location") or "",
                "avatar": fields.get("avatar") or None,
            }
        )
        if getattr(resp, "session", None) is not None:
            self._remote_user_id = profile.id
        try:
            self._client.table(PROFILES_TABLE).upsert(profile.to_remote_row()).execute()
        except Exception as exc:
            log_supabase_warning("provisioning profile row", exc)
        self._set_profile(profile)
        return profile

    def _restore_remote_session(self) -> None:
        try:
            session = self._client.auth.get_session()
        except Exception as exc:
            log_supabase_warning("restoring session", exc)
            return
        user = getattr(session, "user", None) if session else None
        if user is not None:
            self._sign_in_user(user)

    def _handle_auth_event(self, event, session) -> None:
        event_name = str(getattr(event, "value", event))
        if event_name == "SIGNED_OUT":
            self._remote_user_id = None
            self._set_profile(None)
            return

        user = getattr(session, "user", None) if session else None
        if user is None:
            return
        if event_name == "TOKEN_REFRESHED" and self._remote_user_id == str(user.id) and self._profile:
            return
        self._sign_in_user(user)

    def _sign_in_user(self, user) -> None:
        user_id = str(user.id)
        self._remote_user_id = user_id
        profile = self._fetch_remote_profile(user_id)
        if profile is None:
            profile = Profile.from_auth_user(user)
            try:
                self._client.table(PROFILES_TABLE).upsert(profile.to_remote_row()).execute()
            except Exception as exc:
                log_supabase_warning("provisioning profile row", exc)
        self._set_profile(profile)

    def _fetch_remote_profile(self, user_id: str) -> Optional[Profile]:
        try:
            resp = (
                self._client.table(PROFILES_TABLE)
                .select("*")
                .eq("id", user_id)
                .limit(1)
                .execute()
            )
        except Exception as exc:
            log_supabase_warning("fetching profile", exc)
            return None
        rows = response_rows(resp)
        return Profile.from_row(rows[0]) if rows else None

    def _save_remote_profile(self, profile: Profile) -> None:
        """Update the profile row, creating it when the update finds nothing."""
        row = profile.to_remote_row()
        changes = {key: value for key, value in row.items() if key not in ("id", "email")}
        changes["updated_at"] = now_iso()
        try:
            resp = self._client.table(PROFILES_TABLE).update(changes).eq("id", profile.id).execute()
            if response_rows(resp):
                return
            current_app.logger.info("Profile %s missing remotely; creating it", profile.id)
        except Exception as exc:
            log_supabase_warning("updating profile", exc)

        try:
            self._client.table(PROFILES_TABLE).insert(row).execute()
        except Exception as exc:
            log_supabase_error("creating profile", exc)

    def _set_profile(self, profile: Optional[Profile]) -> None:
        if profile == self._profile:
            return
        self._profile = profile
        for listener in list(self._listeners):
            listener(profile)


def _clean_email(value: Optional[str]) -> str:
    cleaned = (value or "").strip()
    if "@" not in cleaned:
        return ""
    return cleaned


def _is_invalid_credentials(exc: Exception) -> bool:
    message = str(exc).lower()
    return "invalid login credentials" in message or "invalid_credentials" in message


def _auth_error_message(exc: Exception, fallback: str) -> str:
    message = getattr(exc, "message", None) or str(exc)
    message = (message or "").strip()
    if not message or len(message) > 200:
        return fallback
    return message
