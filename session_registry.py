"""Per-browser identity facades, keyed by an id kept in the Flask session."""

from __future__ import annotations

import threading
import uuid
from collections import OrderedDict
from typing import Callable, Optional

from flask import current_app, session

from content.store import ContentStore
from identity.facade import IdentityFacade
from local_store import USER_KEY, LocalStore

SESSION_KEY = "hub_session"
DEFAULT_MAX_SESSIONS = 1000
CLIENT_UNAVAILABLE = "Could not connect to the backend. Please try again later."


class SessionRegistry:
    """Hands each browser session its own IdentityFacade.

    Every facade gets its own Supabase client (auth state lives on the client)
    and, in local mode, its own saved profile record. Content views share the
    collections of the app-wide store. The least recently used facades are
    dropped once `max_sessions` is exceeded; their visitors sign in again.
    """

    def __init__(
        self,
        store: ContentStore,
        client_factory: Optional[Callable[[], object]] = None,
        *,
        backend_enabled: bool = False,
        backend_error: Optional[str] = None,
        password_reset_redirect: Optional[str] = None,
        max_sessions: int = DEFAULT_MAX_SESSIONS,
    ):
        self._store = store
        self._client_factory = client_factory
        self._backend_enabled = backend_enabled
        self._backend_error = backend_error
        self._password_reset_redirect = password_reset_redirect
        self._max_sessions = max_sessions
        self._lock = threading.Lock()
        self._facades: "OrderedDict[str, IdentityFacade]" = OrderedDict()

    def current(self, create: bool = True) -> Optional[IdentityFacade]:
        """The facade for this request's session; None when absent and not created."""
        session_id = session.get(SESSION_KEY)
        if not session_id:
            if not create:
                return None
            session_id = uuid.uuid4().hex
            session[SESSION_KEY] = session_id

        with self._lock:
            facade = self._facades.get(session_id)
            if facade is not None:
                self._facades.move_to_end(session_id)
                return facade
        if not create:
            return None

        facade = self._build(session_id)
        with self._lock:
            facade = self._facades.setdefault(session_id, facade)
            self._facades.move_to_end(session_id)
            while len(self._facades) > self._max_sessions:
                self._facades.popitem(last=False)
        return facade

    def content(self, identity: Optional[IdentityFacade] = None) -> ContentStore:
        """The shared store acting for `identity` (default: this session's facade)."""
        return self._store.for_identity(identity or self.current())

    def __len__(self) -> int:
        return len(self._facades)

    def _build(self, session_id: str) -> IdentityFacade:
        client = None
        backend_error = self._backend_error
        if self._backend_enabled and self._client_factory is not None:
            client = self._client_factory()
            if client is None:
                current_app.logger.warning("Supabase client unavailable for session %s", session_id[:8])
                backend_error = CLIENT_UNAVAILABLE
        facade = IdentityFacade(
            client,
            LocalStore(),
            password_reset_redirect=self._password_reset_redirect,
            user_key=f"{USER_KEY}:{session_id}",
            backend_error=backend_error,
        )
        facade.initialize()
        return facade
