"""Error taxonomy shared by the identity and content facades."""

from __future__ import annotations

from typing import Any, Dict, Optional


class CompetitionHubError(Exception):
    """Raised when a facade operation fails; carries a JSON-ready payload."""

    status_code = 400
    error_code = "request_failed"

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        self.payload = payload or {"error": self.error_code, "message": message}


class ConfigurationError(CompetitionHubError):
    """The operation needs a backend that is missing or misconfigured."""

    status_code = 503
    error_code = "backend_unavailable"


class AuthRequiresBackend(CompetitionHubError):
    status_code = 400
    error_code = "auth_requires_backend"


class RemoteAuthError(CompetitionHubError):
    """The backend rejected a sign-up, sign-in or reset request."""

    status_code = 502
    error_code = "auth_failed"


class InvalidCredentials(RemoteAuthError):
    status_code = 401
    error_code = "invalid_credentials"


class ValidationError(CompetitionHubError):
    status_code = 400
    error_code = "invalid_request"


class RemoteDataError(CompetitionHubError):
    """A backend query or mutation failed."""

    status_code = 502
    error_code = "backend_error"
