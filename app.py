import os
from functools import partial
from typing import Any, Mapping, Optional

from flask import Flask, jsonify
from werkzeug.exceptions import RequestEntityTooLarge

from backend import build_supabase_client, credentials_configured
from content import ContentStore, create_content_blueprint
from errors import CompetitionHubError
from extensions import db
from identity import IdentityFacade, create_identity_blueprint
from local_store import LocalStore
from session_registry import SessionRegistry
from uploads import MEDIA_MAX_BYTES

DEFAULT_DATABASE_URL = "sqlite:///competition_hub.db"
BACKEND_MISCONFIGURED = "The backend is configured but unavailable. Check SUPABASE_URL and SUPABASE_KEY."


# ====== Feature toggle ======
def _env_flag(name: str, default: bool) -> bool:
    """Parse truthy feature-toggle values from the environment."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def create_app(config: Optional[Mapping[str, Any]] = None) -> Flask:
    """Build the app, its Supabase client (if any), the facades and the session registry."""
    app = Flask(__name__)
    app.config.update(
        SECRET_KEY=os.environ.get("FLASK_SECRET_KEY") or os.urandom(24),
        USE_SUPABASE=_env_flag("USE_SUPABASE", True),
        SUPABASE_URL=os.environ.get("SUPABASE_URL"),
        SUPABASE_KEY=os.environ.get("SUPABASE_KEY"),
        SUPABASE_CLIENT=None,
        SUPABASE_CLIENT_FACTORY=None,
        SQLALCHEMY_DATABASE_URI=os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL),
        SQLALCHEMY_TRACK_MODIFICATIONS=False,
        PASSWORD_RESET_REDIRECT_URL=os.environ.get("PASSWORD_RESET_REDIRECT_URL"),
        # Multipart overhead on top of the largest accepted media file.
        MAX_CONTENT_LENGTH=MEDIA_MAX_BYTES + 1024 * 1024,
        LOG_LEVEL=os.environ.get("LOG_LEVEL", "INFO"),
    )
    if config:
        app.config.update(config)
    app.logger.setLevel(str(app.config["LOG_LEVEL"]).upper())

    db.init_app(app)

    with app.app_context():
        # ====== Supabase setup ======
        enabled = bool(app.config.get("USE_SUPABASE"))
        client_factory = app.config.get("SUPABASE_CLIENT_FACTORY") or partial(
            build_supabase_client,
            enabled,
            app.config.get("SUPABASE_URL"),
            app.config.get("SUPABASE_KEY"),
        )
        client = app.config.get("SUPABASE_CLIENT")
        if client is None:
            client = client_factory()
        app.config["SUPABASE_CLIENT"] = client

        backend_error = None
        if client is None and enabled and credentials_configured(
            app.config.get("SUPABASE_URL"), app.config.get("SUPABASE_KEY")
        ):
            app.logger.error("Supabase is enabled and configured but no client could be created")
            backend_error = BACKEND_MISCONFIGURED

        db.create_all()
        identity = IdentityFacade(
            client,
            LocalStore(),
            password_reset_redirect=app.config.get("PASSWORD_RESET_REDIRECT_URL"),
            backend_error=backend_error,
        )
        identity.initialize()
        store = ContentStore(identity, LocalStore())
        store.initialize()
        app.logger.info(
            "Competition hub storage: %s", "Supabase" if identity.backend_configured else "local fallback"
        )

    sessions = SessionRegistry(
        store,
        client_factory,
        backend_enabled=client is not None,
        backend_error=backend_error,
        password_reset_redirect=app.config.get("PASSWORD_RESET_REDIRECT_URL"),
    )
    app.config["IDENTITY_FACADE"] = identity
    app.config["CONTENT_STORE"] = store
    app.config["SESSION_REGISTRY"] = sessions

    app.register_blueprint(create_identity_blueprint(sessions))
    app.register_blueprint(create_content_blueprint(sessions, store))

    @app.errorhandler(CompetitionHubError)
    def handle_service_error(exc: CompetitionHubError):
        return jsonify(exc.payload), exc.status_code

    @app.errorhandler(RequestEntityTooLarge)
    def handle_too_large(_exc):
        message = f"File is too large. Maximum size is {MEDIA_MAX_BYTES // (1024 * 1024)}MB."
        return jsonify({"error": "file_too_large", "message": message}), 413

    @app.get("/api/status")
    def status():
        current = sessions.current(create=False)
        return jsonify(
            {
                "backend": "supabase" if identity.backend_configured else "local",
                "backend_configured": identity.backend_configured,
                "backend_error": backend_error,
                "authenticated": bool(current and current.is_authenticated),
                "remote_session": bool(current and current.is_remote_backed),
                "loading": bool(current and current.loading) or store.loading,
                "busy": bool(current and current.busy),
            }
        )

    return app


if __name__ == "__main__":
    create_app().run(debug=_env_flag("FLASK_DEBUG", False))
