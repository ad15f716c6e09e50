"""JSON endpoints for registration, sign-in, and the current profile."""

from __future__ import annotations

from typing import Optional

from flask import Blueprint, jsonify, request

from identity.facade import IdentityFacade
from identity.profiles import Profile

PROFILE_FIELDS = ("name", "bio", "location", "avatar")
MIN_PASSWORD_LENGTH = 6


def create_identity_blueprint(sessions) -> Blueprint:
    """Factory so the app can inject the session registry it built at start-up."""

    bp = Blueprint("identity", __name__, url_prefix="/api")

    def _signed_in() -> Optional[IdentityFacade]:
        identity = sessions.current(create=False)
        if identity is not None and identity.profile:
            return identity
        return None

    def _not_authenticated():
        return jsonify({"error": "not_authenticated", "message": "Please sign in first."}), 401

    @bp.post("/auth/register")
    def register():
        payload = request.get_json(silent=True) or {}
        password = payload.get("password") or ""
        if len(password) < MIN_PASSWORD_LENGTH:
            message = f"Password must be at least {MIN_PASSWORD_LENGTH} characters long."
            return jsonify({"error": "invalid_request", "message": message}), 400

        identity = sessions.current()
        profile_fields = {key: payload.get(key) for key in PROFILE_FIELDS if key in payload}
        profile = identity.register(payload.get("email"), password, profile_fields)
        return jsonify({"profile": profile.to_dict(), "authenticated": identity.is_authenticated}), 201

    @bp.post("/auth/login")
    def login():
        payload = request.get_json(silent=True) or {}
        identity = sessions.current()
        provisional = identity.login(payload.get("email"), payload.get("password"))
        current = identity.profile
        return jsonify(
            {
                "profile": current.to_dict() if current else provisional.to_dict(),
                "provisional": current is None,
                "authenticated": identity.is_authenticated,
            }
        )

    @bp.post("/auth/logout")
    def logout():
        identity = sessions.current(create=False)
        if identity is not None:
            identity.logout()
        return jsonify({"status": "ok", "authenticated": False})

    @bp.post("/auth/password-reset")
    def password_reset():
        payload = request.get_json(silent=True) or {}
        sessions.current().send_password_reset(payload.get("email"))
        return jsonify({"status": "sent", "message": "Password reset email sent! Check your inbox."})

    @bp.get("/profile")
    def current_profile():
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        return jsonify({"profile": identity.profile.to_dict(), "remote": identity.is_remote_backed})

    @bp.patch("/profile")
    def update_profile():
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        payload = request.get_json(silent=True) or {}
        updated = identity.update_profile({key: payload[key] for key in Profile.EDITABLE_FIELDS if key in payload})
        return jsonify({"profile": updated.to_dict()})

    @bp.post("/profile/avatar")
    def upload_avatar():
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        avatar_url = identity.upload_avatar(request.files.get("avatar"))
        updated = identity.update_profile({"avatar": avatar_url})
        return jsonify({"profile": updated.to_dict(), "avatar": avatar_url})

    @bp.delete("/profile/avatar")
    def remove_avatar():
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        updated = identity.remove_avatar()
        return jsonify({"profile": updated.to_dict()})

    return bp
