"""JSON endpoints for competitions, entries, votes, and media uploads."""

from __future__ import annotations

from typing import Optional

from flask import Blueprint, jsonify, request

from content.records import CATEGORIES, STATUSES, Competition
from content.store import ContentStore
from errors import CompetitionHubError
from identity.facade import IdentityFacade


def create_content_blueprint(sessions, store: ContentStore) -> Blueprint:
    """Factory wiring the shared content store and the registry that resolves the caller."""

    bp = Blueprint("content", __name__, url_prefix="/api")

    def _signed_in() -> Optional[IdentityFacade]:
        identity = sessions.current(create=False)
        if identity is not None and identity.profile:
            return identity
        return None

    def _not_authenticated():
        return jsonify({"error": "not_authenticated", "message": "Please sign in first."}), 401

    def _competition_payload(competition: Competition, identity: Optional[IdentityFacade]) -> dict:
        profile = identity.profile if identity else None
        data = competition.to_dict()
        entries = []
        for entry in competition.ranked_entries():
            entry_data = entry.to_dict()
            if profile:
                entry_data["has_voted"] = sessions.content(identity).has_user_voted(
                    competition.id, entry.id, profile.id
                )
            entries.append(entry_data)
        data["entries"] = entries
        data["entry_count"] = len(entries)
        if profile:
            data["has_submitted"] = store.has_user_submitted(competition.id, profile.id)
        return data

    @bp.get("/competitions")
    def list_competitions():
        category = _clean_or_none(request.args.get("category"))
        status = _clean_or_none(request.args.get("status"))
        if category and category not in CATEGORIES:
            return _json_bad_filter("category", CATEGORIES)
        if status and status not in STATUSES:
            return _json_bad_filter("status", STATUSES)
        competitions = store.list_competitions(category=category, status=status)
        return jsonify([competition.to_dict() for competition in competitions])

    @bp.post("/competitions")
    def create_competition():
        payload = request.get_json(silent=True) or {}
        competition = sessions.content().add_competition(payload)
        return jsonify(competition.to_dict()), 201

    @bp.get("/competitions/<competition_id>")
    def competition_detail(competition_id: str):
        competition = store.get_competition(competition_id)
        if not competition:
            return _json_not_found()
        return jsonify(_competition_payload(competition, _signed_in()))

    @bp.post("/competitions/<competition_id>/entries")
    def submit_entry(competition_id: str):
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        competition = store.get_competition(competition_id)
        if not competition:
            return _json_not_found()

        profile = identity.profile
        view = sessions.content(identity)
        payload = request.get_json(silent=True) or {}
        media_file_id = str(payload.get("media_file_id") or "")
        media = next(
            (item for item in view.get_user_media_files(profile.id) if item.id == media_file_id),
            None,
        )
        if media is None:
            return (
                jsonify({"error": "media_not_found", "message": "Choose one of your uploaded files to submit."}),
                400,
            )

        view.add_entry_to_competition(
            competition_id,
            {
                "user_id": profile.id,
                "user_name": profile.name,
                "file_id": media.id,
                "file_name": media.name,
                "file_url": media.url,
                "file_type": media.mime_type,
            },
        )
        competition = store.get_competition(competition_id) or competition
        return jsonify(_competition_payload(competition, identity)), 201

    @bp.post("/competitions/<competition_id>/entries/<entry_id>/vote")
    def vote(competition_id: str, entry_id: str):
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        if not store.get_competition(competition_id):
            return _json_not_found()

        voted = sessions.content(identity).add_vote(competition_id, entry_id, identity.profile.id)
        competition = store.get_competition(competition_id)
        entry = competition.find_entry(entry_id) if competition else None
        body = {"voted": voted, "votes": entry.votes if entry else None}
        if not voted:
            body["message"] = "You have already voted for this entry."
        return jsonify(body)

    @bp.get("/media")
    def list_media():
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        files = sessions.content(identity).get_user_media_files(identity.profile.id)
        return jsonify([media.to_dict() for media in files])

    @bp.post("/media")
    def upload_media():
        identity = _signed_in()
        if identity is None:
            return _not_authenticated()
        files = request.files.getlist("file")
        if not files:
            return jsonify({"error": "missing_file", "message": "Please choose a file to upload."}), 400

        view = sessions.content(identity)
        uploaded, errors = [], []
        for file_storage in files:
            try:
                uploaded.append(view.upload_media(file_storage).to_dict())
            except CompetitionHubError as exc:
                errors.append({"file": file_storage.filename, "message": exc.message})

        status_code = 201 if uploaded else 400
        return jsonify({"uploaded": uploaded, "errors": errors}), status_code

    return bp


def _json_not_found():
    return jsonify({"error": "not_found", "message": "Competition not found"}), 404


def _json_bad_filter(name: str, allowed) -> tuple:
    message = f"Unknown {name}. Choose one of: {', '.join(allowed)}."
    return jsonify({"error": "invalid_filter", "message": message}), 400


def _clean_or_none(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = value.strip().lower()
    return cleaned or None
