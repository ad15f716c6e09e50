"""Competitions, entries, votes and media files (store + JSON blueprint)."""

from .routes import create_content_blueprint
from .store import ContentStore

__all__ = ["ContentStore", "create_content_blueprint"]
