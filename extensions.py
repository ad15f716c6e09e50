"""Shared Flask extensions used by the local fallback store."""

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy instance initialized in app.py so facades can import `db`.
db = SQLAlchemy()
