"""Shared Flask extensions for the salon backend."""
from __future__ import annotations

from flask_sqlalchemy import SQLAlchemy

# SQLAlchemy database instance shared across the app.
db = SQLAlchemy()
