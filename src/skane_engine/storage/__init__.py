"""Persistence sub-package — async SQLAlchemy tables and repositories."""

from skane_engine.storage.repository import MigrationRepository, SessionRepository

__all__ = ["MigrationRepository", "SessionRepository"]
