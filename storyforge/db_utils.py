"""Database helper utilities for ensuring schema consistency."""
from __future__ import annotations

from typing import Iterable

from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError

from .extensions import db


def ensure_database_schema() -> None:
    """Create any tables missing from the configured database.

    Light-weight enough to run on every application start. Column changes
    to existing tables go through Flask-Migrate.
    """

    try:
        inspector = inspect(db.engine)
        table_names: Iterable[str] = inspector.get_table_names()

        if "users" not in table_names:
            db.create_all()
            return

        # Import locally to avoid circular import issues during application setup.
        from .models import Chapter, RevisionSessionRecord, RevisionTurnRecord, Story, StoryGeneration

        required_tables = {
            "stories": Story.__table__,
            "chapters": Chapter.__table__,
            "story_generations": StoryGeneration.__table__,
            "revision_sessions": RevisionSessionRecord.__table__,
            "revision_turns": RevisionTurnRecord.__table__,
        }

        for table_name, table in required_tables.items():
            if table_name not in table_names:
                table.create(bind=db.engine)
    except SQLAlchemyError:
        # A partially migrated schema must not be served.
        raise
