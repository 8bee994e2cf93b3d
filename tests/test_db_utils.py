import sys
from pathlib import Path

import pytest
from sqlalchemy import inspect

sys.path.append(str(Path(__file__).resolve().parents[1]))

from storyforge import create_app
from storyforge.config import TestConfig
from storyforge.db_utils import ensure_database_schema
from storyforge.extensions import db
from storyforge.models import RevisionTurnRecord


@pytest.fixture()
def app():
    app = create_app(TestConfig)
    ctx = app.app_context()
    ctx.push()
    db.create_all()
    yield app
    db.session.remove()
    db.drop_all()
    ctx.pop()


def test_missing_tables_are_recreated(app):
    RevisionTurnRecord.__table__.drop(bind=db.engine)
    assert "revision_turns" not in inspect(db.engine).get_table_names()

    ensure_database_schema()

    assert "revision_turns" in inspect(db.engine).get_table_names()
