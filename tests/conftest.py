"""Shared fixtures: an in-memory SQLite store and helpers to seed it."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import datetime, timedelta
from typing import List

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from tagbox_feeder.config import Settings
from tagbox_feeder.context import SiteContext
from tagbox_feeder.events import TagEvent
from tagbox_feeder.infrastructure import db
from tagbox_feeder.infrastructure.db import Base, override_engine
from tagbox_feeder.models.tables import (
    Globj, GlobjType, Tag, Tagbox as TagboxRow, TagboxUserKeyRegex, TagDeactivated,
)
from tagbox_feeder.tagbox import Scorer

T0 = datetime(2024, 1, 1, 12, 0, 0)

STORY = 1
COMMENT = 2
JOURNAL = 3


class RecordingScorer(Scorer):
    """Default processing; remembers every run() call."""

    def __init__(self):
        self.runs: List[int] = []

    def run(self, tagbox, affected_id, **options):
        self.runs.append(affected_id)
        return True


class Seeder:
    def __init__(self, session_factory):
        self.session_factory = session_factory
        self._clock = 0

    def tagbox(self, name, weight=1.0, affected_type="object", nosy="", params=None, regexes=()):
        with self.session_factory() as s:
            row = TagboxRow(name=name, weight=weight, affected_type=affected_type, nosy_gtids=nosy, params=params or {})
            s.add(row)
            s.flush()
            for r in regexes:
                s.add(TagboxUserKeyRegex(name=name, userkeyregex=r))
            s.commit()
            return row.tbid

    def globj_type(self, gtid, maintable):
        with self.session_factory() as s:
            s.add(GlobjType(gtid=gtid, maintable=maintable))
            s.commit()

    def globj(self, globjid, gtid, target_id=None):
        with self.session_factory() as s:
            s.add(Globj(globjid=globjid, gtid=gtid, target_id=target_id or globjid * 10))
            s.commit()

    def tag(self, globjid, uid, tagnameid=1, created_at=None, inactivated=None):
        self._clock += 1
        with self.session_factory() as s:
            row = Tag(
                globjid=globjid,
                uid=uid,
                tagnameid=tagnameid,
                created_at=created_at or T0 + timedelta(minutes=self._clock),
                inactivated=inactivated,
            )
            s.add(row)
            s.commit()
            return row.tagid

    def deactivate(self, tagid):
        with self.session_factory() as s:
            tag = s.get(Tag, tagid)
            tag.inactivated = T0 + timedelta(days=1)
            row = TagDeactivated(tagid=tagid)
            s.add(row)
            s.commit()
            return row.tdid


def make_event(tag_id, entity_id, user_id=100, tag_name_id=1, inactivated=None, deactivation_id=None):
    return TagEvent(
        tag_id=tag_id,
        entity_id=entity_id,
        user_id=user_id,
        tag_name_id=tag_name_id,
        created_at=T0,
        inactivated=inactivated,
        deactivation_id=deactivation_id,
    )


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", poolclass=StaticPool, connect_args={"check_same_thread": False})
    Base.metadata.create_all(engine)
    override_engine(engine)
    yield db.SessionLocal
    engine.dispose()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def seed(session_factory):
    s = Seeder(session_factory)
    s.globj_type(STORY, "stories")
    s.globj_type(COMMENT, "comments")
    s.globj_type(JOURNAL, "journals")
    return s


@pytest.fixture
def make_context(session_factory, settings):
    """Build a SiteContext with the given name -> scorer factory map."""
    contexts = []

    def _make(scorers, **kwargs):
        ctx = SiteContext(session_factory=session_factory, settings=kwargs.pop("settings", settings), scorers=scorers, **kwargs)
        contexts.append(ctx)
        return ctx

    yield _make
    for ctx in contexts:
        ctx.close()
