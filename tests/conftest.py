import os
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["APP_SECRET"] = "test-secret"

import random
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from assessment_engine.core.auth import create_token
from assessment_engine.core.config import settings
from assessment_engine.core.database import get_db
from assessment_engine.main import app
from assessment_engine.models.orm import Base, Question, QuestionOption, QuestionSet, QuestionSetItem, Tag, Topic
from assessment_engine.services.attempts import get_tracker


class FakeClock:
    def __init__(self, start=datetime(2024, 3, 1, 9, 0, 0)):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool, future=True)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False, future=True)


@pytest.fixture
def db(session_factory):
    s = session_factory()
    yield s
    s.close()


@pytest.fixture
def topic(db):
    t = Topic(name="Cardiology")
    db.add(t); db.flush()
    return t


@pytest.fixture
def make_question(db, topic):
    def _make(difficulty="medium", correct="A", labels=("A", "B", "C", "D"), points=1, active=True, topic_id=None, tags=()):
        q = Question(
            content=f"Stem ({difficulty})", correct_label=correct, explanation="Because.", difficulty=difficulty,
            points=points, topic_id=topic_id or topic.id, created_by="author-1", is_active=active,
        )
        q.options = [QuestionOption(position=i, label=l, text=f"Option {l}") for i, l in enumerate(labels)]
        q.tags = list(tags)
        db.add(q); db.flush()
        return q
    return _make


@pytest.fixture
def make_tag(db):
    def _make(name):
        t = Tag(name=name)
        db.add(t); db.flush()
        return t
    return _make


@pytest.fixture
def make_set(db):
    def _make(questions, published=True, time_limit=None, passing=None, points=None):
        qs = QuestionSet(
            title="Set", created_by="author-1", time_limit_minutes=time_limit, passing_score=passing,
            is_published=published,
        )
        pts = points or [1] * len(questions)
        qs.items = [QuestionSetItem(question_id=q.id, points=p, position=i) for i, (q, p) in enumerate(zip(questions, pts))]
        qs.total_points = sum(pts)
        db.add(qs); db.commit()
        return qs
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def tracker(db, clock):
    return get_tracker(db, settings, clock)


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def client(session_factory):
    def override_get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()
    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth(user_id, *roles):
    return {"Authorization": f"Bearer {create_token(user_id, list(roles))}"}


@pytest.fixture
def headers():
    return auth
