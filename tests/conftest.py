"""Shared fixtures: in-memory database, fake Graph API, recorded sleeps."""

import os
import tempfile

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("IMAGE_CACHE_DIR", tempfile.mkdtemp(prefix="adsync-media-"))

import pytest  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

import app.models.project_models  # noqa: F401,E402
import app.models.entity_models  # noqa: F401,E402
import app.models.metric_models  # noqa: F401,E402
import app.models.history_models  # noqa: F401,E402
from app.models.project_models import Project  # noqa: E402
from tests.helpers import FakeGraph, SleepRecorder  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def project(session) -> Project:
    project = Project(id="p1", user_id="u1", name="Loja Centro", ad_account_id="act_123")
    session.add(project)
    session.commit()
    session.refresh(project)
    return project


@pytest.fixture
def sleep() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def graph() -> FakeGraph:
    return FakeGraph()
