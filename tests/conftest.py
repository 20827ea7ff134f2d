"""Shared fixtures: isolated settings, SQLite-backed stores, a controllable clock."""

from datetime import date, timedelta

import pytest

from studyrank.config import Settings
from studyrank.db.session import build_engine, build_session_factory, create_schema
from studyrank.storage.membership_store import SqlMembershipStore
from studyrank.storage.profile_store import SqlProfileStore
from studyrank.storage.progress_cache import LocalProgressCache

TODAY = date(2026, 3, 10)


class FakeClock:
    def __init__(self, today: date = TODAY):
        self.today = today

    def __call__(self) -> date:
        return self.today

    def advance(self, days: int = 1) -> None:
        self.today += timedelta(days=days)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        project_root=tmp_path,
        database_url=f"sqlite:///{tmp_path / 'studyrank.db'}",
        remote_save_delay_seconds=10.0,
    )


@pytest.fixture
def cache(tmp_path):
    return LocalProgressCache(tmp_path / "progress" / "local.json")


@pytest.fixture
def session_factory(settings):
    engine = build_engine(settings.resolved_database_url)
    create_schema(engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture
def profile_store(session_factory):
    return SqlProfileStore(session_factory)


@pytest.fixture
def membership_store(session_factory):
    return SqlMembershipStore(session_factory)
