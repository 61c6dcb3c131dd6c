"""Shared fixtures: an in-memory database and fake sheet/Telegram adapters."""

import os
import tempfile

os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("LOG_DIR", os.path.join(tempfile.gettempdir(), "autoposter-test-logs"))

import pytest

from core.database import init_db, make_engine
from core.repository import CampaignRepository, DatabaseLogSink
from tests.fakes import DAILY_SCHEDULE, NOW, SOURCE_CONFIG, TARGET_CONFIG, RecordingSink


@pytest.fixture
def engine():
    eng = make_engine("sqlite://")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def repo(engine):
    return CampaignRepository(engine)


@pytest.fixture
def db_sink(engine):
    return DatabaseLogSink(engine)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_campaign(repo):
    def _make(name="Daily digest", status="active", next_run_at=NOW, **overrides):
        fields = {
            "status": status,
            "source_config": SOURCE_CONFIG,
            "target_config": TARGET_CONFIG,
            "schedule_config": DAILY_SCHEDULE,
            "next_run_at": next_run_at,
        }
        fields.update(overrides)
        return repo.create(name, **fields)

    return _make
