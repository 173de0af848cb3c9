import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from retort.core.config import get_settings
from retort.db.base import create_engine, create_sessionmaker, init_db
from retort.repos.message_repo import MessageRepo

RETORT_ENV_VARS = (
    "RETORT_DATABASE_PATH",
    "RETORT_STREAM",
    "RETORT_LOG_LEVEL",
    "RETORT_LLM_PROVIDER",
    "RETORT_LLM_MODEL",
    "RETORT_LLM_BASE_URL",
    "RETORT_PROMPTS_DIR",
    "GOOGLE_API_KEY",
    "OPENAI_API_KEY",
    "MOCK_LLM",
    "MOCK_LLM_CONTENT",
)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def home(tmp_path, monkeypatch):
    """Point HOME at an empty directory and clear every retort variable."""

    home_dir = tmp_path / "home"
    home_dir.mkdir()
    monkeypatch.setenv("HOME", str(home_dir))
    for name in RETORT_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield home_dir
    get_settings.cache_clear()


@pytest.fixture
def cli_env(home, tmp_path, monkeypatch):
    """Settings for CLI runs: a throwaway database and the mocked model."""

    db_path = tmp_path / "retort.db"
    monkeypatch.setenv("RETORT_DATABASE_PATH", str(db_path))
    monkeypatch.setenv("MOCK_LLM", "1")
    workdir = tmp_path / "work"
    workdir.mkdir()
    monkeypatch.chdir(workdir)
    get_settings.cache_clear()
    return db_path


@pytest.fixture
async def sessionmaker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test_retort.db'}")
    await init_db(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


async def add_message(sessionmaker, parent_id, role, content, metadata_json=None) -> int:
    async with sessionmaker() as db:
        async with db.begin():
            message = await MessageRepo(db).add_message(parent_id, role, content, metadata_json)
        return message.id
