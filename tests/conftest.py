import os
import sys
from pathlib import Path

import pytest
from tortoise import Tortoise

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from sitesearch.morphology.lemma_processor import LemmaProcessor
from sitesearch.storage.index_store import IndexStore
from sitesearch.storage.postgres.postgres_init import MODELS_MODULE
from sitesearch.utils.config_loader import load_environment


@pytest.fixture(autouse=True)
def load_dotenv_defaults(monkeypatch):
    """Ensure .env defaults are available for every test."""

    # Clear key variables so tests always use the .env baseline unless they
    # explicitly override values via monkeypatch or a custom env file.
    for key in [
        "DATABASE_URL",
        "SITESEARCH_CONFIG",
        "CRAWLER_USER_AGENT",
        "CRAWLER_WORKERS",
        "REQUEST_TIMEOUT",
        "STORE_NON_HTML_PAGES",
        "TOO_COMMON_FRACTION",
        "SNIPPET_HALF_WINDOW",
        "API_HOST",
        "API_PORT",
        "LOG_LEVEL",
        "LOG_PATH",
        "SITES",
    ]:
        monkeypatch.delenv(key, raising=False)

    load_environment(override=True)

    yield

    # Clean up to avoid leaking state between tests.
    for key in list(os.environ.keys()):
        if key.startswith("TEST_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
async def db():
    """A fresh in-memory SQLite index per test."""
    await Tortoise.init(db_url="sqlite://:memory:", modules={"models": [MODELS_MODULE]})
    await Tortoise.generate_schemas()
    yield
    await Tortoise.close_connections()


@pytest.fixture
def store(db):
    return IndexStore()


@pytest.fixture(scope="session")
def shared_lemma_processor():
    # dictionary loading is the slow part; the store is swapped per test
    return LemmaProcessor()


@pytest.fixture
def lemma_processor(shared_lemma_processor, store):
    return LemmaProcessor(
        store,
        russian=shared_lemma_processor.russian,
        english=shared_lemma_processor.english,
    )
