# tests/conftest.py
import logging
from typing import List, Optional, Sequence, Tuple

import aiosqlite
import pytest
import pytest_asyncio

from contentrain_query.base.cache import CacheManager
from contentrain_query.base.config import ContentrainConfig
from contentrain_query.base.interfaces import Loader
from contentrain_query.base.query import QueryOptions, Record
from contentrain_query.flatfile.base import JsonFileLoader
from contentrain_query.sqlite.base import SqliteLoader

from content_data import DEFAULT_LOCALE
from create_json_content import create_content_dir
from create_sqlite_tables import create_tables

# Silence verbose loggers
logging.getLogger("aiosqlite").setLevel(logging.WARNING)

# --- List of available loader keys ---
LOADER_IMPLEMENTATIONS = ["json", "sqlite"]


# --- Logger Fixture ---


@pytest.fixture(scope="session")
def logger():
    """Create a test logger."""
    _logger = logging.getLogger("test_contentrain_logger")
    if not _logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.setLevel(logging.DEBUG)
        _logger.addHandler(handler)
        _logger.setLevel(logging.DEBUG)
        _logger.propagate = False
    return logging.LoggerAdapter(_logger, {})


# --- Storage Fixtures ---


@pytest.fixture
def content_dir(tmp_path):
    """A Contentrain JSON content directory filled with the shared test content."""
    return create_content_dir(tmp_path / "contentrain")


# SQLite Fixture (Function Scoped)
@pytest_asyncio.fixture(scope="function")
async def sqlite_memory_db_conn():
    """Provides an in-memory aiosqlite database filled with the shared test content."""
    conn = None
    try:
        conn = await aiosqlite.connect(":memory:")
        await create_tables(conn)
        yield conn
    finally:
        if conn:
            await conn.close()


# --- Loader Factories (Function Scoped) ---


@pytest.fixture
def json_loader_factory(content_dir):
    def _create(default_locale: Optional[str] = DEFAULT_LOCALE) -> JsonFileLoader:
        return JsonFileLoader(content_dir, default_locale=default_locale)

    return _create


@pytest.fixture
def sqlite_loader_factory(sqlite_memory_db_conn):
    def _create(default_locale: Optional[str] = DEFAULT_LOCALE) -> SqliteLoader:
        # Base rows already hold the default locale
        return SqliteLoader(sqlite_memory_db_conn)

    return _create


@pytest.fixture(params=LOADER_IMPLEMENTATIONS)
def loader_factory(request):
    """Parametrized fixture to get the correct factory based on implementation key."""
    impl_key = request.param
    if impl_key == "json":
        yield request.getfixturevalue("json_loader_factory")
    elif impl_key == "sqlite":
        yield request.getfixturevalue("sqlite_loader_factory")
    else:
        raise ValueError(f"Unknown loader implementation key: {impl_key}")


@pytest.fixture
def loader(loader_factory) -> Loader:
    return loader_factory()


@pytest.fixture
def get_loader_type(loader) -> str:
    return "json" if isinstance(loader, JsonFileLoader) else "sqlite"


# --- Cache Fixtures ---


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> CacheManager:
    return CacheManager(max_entries=100, default_ttl=60, clock=clock)


@pytest.fixture
def config() -> ContentrainConfig:
    return ContentrainConfig(default_locale=DEFAULT_LOCALE, default_ttl=60)


class CountingLoader(Loader):
    """Wraps a loader and records every fetch it serves."""

    def __init__(self, inner: Loader):
        self.inner = inner
        self.fetch_calls: List[Tuple[str, QueryOptions]] = []
        self.related_calls: List[Tuple[str, List]] = []
        self.fail_with: Optional[Exception] = None

    @property
    def id_field(self) -> str:
        return self.inner.id_field

    @property
    def cache_namespace(self) -> str:
        return self.inner.cache_namespace

    async def get_metadata(self, model_id, logger):
        return await self.inner.get_metadata(model_id, logger)

    async def fetch(self, model_id, logger, options=None):
        self.fetch_calls.append((model_id, options))
        if self.fail_with is not None:
            raise self.fail_with
        return await self.inner.fetch(model_id, logger, options)

    async def count(self, model_id, logger, options=None):
        self.fetch_calls.append((model_id, options))
        return await self.inner.count(model_id, logger, options)

    async def fetch_related(self, model_id, ids: Sequence, logger, locale=None) -> List[Record]:
        self.related_calls.append((model_id, list(ids)))
        return await self.inner.fetch_related(model_id, ids, logger, locale)

    async def relation_ids(self, model_id, relation, records, logger):
        return await self.inner.relation_ids(model_id, relation, records, logger)

    async def list_models(self, logger):
        return await self.inner.list_models(logger)

    async def get_locales(self, model_id, logger):
        return await self.inner.get_locales(model_id, logger)


@pytest.fixture
def counting_loader(loader) -> CountingLoader:
    return CountingLoader(loader)


def ids_of(loader: Loader, records: Sequence[Record]) -> List[str]:
    return [r[loader.id_field] for r in records]
