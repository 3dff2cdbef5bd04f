# src/contentrain_query/client.py
import logging
from logging import LoggerAdapter
from typing import Any, Dict, List, Optional

from .base.builder import QueryBuilder
from .base.cache import CacheManager, get_default_cache
from .base.config import ContentrainConfig
from .base.interfaces import Loader

log = logging.getLogger(__name__)


class ContentrainClient:
    """
    Entry point that ties a Loader, a configuration and a result cache together.

    Every builder returned by `query()` shares the client's loader and cache,
    and starts from the configured default locale.
    """

    def __init__(
        self,
        loader: Loader,
        config: Optional[ContentrainConfig] = None,
        cache: Optional[CacheManager] = None,
        logger: Optional[LoggerAdapter] = None,
    ):
        self._loader = loader
        self._config = config or ContentrainConfig()
        if cache is None:
            # The shared cache only fits the default capacity
            shared = get_default_cache()
            if self._config.max_cache_entries == shared.max_entries:
                cache = shared
            else:
                cache = CacheManager(
                    max_entries=self._config.max_cache_entries,
                    default_ttl=self._config.default_ttl,
                )
        self._cache = cache
        self._logger = logger or LoggerAdapter(log, {"loader": type(loader).__name__})

    @property
    def loader(self) -> Loader:
        return self._loader

    @property
    def config(self) -> ContentrainConfig:
        return self._config

    @property
    def cache(self) -> CacheManager:
        return self._cache

    def query(self, model_id: str) -> QueryBuilder:
        builder = QueryBuilder(
            model_id,
            self._loader,
            cache=self._cache,
            config=self._config,
            logger=self._logger,
        )
        if self._config.default_locale:
            builder.locale(self._config.default_locale)
        return builder

    def invalidate(self, model_id: Optional[str] = None) -> int:
        """Drop cached results of one model, or of every model when omitted."""
        return self._cache.invalidate(model_id)

    def clear_cache(self) -> None:
        self._cache.clear()

    def cache_stats(self) -> Dict[str, Any]:
        return self._cache.stats()

    async def list_models(self) -> List[str]:
        return await self._loader.list_models(self._logger)

    async def get_locales(self, model_id: str) -> List[str]:
        return await self._loader.get_locales(model_id, self._logger)
