# src/contentrain_query/base/builder.py
import copy
import logging
from dataclasses import replace
from logging import LoggerAdapter
from typing import Any, Callable, Dict, Iterable, Optional

from .cache import CacheManager
from .config import ContentrainConfig
from .exceptions import LocaleRequiredError, ValidationError
from .interfaces import Loader
from .metadata import ModelMetadata
from .query import (
    IncludeSpec,
    QueryFilter,
    QueryOperator,
    QueryOptions,
    QueryResult,
    QueryState,
    Record,
    make_filter,
    make_sort,
)
from .relations import RelationResolver

# --- Setup Logging ---
log = logging.getLogger(__name__)


def _check_non_negative_int(name: str, value: Any) -> int:
    # bool is an int subclass but never a valid page size
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(
            f"{name} must be a non-negative integer, got {value!r}",
            {name.lower(): repr(value)},
        )
    return value


# Marks an argument the caller did not pass (None is a valid filter value)
_UNSET: Any = object()

_VALUELESS_OPERATORS = (QueryOperator.EXISTS.value, QueryOperator.NOT_EXISTS.value)


def _make_condition(field: Any, operator: Any = _UNSET, value: Any = _UNSET) -> QueryFilter:
    if operator is _UNSET:
        raise ValidationError(
            f"where({field!r}) needs a value or an operator", {"field": repr(field)}
        )
    if value is not _UNSET:
        return make_filter(field, operator, value)
    if isinstance(operator, QueryOperator) or operator in _VALUELESS_OPERATORS:
        return make_filter(field, operator)
    # where(field, value) is shorthand for equality
    return make_filter(field, QueryOperator.EQ, operator)


def _condition_from_item(item: Any) -> QueryFilter:
    if isinstance(item, QueryFilter):
        return item
    if isinstance(item, (list, tuple)) and len(item) in (2, 3):
        return _make_condition(*item)
    raise ValidationError(
        f"Invalid condition: {item!r}. Expected (field, value) or "
        f"(field, operator, value).",
        {"condition": repr(item)},
    )


class QueryBuilder:
    """
    Fluent, model-scoped query over a Loader.

    Chain calls only replace the builder's immutable QueryState and return the
    builder, so no I/O happens until `get()`, `first()` or `count()`. Malformed
    arguments fail at the call that introduced them; anything that needs model
    metadata (required locale, unknown relations) fails at execution.

    Example:
        result = await (
            QueryBuilder("faqitems", loader)
            .where("status", "eq", "publish")
            .order_by("order")
            .limit(10)
            .get()
        )
    """

    def __init__(
        self,
        model_id: str,
        loader: Loader,
        cache: Optional[CacheManager] = None,
        config: Optional[ContentrainConfig] = None,
        logger: Optional[LoggerAdapter] = None,
    ):
        if not isinstance(model_id, str) or not model_id:
            raise ValidationError(
                f"Model id must be a non-empty string, got {model_id!r}",
                {"model_id": repr(model_id)},
            )
        self._loader = loader
        self._cache = cache
        self._config = config or ContentrainConfig()
        self._resolver = RelationResolver(loader)
        self._logger = logger or LoggerAdapter(log, {"model_id": model_id})
        self._state = QueryState(model_id=model_id)

    @property
    def model_id(self) -> str:
        return self._state.model_id

    @property
    def state(self) -> QueryState:
        return self._state

    # --- Chain methods ---

    def where(
        self, field: Any, operator: Any = _UNSET, value: Any = _UNSET
    ) -> "QueryBuilder":
        """
        Adds one or more filters; all filters of a query are combined with AND.

        Accepted forms:
            where("order", "gt", 1)
            where("status", "publish")      equality shorthand
            where("answer", "exists")       operators that take no value
            where([("status", "publish"), ("order", "lte", 3)])

        In the two-argument form only a QueryOperator, "exists" or "notExists"
        is read as an operator; any other second argument is the value to
        compare for equality.
        """
        if isinstance(field, list):
            if operator is not _UNSET or value is not _UNSET:
                raise ValidationError(
                    "where() with a list of conditions takes no other arguments."
                )
            conditions = tuple(_condition_from_item(item) for item in field)
        else:
            conditions = (_make_condition(field, operator, value),)
        self._state = replace(self._state, filters=self._state.filters + conditions)
        return self

    def order_by(self, field: str, direction: str = "asc") -> "QueryBuilder":
        """Adds a sort key; earlier keys take precedence."""
        sort = make_sort(field, direction)
        self._state = replace(self._state, sorts=self._state.sorts + (sort,))
        self._logger.debug(f"Added sort: {field!r} {sort.direction.value}")
        return self

    def include(self, relations: Any) -> "QueryBuilder":
        """
        Requests one or more relations to be resolved.

        Accepts a relation name, an IncludeSpec, a
        `{"relation": name, "locale": code}` mapping, or a list of these.
        Entries without their own locale use the locale set on the builder
        at the time of the call.
        """
        items: Iterable[Any] = relations if isinstance(relations, list) else [relations]
        specs = tuple(IncludeSpec.coerce(item, self._state.locale) for item in items)
        if not specs:
            raise ValidationError("include() requires at least one relation.")
        self._state = replace(self._state, includes=self._state.includes + specs)
        self._logger.debug(f"Added includes: {[s.relation for s in specs]}")
        return self

    def limit(self, num: int) -> "QueryBuilder":
        """Sets the query limit."""
        self._state = replace(self._state, limit=_check_non_negative_int("Limit", num))
        return self

    def offset(self, num: int) -> "QueryBuilder":
        """Sets the query offset."""
        self._state = replace(self._state, offset=_check_non_negative_int("Offset", num))
        return self

    def locale(self, code: str) -> "QueryBuilder":
        if not isinstance(code, str) or not code:
            raise ValidationError(
                f"Locale must be a non-empty string, got {code!r}",
                {"locale": repr(code)},
            )
        self._state = replace(self._state, locale=code)
        return self

    def cache(self, ttl: Optional[float] = None) -> "QueryBuilder":
        """Enables result caching, with `ttl` seconds or the configured TTL."""
        if ttl is not None and (
            isinstance(ttl, bool) or not isinstance(ttl, (int, float)) or ttl <= 0
        ):
            raise ValidationError(
                f"Cache TTL must be a positive number of seconds, got {ttl!r}",
                {"ttl": repr(ttl)},
            )
        self._state = replace(self._state, cache_enabled=True, cache_ttl=ttl)
        return self

    def no_cache(self) -> "QueryBuilder":
        """Disables caching for this query; a TTL set with `cache()` is kept."""
        self._state = replace(self._state, cache_enabled=False)
        return self

    def bypass_cache(self) -> "QueryBuilder":
        """Disables caching for this query and drops its TTL."""
        self._state = replace(self._state, cache_enabled=False, cache_ttl=None)
        return self

    def to_dict(self) -> Dict[str, Any]:
        """Serializable snapshot of the accumulated query."""
        return self._state.to_dict()

    def build(self) -> QueryOptions:
        """Builds the loader-facing QueryOptions of the current state."""
        options = self._state.build(self._state.locale or self._config.default_locale)
        self._logger.debug(f"Built query options for '{self.model_id}': {options!r}")
        return options

    # --- Execution ---

    async def get(self) -> QueryResult:
        """Executes the query and returns the result envelope."""
        return await self._execute(self._state)

    async def first(self) -> Optional[Record]:
        """Executes the query with a limit of one and returns that record, if any."""
        result = await self._execute(replace(self._state, limit=1))
        return result.data[0] if result.data else None

    async def count(self) -> int:
        """Counts every record matching the filters, ignoring pagination."""
        state = self._state
        metadata = await self._loader.get_metadata(state.model_id, self._logger)
        locale = self._effective_locale(metadata)

        async def compute() -> int:
            return await self._loader.count(
                state.model_id, self._logger, state.build(locale)
            )

        return await self._cached(state, "count", locale, compute)

    async def _execute(self, state: QueryState) -> QueryResult:
        metadata = await self._loader.get_metadata(state.model_id, self._logger)
        locale = self._effective_locale(metadata)

        async def compute() -> QueryResult:
            options = state.build(locale)
            self._logger.debug(f"Fetching '{state.model_id}' with {options!r}")
            records, total = await self._loader.fetch(
                state.model_id, self._logger, options
            )
            for include in state.includes:
                records = await self._resolver.resolve(
                    metadata, records, include, self._logger, locale
                )
            result = QueryResult.assemble(records, total, state.limit, state.offset)
            self._logger.info(
                f"Query on '{state.model_id}' returned {len(result.data)} of "
                f"{result.total} records"
            )
            return result

        return await self._cached(state, "get", locale, compute)

    def _effective_locale(self, metadata: ModelMetadata) -> Optional[str]:
        locale = self._state.locale or self._config.default_locale
        if metadata.localization and not locale:
            self._logger.error(
                f"Query on localized model '{metadata.model_id}' has no locale."
            )
            raise LocaleRequiredError(metadata.model_id)
        return locale

    def _cache_enabled(self, state: QueryState) -> bool:
        if self._cache is None:
            return False
        if state.cache_enabled is None:
            return self._config.cache_enabled
        return state.cache_enabled

    async def _cached(
        self,
        state: QueryState,
        operation: str,
        locale: Optional[str],
        compute: Callable[[], Any],
    ) -> Any:
        if not self._cache_enabled(state):
            return await compute()

        key = state.cache_key(operation, locale, self._loader.cache_namespace)
        try:
            cached = self._cache.get(key)
        except Exception as e:
            self._logger.warning(f"Cache read failed, executing uncached: {e}")
            return await compute()
        if cached is not None:
            self._logger.debug(f"Cache hit for '{state.model_id}' ({operation})")
            return copy.deepcopy(cached)

        value = await compute()
        ttl = (
            state.cache_ttl
            if state.cache_ttl is not None
            else self._config.ttl_for(state.model_id)
        )
        try:
            self._cache.set(key, copy.deepcopy(value), ttl=ttl, model_id=state.model_id)
        except Exception as e:
            self._logger.warning(f"Cache write failed, result not cached: {e}")
        return value
