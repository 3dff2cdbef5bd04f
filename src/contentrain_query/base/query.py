# src/contentrain_query/base/query.py
import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from .exceptions import ValidationError
from .utils import copy_record, prepare_value

# --- Setup Logging ---
log = logging.getLogger(__name__)

Record = Dict[str, Any]

RELATIONS_KEY = "_relations"


# --- Query Operator Enum ---
class QueryOperator(Enum):
    """Enumeration of valid query filter operators."""

    # Comparison
    EQ = "eq"
    NE = "ne"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    # Membership
    IN = "in"
    NIN = "nin"
    # String Specific
    CONTAINS = "contains"
    STARTSWITH = "startsWith"
    ENDSWITH = "endsWith"
    # Existence
    EXISTS = "exists"
    NOT_EXISTS = "notExists"

    @classmethod
    def parse(cls, operator: Union["QueryOperator", str]) -> "QueryOperator":
        if isinstance(operator, QueryOperator):
            return operator
        if isinstance(operator, str):
            try:
                return cls(operator)
            except ValueError:
                pass
        valid = ", ".join(op.value for op in cls)
        raise ValidationError(
            f"Invalid operator: {operator!r}. Expected one of: {valid}",
            {"operator": repr(operator)},
        )


STRING_OPERATORS = (
    QueryOperator.CONTAINS,
    QueryOperator.STARTSWITH,
    QueryOperator.ENDSWITH,
)
ORDERING_OPERATORS = (
    QueryOperator.GT,
    QueryOperator.GTE,
    QueryOperator.LT,
    QueryOperator.LTE,
)


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


# --- Filter / Sort / Include value objects ---
@dataclass(frozen=True)
class QueryFilter:
    """Represents a single filter condition (field <operator> value)."""

    field: str
    operator: QueryOperator
    value: Any = None

    def to_list(self) -> List[Any]:
        return [self.field, self.operator.value, self.value]


@dataclass(frozen=True)
class QuerySort:
    """One ordering key; several sorts are applied left to right."""

    field: str
    direction: SortDirection = SortDirection.ASC

    @property
    def descending(self) -> bool:
        return self.direction is SortDirection.DESC


@dataclass(frozen=True)
class IncludeSpec:
    """A request to resolve one relation, optionally in its own locale."""

    relation: str
    locale: Optional[str] = None

    @classmethod
    def coerce(cls, value: Any, default_locale: Optional[str]) -> "IncludeSpec":
        if isinstance(value, IncludeSpec):
            return value
        if isinstance(value, str) and value:
            return cls(relation=value, locale=default_locale)
        if isinstance(value, Mapping):
            relation = value.get("relation")
            locale = value.get("locale", default_locale)
            if isinstance(relation, str) and relation and (
                locale is None or isinstance(locale, str)
            ):
                return cls(relation=relation, locale=locale)
        raise ValidationError(
            f"Invalid include: {value!r}. Expected a relation name, "
            f"an IncludeSpec or a {{'relation': ..., 'locale': ...}} mapping.",
            {"include": repr(value)},
        )


# --- Query Options (what a Loader consumes) ---
@dataclass
class QueryOptions:
    """Filter, sort, pagination and locale settings for one Loader fetch."""

    locale: Optional[str] = None
    filters: List[QueryFilter] = field(default_factory=list)
    sorts: List[QuerySort] = field(default_factory=list)
    limit: Optional[int] = None
    offset: int = 0

    def __repr__(self) -> str:
        parts = []
        if self.locale:
            parts.append(f"locale={self.locale!r}")
        if self.filters:
            parts.append(f"filters={[f.to_list() for f in self.filters]!r}")
        if self.sorts:
            parts.append(
                f"sorts={[(s.field, s.direction.value) for s in self.sorts]!r}"
            )
        parts.append(f"limit={self.limit!r}")
        parts.append(f"offset={self.offset!r}")
        return f"QueryOptions({', '.join(parts)})"

    def without_pagination(self) -> "QueryOptions":
        return replace(self, limit=None, offset=0)


# --- Query State (what the builder accumulates) ---
@dataclass(frozen=True)
class QueryState:
    """
    Immutable, model-scoped state of one builder.

    Filters, sorts and includes are append-only tuples; pagination, locale
    and cache settings are last-write-wins.
    """

    model_id: str
    filters: Tuple[QueryFilter, ...] = ()
    sorts: Tuple[QuerySort, ...] = ()
    includes: Tuple[IncludeSpec, ...] = ()
    limit: Optional[int] = None
    offset: int = 0
    locale: Optional[str] = None
    cache_enabled: Optional[bool] = None
    cache_ttl: Optional[float] = None

    def build(self, locale: Optional[str] = None) -> QueryOptions:
        return QueryOptions(
            locale=locale if locale is not None else self.locale,
            filters=list(self.filters),
            sorts=list(self.sorts),
            limit=self.limit,
            offset=self.offset,
        )

    def cache_key(
        self,
        operation: str = "get",
        locale: Optional[str] = None,
        source: Optional[str] = None,
    ) -> str:
        """
        Stable serialization of everything that shapes the result.

        `source` identifies the store the query runs against, so a cache
        shared by several loaders keeps their results apart.
        """
        payload = {
            "source": source,
            "op": operation,
            "model": self.model_id,
            "locale": locale if locale is not None else self.locale,
            "filters": [f.to_list() for f in self.filters],
            "sorts": [[s.field, s.direction.value] for s in self.sorts],
            "includes": [[i.relation, i.locale] for i in self.includes],
            "limit": self.limit,
            "offset": self.offset,
        }
        return json.dumps(payload, sort_keys=True, default=str, separators=(",", ":"))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model_id,
            "filters": [f.to_list() for f in self.filters],
            "includes": [
                {"relation": i.relation, "locale": i.locale} for i in self.includes
            ],
            "sorting": [
                {"field": s.field, "direction": s.direction.value} for s in self.sorts
            ],
            "pagination": {"limit": self.limit, "offset": self.offset},
            "options": {
                "locale": self.locale,
                "cache": self.cache_enabled,
                "ttl": self.cache_ttl,
            },
        }


# --- Result Envelope ---
@dataclass(frozen=True)
class PaginationInfo:
    limit: Optional[int]
    offset: int
    has_more: bool

    def to_dict(self) -> Dict[str, Any]:
        return {"limit": self.limit, "offset": self.offset, "hasMore": self.has_more}


@dataclass(frozen=True)
class QueryResult:
    """The records of one page, the filtered total and the pagination echo."""

    data: List[Record]
    total: int
    pagination: PaginationInfo

    @classmethod
    def assemble(
        cls, data: List[Record], total: int, limit: Optional[int], offset: int
    ) -> "QueryResult":
        return cls(
            data=data,
            total=total,
            pagination=PaginationInfo(
                limit=limit, offset=offset, has_more=offset + len(data) < total
            ),
        )

    def to_dict(self, data_suffix: bool = False) -> Dict[str, Any]:
        """
        Wire representation of the envelope.

        With `data_suffix`, every resolved relation is also exposed under the
        legacy `<relation>-data` key next to the foreign key field.
        """
        records = []
        for record in self.data:
            item = copy_record(record)
            if data_suffix:
                for name, related in item.get(RELATIONS_KEY, {}).items():
                    item[f"{name}-data"] = related
            records.append(item)
        return {
            "data": records,
            "total": self.total,
            "pagination": self.pagination.to_dict(),
        }


def make_filter(field_name: Any, operator: Any, value: Any = None) -> QueryFilter:
    """Validate the shape of a filter and normalize its value."""
    if not isinstance(field_name, str) or not field_name:
        raise ValidationError(
            f"Filter field must be a non-empty string, got {field_name!r}",
            {"field": repr(field_name)},
        )
    op = QueryOperator.parse(operator)
    log.debug(f"Creating filter: {field_name!r} {op.value} {value!r}")
    return QueryFilter(field=field_name, operator=op, value=prepare_value(value))


def make_sort(field_name: Any, direction: Any = "asc") -> QuerySort:
    if not isinstance(field_name, str) or not field_name:
        raise ValidationError(
            f"Sort field must be a non-empty string, got {field_name!r}",
            {"field": repr(field_name)},
        )
    try:
        parsed = SortDirection(direction.lower() if isinstance(direction, str) else direction)
    except ValueError:
        raise ValidationError(
            f"Sort direction must be 'asc' or 'desc', got {direction!r}",
            {"direction": repr(direction)},
        ) from None
    return QuerySort(field=field_name, direction=parsed)
