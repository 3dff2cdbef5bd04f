# src/contentrain_query/sqlite/base.py
import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from logging import LoggerAdapter
from typing import Any, Dict, List, NoReturn, Optional, Sequence, Tuple

import aiosqlite

from ..base.exceptions import ModelNotFoundError, StorageError
from ..base.interfaces import Loader
from ..base.metadata import FieldDefinition, ModelMetadata, RelationDefinition
from ..base.query import (
    ORDERING_OPERATORS,
    STRING_OPERATORS,
    QueryFilter,
    QueryOperator,
    QueryOptions,
    Record,
)
from ..base.utils import (
    RELATIONS_TABLE,
    TABLE_PREFIX,
    TRANSLATION_SUFFIX,
    normalize_table_name,
    normalize_translation_table_name,
    quote_identifier,
    to_sql_param,
)

# SQLite's default host-parameter limit is 999 on older builds
MAX_BATCH_PARAMS = 500

_NEVER = "0 = 1"
_ALWAYS = "1 = 1"


@dataclass
class TableInfo:
    """Introspected layout of one model's tables."""

    model_id: str
    table: str
    columns: List[str]
    translation_table: Optional[str] = None
    translated_columns: List[str] = field(default_factory=list)
    metadata: Optional[ModelMetadata] = None

    @property
    def localized(self) -> bool:
        return self.translation_table is not None


def _type_guard(expr: str, value: Any) -> str:
    """Restrict a comparison to rows whose stored value has the same kind as `value`."""
    if isinstance(value, (int, float)):
        return f"typeof({expr}) IN ('integer', 'real')"
    return f"typeof({expr}) = 'text'"


def _escape_like(value: str) -> str:
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SqliteLoader(Loader):
    """
    Loader over a SQLite database produced by the Contentrain generator.

    Expects an active `aiosqlite.Connection` managed by the caller. Tables:
        tbl_<model>                 base rows (primary key `id`)
        tbl_<model>_translations    `id`, `locale` and translated columns
        tbl_contentrain_relations   source_model, source_id, target_model,
                                    target_id, field_id, type

    Translated values fall back to the base column with COALESCE when a
    translation row is missing. Every value is bound as a parameter and
    every identifier is checked against the introspected columns.
    """

    def __init__(self, db_connection: aiosqlite.Connection):
        if not isinstance(db_connection, aiosqlite.Connection):
            raise TypeError("db_connection must be an instance of aiosqlite.Connection")
        self._conn = db_connection
        self._conn.row_factory = aiosqlite.Row
        self._tables: Dict[str, TableInfo] = {}
        self._lock = asyncio.Lock()
        self._cache_namespace = f"sqlite:{uuid.uuid4().hex}"
        self._logger = logging.getLogger(f"{__name__}.{self.__class__.__name__}")
        self._logger.info("Loader instance created over SQLite connection.")

    @property
    def id_field(self) -> str:
        return "id"

    @property
    def cache_namespace(self) -> str:
        return self._cache_namespace

    # --- Introspection ---

    async def _table_exists(self, name: str) -> bool:
        async with self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (name,)
        ) as cursor:
            return await cursor.fetchone() is not None

    async def _columns(self, table: str) -> List[str]:
        async with self._conn.execute(
            f"PRAGMA table_info({quote_identifier(table)})"
        ) as cursor:
            return [row["name"] async for row in cursor]

    async def _introspect(self, model_id: str, logger: LoggerAdapter) -> TableInfo:
        async with self._lock:
            if model_id in self._tables:
                return self._tables[model_id]
            table = normalize_table_name(model_id)
            try:
                if not await self._table_exists(table):
                    logger.warning(f"Table '{table}' for model '{model_id}' not found")
                    raise ModelNotFoundError(model_id)
                info = TableInfo(
                    model_id=model_id, table=table, columns=await self._columns(table)
                )
                translation_table = normalize_translation_table_name(model_id)
                if await self._table_exists(translation_table):
                    info.translation_table = translation_table
                    info.translated_columns = [
                        c
                        for c in await self._columns(translation_table)
                        if c not in ("id", "locale")
                    ]
                relations = await self._introspect_relations(model_id)
            except aiosqlite.Error as e:
                self._handle_db_error(e, f"introspecting model '{model_id}'", model_id)

            field_ids = list(info.columns) + [
                c for c in info.translated_columns if c not in info.columns
            ]
            info.metadata = ModelMetadata(
                model_id=model_id,
                name=model_id,
                localization=info.localized,
                type="SQLite",
                fields=[FieldDefinition(field_id=c, name=c) for c in field_ids],
                relations=relations,
                translated_fields=info.translated_columns,
            )
            self._tables[model_id] = info
            logger.debug(
                f"Introspected '{model_id}': table={table}, "
                f"translations={info.translation_table}, "
                f"translated={info.translated_columns}, relations={sorted(relations)}"
            )
            return info

    async def _introspect_relations(self, model_id: str) -> Dict[str, RelationDefinition]:
        if not await self._table_exists(RELATIONS_TABLE):
            return {}
        relations: Dict[str, RelationDefinition] = {}
        async with self._conn.execute(
            f"SELECT DISTINCT field_id, target_model, type FROM {RELATIONS_TABLE} "
            f"WHERE source_model = ? ORDER BY field_id",
            (model_id,),
        ) as cursor:
            async for row in cursor:
                cardinality = (
                    "one-to-one" if row["type"] == "one-to-one" else "one-to-many"
                )
                relations[row["field_id"]] = RelationDefinition(
                    name=row["field_id"],
                    target_model=row["target_model"],
                    cardinality=cardinality,
                    field=row["field_id"],
                )
        return relations

    # --- SQL translation ---

    def _field_expr(self, info: TableInfo, name: str, joined: bool) -> Optional[str]:
        """SQL expression for a field, or None if the model has no such field."""
        quoted = quote_identifier(name)
        if joined and name in info.translated_columns:
            if name in info.columns:
                return f"COALESCE(t.{quoted}, m.{quoted})"
            return f"t.{quoted}"
        if name in info.columns:
            return f"m.{quoted}"
        return None

    def _from_clause(
        self, info: TableInfo, locale: Optional[str]
    ) -> Tuple[str, List[Any], bool]:
        sql = f"FROM {quote_identifier(info.table)} m"
        if locale and info.localized:
            sql += (
                f" LEFT JOIN {quote_identifier(info.translation_table)} t"
                f" ON m.id = t.id AND t.locale = ?"
            )
            return sql, [locale], True
        return sql, [], False

    def _select_list(self, info: TableInfo, joined: bool) -> str:
        parts = ["m.*"]
        if joined:
            for column in info.translated_columns:
                expr = self._field_expr(info, column, joined)
                parts.append(f"{expr} AS {quote_identifier(column)}")
        return ", ".join(parts)

    def _translate_filter(
        self, info: TableInfo, condition: QueryFilter, joined: bool
    ) -> Tuple[str, List[Any]]:
        op = condition.operator
        value = condition.value
        expr = self._field_expr(info, condition.field, joined) or "NULL"

        if op is QueryOperator.EXISTS:
            return f"{expr} IS NOT NULL", []
        if op is QueryOperator.NOT_EXISTS:
            return f"{expr} IS NULL", []
        if op is QueryOperator.EQ:
            if value is None:
                return f"{expr} IS NULL", []
            return f"({_type_guard(expr, value)} AND {expr} = ?)", [to_sql_param(value)]
        if op is QueryOperator.NE:
            if value is None:
                return f"{expr} IS NOT NULL", []
            return (
                f"NOT COALESCE(({_type_guard(expr, value)} AND {expr} = ?), 0)",
                [to_sql_param(value)],
            )
        if op in ORDERING_OPERATORS:
            if isinstance(value, bool) or not isinstance(value, (int, float, str)):
                return _NEVER, []
            symbol = {
                QueryOperator.GT: ">",
                QueryOperator.GTE: ">=",
                QueryOperator.LT: "<",
                QueryOperator.LTE: "<=",
            }[op]
            return f"({_type_guard(expr, value)} AND {expr} {symbol} ?)", [value]
        if op in (QueryOperator.IN, QueryOperator.NIN):
            if not isinstance(value, list):
                return _NEVER, []
            numbers = [to_sql_param(v) for v in value if isinstance(v, (int, float))]
            texts = [
                to_sql_param(v)
                for v in value
                if v is not None and not isinstance(v, (int, float))
            ]
            parts: List[str] = []
            params: List[Any] = []
            # One guarded IN list per storage class, so '1' never matches 1
            for group in (numbers, texts):
                if group:
                    placeholders = ", ".join("?" for _ in group)
                    parts.append(
                        f"({_type_guard(expr, group[0])} AND {expr} IN ({placeholders}))"
                    )
                    params.extend(group)
            if any(v is None for v in value):
                parts.append(f"{expr} IS NULL")
            if not parts:
                return (_NEVER if op is QueryOperator.IN else _ALWAYS), []
            membership = " OR ".join(parts)
            if op is QueryOperator.IN:
                return f"({membership})", params
            return f"NOT COALESCE(({membership}), 0)", params
        if op in STRING_OPERATORS:
            if not isinstance(value, str):
                return _NEVER, []
            escaped = _escape_like(value)
            pattern = {
                QueryOperator.CONTAINS: f"%{escaped}%",
                QueryOperator.STARTSWITH: f"{escaped}%",
                QueryOperator.ENDSWITH: f"%{escaped}",
            }[op]
            return (
                f"(typeof({expr}) = 'text' AND LOWER({expr}) LIKE LOWER(?) ESCAPE '\\')",
                [pattern],
            )
        raise ValueError(f"Unsupported operator: {op}")

    def _where_clause(
        self, info: TableInfo, filters: Sequence[QueryFilter], joined: bool
    ) -> Tuple[str, List[Any]]:
        fragments: List[str] = []
        params: List[Any] = []
        for condition in filters:
            fragment, fragment_params = self._translate_filter(info, condition, joined)
            fragments.append(fragment)
            params.extend(fragment_params)
        if not fragments:
            return "", []
        return " WHERE " + " AND ".join(fragments), params

    def _order_clause(self, info: TableInfo, options: QueryOptions, joined: bool) -> str:
        parts = []
        for sort in options.sorts:
            expr = self._field_expr(info, sort.field, joined) or "NULL"
            parts.append(f"COALESCE({expr}, 0) {'DESC' if sort.descending else 'ASC'}")
        parts.append("m.rowid ASC")
        return " ORDER BY " + ", ".join(parts)

    async def _fetch_rows(
        self, sql: str, params: Sequence[Any], logger: LoggerAdapter
    ) -> List[Record]:
        logger.debug(f"Executing query: SQL='{sql}', Params={list(params)}")
        async with self._conn.execute(sql, tuple(params)) as cursor:
            # Later columns win, so translated values replace the base ones
            return [dict(zip(row.keys(), tuple(row))) async for row in cursor]

    # --- Loader implementation ---

    async def get_metadata(self, model_id: str, logger: LoggerAdapter) -> ModelMetadata:
        info = await self._introspect(model_id, logger)
        return info.metadata

    async def fetch(
        self,
        model_id: str,
        logger: LoggerAdapter,
        options: Optional[QueryOptions] = None,
    ) -> Tuple[List[Record], int]:
        options = options or QueryOptions()
        info = await self._introspect(model_id, logger)
        from_sql, from_params, joined = self._from_clause(info, options.locale)
        where_sql, where_params = self._where_clause(info, options.filters, joined)

        sql = f"SELECT {self._select_list(info, joined)} {from_sql}{where_sql}"
        sql += self._order_clause(info, options, joined)
        params = from_params + where_params
        if options.limit is not None:
            sql += " LIMIT ?"
            params.append(options.limit)
        if options.offset:
            if options.limit is None:
                sql += " LIMIT -1"
            sql += " OFFSET ?"
            params.append(options.offset)

        count_sql = f"SELECT COUNT(*) AS total {from_sql}{where_sql}"
        try:
            records = await self._fetch_rows(sql, params, logger)
            async with self._conn.execute(
                count_sql, tuple(from_params + where_params)
            ) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"fetching '{model_id}'", model_id)
        total = row["total"] if row else 0
        logger.info(f"Fetched {len(records)} of {total} '{model_id}' records")
        return records, total

    async def count(
        self,
        model_id: str,
        logger: LoggerAdapter,
        options: Optional[QueryOptions] = None,
    ) -> int:
        options = options or QueryOptions()
        info = await self._introspect(model_id, logger)
        from_sql, from_params, joined = self._from_clause(info, options.locale)
        where_sql, where_params = self._where_clause(info, options.filters, joined)
        sql = f"SELECT COUNT(*) AS total {from_sql}{where_sql}"
        params = from_params + where_params
        logger.debug(f"Executing count query: SQL='{sql}', Params={params}")
        try:
            async with self._conn.execute(sql, tuple(params)) as cursor:
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"counting '{model_id}'", model_id)
        return row["total"] if row else 0

    async def fetch_related(
        self,
        model_id: str,
        ids: Sequence[Any],
        logger: LoggerAdapter,
        locale: Optional[str] = None,
    ) -> List[Record]:
        if not ids:
            return []
        info = await self._introspect(model_id, logger)
        from_sql, from_params, joined = self._from_clause(info, locale)
        select = self._select_list(info, joined)
        unique_ids = list(dict.fromkeys(ids))
        records: List[Record] = []
        try:
            for start in range(0, len(unique_ids), MAX_BATCH_PARAMS):
                batch = unique_ids[start : start + MAX_BATCH_PARAMS]
                placeholders = ", ".join("?" for _ in batch)
                sql = f"SELECT {select} {from_sql} WHERE m.id IN ({placeholders})"
                records.extend(
                    await self._fetch_rows(sql, from_params + list(batch), logger)
                )
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"fetching related '{model_id}' records", model_id)
        logger.debug(
            f"Fetched {len(records)} related '{model_id}' records for "
            f"{len(unique_ids)} ids"
        )
        return records

    async def relation_ids(
        self,
        model_id: str,
        relation: RelationDefinition,
        records: Sequence[Record],
        logger: LoggerAdapter,
    ) -> Dict[Any, List[Any]]:
        """
        Foreign keys of each parent, read from the relation junction table in
        insertion order. Parents without junction rows fall back to the
        `<field>_id` column of the base table.
        """
        parents = {str(r.get("id")): r.get("id") for r in records if r.get("id") is not None}
        result: Dict[Any, List[Any]] = {}
        if parents and await self._table_exists(RELATIONS_TABLE):
            source_ids = list(parents)
            try:
                for start in range(0, len(source_ids), MAX_BATCH_PARAMS):
                    batch = source_ids[start : start + MAX_BATCH_PARAMS]
                    placeholders = ", ".join("?" for _ in batch)
                    sql = (
                        f"SELECT source_id, target_id FROM {RELATIONS_TABLE} "
                        f"WHERE source_model = ? AND field_id = ? "
                        f"AND source_id IN ({placeholders}) ORDER BY rowid"
                    )
                    params = [model_id, relation.foreign_key] + batch
                    logger.debug(f"Executing relation query: SQL='{sql}', Params={params}")
                    async with self._conn.execute(sql, tuple(params)) as cursor:
                        async for row in cursor:
                            parent_id = parents[str(row["source_id"])]
                            result.setdefault(parent_id, []).append(row["target_id"])
            except aiosqlite.Error as e:
                self._handle_db_error(e, f"reading relation '{relation.name}'", model_id)

        column = f"{relation.foreign_key}_id"
        for record in records:
            parent_id = record.get("id")
            if parent_id in result or record.get(column) is None:
                continue
            result[parent_id] = [record[column]]
        return result

    async def list_models(self, logger: LoggerAdapter) -> List[str]:
        """Model names derived from the base table names (snake case, no prefix)."""
        try:
            async with self._conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table' AND name LIKE ? "
                "ORDER BY name",
                (f"{TABLE_PREFIX}%",),
            ) as cursor:
                names = [row["name"] async for row in cursor]
        except aiosqlite.Error as e:
            self._handle_db_error(e, "listing models")
        return [
            name[len(TABLE_PREFIX) :]
            for name in names
            if name != RELATIONS_TABLE and not name.endswith(TRANSLATION_SUFFIX)
        ]

    async def get_locales(self, model_id: str, logger: LoggerAdapter) -> List[str]:
        info = await self._introspect(model_id, logger)
        if not info.localized:
            return []
        try:
            async with self._conn.execute(
                f"SELECT DISTINCT locale FROM {quote_identifier(info.translation_table)} "
                f"ORDER BY locale"
            ) as cursor:
                return [row["locale"] async for row in cursor]
        except aiosqlite.Error as e:
            self._handle_db_error(e, f"listing locales of '{model_id}'", model_id)

    # --- Error Handling ---

    def _handle_db_error(
        self, error: Exception, context: str = "", model_id: Optional[str] = None
    ) -> NoReturn:
        """Maps database errors to engine exceptions."""
        self._logger.error(f"Error during {context}: {error}", exc_info=True)
        if isinstance(error, aiosqlite.OperationalError) and "no such table" in str(
            error
        ):
            raise ModelNotFoundError(
                model_id or "", f"Model not found during {context}: {error}"
            ) from error
        raise StorageError(
            f"Database error during {context}: {error}",
            {"model_id": model_id, "context": context},
        ) from error
