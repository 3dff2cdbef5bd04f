# src/contentrain_query/flatfile/base.py
import asyncio
import json
import logging
from logging import LoggerAdapter
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ..base.exceptions import LocaleRequiredError, ModelNotFoundError, StorageError
from ..base.interfaces import Loader
from ..base.metadata import ModelMetadata
from ..base.query import (
    ORDERING_OPERATORS,
    QueryFilter,
    QueryOperator,
    QueryOptions,
    QuerySort,
    Record,
)

# Ordering of value kinds when sorting mixed data; null sorts first ascending.
_KIND_RANK = {"null": 0, "bool": 1, "number": 2, "string": 3, "array": 4, "object": 5}


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "bool"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, (list, tuple)):
        return "array"
    return "object"


def _equals(left: Any, right: Any) -> bool:
    return _kind(left) == _kind(right) and left == right


def _sort_key(value: Any) -> Tuple[int, Any]:
    kind = _kind(value)
    if kind == "null":
        return (_KIND_RANK[kind], 0)
    if kind in ("array", "object"):
        return (_KIND_RANK[kind], json.dumps(value, sort_keys=True, default=str))
    return (_KIND_RANK[kind], value)


def matches_filter(record: Record, condition: QueryFilter) -> bool:
    """
    Evaluate one filter against a record.

    Type mismatches never raise: they make the filter false.
    """
    op = condition.operator
    expected = condition.value
    present = condition.field in record
    actual = record.get(condition.field)

    if op is QueryOperator.EXISTS:
        return actual is not None
    if op is QueryOperator.NOT_EXISTS:
        return actual is None
    if op is QueryOperator.EQ:
        if expected is None:
            return actual is None
        return _equals(actual, expected)
    if op is QueryOperator.NE:
        if expected is None:
            return present and actual is not None
        return not _equals(actual, expected)
    if op in ORDERING_OPERATORS:
        kind = _kind(actual)
        if kind not in ("number", "string") or kind != _kind(expected):
            return False
        if op is QueryOperator.GT:
            return actual > expected
        if op is QueryOperator.GTE:
            return actual >= expected
        if op is QueryOperator.LT:
            return actual < expected
        return actual <= expected
    if op in (QueryOperator.IN, QueryOperator.NIN):
        if not isinstance(expected, list):
            return False
        found = any(_equals(actual, item) for item in expected)
        return found if op is QueryOperator.IN else not found
    # String operators, case-insensitive
    if not isinstance(actual, str) or not isinstance(expected, str):
        return False
    haystack, needle = actual.lower(), expected.lower()
    if op is QueryOperator.CONTAINS:
        return needle in haystack
    if op is QueryOperator.STARTSWITH:
        return haystack.startswith(needle)
    return haystack.endswith(needle)


def sort_records(records: List[Record], sorts: Sequence[QuerySort]) -> List[Record]:
    """Stable multi-key sort: the first sort is the primary key."""
    ordered = list(records)
    # Applying keys from last to first relies on sort stability.
    for sort in reversed(sorts):
        ordered.sort(key=lambda r: _sort_key(r.get(sort.field)), reverse=sort.descending)
    return ordered


class JsonFileLoader(Loader):
    """
    Loader over a Contentrain JSON content directory.

    Layout:
        <root>/models/metadata.json        list of model metadata entries
        <root>/models/<modelId>.json       field definitions of one model
        <root>/<modelId>/<modelId>.json    records of a non-localized model
        <root>/<modelId>/<locale>.json     records of a localized model

    A locale file fully replaces the record; fields it lacks are not filled in
    from another locale. When the requested locale file is missing the
    default-locale file is used instead.
    """

    def __init__(
        self, content_dir: Union[str, Path], default_locale: Optional[str] = None
    ):
        self._root = Path(content_dir)
        self._default_locale = default_locale
        self._metadata_index: Optional[Dict[str, Dict[str, Any]]] = None
        self._metadata: Dict[str, ModelMetadata] = {}
        self._documents: Dict[Tuple[str, Optional[str]], List[Record]] = {}
        # Guards the metadata index and metadata; documents have their own locks
        self._lock = asyncio.Lock()
        self._document_locks: Dict[Tuple[str, Optional[str]], asyncio.Lock] = {}
        self._logger = logging.getLogger(
            f"{__name__}.{self.__class__.__name__}[{self._root.name}]"
        )
        self._logger.info(
            f"Loader created for content directory '{self._root}' "
            f"(default locale: {default_locale!r})."
        )

    @property
    def id_field(self) -> str:
        return "ID"

    @property
    def content_dir(self) -> Path:
        return self._root

    @property
    def cache_namespace(self) -> str:
        return f"json:{self._root.resolve()}:{self._default_locale}"

    async def reload(self) -> None:
        """Drop every memoized metadata entry and document."""
        async with self._lock:
            self._metadata_index = None
            self._metadata.clear()
            self._documents.clear()
        self._logger.info("Dropped memoized content; files will be re-read.")

    # --- File access ---

    async def _read_json(self, path: Path, logger: LoggerAdapter) -> Any:
        logger.debug(f"Reading '{path}'")
        try:
            text = await asyncio.to_thread(path.read_text, encoding="utf-8")
        except OSError as e:
            logger.error(f"Failed to read '{path}': {e}", exc_info=True)
            raise StorageError(
                f"Failed to read content file '{path}': {e}", {"path": str(path)}
            ) from e
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            logger.error(f"Invalid JSON in '{path}': {e}")
            raise StorageError(
                f"Invalid JSON format in '{path}': {e}", {"path": str(path)}
            ) from e

    async def _load_index(self, logger: LoggerAdapter) -> Dict[str, Dict[str, Any]]:
        # Caller holds self._lock
        if self._metadata_index is None:
            entries = await self._read_json(
                self._root / "models" / "metadata.json", logger
            )
            if not isinstance(entries, list):
                raise StorageError(
                    "models/metadata.json must contain a list of model entries."
                )
            self._metadata_index = {
                e["modelId"]: e
                for e in entries
                if isinstance(e, dict) and isinstance(e.get("modelId"), str)
            }
        return self._metadata_index

    async def _load_metadata(self, model_id: str, logger: LoggerAdapter) -> ModelMetadata:
        # Caller holds self._lock
        if model_id in self._metadata:
            return self._metadata[model_id]
        index = await self._load_index(logger)
        if model_id not in index:
            logger.warning(f"Model '{model_id}' is not listed in models/metadata.json")
            raise ModelNotFoundError(model_id)
        fields_path = self._root / "models" / f"{model_id}.json"
        if not fields_path.is_file():
            raise ModelNotFoundError(
                model_id, f"Model not found: {model_id} (missing '{fields_path.name}')"
            )
        fields = await self._read_json(fields_path, logger)
        if not isinstance(fields, list):
            raise StorageError(
                f"Invalid field configuration for model {model_id}: "
                f"expected a list of fields",
                {"model_id": model_id},
            )
        metadata = ModelMetadata.from_contentrain(index[model_id], fields)
        self._metadata[model_id] = metadata
        logger.debug(
            f"Loaded metadata for '{model_id}' (localized: {metadata.localization}, "
            f"relations: {sorted(metadata.relations)})"
        )
        return metadata

    def _content_path(self, model_id: str, name: str) -> Path:
        return self._root / model_id / f"{name}.json"

    def _document_lock(self, memo_key: Tuple[str, Optional[str]]) -> asyncio.Lock:
        # One lock per (model, locale) document
        return self._document_locks.setdefault(memo_key, asyncio.Lock())

    async def _load_records(
        self, model_id: str, locale: Optional[str], logger: LoggerAdapter
    ) -> List[Record]:
        """Memoized records of one model in one locale (None for non-localized)."""
        metadata = await self.get_metadata(model_id, logger)
        if not metadata.localization:
            locale = None
        elif locale is None:
            locale = self._default_locale
            if locale is None:
                raise LocaleRequiredError(model_id)

        memo_key = (model_id, locale)
        async with self._document_lock(memo_key):
            if memo_key in self._documents:
                return self._documents[memo_key]

            path = self._content_path(model_id, locale or model_id)
            if locale is not None and not path.is_file():
                fallback = self._default_locale
                if fallback is None or fallback == locale:
                    raise StorageError(
                        f"Content file for {model_id} ({locale}) not found and no "
                        f"default locale to fall back to",
                        {"model_id": model_id, "locale": locale},
                    )
                logger.warning(
                    f"No '{locale}' content for '{model_id}', falling back to "
                    f"default locale '{fallback}'"
                )
                path = self._content_path(model_id, fallback)

            data = await self._read_json(path, logger)
            if not isinstance(data, list):
                raise StorageError(
                    f"Content file '{path}' must contain a list of records.",
                    {"model_id": model_id, "path": str(path)},
                )
            records = [r for r in data if isinstance(r, dict)]
            self._documents[memo_key] = records
            logger.info(
                f"Loaded {len(records)} records of '{model_id}' from '{path.name}'"
            )
            return records

    # --- Loader implementation ---

    async def get_metadata(self, model_id: str, logger: LoggerAdapter) -> ModelMetadata:
        async with self._lock:
            return await self._load_metadata(model_id, logger)

    async def fetch(
        self,
        model_id: str,
        logger: LoggerAdapter,
        options: Optional[QueryOptions] = None,
    ) -> Tuple[List[Record], int]:
        options = options or QueryOptions()
        logger.debug(f"Fetching '{model_id}' with options: {options!r}")
        records = await self._load_records(model_id, options.locale, logger)

        filtered = [
            r for r in records if all(matches_filter(r, f) for f in options.filters)
        ]
        ordered = sort_records(filtered, options.sorts)
        end = None if options.limit is None else options.offset + options.limit
        page = [dict(r) for r in ordered[options.offset : end]]
        return page, len(filtered)

    async def count(
        self,
        model_id: str,
        logger: LoggerAdapter,
        options: Optional[QueryOptions] = None,
    ) -> int:
        options = options or QueryOptions()
        records = await self._load_records(model_id, options.locale, logger)
        return sum(
            1 for r in records if all(matches_filter(r, f) for f in options.filters)
        )

    async def fetch_related(
        self,
        model_id: str,
        ids: Sequence[Any],
        logger: LoggerAdapter,
        locale: Optional[str] = None,
    ) -> List[Record]:
        if not ids:
            return []
        wanted = set(ids)
        records = await self._load_records(model_id, locale, logger)
        found = [dict(r) for r in records if r.get(self.id_field) in wanted]
        logger.debug(
            f"Fetched {len(found)} related '{model_id}' records for {len(wanted)} ids"
        )
        return found

    async def list_models(self, logger: LoggerAdapter) -> List[str]:
        async with self._lock:
            index = await self._load_index(logger)
        return list(index)

    async def get_locales(self, model_id: str, logger: LoggerAdapter) -> List[str]:
        metadata = await self.get_metadata(model_id, logger)
        if not metadata.localization:
            return []
        model_dir = self._root / model_id
        if not model_dir.is_dir():
            return []
        return sorted(p.stem for p in model_dir.glob("*.json") if p.stem != model_id)
