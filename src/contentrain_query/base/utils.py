import json
import logging
import re
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from typing import Any, Dict

logger = logging.getLogger(__name__)

TABLE_PREFIX = "tbl_"
TRANSLATION_SUFFIX = "_translations"
RELATIONS_TABLE = "tbl_contentrain_relations"

_CAMEL_CASE = re.compile(r"([a-z0-9])([A-Z])")
_PASCAL_CASE = re.compile(r"([A-Z])([A-Z][a-z])")
_NON_IDENTIFIER = re.compile(r"[^a-z0-9_]")


def prepare_value(data: Any) -> Any:
    """
    Recursively convert a filter value into a JSON-compatible form.

    It handles:
    - Pydantic BaseModel instances (dumped by alias)
    - Python dataclasses
    - Dictionaries (processing values recursively)
    - Lists, tuples and sets (all become lists)
    - datetime/date (ISO 8601 strings, as stored by Contentrain)

    Args:
        data: The value to convert

    Returns:
        The converted value, safe to compare, serialize and bind
    """
    if data is None:
        return None

    if is_dataclass(data) and not isinstance(data, type):
        return prepare_value(asdict(data))

    if hasattr(data, "model_dump") and callable(getattr(data, "model_dump")):
        return prepare_value(data.model_dump(mode="json", by_alias=True))

    if isinstance(data, dict):
        return {k: prepare_value(v) for k, v in data.items()}

    if isinstance(data, (list, tuple, set, frozenset)):
        return [prepare_value(item) for item in data]

    if isinstance(data, (datetime, date)):
        return data.isoformat()

    return data


def to_sql_param(value: Any) -> Any:
    """Convert a prepared value into something sqlite3 can bind."""
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, (list, dict)):
        # Complex values are stored as JSON text by the generator
        return json.dumps(value)
    return value


def normalize_table_name(model_id: str) -> str:
    """Map a model id ("workItems", "work-items") to its table name ("tbl_work_items")."""
    snake = _CAMEL_CASE.sub(r"\1_\2", model_id)
    snake = _PASCAL_CASE.sub(r"\1_\2", snake)
    snake = snake.replace("-", "_").lower()
    return f"{TABLE_PREFIX}{_NON_IDENTIFIER.sub('_', snake)}"


def normalize_translation_table_name(model_id: str) -> str:
    return f"{normalize_table_name(model_id)}{TRANSLATION_SUFFIX}"


def quote_identifier(name: str) -> str:
    return '"' + name.replace('"', '""') + '"'


def copy_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Shallow copy of a record with its own `_relations` mapping."""
    copied = dict(record)
    if "_relations" in copied:
        copied["_relations"] = dict(copied["_relations"])
    return copied


def is_reference_id(value: Any) -> bool:
    """True for values usable as record identifiers in relation lookups."""
    return isinstance(value, (str, int)) and not isinstance(value, bool)
