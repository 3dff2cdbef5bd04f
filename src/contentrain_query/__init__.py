# src/contentrain_query/__init__.py

"""
Contentrain Query Engine Initialization.

This package provides a fluent, asynchronous query engine over Contentrain
content stores (JSON content directories and generated SQLite databases).

It initializes a logger with a NullHandler and makes the query builder,
loaders, cache and exceptions available at the top level.
"""

import logging

# --------------------------------------------------------------------------
# Logging Setup
# --------------------------------------------------------------------------
# Library logs are discarded unless the consuming application configures
# logging for "contentrain_query".
logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())
logger.propagate = False

# --------------------------------------------------------------------------
# Exceptions
# --------------------------------------------------------------------------
from .base.exceptions import (
    ContentrainError,
    LocaleRequiredError,
    ModelNotFoundError,
    RelationNotFoundError,
    StorageError,
    ValidationError,
)

# --------------------------------------------------------------------------
# Query Model and Builder
# --------------------------------------------------------------------------
from .base.query import (
    IncludeSpec,
    PaginationInfo,
    QueryFilter,
    QueryOperator,
    QueryOptions,
    QueryResult,
    QuerySort,
    QueryState,
    SortDirection,
)
from .base.builder import QueryBuilder
from .base.relations import RelationResolver

# --------------------------------------------------------------------------
# Metadata, Configuration and Cache
# --------------------------------------------------------------------------
from .base.metadata import FieldDefinition, ModelMetadata, RelationDefinition
from .base.config import ContentrainConfig
from .base.cache import CacheManager, get_default_cache

# --------------------------------------------------------------------------
# Loader Implementations
# --------------------------------------------------------------------------
from .base.interfaces import Loader
from .flatfile.base import JsonFileLoader
from .sqlite.base import SqliteLoader

from .client import ContentrainClient

__all__ = [
    # Client
    "ContentrainClient",
    # Exceptions
    "ContentrainError",
    "LocaleRequiredError",
    "ModelNotFoundError",
    "RelationNotFoundError",
    "StorageError",
    "ValidationError",
    # Query
    "IncludeSpec",
    "PaginationInfo",
    "QueryBuilder",
    "QueryFilter",
    "QueryOperator",
    "QueryOptions",
    "QueryResult",
    "QuerySort",
    "QueryState",
    "RelationResolver",
    "SortDirection",
    # Metadata / config / cache
    "CacheManager",
    "ContentrainConfig",
    "FieldDefinition",
    "ModelMetadata",
    "RelationDefinition",
    "get_default_cache",
    # Loaders
    "JsonFileLoader",
    "Loader",
    "SqliteLoader",
    # Logging
    "logger",
]

__version__ = "0.1.0"
