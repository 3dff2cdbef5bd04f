# src/contentrain_query/base/interfaces.py

from abc import ABC, abstractmethod
from logging import LoggerAdapter
from typing import Any, Dict, List, Optional, Sequence, Tuple

from contentrain_query.base.metadata import ModelMetadata, RelationDefinition
from contentrain_query.base.query import QueryOptions, Record
from contentrain_query.base.utils import is_reference_id


class Loader(ABC):
    """
    Storage capability the query engine depends on.

    A Loader turns a model id plus QueryOptions into plain record dicts. It
    applies filters, then sorts, then pagination, and reports the filtered
    total independently of pagination.
    """

    @property
    @abstractmethod
    def id_field(self) -> str:
        """The record field holding the identifier."""
        pass

    @property
    def cache_namespace(self) -> str:
        """Identifies the store behind this loader in shared cache keys."""
        return f"{type(self).__name__}@{id(self):x}"

    @abstractmethod
    async def get_metadata(self, model_id: str, logger: LoggerAdapter) -> ModelMetadata:
        """
        Return the metadata of a model.

        Raises:
            ModelNotFoundError: If the model is unknown to the store.
        """
        pass

    @abstractmethod
    async def fetch(
        self,
        model_id: str,
        logger: LoggerAdapter,
        options: Optional[QueryOptions] = None,
    ) -> Tuple[List[Record], int]:
        """
        Fetch one page of records matching every filter in `options`.

        Returns:
            A tuple of the page of records and the pre-pagination total.

        Raises:
            ModelNotFoundError: If the model is unknown.
            LocaleRequiredError: If the model is localized and no locale applies.
            StorageError: If the underlying storage fails.
        """
        pass

    async def count(
        self,
        model_id: str,
        logger: LoggerAdapter,
        options: Optional[QueryOptions] = None,
    ) -> int:
        """Count records matching the filters of `options`, ignoring pagination."""
        options = (options or QueryOptions()).without_pagination()
        _, total = await self.fetch(model_id, logger, options)
        return total

    @abstractmethod
    async def fetch_related(
        self,
        model_id: str,
        ids: Sequence[Any],
        logger: LoggerAdapter,
        locale: Optional[str] = None,
    ) -> List[Record]:
        """Fetch the records of `model_id` whose identifier is in `ids` (one batch)."""
        pass

    async def fetch_one(
        self,
        model_id: str,
        id: Any,
        logger: LoggerAdapter,
        locale: Optional[str] = None,
    ) -> Optional[Record]:
        records = await self.fetch_related(model_id, [id], logger, locale)
        return records[0] if records else None

    async def relation_ids(
        self,
        model_id: str,
        relation: RelationDefinition,
        records: Sequence[Record],
        logger: LoggerAdapter,
    ) -> Dict[Any, List[Any]]:
        """
        Map each parent's identifier to the target ids it references.

        Parents without any value for the relation field are left out of the
        mapping. A scalar value becomes a one-element list. Only strings and
        integers are usable ids; anything else is skipped with a warning.
        """
        result: Dict[Any, List[Any]] = {}
        for record in records:
            value = record.get(relation.foreign_key)
            if value is None:
                continue
            parent_id = record.get(self.id_field)
            if not is_reference_id(parent_id):
                logger.warning(
                    f"Skipping '{model_id}' record with unusable identifier "
                    f"{parent_id!r} while resolving '{relation.name}'"
                )
                continue
            values = value if isinstance(value, (list, tuple)) else [value]
            ids = []
            for item in values:
                if item is None:
                    continue
                if is_reference_id(item):
                    ids.append(item)
                else:
                    logger.warning(
                        f"Ignoring unusable '{relation.name}' reference {item!r} "
                        f"on '{model_id}' record {parent_id!r}"
                    )
            result[parent_id] = ids
        return result

    @abstractmethod
    async def list_models(self, logger: LoggerAdapter) -> List[str]:
        """Identifiers of every model in the store."""
        pass

    @abstractmethod
    async def get_locales(self, model_id: str, logger: LoggerAdapter) -> List[str]:
        """Locales that content of `model_id` is available in (empty if not localized)."""
        pass
