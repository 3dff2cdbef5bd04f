# src/contentrain_query/base/relations.py
import logging
from logging import LoggerAdapter
from typing import Any, Dict, List, Optional, Sequence

from .interfaces import Loader
from .metadata import ModelMetadata
from .query import RELATIONS_KEY, IncludeSpec, Record
from .utils import copy_record, is_reference_id

log = logging.getLogger(__name__)


class RelationResolver:
    """Attaches related records to a page of parent records, one include at a time."""

    def __init__(self, loader: Loader):
        self._loader = loader

    async def resolve(
        self,
        metadata: ModelMetadata,
        records: Sequence[Record],
        include: IncludeSpec,
        logger: LoggerAdapter,
        locale: Optional[str] = None,
    ) -> List[Record]:
        """
        Return copies of `records`, in the same order, with
        `_relations[include.relation]` set where the relation resolves.

        All foreign keys of the page are fetched with a single batched
        `fetch_related` call against the target model.

        Raises:
            RelationNotFoundError: If the model does not define the relation.
        """
        relation = metadata.get_relation(include.relation)
        target_locale = include.locale if include.locale is not None else locale

        if not records:
            return []

        ids_by_parent = await self._loader.relation_ids(
            metadata.model_id, relation, records, logger
        )
        unique_ids: List[Any] = []
        seen = set()
        for ids in ids_by_parent.values():
            for target_id in ids:
                if target_id not in seen:
                    seen.add(target_id)
                    unique_ids.append(target_id)

        lookup: Dict[Any, Record] = {}
        if unique_ids:
            related = await self._loader.fetch_related(
                relation.target_model, unique_ids, logger, target_locale
            )
            lookup = {r.get(self._loader.id_field): r for r in related}

        logger.debug(
            f"Resolved relation '{include.relation}' ({relation.cardinality}) of "
            f"'{metadata.model_id}' -> '{relation.target_model}': "
            f"{len(lookup)}/{len(unique_ids)} target records found"
        )

        id_field = self._loader.id_field
        resolved: List[Record] = []
        for record in records:
            item = copy_record(record)
            parent_id = record.get(id_field)
            parent_ids = ids_by_parent.get(parent_id) if is_reference_id(parent_id) else None
            if parent_ids is not None:
                if relation.is_many:
                    self._attach(
                        item,
                        include.relation,
                        [lookup[i] for i in parent_ids if i in lookup],
                    )
                else:
                    match = next((lookup[i] for i in parent_ids if i in lookup), None)
                    if match is not None:
                        self._attach(item, include.relation, match)
            resolved.append(item)
        return resolved

    @staticmethod
    def _attach(record: Record, relation: str, value: Any) -> None:
        relations = dict(record.get(RELATIONS_KEY) or {})
        relations[relation] = value
        record[RELATIONS_KEY] = relations
