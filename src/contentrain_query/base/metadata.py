# src/contentrain_query/base/metadata.py
import logging
from typing import Any, Dict, List, Literal, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import RelationNotFoundError, StorageError

log = logging.getLogger(__name__)

Cardinality = Literal["one-to-one", "one-to-many"]


class FieldDefinition(BaseModel):
    """One entry of a Contentrain model's field list (`models/<modelId>.json`)."""

    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", protected_namespaces=()
    )

    field_id: str = Field(alias="fieldId")
    name: str = ""
    field_type: str = Field(default="string", alias="fieldType")
    component_id: Optional[str] = Field(default=None, alias="componentId")
    options: Dict[str, Any] = Field(default_factory=dict)

    @property
    def is_relation(self) -> bool:
        return self.field_type == "relation"

    @property
    def reference_model(self) -> Optional[str]:
        reference = self.options.get("reference") or {}
        form = reference.get("form") or {}
        value = (form.get("reference") or {}).get("value")
        return value if isinstance(value, str) and value else None


class RelationDefinition(BaseModel):
    """A relation from one model to another, keyed by relation name."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str
    target_model: str = Field(alias="targetModel")
    cardinality: Cardinality = "one-to-one"
    # Field on the source record holding the foreign key(s)
    field: Optional[str] = None

    @property
    def foreign_key(self) -> str:
        return self.field or self.name

    @property
    def is_many(self) -> bool:
        return self.cardinality == "one-to-many"


class ModelMetadata(BaseModel):
    """Everything the engine needs to know about one model."""

    model_config = ConfigDict(
        populate_by_name=True, extra="ignore", protected_namespaces=()
    )

    model_id: str = Field(alias="modelId")
    name: str = ""
    localization: bool = False
    type: str = "JSON"
    fields: List[FieldDefinition] = Field(default_factory=list)
    relations: Dict[str, RelationDefinition] = Field(default_factory=dict)
    translated_fields: List[str] = Field(default_factory=list)

    @property
    def field_names(self) -> List[str]:
        return [f.field_id for f in self.fields]

    def get_relation(self, relation: str) -> RelationDefinition:
        """Look a relation up by name, falling back to its field's display name."""
        if relation in self.relations:
            return self.relations[relation]
        for definition in self.fields:
            if definition.name == relation and definition.field_id in self.relations:
                return self.relations[definition.field_id]
        raise RelationNotFoundError(self.model_id, relation)

    @classmethod
    def from_contentrain(
        cls, metadata: Mapping[str, Any], fields: Sequence[Mapping[str, Any]]
    ) -> "ModelMetadata":
        """Build metadata from a `metadata.json` entry and the model's field list."""
        model_id = metadata.get("modelId")
        try:
            parsed_fields = [FieldDefinition.model_validate(f) for f in fields]
        except Exception as e:
            raise StorageError(
                f"Malformed field definitions for model '{model_id}': {e}",
                {"model_id": model_id},
            ) from e

        relations: Dict[str, RelationDefinition] = {}
        for definition in parsed_fields:
            if not definition.is_relation:
                continue
            target = definition.reference_model
            if target is None:
                log.error(
                    f"Relation field '{definition.field_id}' of model '{model_id}' "
                    f"has no reference model."
                )
                raise StorageError(
                    f"Reference not found for relation field: {definition.field_id}",
                    {"model_id": model_id, "field_id": definition.field_id},
                )
            relations[definition.field_id] = RelationDefinition(
                name=definition.field_id,
                target_model=target,
                cardinality=(
                    "one-to-one"
                    if definition.component_id == "one-to-one"
                    else "one-to-many"
                ),
                field=definition.field_id,
            )

        try:
            return cls.model_validate(
                {**dict(metadata), "fields": parsed_fields, "relations": relations}
            )
        except Exception as e:
            raise StorageError(
                f"Malformed metadata for model '{model_id}': {e}",
                {"model_id": model_id},
            ) from e
