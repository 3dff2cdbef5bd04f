from typing import Any, Dict, Optional


class ContentrainError(Exception):
    """Base class for every error raised by the query engine."""

    code = "CONTENTRAIN_ERROR"

    def __init__(
        self,
        message: str = "Contentrain query failed.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.context = dict(context or {})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": type(self).__name__,
            "code": self.code,
            "message": self.message,
            "context": self.context,
        }


class ModelNotFoundError(ContentrainError):
    """Exception raised when a model (or its backing table/file) does not exist."""

    code = "MODEL_NOT_FOUND"

    def __init__(self, model_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Model not found: {model_id}", {"model_id": model_id}
        )
        self.model_id = model_id


class RelationNotFoundError(ContentrainError):
    """Exception raised when an include names a relation the model does not define."""

    code = "RELATION_NOT_FOUND"

    def __init__(self, model_id: str, relation: str):
        super().__init__(
            f'Relation "{relation}" is not defined for model "{model_id}"',
            {"model_id": model_id, "relation": relation},
        )
        self.model_id = model_id
        self.relation = relation


class LocaleRequiredError(ContentrainError):
    """Exception raised when a localized model is queried without any locale."""

    code = "LOCALE_REQUIRED"

    def __init__(self, model_id: str):
        super().__init__(
            f'A locale is required for localized model "{model_id}"',
            {"model_id": model_id},
        )
        self.model_id = model_id


class ValidationError(ContentrainError, ValueError):
    """Exception raised by a builder call that received a malformed argument."""

    code = "VALIDATION_ERROR"


class StorageError(ContentrainError):
    """Wraps an underlying storage failure (I/O, malformed stored data, driver error)."""

    code = "STORAGE_ERROR"
