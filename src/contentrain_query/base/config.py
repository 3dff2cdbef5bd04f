# src/contentrain_query/base/config.py
import logging
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

DEFAULT_CACHE_TTL = 5 * 60.0  # seconds
DEFAULT_MAX_CACHE_ENTRIES = 1000


class ContentrainConfig(BaseSettings):
    """
    Engine-wide settings shared by every query a client builds.

    Unset fields are read from CONTENTRAIN_* environment variables:

        CONTENTRAIN_DEFAULT_LOCALE=en
        CONTENTRAIN_CACHE_ENABLED=false
        CONTENTRAIN_DEFAULT_TTL=120
        CONTENTRAIN_MODEL_TTL='{"faqitems": 60, "workitems": 600}'
        CONTENTRAIN_MAX_CACHE_ENTRIES=500

    Keyword arguments always win over the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="CONTENTRAIN_",
        env_ignore_empty=True,
        extra="ignore",
        protected_namespaces=(),
    )

    default_locale: Optional[str] = None
    cache_enabled: bool = True
    default_ttl: float = DEFAULT_CACHE_TTL
    model_ttl: Dict[str, float] = Field(default_factory=dict)
    max_cache_entries: int = DEFAULT_MAX_CACHE_ENTRIES

    @field_validator("default_locale")
    @classmethod
    def _blank_locale_is_unset(cls, value: Optional[str]) -> Optional[str]:
        return value or None

    @field_validator("default_ttl")
    @classmethod
    def _positive_ttl(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("default_ttl must be a positive number of seconds.")
        return value

    @field_validator("model_ttl")
    @classmethod
    def _positive_model_ttls(cls, value: Dict[str, float]) -> Dict[str, float]:
        invalid = sorted(model_id for model_id, ttl in value.items() if ttl <= 0)
        if invalid:
            raise ValueError(
                f"model_ttl values must be positive numbers of seconds: {invalid}"
            )
        return value

    @field_validator("max_cache_entries")
    @classmethod
    def _positive_capacity(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_cache_entries must be a positive integer.")
        return value

    def ttl_for(self, model_id: str) -> float:
        return self.model_ttl.get(model_id, self.default_ttl)

    @classmethod
    def from_env(cls, **overrides: Any) -> "ContentrainConfig":
        """Settings from the environment, with `overrides` taking precedence."""
        config = cls(**overrides)
        log.debug(f"Loaded configuration: {config!r}")
        return config
