"""Application settings and the immutable activity log configuration."""
from dataclasses import dataclass, field
from datetime import timedelta
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Dict, FrozenSet, Mapping, Optional, Tuple

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAPPINGS_PATH = Path(__file__).parent / "mappings.yaml"


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Database
    DATABASE_URL: str = "sqlite:///./activitylog.db"

    # Task broker (only used when ACTIVITY_LOG_ASYNC is on)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # Activity log behaviour
    ACTIVITY_LOG_ASYNC: bool = False
    ACTIVITY_LOG_BATCH_WINDOW: float = 2.0  # seconds
    ACTIVITY_LOG_RETENTION_DAYS: Optional[int] = 400
    ACTIVITY_LOG_AUTO_CLEANUP: bool = True
    ACTIVITY_LOG_PARTITIONS: int = 4
    ACTIVITY_LOG_MAPPINGS: Optional[str] = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


@lru_cache()
def load_mappings(path: Optional[str] = None) -> dict:
    """Load relation, alias and label mappings from YAML."""
    config_path = Path(path) if path else DEFAULT_MAPPINGS_PATH
    with open(config_path, "r") as f:
        return yaml.safe_load(f) or {}


def _freeze(mapping: Mapping) -> Mapping:
    return MappingProxyType(dict(mapping))


@dataclass(frozen=True)
class ActivityLogConfig:
    """
    Everything the batching engine and the presenter need, resolved once.

    Passed in at construction time so tests can vary the window freely.
    """
    batch_window: timedelta = timedelta(seconds=2)
    retention_days: Optional[int] = 400
    async_mode: bool = False
    partitions: int = 4
    # entity type -> relation name -> fields to show
    model_relations: Mapping[str, Mapping[str, Tuple[str, ...]]] = field(default_factory=lambda: _freeze({}))
    # entity type -> external field name -> actual attribute
    model_field_mappings: Mapping[str, Mapping[str, str]] = field(default_factory=lambda: _freeze({}))
    field_labels: Mapping[str, str] = field(default_factory=lambda: _freeze({}))
    money_fields: FrozenSet[str] = frozenset()
    decimal_places: int = 2
    datetime_suffixes: Tuple[str, ...] = ("_at",)
    datetime_format: str = "%b %d, %Y %I:%M %p"
    ignore_attributes: FrozenSet[str] = frozenset()

    def relations_for(self, entity_type: str) -> Mapping[str, Tuple[str, ...]]:
        return self.model_relations.get(entity_type, {})

    def aliases_for(self, entity_type: str) -> Mapping[str, str]:
        return self.model_field_mappings.get(entity_type, {})


def config_from_mappings(mappings: dict, **overrides) -> ActivityLogConfig:
    """
    Build an ActivityLogConfig from a parsed mappings document.

    Keyword overrides win over the document (used for batch_window,
    retention_days and the other environment-driven values).
    """
    relations: Dict[str, Mapping[str, Tuple[str, ...]]] = {}
    for entity_type, rels in (mappings.get("model_relations") or {}).items():
        relations[entity_type] = _freeze({
            name: tuple(fields or []) for name, fields in (rels or {}).items()
        })

    aliases = {
        entity_type: _freeze(mapping or {})
        for entity_type, mapping in (mappings.get("model_field_mappings") or {}).items()
    }

    display = mappings.get("display") or {}
    values = dict(
        model_relations=_freeze(relations),
        model_field_mappings=_freeze(aliases),
        field_labels=_freeze(mappings.get("field_labels") or {}),
        money_fields=frozenset(mappings.get("money_fields") or []),
        ignore_attributes=frozenset(mappings.get("ignore_attributes") or []),
    )
    if "decimal_places" in display:
        values["decimal_places"] = int(display["decimal_places"])
    if "datetime_format" in display:
        values["datetime_format"] = display["datetime_format"]
    if "datetime_suffixes" in display:
        values["datetime_suffixes"] = tuple(display["datetime_suffixes"])
    values.update(overrides)
    return ActivityLogConfig(**values)


def build_config(settings: Optional[Settings] = None, mappings: Optional[dict] = None) -> ActivityLogConfig:
    """Fold environment settings and the YAML mappings into one immutable config."""
    settings = settings or get_settings()
    if mappings is None:
        mappings = load_mappings(settings.ACTIVITY_LOG_MAPPINGS)

    retention = settings.ACTIVITY_LOG_RETENTION_DAYS
    return config_from_mappings(
        mappings,
        batch_window=timedelta(seconds=settings.ACTIVITY_LOG_BATCH_WINDOW),
        retention_days=retention if retention and retention > 0 else None,
        async_mode=settings.ACTIVITY_LOG_ASYNC,
        partitions=max(1, settings.ACTIVITY_LOG_PARTITIONS),
    )


@lru_cache()
def get_config() -> ActivityLogConfig:
    """Get the process-wide config built from settings."""
    return build_config()
