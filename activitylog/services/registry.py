"""
Entity type registry.

Tracked entities are referred to by stable string tags ("Sale", "SaleItem").
The registry is the explicit lookup table from a tag to the code that can load
the live record and follow its named relations, so the presenter never has to
resolve classes or attributes from runtime strings.
"""
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from sqlalchemy import inspect
from sqlalchemy.orm import Session

from activitylog.config import ActivityLogConfig, get_config

logger = logging.getLogger(__name__)

Loader = Callable[[Session, str], Any]
Fetch = Callable[[Any], Any]
Snapshot = Callable[[Any], dict]


def column_snapshot(record) -> dict:
    """Column values of a mapped SQLAlchemy instance, keyed by attribute name."""
    mapper = inspect(record).mapper
    return {attr.key: getattr(record, attr.key) for attr in mapper.column_attrs}


@dataclass(frozen=True)
class RelationSpec:
    """A named relation to expand, with the fields to show from it."""
    name: str
    fetch: Fetch
    fields: Tuple[str, ...]
    aliases: Mapping[str, str]
    snapshot: Snapshot = column_snapshot

    def read(self, record) -> Optional[dict]:
        """
        Follow the relation from record and pick the configured fields.

        A field exposed under an alias is read from its actual attribute but
        returned under the requested name. Fields the record lacks are left out.
        """
        related = self.fetch(record)
        if related is None:
            return None

        values = self.snapshot(related)
        data = {}
        for requested in self.fields:
            actual = self.aliases.get(requested, requested)
            if actual in values and values[actual] is not None:
                data[requested] = values[actual]
        return data


@dataclass
class EntityAdapter:
    """How to load one entity type and walk its relations."""
    entity_type: str
    loader: Loader
    display_name: str
    # relation name -> (fetch function, related entity type)
    relations: Dict[str, Tuple[Fetch, str]] = field(default_factory=dict)
    snapshot: Snapshot = column_snapshot


class EntityRegistry:
    """Lookup table from entity type tags to their adapters."""

    def __init__(self, config: ActivityLogConfig):
        self.config = config
        self._adapters: Dict[str, EntityAdapter] = {}
        self._actor_loader: Optional[Loader] = None
        self._actor_snapshot: Snapshot = column_snapshot

    def register_actor_loader(self, loader: Loader, snapshot: Snapshot = column_snapshot) -> None:
        """Set how actor ids are turned into user records (name, email)."""
        self._actor_loader = loader
        self._actor_snapshot = snapshot

    def register_actor_model(self, model) -> None:
        """Load actors from a SQLAlchemy user model by its primary key."""
        pk_column = inspect(model).primary_key[0]

        def load(db: Session, actor_id: str):
            return db.get(model, _coerce_key(pk_column, actor_id))

        self.register_actor_loader(load)

    def load_actor(self, db: Session, actor_id: str) -> Optional[dict]:
        """Column values of the actor's record, or None when unknown or gone."""
        if self._actor_loader is None:
            return None
        record = self._actor_loader(db, actor_id)
        if record is None:
            return None
        return self._actor_snapshot(record)

    def register(
        self,
        entity_type: str,
        loader: Loader,
        display_name: Optional[str] = None,
        relations: Optional[Dict[str, Tuple[Fetch, str]]] = None,
        snapshot: Snapshot = column_snapshot,
    ) -> EntityAdapter:
        adapter = EntityAdapter(
            entity_type=entity_type,
            loader=loader,
            display_name=display_name or entity_type,
            relations=dict(relations or {}),
            snapshot=snapshot,
        )
        self._adapters[entity_type] = adapter
        return adapter

    def register_model(
        self,
        entity_type: str,
        model,
        display_name: Optional[str] = None,
        relations: Optional[Dict[str, Tuple[Fetch, str]]] = None,
    ) -> EntityAdapter:
        """Register a SQLAlchemy model loaded by its single-column primary key."""
        pk_column = inspect(model).primary_key[0]

        def load(db: Session, entity_id: str):
            return db.get(model, _coerce_key(pk_column, entity_id))

        return self.register(entity_type, load, display_name=display_name, relations=relations)

    def get(self, entity_type: str) -> Optional[EntityAdapter]:
        return self._adapters.get(entity_type)

    def __contains__(self, entity_type: str) -> bool:
        return entity_type in self._adapters

    def display_name(self, entity_type: str) -> str:
        adapter = self.get(entity_type)
        if adapter:
            return adapter.display_name
        # Fall back to the last segment of dotted tags ("app.Sale" -> "Sale")
        return entity_type.rsplit(".", 1)[-1]

    def load(self, db: Session, entity_type: str, entity_id: str):
        """Live record for (type, id), or None when unknown or gone."""
        adapter = self.get(entity_type)
        if adapter is None:
            return None
        return adapter.loader(db, entity_id)

    def describe_relations(self, entity_type: str) -> List[RelationSpec]:
        """
        Relations configured for display on this entity type.

        Configured relations with no registered fetcher are skipped.
        """
        configured = self.config.relations_for(entity_type)
        adapter = self.get(entity_type)
        if not configured or adapter is None:
            return []

        specs = []
        for name, fields in configured.items():
            if name not in adapter.relations:
                logger.debug("Relation %s.%s is configured but not registered", entity_type, name)
                continue
            fetch, related_type = adapter.relations[name]
            related = self.get(related_type)
            specs.append(RelationSpec(
                name=name,
                fetch=fetch,
                fields=tuple(fields),
                aliases=self.config.aliases_for(related_type),
                snapshot=related.snapshot if related else column_snapshot,
            ))
        return specs


def _coerce_key(column, value):
    try:
        python_type = column.type.python_type
    except NotImplementedError:
        return value
    if isinstance(value, python_type):
        return value
    try:
        return python_type(value)
    except (TypeError, ValueError):
        return value


@lru_cache()
def get_registry() -> EntityRegistry:
    """Process-wide registry; host applications register their types at startup."""
    return EntityRegistry(get_config())
