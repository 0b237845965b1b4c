"""Factory functions for creating and wiring stores.

Provides a production factory for stores over declared models and a
payload factory that derives ad-hoc models from plain JSON-like data, as
used by the CLI.
"""

import json
from typing import Any, ClassVar, Iterable, Mapping

import structlog

from memquery.models.base import Model
from memquery.models.enums import OrderDirection
from memquery.services.database import Database, Store
from memquery.services.hooks import HookRegistry


def create_store(
    models: Iterable[type[Model]],
    hooks: HookRegistry | None = None,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> Store:
    """Create a Store with every given model registered.

    Args:
        models: Model classes to register, base and derived alike.
        hooks: Registry to share between stores. A fresh one is created if
            not given, so stores never see each other's hooks by default.
        logger: Logger passed to the store and its collaborators.

    Returns:
        An empty Store ready for queries.
    """
    logger = logger or structlog.get_logger(__name__)
    database = Database(models)
    return Store(database=database, hooks=hooks or HookRegistry(logger=logger), logger=logger)


def build_model(entity: str, primary_key: str | tuple[str, ...] = "id") -> type[Model]:
    """Create a Model subclass for ``entity`` that accepts any fields."""
    class_name = "".join(part.capitalize() for part in entity.replace("-", "_").split("_")) or "Record"
    namespace = {
        "__module__": __name__,
        "__annotations__": {
            "entity": ClassVar[str],
            "primary_key": ClassVar[str | tuple[str, ...]],
        },
        "entity": entity,
        "primary_key": primary_key,
    }
    return type(class_name, (Model,), namespace)


def create_store_from_payload(
    payload: Mapping[str, list[Mapping[str, Any]]],
    primary_keys: Mapping[str, str | tuple[str, ...]] | None = None,
    hooks: HookRegistry | None = None,
) -> Store:
    """Create a Store holding ``payload`` shaped as ``{entity: [records]}``.

    Args:
        payload: Records grouped by entity name.
        primary_keys: Primary key per entity. Entities not listed use "id".
        hooks: Optional registry shared with the new store.

    Returns:
        A Store with every record inserted.
    """
    logger = structlog.get_logger(__name__)
    primary_keys = primary_keys or {}

    models = [build_model(entity, primary_keys.get(entity, "id")) for entity in payload]
    store = create_store(models, hooks=hooks, logger=logger)

    for entity, records in payload.items():
        store.query(entity).insert(list(records))

    logger.debug(
        "store_loaded",
        entities=sorted(payload),
        record_count=sum(len(records) for records in payload.values()),
    )
    return store


def parse_where_option(option: str) -> tuple[str, Any]:
    """Parse ``field=value`` into a field and a JSON-decoded value.

    Values that are not valid JSON are kept as plain strings, so
    ``name=alice`` and ``id=1`` become ``("name", "alice")`` and ``("id", 1)``.
    Comma-free JSON arrays such as ``id=[1,2]`` become membership lists.
    """
    field, separator, raw = option.partition("=")
    field = field.strip()
    if not separator or not field:
        raise ValueError(f"expected FIELD=VALUE, got '{option}'")
    try:
        return field, json.loads(raw)
    except json.JSONDecodeError:
        return field, raw


def parse_order_option(option: str) -> tuple[str, OrderDirection]:
    """Parse ``field`` or ``field:desc`` into a field and a direction."""
    field, _, direction = option.partition(":")
    return field.strip(), OrderDirection((direction or "asc").strip().lower())
