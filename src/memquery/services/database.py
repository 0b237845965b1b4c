"""Model registry and the store that owns the in-memory tables."""

from typing import Any, Iterable

import structlog
from pydantic import BaseModel, ConfigDict, Field

from memquery.errors import InvalidArgumentError
from memquery.models.base import Model
from memquery.services.filter import Filter
from memquery.services.hooks import HookRegistry
from memquery.services.loader import Loader
from memquery.services.processor import Processor
from memquery.services.query import Query
from memquery.services.rollcaller import Rollcaller


class Database:
    """Registry resolving entity names to ``Model`` classes."""

    def __init__(self, models: Iterable[type[Model]] = ()) -> None:
        self._models: dict[str, type[Model]] = {}
        self._last_uid = 0
        for model in models:
            self.register(model)

    def register(self, model: type[Model]) -> None:
        if not model.entity:
            raise InvalidArgumentError(f"model '{model.__name__}' does not declare an entity")
        self._models[model.entity] = model

    def model(self, name: str) -> type[Model]:
        try:
            return self._models[name]
        except KeyError:
            raise InvalidArgumentError(f"entity '{name}' is not registered") from None

    def base_model(self, name: str) -> type[Model]:
        """Resolve the model whose table stores records of entity ``name``."""
        model = self.model(name)
        if model.base_entity is None or model.base_entity == model.entity:
            return model
        return self.base_model(model.base_entity)

    def models(self) -> dict[str, type[Model]]:
        return dict(self._models)

    def next_uid(self) -> str:
        self._last_uid += 1
        return f"$uid{self._last_uid}"


class EntityState(BaseModel):
    """Table of one base entity: table key to ``Model`` (or plain record)."""

    data: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(arbitrary_types_allowed=True)


class Store:
    """Owns one table per base entity and hands out queries against them.

    All queries from a store share its hook registry and collaborators.
    Mutations replace ``EntityState.data`` with a new mapping; only update
    closures and hook callbacks touch stored instances in place.
    """

    def __init__(
        self,
        database: Database,
        hooks: HookRegistry | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
        record_filter: Filter | None = None,
        loader: Loader | None = None,
        rollcaller: Rollcaller | None = None,
        processor: Processor | None = None,
    ) -> None:
        self.database = database
        self._logger = logger or structlog.get_logger(__name__)
        self.hooks = hooks or HookRegistry(logger=self._logger)
        self.record_filter = record_filter or Filter()
        self.loader = loader or Loader(logger=self._logger)
        self.rollcaller = rollcaller or Rollcaller(logger=self._logger)
        self.processor = processor or Processor(logger=self._logger)
        self.state: dict[str, EntityState] = {}

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        return self._logger

    def entity_state(self, entity: str) -> EntityState:
        base = self.database.base_model(entity)
        if base.entity not in self.state:
            self.state[base.entity] = EntityState()
        return self.state[base.entity]

    def query(self, entity: str) -> Query:
        return Query(self, entity)

    def delete_all(self) -> dict[str, list[Model]]:
        """Delete every record of every base entity, firing delete hooks.

        Returns:
            Deleted instances keyed by base entity name.
        """
        deleted: dict[str, list[Model]] = {}
        for name in list(self.state):
            records = self.query(name).delete_all()
            if records:
                deleted[name] = records
        return deleted


__all__ = ["Database", "EntityState", "Store"]
