"""Relation descriptors used by the loader, rollcaller and processor.

A relation knows how to fetch related records for a batch of parent
instances through a fresh query on the related entity, and how to split a
nested payload into the related entity's own records during normalization.
"""

from typing import TYPE_CHECKING, Any, Callable, Iterable

from pydantic import BaseModel, ConfigDict

from memquery.models.base import Model, read_field, to_index_key

if TYPE_CHECKING:
    from memquery.services.processor import NormalizedData, Processor
    from memquery.services.query import Query

Constraint = Callable[["Query"], Any]


class Relation(BaseModel):
    related: str

    model_config = ConfigDict(frozen=True)

    def load(
        self,
        query: "Query",
        collection: list[Model],
        name: str,
        constraints: Iterable[Constraint] = (),
    ) -> None:
        raise NotImplementedError

    def normalize_nested(
        self,
        processor: "Processor",
        query: "Query",
        model: type[Model],
        record: dict[str, Any],
        nested: Any,
        results: "NormalizedData",
    ) -> None:
        raise NotImplementedError

    def count(self, instance: Model, name: str) -> int:
        value = getattr(instance, name, None)
        if value is None:
            return 0
        if isinstance(value, list):
            return len(value)
        return 1

    def _related_query(self, query: "Query", constraints: Iterable[Constraint]) -> "Query":
        related_query = query.new_query(self.related)
        for constraint in constraints:
            constraint(related_query)
        return related_query


class HasMany(Relation):
    foreign_key: str
    local_key: str | None = None

    def _local_key(self, model: type[Model]) -> str:
        return self.local_key or str(model.primary_key)

    def _fetch_grouped(
        self,
        query: "Query",
        collection: list[Model],
        constraints: Iterable[Constraint],
    ) -> dict[str, list[Model]]:
        local_key = self._local_key(query.model)
        values = [value for value in (read_field(item, local_key) for item in collection) if value is not None]

        related_query = self._related_query(query, constraints)
        related_query.where_fk(self.foreign_key, values)

        grouped: dict[str, list[Model]] = {}
        for related in related_query.get():
            grouped.setdefault(to_index_key(read_field(related, self.foreign_key)), []).append(related)
        return grouped

    def load(
        self,
        query: "Query",
        collection: list[Model],
        name: str,
        constraints: Iterable[Constraint] = (),
    ) -> None:
        local_key = self._local_key(query.model)
        grouped = self._fetch_grouped(query, collection, constraints)
        for item in collection:
            setattr(item, name, grouped.get(to_index_key(read_field(item, local_key)), []))

    def normalize_nested(
        self,
        processor: "Processor",
        query: "Query",
        model: type[Model],
        record: dict[str, Any],
        nested: Any,
        results: "NormalizedData",
    ) -> None:
        children = nested if isinstance(nested, list) else [nested]
        local_value = record.get(self._local_key(model))
        related_model = query.database.model(self.related)
        for child in children:
            child = dict(child)
            child[self.foreign_key] = local_value
            processor.normalize_record(query, related_model, child, results)


class HasOne(HasMany):
    def load(
        self,
        query: "Query",
        collection: list[Model],
        name: str,
        constraints: Iterable[Constraint] = (),
    ) -> None:
        local_key = self._local_key(query.model)
        grouped = self._fetch_grouped(query, collection, constraints)
        for item in collection:
            matches = grouped.get(to_index_key(read_field(item, local_key)), [])
            setattr(item, name, matches[0] if matches else None)


class BelongsTo(Relation):
    foreign_key: str
    owner_key: str | None = None

    def _owner_key(self, query: "Query") -> str:
        return self.owner_key or str(query.database.model(self.related).primary_key)

    def load(
        self,
        query: "Query",
        collection: list[Model],
        name: str,
        constraints: Iterable[Constraint] = (),
    ) -> None:
        owner_key = self._owner_key(query)
        values = [value for value in (read_field(item, self.foreign_key) for item in collection) if value is not None]

        related_query = self._related_query(query, constraints)
        related_query.where_fk(owner_key, values)
        owners = {to_index_key(read_field(owner, owner_key)): owner for owner in related_query.get()}

        for item in collection:
            value = read_field(item, self.foreign_key)
            setattr(item, name, None if value is None else owners.get(to_index_key(value)))

    def normalize_nested(
        self,
        processor: "Processor",
        query: "Query",
        model: type[Model],
        record: dict[str, Any],
        nested: Any,
        results: "NormalizedData",
    ) -> None:
        related_model = query.database.model(self.related)
        owner = processor.normalize_record(query, related_model, dict(nested), results)
        record[self.foreign_key] = owner.get(self._owner_key(query))


__all__ = ["BelongsTo", "Constraint", "HasMany", "HasOne", "Relation"]
