"""Eager loading of relations declared with ``with_`` and friends."""

from typing import TYPE_CHECKING, Sequence

import structlog

from memquery.errors import InvalidArgumentError
from memquery.models.base import Model
from memquery.models.relations import Constraint, Relation

if TYPE_CHECKING:
    from memquery.services.query import Query


class Loader:
    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def with_(self, query: "Query", name: str | Sequence[str], constraint: Constraint | None = None) -> None:
        """Declare relations to eager load on ``query``.

        Args:
            query: The query to declare the relations on.
            name: A relation name, a dotted path such as ``"posts.comments"``,
                ``"*"`` for every relation, or a list of any of those.
            constraint: Applied to the query of the last relation in the path.
        """
        if not isinstance(name, str):
            for item in name:
                self.with_(query, item, constraint)
            return

        if name == "*":
            self.with_all(query)
            return

        head, _, rest = name.partition(".")
        if rest:
            self._add(query, head, lambda related, rest=rest: related.with_(rest, constraint))
            return

        self._add(query, head, constraint)

    def with_all(self, query: "Query", constraint: Constraint | None = None) -> None:
        for name in query.model.relations():
            self._add(query, name, constraint)

    def with_all_recursive(self, query: "Query", depth: int = 3) -> None:
        if depth <= 0:
            self.with_all(query)
            return
        for name in query.model.relations():
            self._add(query, name, lambda related, depth=depth: related.with_all_recursive(depth - 1))

    def eager_load_relations(self, query: "Query", collection: list[Model]) -> None:
        for name, constraints in query.load.items():
            relation = relation_of(query, name)
            relation.load(query, collection, name, constraints)
            self._logger.debug(
                "relation_loaded",
                entity=query.entity,
                relation=name,
                record_count=len(collection),
            )

    @staticmethod
    def _add(query: "Query", name: str, constraint: Constraint | None) -> None:
        constraints = query.load.setdefault(name, [])
        if constraint is not None:
            constraints.append(constraint)


def relation_of(query: "Query", name: str) -> Relation:
    relations = query.model.relations()
    if name not in relations:
        raise InvalidArgumentError(f"relation '{name}' is not defined on entity '{query.entity}'")
    return relations[name]


__all__ = ["Loader", "relation_of"]
