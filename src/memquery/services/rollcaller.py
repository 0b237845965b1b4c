"""Relation existence constraints (``has``, ``where_has`` and negations)."""

import operator as op
from typing import TYPE_CHECKING, Any, Callable

import structlog

from memquery.models.options import Has
from memquery.services.loader import relation_of

if TYPE_CHECKING:
    from memquery.services.query import Query

_COMPARATORS: dict[str, Callable[[Any, Any], bool]] = {
    ">": op.gt,
    ">=": op.ge,
    "<": op.lt,
    "<=": op.le,
    "=": op.eq,
    "!=": op.ne,
}


class Rollcaller:
    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def has(self, query: "Query", relation: str, operator: str | int | None = None, count: int | None = None) -> None:
        query.have.append(self._make_has(relation, operator, count, negate=False))

    def has_not(
        self, query: "Query", relation: str, operator: str | int | None = None, count: int | None = None
    ) -> None:
        query.have.append(self._make_has(relation, operator, count, negate=True))

    def where_has(self, query: "Query", relation: str, constraint: Callable[["Query"], Any]) -> None:
        query.have.append(Has(relation=relation, constraint=constraint))

    def where_has_not(self, query: "Query", relation: str, constraint: Callable[["Query"], Any]) -> None:
        query.have.append(Has(relation=relation, constraint=constraint, negate=True))

    def apply_constraints(self, query: "Query") -> None:
        """Turn pending existence constraints into where clauses on ``query``.

        Each constraint is resolved against a fresh query of the same entity
        and becomes a record predicate over the matching table keys. Pending
        constraints are cleared so a repeated select does not apply them
        twice.
        """
        if not query.have:
            return

        pending, query.have = query.have, []
        for has in pending:
            keys = self._matching_keys(query, has)
            if has.negate:
                query.where(lambda record, keys=keys: record.index_id not in keys)
            else:
                query.where(lambda record, keys=keys: record.index_id in keys)
            self._logger.debug(
                "has_constraint_applied",
                entity=query.entity,
                relation=has.relation,
                negate=has.negate,
                match_count=len(keys),
            )

    def _matching_keys(self, query: "Query", has: Has) -> set[str]:
        relation = relation_of(query, has.relation)
        candidates = [record.model_copy() for record in query.new_query().get()]
        constraints = [has.constraint] if has.constraint is not None else []
        relation.load(query, candidates, has.relation, constraints)

        compare = _COMPARATORS[has.operator]
        return {
            record.index_id for record in candidates if compare(relation.count(record, has.relation), has.count)
        }

    @staticmethod
    def _make_has(relation: str, operator: str | int | None, count: int | None, negate: bool) -> Has:
        if isinstance(operator, int):
            return Has(relation=relation, operator=">=", count=operator, negate=negate)
        if operator is None:
            return Has(relation=relation, negate=negate)
        return Has(relation=relation, operator=operator, count=1 if count is None else count, negate=negate)


__all__ = ["Rollcaller"]
