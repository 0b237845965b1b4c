"""Where, order-by and limit evaluation over a sequence of records.

Predicate language:

* ``where("name", "a")`` matches records whose field equals the value.
* ``where("id", [1, 2])`` matches when the field is one of the values
  (lists, tuples, sets and frozensets are treated as membership).
* ``where("age", lambda age: age > 20)`` applies the callable to the field.
* ``where(lambda record: ...)`` applies the callable to the whole record.

A record passes when every ``and`` clause passes (given at least one
exists), or when any ``or`` clause passes. No clauses means every record
passes.
"""

from typing import TYPE_CHECKING, Any, Sequence

from memquery.models.base import Model, read_field
from memquery.models.enums import BooleanType, OrderDirection
from memquery.models.options import Order, Where

if TYPE_CHECKING:
    from memquery.services.query import Query

_MEMBERSHIP_TYPES = (list, tuple, set, frozenset)


class Filter:
    def where(self, query: "Query", records: Sequence[Model]) -> list[Model]:
        if not query.wheres:
            return list(records)

        ands = [where for where in query.wheres if where.boolean is BooleanType.AND]
        ors = [where for where in query.wheres if where.boolean is BooleanType.OR]

        def passes(record: Model) -> bool:
            if ands and all(self.check(where, record) for where in ands):
                return True
            return any(self.check(where, record) for where in ors)

        return [record for record in records if passes(record)]

    def check(self, where: Where, record: Model) -> bool:
        if callable(where.field):
            return bool(where.field(record))

        if isinstance(where.field, tuple):
            actual: Any = [read_field(record, key) for key in where.field]
            return self._compare_composite(actual, where.value)

        actual = read_field(record, where.field)

        if callable(where.value):
            return bool(where.value(actual))

        if isinstance(where.value, _MEMBERSHIP_TYPES):
            return actual in where.value

        return actual == where.value

    def order_by(self, query: "Query", records: Sequence[Model]) -> list[Model]:
        ordered = list(records)
        # Sorting is stable, so applying later keys first lets earlier keys win.
        for order in reversed(query.orders):
            ordered.sort(
                key=lambda record, order=order: _sort_key(order, record),
                reverse=order.direction is OrderDirection.DESC,
            )
        return ordered

    def limit(self, query: "Query", records: Sequence[Model]) -> list[Model]:
        start = query.offset_number
        return list(records[start : start + query.limit_number])

    @staticmethod
    def _compare_composite(actual: list[Any], value: Any) -> bool:
        if isinstance(value, _MEMBERSHIP_TYPES) and value and isinstance(next(iter(value)), _MEMBERSHIP_TYPES):
            return any(actual == list(candidate) for candidate in value)
        if isinstance(value, _MEMBERSHIP_TYPES):
            return actual == list(value)
        return False


def _sort_key(order: Order, record: Model) -> tuple[bool, Any]:
    value = order.field(record) if callable(order.field) else read_field(record, order.field)
    return (value is not None, value)


__all__ = ["Filter"]
