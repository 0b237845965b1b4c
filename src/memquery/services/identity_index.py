"""Primary-key candidate sets used to skip full table scans."""

from typing import Any, Iterable, Mapping

from memquery.models.base import to_index_key


class IdentityIndex:
    """Candidate key sets accumulated by one query instance.

    ``id_filter`` narrows on every ``and`` equality against the primary key
    and stops being used once the query gains an ``or`` clause.
    ``joined_id_filter`` is only fed by foreign-key lookups, which are always
    conjunctive, so it is never invalidated. Both map table keys to the raw
    values they were built from and narrow by intersection.
    """

    def __init__(self) -> None:
        self.id_filter: dict[str, Any] | None = None
        self.joined_id_filter: dict[str, Any] | None = None
        self.cancelled = False

    @property
    def usable(self) -> bool:
        return not self.cancelled

    def narrow_by_equality(self, values: Iterable[Any]) -> None:
        self.id_filter = self._narrow(self.id_filter, values)

    def narrow_joined(self, values: Iterable[Any]) -> None:
        self.joined_id_filter = self._narrow(self.joined_id_filter, values)

    def invalidate(self) -> None:
        self.cancelled = True

    def release(self) -> list[Any] | None:
        """Drop a cancelled ``id_filter`` and hand back the values it held.

        The caller re-expresses the returned values as a membership clause so
        that the narrowing still constrains the scan. Returns None when there
        is nothing to release.
        """
        if not self.cancelled or self.id_filter is None:
            return None
        values = list(self.id_filter.values())
        self.id_filter = None
        return values

    def resolve_lookup_keys(self, table: Mapping[str, Any]) -> list[str]:
        id_filter = None if self.cancelled else self.id_filter
        joined = self.joined_id_filter

        if id_filter is not None and joined is not None:
            return [key for key in id_filter if key in joined]

        if id_filter is not None:
            return list(id_filter)

        if joined is not None:
            return list(joined)

        return list(table)

    @staticmethod
    def _narrow(current: dict[str, Any] | None, values: Iterable[Any]) -> dict[str, Any]:
        candidates = {to_index_key(item): item for item in values}
        if current is None:
            return candidates
        return {key: item for key, item in candidates.items() if key in current}

