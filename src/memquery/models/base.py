import json
from typing import TYPE_CHECKING, Any, ClassVar, Mapping

from pydantic import BaseModel, ConfigDict, PrivateAttr

if TYPE_CHECKING:
    from memquery.models.relations import Relation


def read_field(record: Any, field: str) -> Any:
    """Read a field from either a plain mapping or a hydrated instance."""
    if isinstance(record, Mapping):
        return record.get(field)
    return getattr(record, field, None)


def to_index_key(value: Any) -> str:
    """Serialize an id into the string key used by a table.

    Composite ids (lists or tuples) are encoded as a compact JSON array so
    that ``[1, 2]`` and ``(1, 2)`` address the same row.
    """
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value), separators=(",", ":"))
    return str(value)


class Model(BaseModel):
    """Hydrated record stored in a table.

    Subclasses declare the entity they are stored under and, for
    inheritance hierarchies sharing one table, the base entity plus a
    discriminator mapping returned from ``types()``. Unknown fields are
    kept as extras so partially-declared records survive a round trip.

    Instances are mutable: update closures and hook callbacks receive the
    instance held by the table and may change it in place. Every other
    mutation builds new instances and swaps the table mapping.
    """

    entity: ClassVar[str] = ""
    base_entity: ClassVar[str | None] = None
    primary_key: ClassVar[str | tuple[str, ...]] = "id"
    type_key: ClassVar[str] = "type"

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    _index_id: str | None = PrivateAttr(default=None)

    @classmethod
    def types(cls) -> dict[str, type["Model"]]:
        return {}

    @classmethod
    def relations(cls) -> dict[str, "Relation"]:
        return {}

    @classmethod
    def has_composite_key(cls) -> bool:
        return isinstance(cls.primary_key, tuple)

    @classmethod
    def get_model_from_record(cls, record: Any) -> type["Model"] | None:
        type_value = read_field(record, cls.type_key)
        if type_value is None:
            return None
        return cls.types().get(type_value)

    @classmethod
    def get_type_key_value_from_model(cls) -> str | None:
        for value, model in cls.types().items():
            if model is cls:
                return value
        return None

    @classmethod
    def get_index_id_from_record(cls, record: Any) -> str:
        if isinstance(cls.primary_key, tuple):
            return to_index_key([read_field(record, key) for key in cls.primary_key])
        return to_index_key(read_field(record, cls.primary_key))

    @property
    def index_id(self) -> str:
        if self._index_id is None:
            self._index_id = type(self).get_index_id_from_record(self)
        return self._index_id

    def assign_index_id(self, value: str) -> None:
        self._index_id = value

    def to_record(self) -> dict[str, Any]:
        return self.model_dump(exclude=set(type(self).relations()))

    def get(self, field: str, default: Any = None) -> Any:
        return getattr(self, field, default)

    def __getitem__(self, field: str) -> Any:
        try:
            return getattr(self, field)
        except AttributeError:
            raise KeyError(field) from None


__all__ = ["Model", "read_field", "to_index_key"]
