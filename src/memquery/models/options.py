from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, field_validator

from memquery.models.enums import BooleanType, OrderDirection, PersistMethod

HAS_OPERATORS = frozenset({">", ">=", "<", "<=", "=", "!="})


class Where(BaseModel):
    field: str | tuple[str, ...] | Callable[..., Any]
    value: Any = None
    boolean: BooleanType = BooleanType.AND

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


class Order(BaseModel):
    field: str | Callable[..., Any]
    direction: OrderDirection = OrderDirection.ASC

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("direction", mode="before")
    @classmethod
    def _normalize_direction(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.strip().lower()
        return value


class Has(BaseModel):
    """Pending relation-existence constraint, resolved at select time."""

    relation: str
    operator: str = ">="
    count: int = Field(default=1, ge=0)
    constraint: Callable[..., Any] | None = None
    negate: bool = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    @field_validator("operator")
    @classmethod
    def _validate_operator(cls, value: str) -> str:
        if value not in HAS_OPERATORS:
            raise ValueError(f"unsupported has operator '{value}'")
        return value


class PersistOptions(BaseModel):
    """Per-entity overrides of the persist method used for a batch."""

    create: list[str] = Field(default_factory=list)
    insert: list[str] = Field(default_factory=list)
    update: list[str] = Field(default_factory=list)
    insert_or_update: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    def method_for(self, entity: str, default: PersistMethod) -> PersistMethod:
        if entity in self.create:
            return PersistMethod.CREATE
        if entity in self.insert:
            return PersistMethod.INSERT
        if entity in self.update:
            return PersistMethod.UPDATE
        if entity in self.insert_or_update:
            return PersistMethod.INSERT_OR_UPDATE
        return default


class HookEntry(BaseModel):
    id: int = Field(gt=0)
    callback: Callable[..., Any]
    once: bool = False

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)


__all__ = ["HAS_OPERATORS", "Has", "HookEntry", "Order", "PersistOptions", "Where"]
