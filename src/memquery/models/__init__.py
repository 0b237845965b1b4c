from memquery.models.base import Model
from memquery.models.enums import BooleanType, HookEvent, HookResult, OrderDirection, PersistMethod
from memquery.models.options import Has, HookEntry, Order, PersistOptions, Where
from memquery.models.relations import BelongsTo, HasMany, HasOne, Relation

__all__ = [
    "Model",
    "Relation",
    "HasOne",
    "HasMany",
    "BelongsTo",
    "Where",
    "Order",
    "Has",
    "HookEntry",
    "PersistOptions",
    "BooleanType",
    "HookEvent",
    "HookResult",
    "OrderDirection",
    "PersistMethod",
]
