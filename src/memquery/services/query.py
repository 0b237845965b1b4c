"""Query builder plus the selection and persistence pipelines.

A ``Query`` is created per call chain from a ``Store``. Builder methods only
append to the query's own specification and return the query. Executing
methods (``get``, ``first``, ``insert``, ``delete`` ...) read or replace the
table of the query's base entity.

Tables are replaced wholesale on mutation: a new mapping is built from the
old entries plus the changed instances. The exceptions are update closures
and hook callbacks, which receive the stored instance itself and may mutate
it in place.
"""

from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping, Sequence

from memquery.errors import InvalidArgumentError
from memquery.models.base import Model, read_field, to_index_key
from memquery.models.enums import BooleanType, HookEvent, HookResult, OrderDirection, PersistMethod
from memquery.models.options import Has, Order, PersistOptions, Where
from memquery.models.relations import Constraint
from memquery.services.hooks import (
    execute_after_mutation_hook,
    execute_before_mutation_hook,
    execute_retrieve_hook,
)
from memquery.services.identity_index import IdentityIndex

if TYPE_CHECKING:
    from memquery.services.database import Store

Record = Mapping[str, Any]
Records = Mapping[str, Record]
Instances = dict[str, Model]
Predicate = Callable[[Model], Any]
UpdateClosure = Callable[[Model], Any]
UpdateCondition = int | str | list | tuple | Predicate | None
Collections = dict[str, list[Model]]

MAX_SAFE_INTEGER = 2**53 - 1

_LIST_TYPES = (list, tuple, set, frozenset)


class Query:
    def __init__(self, store: "Store", entity: str) -> None:
        self.store = store
        self.database = store.database
        self.hooks = store.hooks
        self._logger = store.logger

        # Every model of an inheritance hierarchy is stored in its base table.
        base = self.database.base_model(entity)
        self.state = store.entity_state(entity)
        self.applied_on_base = base.entity == entity

        self.entity = entity
        self.model = self.database.model(entity)

        self.index = IdentityIndex()
        self.wheres: list[Where] = []
        self.have: list[Has] = []
        self.orders: list[Order] = []
        self.offset_number = 0
        self.limit_number = MAX_SAFE_INTEGER
        self.load: dict[str, list[Constraint]] = {}

    def new_query(self, entity: str | None = None) -> "Query":
        return Query(self.store, entity or self.entity)

    # Retrieval

    def all(self) -> list[Model]:
        return self.get()

    def get(self) -> list[Model]:
        return self.collect(self.select())

    def first(self) -> Model | None:
        records = self.select()
        return self.item(records[0] if records else None)

    def last(self) -> Model | None:
        records = self.select()
        return self.item(records[-1] if records else None)

    def find(self, id: Any) -> Model | None:
        return self.item(self._lookup(to_index_key(id)))

    def find_in(self, ids: Iterable[Any]) -> list[Model]:
        found = []
        for id in ids:
            instance = self._lookup(to_index_key(id))
            if instance is not None:
                found.append(instance)
        return self.collect(found)

    def count(self) -> int:
        return len(self.get())

    def max(self, field: str) -> int | float:
        numbers = self._numbers(field)
        return max(numbers) if numbers else 0

    def min(self, field: str) -> int | float:
        numbers = self._numbers(field)
        return min(numbers) if numbers else 0

    def sum(self, field: str) -> int | float:
        return sum(self._numbers(field))

    # Builder

    def where(self, field: Any, value: Any = None) -> "Query":
        field = tuple(field) if isinstance(field, list) else field
        if self._is_id_filterable(field, value):
            self.index.narrow_by_equality(self._id_values(value))

        self.wheres.append(Where(field=field, value=value, boolean=BooleanType.AND))
        return self

    def or_where(self, field: Any, value: Any = None) -> "Query":
        # An "or" needs a full scan, so the id fast path can no longer be used.
        self.index.invalidate()

        field = tuple(field) if isinstance(field, list) else field
        self.wheres.append(Where(field=field, value=value, boolean=BooleanType.OR))
        return self

    def where_id(self, value: Any) -> "Query":
        if self.model.has_composite_key():
            return self.where(self.model.primary_key, [value])
        return self.where(self.model.primary_key, value)

    def where_id_in(self, values: Iterable[Any]) -> "Query":
        return self.where(self.model.primary_key, list(values))

    def where_fk(self, field: str, value: Any) -> "Query":
        """Conjunctive foreign-key lookup.

        When ``field`` is the primary key the candidates go straight into the
        joined id filter, which an ``or_where`` never cancels. Any other field
        falls back to a membership ``where``.
        """
        values = list(value) if isinstance(value, _LIST_TYPES) else [value]

        if field == self.model.primary_key:
            self.index.narrow_joined(values)
            return self

        return self.where(field, values)

    def order_by(self, field: str | Callable[[Model], Any], direction: OrderDirection | str = "asc") -> "Query":
        self.orders.append(Order(field=field, direction=direction))
        return self

    def offset(self, offset: int) -> "Query":
        self.offset_number = offset
        return self

    def limit(self, limit: int) -> "Query":
        self.limit_number = limit
        return self

    def with_(self, name: str | Sequence[str], constraint: Constraint | None = None) -> "Query":
        self.store.loader.with_(self, name, constraint)
        return self

    def with_all(self) -> "Query":
        self.store.loader.with_all(self)
        return self

    def with_all_recursive(self, depth: int = 3) -> "Query":
        self.store.loader.with_all_recursive(self, depth)
        return self

    def has(self, relation: str, operator: str | int | None = None, count: int | None = None) -> "Query":
        self.store.rollcaller.has(self, relation, operator, count)
        return self

    def has_not(self, relation: str, operator: str | int | None = None, count: int | None = None) -> "Query":
        self.store.rollcaller.has_not(self, relation, operator, count)
        return self

    def where_has(self, relation: str, constraint: Constraint) -> "Query":
        self.store.rollcaller.where_has(self, relation, constraint)
        return self

    def where_has_not(self, relation: str, constraint: Constraint) -> "Query":
        self.store.rollcaller.where_has_not(self, relation, constraint)
        return self

    # Selection pipeline

    def select(self) -> list[Model]:
        """Run the selection pipeline and return the matching instances.

        Stages run in a fixed order: relation existence constraints, candidate
        lookup, ``before_select`` hooks, where clauses and ``after_where``,
        ordering and ``after_order_by``, then offset/limit and ``after_limit``.
        """
        self.store.rollcaller.apply_constraints(self)

        records = self.records()
        records = execute_retrieve_hook(self.hooks, self.model, HookEvent.BEFORE_SELECT, records)

        records = self.filter_where(records)
        records = execute_retrieve_hook(self.hooks, self.model, HookEvent.AFTER_WHERE, records)

        records = self.filter_order_by(records)
        records = execute_retrieve_hook(self.hooks, self.model, HookEvent.AFTER_ORDER_BY, records)

        records = self.filter_limit(records)
        records = execute_retrieve_hook(self.hooks, self.model, HookEvent.AFTER_LIMIT, records)

        self._logger.debug("records_selected", entity=self.entity, record_count=len(records))
        return records

    def records(self) -> list[Model]:
        """Fetch the candidate instances, using the identity index when possible."""
        released = self.index.release()
        if released is not None:
            self.where(self.model.primary_key, released)

        records = []
        for key in self.index.resolve_lookup_keys(self.state.data):
            record = self.state.data.get(key)
            if record is None:
                continue
            instance = self._as_instance(key, record)
            if self._matches_type(instance):
                records.append(instance)
        return records

    def filter_where(self, records: Sequence[Model]) -> list[Model]:
        return self.store.record_filter.where(self, records)

    def filter_order_by(self, records: Sequence[Model]) -> list[Model]:
        return self.store.record_filter.order_by(self, records)

    def filter_limit(self, records: Sequence[Model]) -> list[Model]:
        return self.store.record_filter.limit(self, records)

    def item(self, instance: Model | None) -> Model | None:
        if instance is None:
            return None
        if self.load:
            instance = instance.model_copy()
            self.store.loader.eager_load_relations(self, [instance])
        return instance

    def collect(self, collection: Sequence[Model]) -> list[Model]:
        if not collection:
            return []
        if self.load:
            copies = [instance.model_copy() for instance in collection]
            self.store.loader.eager_load_relations(self, copies)
            return copies
        return list(collection)

    # Persistence pipeline

    def new(self) -> Model | None:
        """Insert a record filled with the model's default values."""
        result = self.insert(self.model().to_record())
        created = result.get(self.entity, [])
        return created[0] if created else None

    def create(self, data: Record | list[Record], options: PersistOptions | Record | None = None) -> Collections:
        """Replace every record of the entity with ``data``."""
        return self.persist(data, PersistMethod.CREATE, options)

    def insert(self, data: Record | list[Record], options: PersistOptions | Record | None = None) -> Collections:
        """Add ``data`` without removing existing records; same keys are replaced."""
        return self.persist(data, PersistMethod.INSERT, options)

    def insert_or_update(
        self, data: Record | list[Record], options: PersistOptions | Record | None = None
    ) -> Collections:
        """Update records whose key exists and insert the others."""
        return self.persist(data, PersistMethod.INSERT_OR_UPDATE, options)

    def update(
        self,
        data: Record | Model | list[Record] | UpdateClosure,
        where: UpdateCondition = None,
        options: PersistOptions | Record | None = None,
    ) -> Model | list[Model] | Collections | None:
        """Update records in the table.

        Args:
            data: A list of partial records, a single partial record or
                model instance, or a closure that mutates each matched
                instance in place.
            where: An id, a predicate over instances, or None. Required when
                ``data`` is a closure.
            options: Per-entity persist method overrides for normalized data.

        Returns:
            The updated instance for an update by id (None when the id is
            missing), a list of instances for an update by predicate, or
            collections keyed by entity for normalized data.

        Raises:
            InvalidArgumentError: If a closure is given without ``where``, or
                a scalar ``where`` is given for a composite-key model.
        """
        if isinstance(data, list):
            return self.persist(data, PersistMethod.UPDATE, options)

        if callable(data):
            if where is None:
                raise InvalidArgumentError("updating with a closure requires a `where` id or predicate")
            if callable(where):
                return self.update_by_condition(data, where)
            return self.update_by_id(data, where)

        if callable(where):
            return self.update_by_condition(data, where)

        if where is None:
            return self.persist(data, PersistMethod.UPDATE, options)

        if self.model.has_composite_key():
            raise InvalidArgumentError(
                f"entity '{self.entity}' has a composite primary key; "
                "include the key fields in the data instead of passing a scalar `where`"
            )

        return self.update_by_id(data, where)

    def update_by_id(self, data: Record | Model | UpdateClosure, id: Any) -> Model | None:
        key = to_index_key(id)
        instance = self._lookup(key)
        if instance is None:
            return None

        updated = self.commit_update({key: self.process_update(data, instance)})
        return updated[0] if updated else None

    def update_by_condition(self, data: Record | Model | UpdateClosure, condition: Predicate) -> list[Model]:
        instances: Instances = {}
        for key, record in self.state.data.items():
            instance = self._as_instance(key, record)
            if not self._matches_type(instance) or not condition(instance):
                continue
            instances[key] = self.process_update(data, instance)
        return self.commit_update(instances)

    def process_update(self, data: Record | Model | UpdateClosure, instance: Model) -> Model:
        if callable(data):
            data(instance)
            return instance

        if isinstance(data, Model):
            data = data.to_record()

        merged = {**instance.to_record(), **data}
        # Keep the concrete variant of records stored under a hierarchy.
        if type(instance) is not self.model:
            return self.hydrate(merged, force_model=type(instance))
        return self.hydrate(merged)

    def persist(
        self,
        data: Record | list[Record],
        method: PersistMethod | str,
        options: PersistOptions | Record | None = None,
    ) -> Collections:
        """Normalize ``data`` and persist each entity batch with its method."""
        persist_method = _as_persist_method(method)
        persist_options = _as_persist_options(options)

        normalized = self.normalize(data)

        if not normalized:
            if persist_method is PersistMethod.CREATE:
                self.empty_state()
            return {}

        collections: Collections = {}
        for entity, records in normalized.items():
            query = self.new_query(entity)
            results = query.persist_many(persist_options.method_for(entity, persist_method), records)
            if results:
                collections[entity] = results
        return collections

    def persist_many(self, method: PersistMethod, records: Records) -> list[Model]:
        handlers: dict[PersistMethod, Callable[[Records], list[Model]]] = {
            PersistMethod.CREATE: self.create_many,
            PersistMethod.INSERT: self.insert_many,
            PersistMethod.UPDATE: self.update_many,
            PersistMethod.INSERT_OR_UPDATE: self.insert_or_update_many,
        }
        return handlers[method](records)

    def create_many(self, records: Records) -> list[Model]:
        instances, _ = self.update_indexes(self.hydrate_many(records))
        instances = self._run_before_hooks(HookEvent.BEFORE_CREATE, instances)

        self.empty_state()
        self.state.data = {**self.state.data, **instances}

        self._run_after_hooks(HookEvent.AFTER_CREATE, instances)
        self._logger.debug("records_created", entity=self.entity, record_count=len(instances))
        return list(instances.values())

    def insert_many(self, records: Records) -> list[Model]:
        instances, _ = self.update_indexes(self.hydrate_many(records))
        instances = self._run_before_hooks(HookEvent.BEFORE_CREATE, instances)

        self.state.data = {**self.state.data, **instances}

        self._run_after_hooks(HookEvent.AFTER_CREATE, instances)
        self._logger.debug("records_inserted", entity=self.entity, record_count=len(instances))
        return list(instances.values())

    def update_many(self, records: Records) -> list[Model]:
        return self.commit_update(self.combine(records))

    def insert_or_update_many(self, records: Records) -> list[Model]:
        """Update records whose key is in the table and insert the rest.

        On a derived query, a key held by a sibling variant is neither
        updated nor inserted, so the result can be shorter than ``records``.
        Such keys are logged as ``records_skipped``.
        """
        to_update = {key: record for key, record in records.items() if key in self.state.data}
        to_insert = {key: record for key, record in records.items() if key not in self.state.data}

        return [*self.update_many(to_update), *self.insert_many(to_insert)]

    def commit_update(self, instances: Instances) -> list[Model]:
        instances, moved = self.update_indexes(instances)
        instances = self._run_before_hooks(HookEvent.BEFORE_UPDATE, instances)

        stale = {moved[key] for key in instances if key in moved}
        data = {key: record for key, record in self.state.data.items() if key not in stale}
        self.state.data = {**data, **instances}

        self._run_after_hooks(HookEvent.AFTER_UPDATE, instances)
        self._logger.debug(
            "records_updated",
            entity=self.entity,
            record_count=len(instances),
            rekeyed_count=len(stale),
        )
        return list(instances.values())

    def update_indexes(self, instances: Instances) -> tuple[Instances, dict[str, str]]:
        """Re-key instances whose primary key no longer matches their table key.

        Returns:
            The re-keyed instances and a mapping of new key to previous key
            for every instance that moved.
        """
        rekeyed: Instances = {}
        moved: dict[str, str] = {}
        for key, instance in instances.items():
            index_id = type(instance).get_index_id_from_record(instance)
            if index_id != key:
                moved[index_id] = key
            instance.assign_index_id(index_id)
            rekeyed[index_id] = instance
        return rekeyed, moved

    def delete(self, condition: Any) -> Model | list[Model] | None:
        """Delete by id (returns the instance or None) or by predicate (returns a list)."""
        if callable(condition):
            return self.delete_by_condition(condition)
        return self.delete_by_id(condition)

    def delete_all(self) -> list[Model]:
        # Derived queries only ever see their own variant, see delete_by_condition.
        return self.delete_by_condition(lambda instance: True)

    def delete_by_id(self, id: Any) -> Model | None:
        key = to_index_key(id)
        if self._lookup(key) is None:
            return None
        deleted = self.delete_by_condition(lambda instance: instance.index_id == key)
        return deleted[0] if deleted else None

    def delete_by_condition(self, condition: Predicate) -> list[Model]:
        """Rebuild the table without the matching records.

        Records vetoed by a ``before_delete`` hook stay in the table and are
        left out of the result. ``after_delete`` hooks run once the new table
        is in place.
        """
        kept: dict[str, Any] = {}
        deleted: list[Model] = []
        for key, record in self.state.data.items():
            instance = self._as_instance(key, record)
            if not self._matches_type(instance) or not condition(instance):
                kept[key] = record
                continue
            if self._before_hook(HookEvent.BEFORE_DELETE, key, instance) is HookResult.EXCLUDE:
                kept[key] = record
                continue
            deleted.append(instance)

        self.state.data = kept

        for instance in deleted:
            execute_after_mutation_hook(self.hooks, self.model, HookEvent.AFTER_DELETE, instance, self.entity)
        self._logger.debug("records_deleted", entity=self.entity, record_count=len(deleted))
        return deleted

    def empty_state(self) -> None:
        """Clear the records this query owns.

        A base query clears the whole table. A derived query only removes
        instances of its own model, so sibling variants survive.
        """
        if self.applied_on_base:
            self.state.data = {}
        else:
            self.state.data = {
                key: record
                for key, record in self.state.data.items()
                if not isinstance(self._as_instance(key, record), self.model)
            }
        self._logger.debug("state_emptied", entity=self.entity, applied_on_base=self.applied_on_base)

    # Hydration

    def normalize(self, data: Record | list[Record]) -> dict[str, dict[str, dict[str, Any]]]:
        return self.store.processor.normalize(self, data)

    def hydrate(self, record: Record, force_model: type[Model] | None = None) -> Model:
        """Build an instance of the right model variant from a plain record."""
        if force_model is not None:
            return force_model.model_validate(dict(record))

        variant = self.model.get_model_from_record(record)
        if variant is not None:
            return variant.model_validate(dict(record))

        # A record inserted through a derived query gets its discriminator set.
        if not self.applied_on_base:
            type_value = self.model.get_type_key_value_from_model()
            if type_value is not None:
                record = {**record, self.model.type_key: type_value}

        return self.model.model_validate(dict(record))

    def hydrate_many(self, records: Records) -> Instances:
        instances: Instances = {}
        for key, record in records.items():
            instance = self.hydrate(record)
            instance.assign_index_id(key)
            instances[key] = instance
        return instances

    def combine(self, records: Records) -> Instances:
        """Merge partial records onto the existing instances with the same key.

        Keys missing from the table are dropped. Keys held by another variant
        of the hierarchy are dropped and logged as ``records_skipped``.
        """
        instances: Instances = {}
        skipped: list[str] = []
        for key, record in records.items():
            existing = self.state.data.get(key)
            if existing is None:
                continue
            instance = self._as_instance(key, existing)
            if not self._matches_type(instance):
                skipped.append(key)
                continue
            instances[key] = self.process_update(record, instance)

        if skipped:
            self._logger.debug("records_skipped", entity=self.entity, index_ids=skipped, reason="variant_mismatch")
        return instances

    # Internals

    def _is_id_filterable(self, field: Any, value: Any) -> bool:
        return field == self.model.primary_key and self.index.usable and not callable(value)

    def _id_values(self, value: Any) -> list[Any]:
        if self.model.has_composite_key():
            if isinstance(value, (list, tuple)) and value and all(isinstance(item, (list, tuple)) for item in value):
                return list(value)
            return [value]
        if isinstance(value, _LIST_TYPES):
            return list(value)
        return [value]

    def _as_instance(self, key: str, record: Any) -> Model:
        if isinstance(record, Model):
            return record
        instance = self.hydrate(record)
        instance.assign_index_id(key)
        return instance

    def _matches_type(self, instance: Model) -> bool:
        return self.applied_on_base or isinstance(instance, self.model)

    def _lookup(self, key: str) -> Model | None:
        record = self.state.data.get(key)
        if record is None:
            return None
        instance = self._as_instance(key, record)
        return instance if self._matches_type(instance) else None

    def _numbers(self, field: str) -> list[int | float]:
        numbers = []
        for instance in self.get():
            value = read_field(instance, field)
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                numbers.append(value)
        return numbers

    def _before_hook(self, event: HookEvent, key: str, instance: Model) -> HookResult:
        result = execute_before_mutation_hook(self.hooks, self.model, event, instance, self.entity)
        if result is HookResult.EXCLUDE:
            self._logger.debug("mutation_vetoed", entity=self.entity, hook_event=event.value, index_id=key)
        return result

    def _run_before_hooks(self, event: HookEvent, instances: Instances) -> Instances:
        return {
            key: instance
            for key, instance in instances.items()
            if self._before_hook(event, key, instance) is not HookResult.EXCLUDE
        }

    def _run_after_hooks(self, event: HookEvent, instances: Instances) -> None:
        for instance in instances.values():
            execute_after_mutation_hook(self.hooks, self.model, event, instance, self.entity)


def _as_persist_method(method: PersistMethod | str) -> PersistMethod:
    try:
        return PersistMethod(method)
    except ValueError:
        raise InvalidArgumentError(f"unknown persist method '{method}'") from None


def _as_persist_options(options: PersistOptions | Record | None) -> PersistOptions:
    if isinstance(options, PersistOptions):
        return options
    if options is None:
        return PersistOptions()
    return PersistOptions.model_validate(options)


__all__ = ["MAX_SAFE_INTEGER", "Query"]
