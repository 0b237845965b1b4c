"""Unit tests for the query builder and the selection pipeline."""

from typing import Any, ClassVar

import pytest

from memquery.models.base import Model
from memquery.models.enums import HookEvent
from memquery.services.database import Store
from memquery.services.factory import create_store
from memquery.services.query import MAX_SAFE_INTEGER


class User(Model):
    entity: ClassVar[str] = "users"

    id: Any = None
    name: str = ""
    age: Any = None


class Membership(Model):
    entity: ClassVar[str] = "memberships"
    primary_key: ClassVar[str | tuple[str, ...]] = ("user_id", "group_id")

    user_id: int
    group_id: int
    role: str = "member"


@pytest.fixture
def store() -> Store:
    store = create_store([User, Membership])
    store.query("users").insert(
        [
            {"id": 1, "name": "a", "age": 30},
            {"id": 2, "name": "b", "age": 20},
            {"id": 3, "name": "c", "age": 40},
            {"id": 4, "name": "d", "age": "unknown"},
        ]
    )
    return store


def _ids(records: list[Model]) -> list[Any]:
    return [record.id for record in records]


class TestBuilder:
    """Tests for specification accumulation."""

    def test_builder_methods_return_same_query(self, store: Store) -> None:
        query = store.query("users")

        assert query.where("name", "a") is query
        assert query.or_where("name", "b") is query
        assert query.order_by("name") is query
        assert query.offset(1) is query
        assert query.limit(2) is query

    def test_default_limit_is_unbounded(self, store: Store) -> None:
        assert store.query("users").limit_number == MAX_SAFE_INTEGER

    def test_where_on_primary_key_narrows_index_and_records_clause(self, store: Store) -> None:
        query = store.query("users").where("id", 1)

        assert query.index.id_filter == {"1": 1}
        assert len(query.wheres) == 1

    def test_where_on_other_field_does_not_narrow(self, store: Store) -> None:
        query = store.query("users").where("name", "a")

        assert query.index.id_filter is None

    def test_where_with_callable_value_on_primary_key_does_not_narrow(self, store: Store) -> None:
        query = store.query("users").where("id", lambda value: value > 1)

        assert query.index.id_filter is None
        assert _ids(query.get()) == [2, 3, 4]

    def test_or_where_invalidates_index(self, store: Store) -> None:
        query = store.query("users").where_id(1).or_where("name", "c")

        assert not query.index.usable

    def test_where_id_after_or_where_does_not_narrow(self, store: Store) -> None:
        query = store.query("users").or_where("name", "c").where_id(1)

        assert query.index.id_filter is None

    def test_where_fk_on_primary_key_uses_joined_filter(self, store: Store) -> None:
        query = store.query("users").where_fk("id", [1, 2])

        assert query.index.joined_id_filter == {"1": 1, "2": 2}
        assert query.wheres == []

    def test_where_fk_on_other_field_degrades_to_where(self, store: Store) -> None:
        query = store.query("users").where_fk("name", "a")

        assert query.index.joined_id_filter is None
        assert query.wheres[0].value == ["a"]


class TestIdentityIndexSelection:
    """Tests that index use never changes the logical result."""

    def test_where_id_intersection_is_empty(self, store: Store) -> None:
        seen: list[int] = []
        store.hooks.on(HookEvent.BEFORE_SELECT, lambda records, entity: seen.append(len(records)) or records)

        result = store.query("users").where_id(1).where_id(2).get()

        assert result == []
        assert seen == [0]

    def test_where_id_in_intersection(self, store: Store) -> None:
        result = store.query("users").where_id_in([1, 2, 3]).where_id_in([2, 3]).get()

        assert _ids(result) == [2, 3]

    def test_or_where_on_primary_key_is_a_union(self, store: Store) -> None:
        result = store.query("users").where("id", 1).or_where("id", 2).get()

        assert _ids(result) == [1, 2]

    def test_or_where_keeps_previous_narrowing_as_a_clause(self, store: Store) -> None:
        result = store.query("users").where_id_in([1, 2]).where("name", "b").or_where("name", "c").get()

        assert _ids(result) == [2, 3]

    def test_index_result_matches_full_scan(self, store: Store) -> None:
        indexed = store.query("users").where_id_in([1, 3]).where("age", 40).get()
        scanned = store.query("users").where(lambda user: user.id in (1, 3)).where("age", 40).get()

        assert _ids(indexed) == _ids(scanned) == [3]

    def test_joined_and_id_filters_intersect(self, store: Store) -> None:
        result = store.query("users").where_id_in([1, 2]).where_fk("id", [2, 3]).get()

        assert _ids(result) == [2]

    def test_missing_ids_are_skipped(self, store: Store) -> None:
        assert _ids(store.query("users").where_id_in([1, 99]).get()) == [1]

    def test_plain_records_in_table_are_hydrated(self, store: Store) -> None:
        state = store.entity_state("users")
        state.data = {"1": {"id": 1, "name": "a"}, "2": {"id": 2, "name": "b"}}

        result = store.query("users").where("id", 1).or_where("id", 2).get()

        assert all(isinstance(record, User) for record in result)
        assert _ids(result) == [1, 2]


class TestPipeline:
    """Tests for stage order, hooks and result helpers."""

    def test_get_returns_empty_list_when_nothing_matches(self, store: Store) -> None:
        assert store.query("users").where("name", "zzz").get() == []

    def test_all_is_alias_of_get(self, store: Store) -> None:
        assert _ids(store.query("users").all()) == [1, 2, 3, 4]

    def test_order_offset_limit(self, store: Store) -> None:
        result = store.query("users").where("age", lambda age: isinstance(age, int)).order_by("age", "desc").offset(1).limit(1).get()

        assert _ids(result) == [1]

    def test_hooks_fire_in_stage_order(self, store: Store) -> None:
        stages: list[tuple[str, int]] = []
        for event in (HookEvent.BEFORE_SELECT, HookEvent.AFTER_WHERE, HookEvent.AFTER_ORDER_BY, HookEvent.AFTER_LIMIT):
            store.hooks.on(event, lambda records, entity, event=event: stages.append((event.value, len(records))) or records)

        store.query("users").where("name", ["a", "b", "c"]).order_by("name").limit(2).get()

        assert stages == [
            ("before_select", 4),
            ("after_where", 3),
            ("after_order_by", 3),
            ("after_limit", 2),
        ]

    def test_before_select_hook_can_filter_records(self, store: Store) -> None:
        store.hooks.on(HookEvent.BEFORE_SELECT, lambda records, entity: [r for r in records if r.id != 1])

        assert _ids(store.query("users").get()) == [2, 3, 4]

    def test_first_and_last(self, store: Store) -> None:
        query = store.query("users").order_by("name")

        assert query.first().id == 1
        assert store.query("users").order_by("name").last().id == 4

    def test_first_returns_none_when_empty(self, store: Store) -> None:
        assert store.query("users").where("name", "zzz").first() is None
        assert store.query("users").where("name", "zzz").last() is None

    def test_find(self, store: Store) -> None:
        assert store.query("users").find(2).name == "b"
        assert store.query("users").find("3").name == "c"

    def test_find_miss_returns_none(self, store: Store) -> None:
        assert store.query("users").find(99) is None

    def test_find_in_keeps_id_order_and_skips_missing(self, store: Store) -> None:
        result = store.query("users").find_in([3, 99, 1])

        assert _ids(result) == [3, 1]

    def test_find_by_composite_key(self, store: Store) -> None:
        store.query("memberships").insert([{"user_id": 1, "group_id": 2, "role": "admin"}])

        assert store.query("memberships").find([1, 2]).role == "admin"
        assert store.query("memberships").where_id([1, 2]).first().role == "admin"


class TestAggregates:
    """Tests for count, max, min and sum."""

    def test_count(self, store: Store) -> None:
        assert store.query("users").count() == 4
        assert store.query("users").where("age", lambda age: isinstance(age, int)).count() == 3

    def test_max_min_sum_ignore_non_numeric(self, store: Store) -> None:
        assert store.query("users").max("age") == 40
        assert store.query("users").min("age") == 20
        assert store.query("users").sum("age") == 90

    def test_aggregates_of_empty_set_are_zero(self, store: Store) -> None:
        query = store.query("users").where("name", "zzz")

        assert query.max("age") == 0
        assert store.query("users").where("name", "zzz").min("age") == 0
        assert store.query("users").where("name", "zzz").sum("age") == 0

    def test_aggregates_on_missing_field_are_zero(self, store: Store) -> None:
        assert store.query("users").max("height") == 0
