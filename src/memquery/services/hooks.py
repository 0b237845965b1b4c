"""Lifecycle hook registry and the plumbing that runs hooks around queries.

Two tiers of hooks exist. Local hooks are classmethods declared on a
``Model`` subclass and named after the ``HookEvent`` value. Global hooks are
registered on a ``HookRegistry`` shared by every query of a store. Local
hooks always run before global ones.

Before-mutation hooks veto a record by returning ``HookResult.EXCLUDE``;
any other return value lets the mutation proceed.
"""

from typing import Any, Callable, Sequence

import structlog

from memquery.models.base import Model
from memquery.models.enums import HookEvent, HookResult
from memquery.models.options import HookEntry


class HookRegistry:
    """Registry of global lifecycle hooks.

    Owned by the caller (usually one per ``Store``) and passed by reference
    to every query, so separate registries never observe each other's hooks.
    Ids come from a counter that only grows for the life of the registry.
    """

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._hooks: dict[HookEvent, list[HookEntry]] = {}
        self._last_hook_id = 0
        self._logger = logger or structlog.get_logger(__name__)

    def on(self, event: HookEvent | str, callback: Callable[..., Any], once: bool = False) -> int:
        """Register a global hook.

        Args:
            event: The lifecycle event to listen on.
            callback: Called with ``(model, entity)`` for mutation events and
                ``(records, entity)`` for retrieval events.
            once: Drop the hook after the first time its event fires.

        Returns:
            Id that can be passed to ``off`` to unregister the hook.
        """
        hook_event = HookEvent(event)
        self._last_hook_id += 1
        entry = HookEntry(id=self._last_hook_id, callback=callback, once=once)
        self._hooks.setdefault(hook_event, []).append(entry)
        self._logger.debug("hook_registered", hook_id=entry.id, hook_event=hook_event.value, once=once)
        return entry.id

    def off(self, hook_id: int) -> bool:
        """Unregister the hook with the given id.

        Returns:
            True if a hook was removed, False if no hook has that id.
        """
        for event, entries in self._hooks.items():
            for index, entry in enumerate(entries):
                if entry.id == hook_id:
                    del entries[index]
                    self._logger.debug("hook_removed", hook_id=hook_id, hook_event=event.value)
                    return True
        return False

    def hooks_on(self, event: HookEvent | str) -> list[HookEntry]:
        return list(self._hooks.get(HookEvent(event), []))

    def prune_once(self, event: HookEvent | str) -> None:
        hook_event = HookEvent(event)
        entries = self._hooks.get(hook_event)
        if entries:
            self._hooks[hook_event] = [entry for entry in entries if not entry.once]

    def run_retrieve_hooks(self, event: HookEvent, records: list[Model], entity: str) -> list[Model]:
        entries = self.hooks_on(event)
        if not entries:
            return records
        for entry in entries:
            records = list(entry.callback(records, entity))
        self.prune_once(event)
        return records

    def run_before_mutation_hooks(self, event: HookEvent, model: Model, entity: str) -> HookResult:
        entries = self.hooks_on(event)
        if not entries:
            return HookResult.CONTINUE
        result = HookResult.CONTINUE
        for entry in entries:
            if as_hook_result(entry.callback(model, entity)) is HookResult.EXCLUDE:
                result = HookResult.EXCLUDE
                break
        self.prune_once(event)
        return result

    def run_after_mutation_hooks(self, event: HookEvent, model: Model, entity: str) -> None:
        entries = self.hooks_on(event)
        if not entries:
            return
        for entry in entries:
            entry.callback(model, entity)
        self.prune_once(event)


def as_hook_result(value: Any) -> HookResult:
    if isinstance(value, str) and value == HookResult.EXCLUDE:
        return HookResult.EXCLUDE
    return HookResult.CONTINUE


def _local_hook(model_class: type[Model], event: HookEvent) -> Callable[..., Any] | None:
    hook = getattr(model_class, event.value, None)
    return hook if callable(hook) else None


def execute_retrieve_hook(
    registry: HookRegistry,
    model_class: type[Model],
    event: HookEvent,
    records: Sequence[Model],
) -> list[Model]:
    """Run the local then global hooks of a retrieval stage over ``records``."""
    collection = list(records)
    local = _local_hook(model_class, event)
    if local is not None:
        collection = list(local(collection, model_class.entity))
    return registry.run_retrieve_hooks(event, collection, model_class.entity)


def execute_before_mutation_hook(
    registry: HookRegistry,
    model_class: type[Model],
    event: HookEvent,
    model: Model,
    entity: str,
) -> HookResult:
    local = _local_hook(model_class, event)
    if local is not None and as_hook_result(local(model, entity)) is HookResult.EXCLUDE:
        return HookResult.EXCLUDE
    return registry.run_before_mutation_hooks(event, model, entity)


def execute_after_mutation_hook(
    registry: HookRegistry,
    model_class: type[Model],
    event: HookEvent,
    model: Model,
    entity: str,
) -> None:
    local = _local_hook(model_class, event)
    if local is not None:
        local(model, entity)
    registry.run_after_mutation_hooks(event, model, entity)
