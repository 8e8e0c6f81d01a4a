"""Durable keyed record store interface."""

from collections.abc import Callable
from typing import Any, Protocol, TypeVar, runtime_checkable

E = TypeVar("E")

KeyFunc = Callable[[Any], str]


def attribute_key(name: str) -> KeyFunc:
    """Key function reading an attribute (or property) of an entity."""

    def key(entity: Any) -> str:
        return str(getattr(entity, name))

    return key


@runtime_checkable
class RecordStore(Protocol[E]):
    """
    Single-record operations over one entity type.

    Every write is an independent, idempotent upsert; no multi-record
    transactions are offered.

    Methods
    -------
    upsert(entity)
        Insert or replace by key
    find_by_owner(owner_id)
        All entities belonging to an owner
    find_by_id(entity_id)
        One entity; raises NotFoundError when absent
    delete(entity_id)
        Remove by key; raises NotFoundError when absent

    """

    def upsert(self, entity: E) -> E: ...

    def find_by_owner(self, owner_id: str) -> list[E]: ...

    def find_by_id(self, entity_id: str) -> E: ...

    def delete(self, entity_id: str) -> None: ...
