"""In-memory and JSON-file record stores."""

import logging
import threading
from pathlib import Path
from typing import Generic, TypeVar

from pydantic import BaseModel, TypeAdapter

from portfolio_engine.core.errors import NotFoundError
from portfolio_engine.store.base import KeyFunc, attribute_key

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


class InMemoryRecordStore(Generic[M]):
    """
    Thread-safe dict-backed record store.

    Parameters
    ----------
    key : KeyFunc | None
        Entity key, defaults to the `id` attribute
    owner : KeyFunc | None
        Owner key, defaults to the `owner_id` attribute
    name : str
        Entity name used in error messages

    """

    def __init__(self, key: KeyFunc | None = None, owner: KeyFunc | None = None, name: str = "record") -> None:
        self.key = key or attribute_key("id")
        self.owner = owner or attribute_key("owner_id")
        self.name = name
        self._records: dict[str, M] = {}
        self._lock = threading.RLock()

    def upsert(self, entity: M) -> M:
        with self._lock:
            self._records[self.key(entity)] = entity
            self._flush()
        return entity

    def find_by_owner(self, owner_id: str) -> list[M]:
        with self._lock:
            return [entity for entity in self._records.values() if self.owner(entity) == owner_id]

    def find_by_id(self, entity_id: str) -> M:
        with self._lock:
            try:
                return self._records[entity_id]
            except KeyError:
                msg = f"{self.name} {entity_id} not found"
                raise NotFoundError(msg) from None

    def delete(self, entity_id: str) -> None:
        with self._lock:
            if entity_id not in self._records:
                msg = f"{self.name} {entity_id} not found"
                raise NotFoundError(msg)
            del self._records[entity_id]
            self._flush()

    def all(self) -> list[M]:
        with self._lock:
            return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)

    def _flush(self) -> None:
        """Hook for durable subclasses; called under the lock after each write."""


class JsonFileRecordStore(InMemoryRecordStore[M]):
    """
    Record store persisted as a JSON array of pydantic models.

    The file is rewritten after every write (write to a temp file, then
    rename), so it always holds a complete snapshot.

    Parameters
    ----------
    path : Path | str
        JSON file location; created on first write
    model : type[M]
        Entity model class
    key, owner, name
        See InMemoryRecordStore

    """

    def __init__(
        self,
        path: Path | str,
        model: type[M],
        key: KeyFunc | None = None,
        owner: KeyFunc | None = None,
        name: str = "record",
    ) -> None:
        super().__init__(key=key, owner=owner, name=name)
        self.path = Path(path)
        self._adapter = TypeAdapter(list[model])
        if self.path.exists():
            for entity in self._adapter.validate_json(self.path.read_bytes()):
                self._records[self.key(entity)] = entity
            logger.debug("Loaded %d %s record(s) from %s", len(self._records), name, self.path)

    def _flush(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp.write_bytes(self._adapter.dump_json(list(self._records.values()), indent=2))
        tmp.replace(self.path)
