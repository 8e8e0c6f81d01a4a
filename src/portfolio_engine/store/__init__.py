"""Record store capability and implementations."""

from portfolio_engine.store.base import RecordStore, attribute_key
from portfolio_engine.store.memory import InMemoryRecordStore, JsonFileRecordStore

__all__ = [
    "InMemoryRecordStore",
    "JsonFileRecordStore",
    "RecordStore",
    "attribute_key",
]
