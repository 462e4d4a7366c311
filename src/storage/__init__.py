"""Persistence module."""

from src.storage.store import InMemoryStore, JsonFileStore, Store

__all__ = ["Store", "InMemoryStore", "JsonFileStore"]
