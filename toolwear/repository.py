"""Simple in-memory repositories used by the service layer."""

from __future__ import annotations

from typing import Generic, Iterator, List, MutableMapping, TypeVar

from .domain import FailureEvent, ProductionRecord, Tool, User

T = TypeVar("T")


class RepositoryError(RuntimeError):
    """Base exception for repository errors."""


class DuplicateRecordError(RepositoryError):
    """Raised when attempting to insert a record that already exists."""


class RecordNotFoundError(RepositoryError):
    """Raised when a requested record is missing."""


class ReferentialIntegrityError(RepositoryError):
    """Raised when removing a record that other records still reference."""


class InMemoryRepository(Generic[T]):
    """Generic repository backed by a simple dictionary.

    Listing preserves insertion order, which reports rely on to break ties.
    """

    def __init__(self) -> None:
        self._items: MutableMapping[str, T] = {}

    def __contains__(self, item_id: object) -> bool:
        return item_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def add(self, item_id: str, item: T) -> None:
        if item_id in self._items:
            raise DuplicateRecordError(f"Record with id {item_id!r} already exists")
        self._items[item_id] = item

    def upsert(self, item_id: str, item: T) -> None:
        self._items[item_id] = item

    def get(self, item_id: str) -> T:
        try:
            return self._items[item_id]
        except KeyError as exc:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found") from exc

    def remove(self, item_id: str) -> None:
        if item_id not in self._items:
            raise RecordNotFoundError(f"Record with id {item_id!r} not found")
        del self._items[item_id]

    def clear(self) -> None:
        self._items.clear()

    def list(self) -> List[T]:
        return list(self._items.values())

    def __iter__(self) -> Iterator[T]:
        return iter(self._items.values())


class InMemoryStore:
    """Development store holding every aggregate in process memory.

    Offers the same attributes and lifecycle calls as
    :class:`toolwear.storage.ToolwearDatabase` so either can back the service.
    """

    kind = "memory"

    def __init__(self) -> None:
        self.tools: InMemoryRepository[Tool] = InMemoryRepository()
        self.records: InMemoryRepository[ProductionRecord] = InMemoryRepository()
        self.failures: InMemoryRepository[FailureEvent] = InMemoryRepository()
        self.users: InMemoryRepository[User] = InMemoryRepository()

    def initialize(self, drop_existing: bool = False) -> None:
        if drop_existing:
            for repository in (self.failures, self.records, self.tools, self.users):
                repository.clear()

    def close(self) -> None:
        pass


__all__ = [
    "InMemoryRepository",
    "InMemoryStore",
    "RepositoryError",
    "DuplicateRecordError",
    "RecordNotFoundError",
    "ReferentialIntegrityError",
]
