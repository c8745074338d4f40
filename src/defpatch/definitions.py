"""Definition collections.

An *ordered* collection is any mutable list of records: lookups are linear
and removal is structural. An *indexed* collection keeps an identity index
that is only refreshed by ``rebuild_indexes()``; removal leaves a ``None``
tombstone so positions of the other records stay put until the rebuild.
"""

from collections.abc import Iterable, MutableSequence
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class IndexedDefinitions(MutableSequence, Generic[T]):
    """Array-like definitions addressed by identity.

    Example:
        defs = IndexedDefinitions([Resource(ResourceId=0)], id_field="ResourceId")
        defs.get_index(0)  # 0
    """

    def __init__(self, records: Iterable[T | None] = (), id_field: str = "Id"):
        self.id_field = id_field
        self._items: list[T | None] = list(records)
        self._index: dict[Any, int] = {}
        self.rebuild_indexes()

    def __getitem__(self, index):
        return self._items[index]

    def __setitem__(self, index, value) -> None:
        self._items[index] = value

    def __delitem__(self, index) -> None:
        del self._items[index]

    def __len__(self) -> int:
        return len(self._items)

    def insert(self, index: int, value: T | None) -> None:
        self._items.insert(index, value)

    def __repr__(self) -> str:
        return f"IndexedDefinitions({self._items!r})"

    def get_index(self, identity: Any) -> int:
        """Position of ``identity`` as of the last rebuild, or -1."""
        return self._index.get(identity, -1)

    def contains_id(self, identity: Any) -> bool:
        return identity in self._index

    def tombstone(self, index: int) -> None:
        self._items[index] = None

    def rebuild_indexes(self) -> None:
        self._index = {
            getattr(record, self.id_field): i
            for i, record in enumerate(self._items)
            if record is not None
        }

    def live(self) -> list[T]:
        return [record for record in self._items if record is not None]


def is_indexed(collection: Any) -> bool:
    return callable(getattr(collection, "rebuild_indexes", None))


def locate(collection: MutableSequence, id_field: str, identity: Any) -> int:
    """Position of the live record with ``identity``, or -1.

    Indexed collections are tried by slot first; a stale or missing index
    entry falls back to a linear scan.
    """
    if is_indexed(collection):
        index = collection.get_index(identity)
        if 0 <= index < len(collection):
            record = collection[index]
            if record is not None and getattr(record, id_field, None) == identity:
                return index
    for index, record in enumerate(collection):
        if record is not None and getattr(record, id_field, None) == identity:
            return index
    return -1


def next_free_id(collection: MutableSequence, id_field: str) -> int:
    """Smallest identity at or after the collection length that is unused."""
    candidate = len(collection)
    if is_indexed(collection):
        while locate(collection, id_field, candidate) >= 0:
            candidate += 1
    return candidate
