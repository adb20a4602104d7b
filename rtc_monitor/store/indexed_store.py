"""IndexedStore — a keyed container with named secondary indexes.

Design notes:
    - Primary lookup is a plain dict, so get/set/delete are O(1).
    - Each secondary index is built from an extractor function.  An
      extractor returning None means "this value is not indexed".
    - Every mutation keeps the indexes exact: overwriting a key removes
      the old value's index entries before indexing the new value, and
      deleting a key removes all of its entries.  Empty index buckets are
      dropped so index_size() reports live values only.
    - The store knows nothing about monitors; it is reused for every
      entity kind a connection tracks.
"""

from __future__ import annotations

from typing import Callable, Generic, Hashable, Iterator, Optional, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

IndexExtractor = Callable[[V], Optional[Hashable]]


class IndexedStore(Generic[K, V]):
    """Mapping from primary key to value with secondary indexes.

    Usage:
        store = IndexedStore()
        store.add_index("ssrc", lambda monitor: monitor.ssrc)
        store.set(monitor.id, monitor)
        store.get_all_by_index("ssrc", 1234)
    """

    def __init__(self) -> None:
        self._values: dict[K, V] = {}
        self._extractors: dict[str, IndexExtractor] = {}
        # index name -> index value -> primary keys
        self._indexes: dict[str, dict[Hashable, set[K]]] = {}
        # primary key -> index name -> index value it was filed under
        self._filed: dict[K, dict[str, Hashable]] = {}

    # ── Indexes ──────────────────────────────────────────────────────────

    def add_index(self, name: str, extractor: IndexExtractor) -> None:
        """Register a secondary index and file every existing value in it.

        Raises:
            ValueError: If an index with *name* is already registered.
        """
        if name in self._extractors:
            raise ValueError(f"Index '{name}' is already registered")
        self._extractors[name] = extractor
        self._indexes[name] = {}
        for key, value in self._values.items():
            self._file(name, key, value)

    def get_all_by_index(self, name: str, index_value: Hashable) -> list[V]:
        """All live values whose *name* extractor returned *index_value*.

        Raises:
            KeyError: If no index called *name* is registered.
        """
        keys = self._indexes[name].get(index_value)
        if not keys:
            return []
        return [self._values[k] for k in keys]

    def index_size(self, name: str) -> int:
        """Number of distinct index values currently filed under *name*."""
        return len(self._indexes[name])

    @property
    def index_names(self) -> list[str]:
        return list(self._extractors)

    # ── Primary map ──────────────────────────────────────────────────────

    def set(self, key: K, value: V) -> None:
        if key in self._values:
            self._unfile_all(key)
        self._values[key] = value
        for name in self._extractors:
            self._file(name, key, value)

    def get(self, key: Optional[K]) -> Optional[V]:
        if key is None:
            return None
        return self._values.get(key)

    def delete(self, key: K) -> Optional[V]:
        """Remove *key* and its index entries; return the removed value."""
        if key not in self._values:
            return None
        self._unfile_all(key)
        return self._values.pop(key)

    def clear(self) -> None:
        self._values.clear()
        self._filed.clear()
        for index in self._indexes.values():
            index.clear()

    def values(self) -> list[V]:
        return list(self._values.values())

    def items(self) -> list[tuple[K, V]]:
        return list(self._values.items())

    def keys(self) -> list[K]:
        return list(self._values)

    def __contains__(self, key: object) -> bool:
        return key in self._values

    def __len__(self) -> int:
        return len(self._values)

    def __iter__(self) -> Iterator[K]:
        return iter(list(self._values))

    # ── Internals ────────────────────────────────────────────────────────

    def _file(self, name: str, key: K, value: V) -> None:
        index_value = self._extractors[name](value)
        if index_value is None:
            return
        self._indexes[name].setdefault(index_value, set()).add(key)
        self._filed.setdefault(key, {})[name] = index_value

    def _unfile_all(self, key: K) -> None:
        filed = self._filed.pop(key, None)
        if not filed:
            return
        for name, index_value in filed.items():
            bucket = self._indexes[name].get(index_value)
            if bucket is None:
                continue
            bucket.discard(key)
            if not bucket:
                del self._indexes[name][index_value]
