"""
Content Store Implementation
内容存储实现

Thread-safe in-memory store of content collections. Each collection
holds the live list of records for one content type; callers get the
same list back from ``data()`` and may mutate it in place.

Features:
- Thread-safe operations with Lock
- Collections created on demand
- Simple add / get / list operations
"""

from dataclasses import dataclass, field
from threading import Lock
from typing import Any, Dict, Iterable, List, Optional, Protocol


class CollectionLike(Protocol):
    def data(self) -> Any:
        ...


class ContentStoreLike(Protocol):
    """What the plugin needs from a host content store."""

    def get_collection(self, type_name: str) -> Optional[CollectionLike]:
        ...


@dataclass
class Collection:
    """
    Records for one content type
    单一内容类型的记录
    """
    type_name: str
    records: List[Dict[str, Any]] = field(default_factory=list)

    def data(self) -> List[Dict[str, Any]]:
        """Live, mutable list of records."""
        return self.records


class ContentStore:
    """
    Thread-safe in-memory content store
    线程安全的内存内容存储
    """

    def __init__(self):
        self._collections: Dict[str, Collection] = {}
        self._lock = Lock()

    def add_collection(
        self,
        type_name: str,
        records: Optional[Iterable[Dict[str, Any]]] = None,
    ) -> Collection:
        """
        Create (or extend) a collection

        Args:
            type_name: Content type name
            records: Optional initial records

        Returns:
            The collection
        """
        with self._lock:
            collection = self._collections.get(type_name)
            if collection is None:
                collection = Collection(type_name=type_name)
                self._collections[type_name] = collection
            if records:
                collection.records.extend(records)
            return collection

    def get_collection(self, type_name: str) -> Optional[Collection]:
        with self._lock:
            return self._collections.get(type_name)

    def has_collection(self, type_name: str) -> bool:
        with self._lock:
            return type_name in self._collections

    def collection_names(self) -> List[str]:
        with self._lock:
            return sorted(self._collections)

