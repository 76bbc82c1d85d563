"""
In-memory document store.

Stands in for the hosted document database: collections of versioned
documents with query-by-field, atomic field merges, compare-and-set writes
and change subscriptions. Every write bumps the document version and emits a
ChangeEvent to subscribers of the collection.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
from uuid import uuid4

from .exceptions import ConcurrentModificationError, DocumentExistsError

logger = logging.getLogger(__name__)


@dataclass
class DocumentSnapshot:
    id: str
    data: dict
    version: int


@dataclass
class ChangeEvent:
    collection: str
    doc_id: str
    version: int
    data: Optional[dict]
    deleted: bool = False


@dataclass
class _Subscription:
    collection: str
    callback: Callable[[ChangeEvent], None]
    doc_id: Optional[str] = None
    id: str = field(default_factory=lambda: uuid4().hex)


class InMemoryStorage:
    def __init__(self):
        self.collections: dict[str, dict[str, dict]] = {}
        self.versions: dict[tuple[str, str], int] = {}
        self._subscriptions: dict[str, _Subscription] = {}
        self._lock = threading.RLock()

    # -- reads ---------------------------------------------------------------

    def get(self, collection: str, doc_id: str) -> Optional[DocumentSnapshot]:
        with self._lock:
            data = self.collections.get(collection, {}).get(doc_id)
            if data is None:
                return None
            return DocumentSnapshot(doc_id, copy.deepcopy(data), self.versions[(collection, doc_id)])

    def query(self, collection: str, **equals: Any) -> list[DocumentSnapshot]:
        with self._lock:
            docs = self.collections.get(collection, {})
            return [
                DocumentSnapshot(doc_id, copy.deepcopy(data), self.versions[(collection, doc_id)])
                for doc_id, data in docs.items()
                if all(data.get(k) == v for k, v in equals.items())
            ]

    # -- writes --------------------------------------------------------------

    def add(self, collection: str, data: dict) -> str:
        doc_id = uuid4().hex
        self.create(collection, doc_id, data)
        return doc_id

    def create(self, collection: str, doc_id: str, data: dict) -> int:
        with self._lock:
            if doc_id in self.collections.get(collection, {}):
                raise DocumentExistsError(f"{collection}/{doc_id} already exists")
            return self._write(collection, doc_id, data)

    def set(self, collection: str, doc_id: str, data: dict) -> int:
        with self._lock:
            return self._write(collection, doc_id, data)

    def update(self, collection: str, doc_id: str, fields: dict) -> int:
        """Merge fields into an existing document (creating it if missing)."""
        with self._lock:
            current = self.collections.get(collection, {}).get(doc_id, {})
            return self._write(collection, doc_id, {**current, **fields})

    def compare_and_set(self, collection: str, doc_id: str, expected_version: int, data: dict) -> int:
        with self._lock:
            current_version = self.versions.get((collection, doc_id), 0)
            if current_version != expected_version:
                raise ConcurrentModificationError(
                    f"{collection}/{doc_id} is at version {current_version}, expected {expected_version}"
                )
            return self._write(collection, doc_id, data)

    def delete(self, collection: str, doc_id: str) -> None:
        with self._lock:
            if self.collections.get(collection, {}).pop(doc_id, None) is None:
                return
            # versions stay monotonic across delete/re-create
            version = self.versions[(collection, doc_id)] + 1
            self.versions[(collection, doc_id)] = version
        self._notify(ChangeEvent(collection, doc_id, version, None, deleted=True))

    def _write(self, collection: str, doc_id: str, data: dict) -> int:
        version = self.versions.get((collection, doc_id), 0) + 1
        self.collections.setdefault(collection, {})[doc_id] = copy.deepcopy(data)
        self.versions[(collection, doc_id)] = version
        self._notify(ChangeEvent(collection, doc_id, version, copy.deepcopy(data)))
        return version

    # -- subscriptions -------------------------------------------------------

    def subscribe(
        self,
        collection: str,
        callback: Callable[[ChangeEvent], None],
        doc_id: Optional[str] = None,
    ) -> Callable[[], None]:
        sub = _Subscription(collection=collection, callback=callback, doc_id=doc_id)
        self._subscriptions[sub.id] = sub

        def unsubscribe() -> None:
            self._subscriptions.pop(sub.id, None)

        return unsubscribe

    def _notify(self, event: ChangeEvent) -> None:
        for sub in list(self._subscriptions.values()):
            if sub.collection != event.collection:
                continue
            if sub.doc_id is not None and sub.doc_id != event.doc_id:
                continue
            try:
                sub.callback(event)
            except Exception:
                # a broken listener must not fail the write that triggered it
                logger.exception("Change listener failed for %s/%s", event.collection, event.doc_id)


class VersionedView:
    """Latest-known state of documents fed by change events.

    Events older than, or equal to, the version already seen are ignored, so
    duplicate and out-of-order deliveries leave the view unchanged.
    """

    def __init__(self):
        self.documents: dict[str, dict] = {}
        self.seen_versions: dict[str, int] = {}

    def apply(self, event: ChangeEvent) -> bool:
        if event.version <= self.seen_versions.get(event.doc_id, 0):
            return False
        self.seen_versions[event.doc_id] = event.version
        if event.deleted:
            self.documents.pop(event.doc_id, None)
        else:
            self.documents[event.doc_id] = event.data
        return True

    def get(self, doc_id: str) -> Optional[dict]:
        return self.documents.get(doc_id)
