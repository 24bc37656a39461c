"""Document record store used by the entitlement engine.

Two implementations share one small interface:

- ``FirestoreRecordStore``: production store. Merge writes use
  ``set(..., merge=True)`` with ``SERVER_TIMESTAMP``; read-modify-write goes
  through a Firestore transaction (optimistic, retried by the client library).
- ``InMemoryRecordStore``: process-local store for local development and
  tests. Read-modify-write is serialized with one lock per document key.

Collections used by the service:
    subscriptionsById/{subscriptionId}
    users/{email}
    userSubscriptions/{email}   (legacy index, field-compatible with users)
"""

from __future__ import annotations

import copy
import logging
import threading
from collections import defaultdict
from typing import Any, Callable, Dict, List, Optional, Tuple

from google.cloud import firestore

from .domain import utc_now

logger = logging.getLogger("api.store")

SUBSCRIPTIONS_COLLECTION = "subscriptionsById"
USERS_COLLECTION = "users"
USER_SUBSCRIPTIONS_COLLECTION = "userSubscriptions"

MergeFn = Callable[[Optional[Dict[str, Any]]], Dict[str, Any]]


class RecordStore:
    """Key-value document store with merge-set semantics."""

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def merge_set(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        """Merge ``fields`` into the document and stamp ``updatedAt``."""
        raise NotImplementedError

    def transactional_merge(self, collection: str, key: str, merge_fn: MergeFn) -> Dict[str, Any]:
        """Serialized read-modify-write of one document.

        ``merge_fn`` receives the current document (or None) and returns the
        full document to store. It may run more than once and must not have
        side effects. Returns the stored document.
        """
        raise NotImplementedError

    def list(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        raise NotImplementedError

    def ping(self) -> bool:
        raise NotImplementedError


# =============================================================================
# FIRESTORE
# =============================================================================

class FirestoreRecordStore(RecordStore):

    def __init__(self, db: firestore.Client):
        self._db = db

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        doc = self._db.collection(collection).document(key).get()
        if not doc.exists:
            return None
        return doc.to_dict() or {}

    def merge_set(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        self._db.collection(collection).document(key).set(
            {**fields, "updatedAt": firestore.SERVER_TIMESTAMP},
            merge=True,
        )

    def transactional_merge(self, collection: str, key: str, merge_fn: MergeFn) -> Dict[str, Any]:
        doc_ref = self._db.collection(collection).document(key)

        @firestore.transactional
        def merge_in_transaction(transaction):
            snap = doc_ref.get(transaction=transaction)
            existing = (snap.to_dict() or {}) if snap.exists else None
            merged = merge_fn(existing)
            transaction.set(
                doc_ref,
                {**merged, "updatedAt": firestore.SERVER_TIMESTAMP},
                merge=True,
            )
            return merged

        transaction = self._db.transaction()
        return merge_in_transaction(transaction)

    def list(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        return [(doc.id, doc.to_dict() or {}) for doc in self._db.collection(collection).stream()]

    def ping(self) -> bool:
        list(self._db.collection(SUBSCRIPTIONS_COLLECTION).limit(1).stream())
        return True


# =============================================================================
# IN-MEMORY
# =============================================================================

class InMemoryRecordStore(RecordStore):
    """Dict-backed store. Safe across threads, not across processes."""

    def __init__(self, clock: Callable = utc_now):
        self._clock = clock
        self._docs: Dict[str, Dict[str, Dict[str, Any]]] = defaultdict(dict)
        self._key_locks: Dict[Tuple[str, str], threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, collection: str, key: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get((collection, key))
            if lock is None:
                lock = threading.Lock()
                self._key_locks[(collection, key)] = lock
            return lock

    def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        with self._lock_for(collection, key):
            doc = self._docs[collection].get(key)
            return copy.deepcopy(doc) if doc is not None else None

    def merge_set(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        with self._lock_for(collection, key):
            doc = self._docs[collection].setdefault(key, {})
            doc.update(copy.deepcopy(fields))
            doc["updatedAt"] = self._clock()

    def transactional_merge(self, collection: str, key: str, merge_fn: MergeFn) -> Dict[str, Any]:
        with self._lock_for(collection, key):
            existing = self._docs[collection].get(key)
            merged = merge_fn(copy.deepcopy(existing) if existing is not None else None)
            doc = self._docs[collection].setdefault(key, {})
            doc.update(copy.deepcopy(merged))
            doc["updatedAt"] = self._clock()
            return copy.deepcopy(doc)

    def list(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._guard:
            keys = list(self._docs[collection].keys())
        items = []
        for key in keys:
            doc = self.get(collection, key)
            if doc is not None:
                items.append((key, doc))
        return items

    def ping(self) -> bool:
        return True
