"""Storage backends shared by the feed, session and moderation services.

Both backends speak plain JSON-ready dicts and the same small capability set,
so callers never check which one they hold. Posts are partitioned by page:
callers pass ``where={"page": page}`` and the local backend turns that into
the ``posts_<page>`` key.
"""
import uuid
from abc import ABC, abstractmethod
from threading import RLock

from blog.errors import DocumentNotFound

POSTS = "posts"
USERS = "users"
PENDING_USERS = "pendingUsers"
PENDING_COMMENTS = "pendingComments"


def posts_key(page: str) -> str:
    return f"posts_{page}"


class StorageBackend(ABC):
    name = "backend"

    @abstractmethod
    def list(self, collection: str, where=None) -> list[dict]:
        ...

    def get(self, collection: str, doc_id: str, where=None):
        for doc in self.list(collection, where):
            if doc.get("id") == doc_id:
                return doc
        return None

    def find(self, collection: str, **fields):
        for doc in self.list(collection):
            if all(doc.get(name) == value for name, value in fields.items()):
                return doc
        return None

    @abstractmethod
    def create(self, collection: str, doc: dict, where=None) -> str:
        ...

    @abstractmethod
    def put(self, collection: str, doc_id: str, doc: dict, where=None):
        ...

    @abstractmethod
    def update(self, collection: str, doc_id: str, fields: dict, where=None):
        ...

    @abstractmethod
    def append(self, collection: str, doc_id: str, field: str, item, where=None):
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str, where=None):
        ...

    @abstractmethod
    def move(self, source: str, doc_id: str, target: str, doc: dict):
        """Delete ``doc_id`` from ``source`` and add ``doc`` to ``target`` at once.

        Raises ``DocumentNotFound`` without writing anything if the source
        document is already gone.
        """

    @abstractmethod
    def subscribe(self, collection: str, callback, where=None,
                  order_by=None, descending=False, on_error=None):
        ...

    def close(self):
        pass


class RemoteBackend(StorageBackend):
    name = "remote"

    def __init__(self, store):
        self.store = store

    def ping(self):
        self.store.ping()

    def list(self, collection, where=None):
        return self.store.query(collection, where=where)

    def get(self, collection, doc_id, where=None):
        return self.store.get(collection, doc_id)

    def create(self, collection, doc, where=None):
        return self.store.insert(collection, doc)

    def put(self, collection, doc_id, doc, where=None):
        self.store.put(collection, doc_id, doc)

    def update(self, collection, doc_id, fields, where=None):
        self.store.update(collection, doc_id, fields)

    def append(self, collection, doc_id, field, item, where=None):
        self.store.append(collection, doc_id, field, item)

    def delete(self, collection, doc_id, where=None):
        if not self.store.delete(collection, doc_id):
            raise DocumentNotFound(doc_id)

    def move(self, source, doc_id, target, doc):
        (
            self.store.batch()
            .require(source, doc_id)
            .put(target, uuid.uuid4().hex, doc)
            .delete(source, doc_id)
            .commit()
        )

    def subscribe(self, collection, callback, where=None,
                  order_by=None, descending=False, on_error=None):
        return self.store.subscribe(
            collection,
            callback,
            where=where,
            order_by=order_by,
            descending=descending,
            on_error=on_error,
        )

    def close(self):
        self.store.close()


class LocalSubscription:
    def __init__(self, backend, key, callback):
        self.backend = backend
        self.key = key
        self.callback = callback
        self.closed = False

    def poll(self):
        self.refresh()

    def refresh(self):
        if not self.closed:
            self.callback(self.backend.local.get_list(self.key))

    def close(self):
        self.closed = True
        self.backend._forget(self)


class LocalBackend(StorageBackend):
    """Backend over ``LocalStore``; one JSON array per key.

    New documents are prepended, so a feed key holds its newest post first.
    """

    name = "local"

    def __init__(self, local_store):
        self.local = local_store
        self._lock = RLock()
        self._subscriptions = []

    def _key(self, collection, where=None):
        if collection == POSTS:
            if not where or not where.get("page"):
                raise ValueError("Posts are stored per page")
            return posts_key(where["page"])
        return collection

    def list(self, collection, where=None):
        return self.local.get_list(self._key(collection, where))

    def create(self, collection, doc, where=None):
        key = self._key(collection, where)
        doc_id = doc.get("id") or uuid.uuid4().hex
        with self._lock:
            docs = self.local.get_list(key)
            docs.insert(0, {**doc, "id": doc_id})
            self.local.set(key, docs)
        self._changed(key)
        return doc_id

    def put(self, collection, doc_id, doc, where=None):
        key = self._key(collection, where)
        with self._lock:
            docs = self.local.get_list(key)
            replacement = {**doc, "id": doc_id}
            for index, existing in enumerate(docs):
                if existing.get("id") == doc_id:
                    docs[index] = replacement
                    break
            else:
                docs.insert(0, replacement)
            self.local.set(key, docs)
        self._changed(key)

    def update(self, collection, doc_id, fields, where=None):
        key = self._key(collection, where)
        with self._lock:
            docs = self.local.get_list(key)
            for doc in docs:
                if doc.get("id") == doc_id:
                    doc.update(fields)
                    break
            else:
                raise DocumentNotFound(doc_id)
            self.local.set(key, docs)
        self._changed(key)

    def append(self, collection, doc_id, field, item, where=None):
        key = self._key(collection, where)
        with self._lock:
            docs = self.local.get_list(key)
            for doc in docs:
                if doc.get("id") == doc_id:
                    values = doc.get(field)
                    if not isinstance(values, list):
                        values = []
                    values.append(item)
                    doc[field] = values
                    break
            else:
                raise DocumentNotFound(doc_id)
            self.local.set(key, docs)
        self._changed(key)

    def delete(self, collection, doc_id, where=None):
        key = self._key(collection, where)
        with self._lock:
            docs = self.local.get_list(key)
            remaining = [doc for doc in docs if doc.get("id") != doc_id]
            if len(remaining) == len(docs):
                raise DocumentNotFound(doc_id)
            self.local.set(key, remaining)
        self._changed(key)

    def move(self, source, doc_id, target, doc):
        with self._lock:
            source_docs = self.local.get_list(source)
            remaining = [d for d in source_docs if d.get("id") != doc_id]
            if len(remaining) == len(source_docs):
                raise DocumentNotFound(doc_id)
            target_docs = self.local.get_list(target)
            target_docs.insert(0, {**doc, "id": uuid.uuid4().hex})
            self.local.set_many({source: remaining, target: target_docs})
        self._changed(source)
        self._changed(target)

    def subscribe(self, collection, callback, where=None,
                  order_by=None, descending=False, on_error=None):
        subscription = LocalSubscription(self, self._key(collection, where), callback)
        self._subscriptions.append(subscription)
        subscription.refresh()
        return subscription

    def close(self):
        for subscription in list(self._subscriptions):
            subscription.close()

    def _changed(self, key):
        for subscription in list(self._subscriptions):
            if subscription.key == key:
                subscription.refresh()

    def _forget(self, subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)
