"""Schemaless document store kept in Redis.

Each collection is one hash (``<namespace>:<collection>``) mapping document
ids to JSON documents. Every write publishes the changed id on
``<namespace>:changes:<collection>`` so subscribers in other processes can
refresh. Redis failures surface as ``StorageError``.
"""
import json
import logging
import uuid
from contextlib import contextmanager

from redis.exceptions import RedisError

from blog.errors import DocumentNotFound, StorageError

logger = logging.getLogger(__name__)


@contextmanager
def _remote_errors(action: str):
    try:
        yield
    except RedisError as e:
        raise StorageError(f"Remote store {action} failed") from e


def _decode(doc_id: str, raw: str):
    """Parse a stored document, or return ``None`` if it is not a JSON object."""
    try:
        doc = json.loads(raw)
    except ValueError:
        doc = None
    if not isinstance(doc, dict):
        logger.warning("Skipping unreadable remote document %s", doc_id)
        return None
    return doc


def _matches(doc: dict, where: dict | None) -> bool:
    if not where:
        return True
    return all(doc.get(field) == value for field, value in where.items())


class RemoteStore:
    def __init__(self, client, namespace: str = "blog"):
        self.client = client
        self.namespace = namespace
        self._subscriptions = []

    def _key(self, collection: str) -> str:
        return f"{self.namespace}:{collection}"

    def _channel(self, collection: str) -> str:
        return f"{self.namespace}:changes:{collection}"

    def ping(self):
        with _remote_errors("ping"):
            self.client.ping()

    def get(self, collection: str, doc_id: str):
        with _remote_errors("read"):
            raw = self.client.hget(self._key(collection), doc_id)
        doc = None if raw is None else _decode(doc_id, raw)
        if doc is None:
            return None
        return {**doc, "id": doc_id}

    def query(self, collection: str, where=None, order_by=None, descending=False):
        with _remote_errors("query"):
            rows = self.client.hgetall(self._key(collection))

        docs = []
        for doc_id, raw in rows.items():
            doc = _decode(doc_id, raw)
            if doc is None:
                continue
            doc = {**doc, "id": doc_id}
            if _matches(doc, where):
                docs.append(doc)

        if order_by:
            docs.sort(key=lambda doc: doc.get(order_by) or "", reverse=descending)
        return docs

    def insert(self, collection: str, doc: dict) -> str:
        doc_id = uuid.uuid4().hex
        self.put(collection, doc_id, doc)
        return doc_id

    def put(self, collection: str, doc_id: str, doc: dict):
        body = {field: value for field, value in doc.items() if field != "id"}
        with _remote_errors("write"):
            self.client.hset(self._key(collection), doc_id, json.dumps(body))
        self._changed(collection, doc_id)

    def update(self, collection: str, doc_id: str, fields: dict):
        self._mutate(collection, doc_id, lambda doc: doc.update(fields))

    def append(self, collection: str, doc_id: str, field: str, item):
        """Append ``item`` to a list field without losing concurrent appends."""
        self._mutate(
            collection,
            doc_id,
            lambda doc: doc.setdefault(field, []).append(item),
        )

    def delete(self, collection: str, doc_id: str) -> bool:
        with _remote_errors("delete"):
            removed = self.client.hdel(self._key(collection), doc_id)
        if removed:
            self._changed(collection, doc_id)
        return bool(removed)

    def batch(self):
        return WriteBatch(self)

    def subscribe(
        self,
        collection: str,
        callback,
        where=None,
        order_by=None,
        descending=False,
        on_error=None,
    ):
        subscription = Subscription(
            self,
            collection,
            callback,
            where=where,
            order_by=order_by,
            descending=descending,
            on_error=on_error,
        )
        subscription.open()
        self._subscriptions.append(subscription)
        return subscription

    def close(self):
        for subscription in list(self._subscriptions):
            subscription.close()

    def _mutate(self, collection: str, doc_id: str, mutate):
        key = self._key(collection)

        def apply(pipe):
            raw = pipe.hget(key, doc_id)
            doc = None if raw is None else _decode(doc_id, raw)
            if doc is None:
                raise DocumentNotFound(doc_id)
            mutate(doc)
            pipe.multi()
            pipe.hset(key, doc_id, json.dumps(doc))

        with _remote_errors("write"):
            self.client.transaction(apply, key)
        self._changed(collection, doc_id)

    def _changed(self, collection: str, doc_id: str):
        try:
            self.client.publish(self._channel(collection), doc_id)
        except RedisError:
            logger.warning("Could not publish change on %s", collection, exc_info=True)

        for subscription in list(self._subscriptions):
            if subscription.collection == collection:
                subscription.refresh()

    def _forget(self, subscription):
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)


class WriteBatch:
    """Several puts and deletes committed in one MULTI/EXEC.

    ``require`` adds a precondition: the commit raises ``DocumentNotFound``
    and writes nothing if the document is gone when the batch runs.
    """

    def __init__(self, store: RemoteStore):
        self.store = store
        self._required = []
        self._puts = []
        self._deletes = []

    def require(self, collection: str, doc_id: str):
        self._required.append((collection, doc_id))
        return self

    def put(self, collection: str, doc_id: str, doc: dict):
        body = {field: value for field, value in doc.items() if field != "id"}
        self._puts.append((collection, doc_id, body))
        return self

    def delete(self, collection: str, doc_id: str):
        self._deletes.append((collection, doc_id))
        return self

    def commit(self):
        store = self.store
        collections = {c for c, _ in self._required}
        collections |= {c for c, _, _ in self._puts}
        collections |= {c for c, _ in self._deletes}
        watched = sorted(store._key(c) for c in collections)

        def apply(pipe):
            for collection, doc_id in self._required:
                if not pipe.hexists(store._key(collection), doc_id):
                    raise DocumentNotFound(doc_id)
            pipe.multi()
            for collection, doc_id, body in self._puts:
                pipe.hset(store._key(collection), doc_id, json.dumps(body))
            for collection, doc_id in self._deletes:
                pipe.hdel(store._key(collection), doc_id)

        with _remote_errors("batch write"):
            store.client.transaction(apply, *watched)

        for collection, doc_id, _ in self._puts:
            store._changed(collection, doc_id)
        for collection, doc_id in self._deletes:
            store._changed(collection, doc_id)


class Subscription:
    """Live query over one collection.

    The callback receives the full, freshly queried snapshot on open and
    after every change. Changes made through the owning store are delivered
    immediately; changes from other processes are picked up by ``poll``.
    A failed refresh reports to ``on_error`` and closes the subscription.
    """

    def __init__(self, store, collection, callback, where=None,
                 order_by=None, descending=False, on_error=None):
        self.store = store
        self.collection = collection
        self.callback = callback
        self.where = where
        self.order_by = order_by
        self.descending = descending
        self.on_error = on_error
        self.closed = False
        self._pubsub = None

    def open(self):
        with _remote_errors("subscribe"):
            self._pubsub = self.store.client.pubsub(ignore_subscribe_messages=True)
            self._pubsub.subscribe(self.store._channel(self.collection))
        docs = self.store.query(
            self.collection,
            where=self.where,
            order_by=self.order_by,
            descending=self.descending,
        )
        self.callback(docs)

    def poll(self):
        if self.closed:
            return
        changed = False
        try:
            with _remote_errors("subscription"):
                while self._pubsub.get_message(timeout=0) is not None:
                    changed = True
        except StorageError as e:
            self._fail(e)
            return
        if changed:
            self.refresh()

    def refresh(self):
        if self.closed:
            return
        try:
            docs = self.store.query(
                self.collection,
                where=self.where,
                order_by=self.order_by,
                descending=self.descending,
            )
        except StorageError as e:
            self._fail(e)
            return
        self.callback(docs)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.store._forget(self)
        if self._pubsub is not None:
            try:
                self._pubsub.close()
            except RedisError:
                logger.debug("Ignoring error while closing pubsub", exc_info=True)

    def _fail(self, error):
        logger.warning("Subscription on %s failed: %s", self.collection, error)
        self.close()
        if self.on_error is not None:
            self.on_error(error)
