import json
import unittest

from helpers import FakeRedis

from blog.errors import DocumentNotFound, StorageError
from blog.stores.remote_store import RemoteStore


class TestRemoteStore(unittest.TestCase):
    def setUp(self):
        self.redis = FakeRedis()
        self.store = RemoteStore(self.redis, namespace="test")

    def test_query_filters_and_sorts_descending(self):
        self.store.insert("posts", {"page": "daily", "text": "old", "date": "2026-01-01T00:00:00+00:00"})
        self.store.insert("posts", {"page": "travel", "text": "other", "date": "2026-03-01T00:00:00+00:00"})
        self.store.insert("posts", {"page": "daily", "text": "new", "date": "2026-02-01T00:00:00+00:00"})

        docs = self.store.query("posts", where={"page": "daily"}, order_by="date", descending=True)

        self.assertEqual([doc["text"] for doc in docs], ["new", "old"])
        self.assertTrue(all(doc["id"] for doc in docs))

    def test_documents_are_stored_as_json_without_id(self):
        doc_id = self.store.insert("users", {"id": "ignored", "username": "alice"})

        raw = self.redis.hget("test:users", doc_id)
        self.assertEqual(json.loads(raw), {"username": "alice"})
        self.assertEqual(self.store.get("users", doc_id)["id"], doc_id)

    def test_append_keeps_existing_items(self):
        doc_id = self.store.insert("posts", {"comments": [{"text": "first"}]})

        self.store.append("posts", doc_id, "comments", {"text": "second"})
        self.store.append("posts", doc_id, "comments", {"text": "third"})

        comments = self.store.get("posts", doc_id)["comments"]
        self.assertEqual([c["text"] for c in comments], ["first", "second", "third"])

    def test_append_to_missing_document_raises(self):
        with self.assertRaises(DocumentNotFound):
            self.store.append("posts", "missing", "comments", {"text": "x"})

    def test_update_merges_fields(self):
        doc_id = self.store.insert("posts", {"text": "hello", "pendingSync": True})

        self.store.update("posts", doc_id, {"pendingSync": False})

        doc = self.store.get("posts", doc_id)
        self.assertEqual(doc["text"], "hello")
        self.assertFalse(doc["pendingSync"])

    def test_batch_with_failed_precondition_writes_nothing(self):
        batch = (
            self.store.batch()
            .require("pendingUsers", "gone")
            .put("users", "u1", {"username": "alice"})
            .delete("pendingUsers", "gone")
        )

        with self.assertRaises(DocumentNotFound):
            batch.commit()
        self.assertEqual(self.store.query("users"), [])

    def test_batch_moves_document(self):
        pending_id = self.store.insert("pendingUsers", {"username": "alice"})

        (
            self.store.batch()
            .require("pendingUsers", pending_id)
            .put("users", "u1", {"username": "alice", "approved": True})
            .delete("pendingUsers", pending_id)
            .commit()
        )

        self.assertEqual(self.store.query("pendingUsers"), [])
        self.assertEqual(self.store.get("users", "u1")["approved"], True)

    def test_unreadable_documents_are_skipped(self):
        self.store.insert("posts", {"page": "daily", "text": "ok"})
        self.redis.hset("test:posts", "bad", "{not json")
        self.redis.hset("test:posts", "scalar", "42")

        self.assertEqual([doc["text"] for doc in self.store.query("posts")], ["ok"])
        self.assertIsNone(self.store.get("posts", "bad"))
        with self.assertRaises(DocumentNotFound):
            self.store.append("posts", "bad", "comments", {"text": "x"})

    def test_redis_errors_become_storage_errors(self):
        self.redis.fail = True

        with self.assertRaises(StorageError):
            self.store.insert("posts", {"text": "x"})
        with self.assertRaises(StorageError):
            self.store.query("posts")


class TestSubscription(unittest.TestCase):
    def setUp(self):
        self.redis = FakeRedis()
        self.store = RemoteStore(self.redis, namespace="test")
        self.snapshots = []

    def _subscribe(self, **kwargs):
        return self.store.subscribe(
            "posts",
            lambda docs: self.snapshots.append([doc["text"] for doc in docs]),
            where={"page": "daily"},
            order_by="date",
            descending=True,
            **kwargs,
        )

    def test_initial_snapshot_and_local_writes_are_pushed(self):
        self.store.insert("posts", {"page": "daily", "text": "a", "date": "2026-01-01"})
        self._subscribe()

        self.store.insert("posts", {"page": "daily", "text": "b", "date": "2026-01-02"})

        self.assertEqual(self.snapshots, [["a"], ["b", "a"]])

    def test_poll_applies_changes_from_other_processes(self):
        subscription = self._subscribe()
        other_process = RemoteStore(self.redis, namespace="test")

        other_process.insert("posts", {"page": "daily", "text": "remote", "date": "2026-01-01"})
        self.assertEqual(self.snapshots, [[]])

        subscription.poll()
        self.assertEqual(self.snapshots, [[], ["remote"]])

    def test_failed_poll_reports_error_and_closes(self):
        errors = []
        subscription = self._subscribe(on_error=errors.append)

        self.redis.fail = True
        subscription.poll()

        self.assertTrue(subscription.closed)
        self.assertEqual(len(errors), 1)
        self.assertIsInstance(errors[0], StorageError)

    def test_closed_subscription_receives_nothing(self):
        subscription = self._subscribe()
        subscription.close()

        self.store.insert("posts", {"page": "daily", "text": "late", "date": "2026-01-01"})

        self.assertEqual(self.snapshots, [[]])


if __name__ == "__main__":
    unittest.main()
