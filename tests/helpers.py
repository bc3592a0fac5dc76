import io
import os
import tempfile
import unittest
from threading import RLock
from types import SimpleNamespace
from unittest.mock import patch

from redis.exceptions import ConnectionError as RedisConnectionError
from werkzeug.datastructures import FileStorage


class FakePubSub:
    def __init__(self, redis):
        self.redis = redis
        self.channels = set()
        self.messages = []
        self.closed = False

    def subscribe(self, *channels):
        self.redis._check()
        self.channels.update(channels)

    def get_message(self, timeout=0):
        self.redis._check()
        if not self.messages:
            return None
        return self.messages.pop(0)

    def close(self):
        self.closed = True


class FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.buffered = False
        self.commands = []

    def multi(self):
        self.buffered = True

    def hget(self, key, field):
        return self.redis.hget(key, field)

    def hexists(self, key, field):
        return self.redis.hexists(key, field)

    def hset(self, key, field, value):
        if self.buffered:
            self.commands.append(("hset", key, field, value))
            return None
        return self.redis.hset(key, field, value)

    def hdel(self, key, field):
        if self.buffered:
            self.commands.append(("hdel", key, field))
            return None
        return self.redis.hdel(key, field)

    def execute(self):
        return [getattr(self.redis, name)(*args) for name, *args in self.commands]


class FakeRedis:
    """In-memory stand-in for the handful of Redis commands the store uses."""

    def __init__(self):
        self._hashes = {}
        self._pubsubs = []
        self._lock = RLock()
        self.fail = False

    def clear(self):
        self._hashes.clear()
        self._pubsubs.clear()
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis is down")

    def ping(self):
        self._check()
        return True

    def hget(self, key, field):
        self._check()
        return self._hashes.get(key, {}).get(field)

    def hexists(self, key, field):
        self._check()
        return field in self._hashes.get(key, {})

    def hgetall(self, key):
        self._check()
        return dict(self._hashes.get(key, {}))

    def hset(self, key, field, value):
        self._check()
        created = field not in self._hashes.get(key, {})
        self._hashes.setdefault(key, {})[field] = value
        return int(created)

    def hdel(self, key, field):
        self._check()
        return int(self._hashes.get(key, {}).pop(field, None) is not None)

    def publish(self, channel, message):
        self._check()
        receivers = 0
        for pubsub in self._pubsubs:
            if channel in pubsub.channels and not pubsub.closed:
                pubsub.messages.append({"type": "message", "channel": channel, "data": message})
                receivers += 1
        return receivers

    def pubsub(self, ignore_subscribe_messages=False):
        self._check()
        pubsub = FakePubSub(self)
        self._pubsubs.append(pubsub)
        return pubsub

    def transaction(self, func, *watches, **kwargs):
        self._check()
        with self._lock:
            pipe = FakePipeline(self)
            func(pipe)
            return pipe.execute()


class FakeMinio:
    def __init__(self, fail=False):
        self.fail = fail
        self.objects = {}

    def bucket_exists(self, bucket_name):
        if self.fail:
            raise OSError("minio is down")
        return True

    def make_bucket(self, bucket_name):
        return None

    def put_object(self, bucket_name, object_name, data, length, content_type):
        self.objects[object_name] = (data.read(length), content_type)

    def stat_object(self, bucket_name, object_name):
        if self.fail:
            raise OSError("minio is down")
        data, content_type = self.objects[object_name]
        return SimpleNamespace(content_type=content_type, size=len(data), etag="etag-1")

    def get_object(self, bucket_name, object_name):
        data, _ = self.objects[object_name]
        return FakeObjectResponse(data)


class FakeObjectResponse:
    def __init__(self, data):
        self.data = data
        self.released = False

    def stream(self, amt):
        for start in range(0, len(self.data), amt):
            yield self.data[start:start + amt]

    def close(self):
        pass

    def release_conn(self):
        self.released = True


def make_upload(data=b"fake-image-bytes", filename="pic.png", content_type="image/png"):
    return FileStorage(stream=io.BytesIO(data), filename=filename, content_type=content_type)


ADMIN_SESSION = {"username": "admin", "approved": True}
ADMIN_PASSWORD = "admin-pass"


class BlogTestCase(unittest.TestCase):
    """Runs each test against a fresh database, fake Redis and context."""

    storage_backend = "remote"

    @classmethod
    def setUpClass(cls):
        db_fd, cls.db_path = tempfile.mkstemp(suffix=".db")
        os.close(db_fd)

        cls.fake_redis = FakeRedis()
        cls.redis_patch = patch("blog.context.build_redis_client", return_value=cls.fake_redis)
        cls.redis_patch.start()

        from blog import create_app
        from blog.db import db

        cls.app = create_app({
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{cls.db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"check_same_thread": False}},
            "JWT_SECRET_KEY": "test-secret-key-that-is-long-enough-for-hs256",
            "STORAGE_BACKEND": cls.storage_backend,
            "ADMIN_PASSWORD": ADMIN_PASSWORD,
            "SITE_PAGES": ["daily", "travel"],
            "APP_PUBLIC_BASE_URL": "http://blog.test",
            "LOG_LEVEL": "WARNING",
        })
        cls.db = db
        cls.client = cls.app.test_client()

    @classmethod
    def tearDownClass(cls):
        cls.app.extensions["blog"].close()
        cls.redis_patch.stop()
        if os.path.exists(cls.db_path):
            os.remove(cls.db_path)

    def setUp(self):
        self.fake_redis.clear()
        self.rendered = []

        self.app_context = self.app.app_context()
        self.app_context.push()
        self.db.drop_all()
        self.db.create_all()

        self.app.extensions["blog"].close()
        self.context = self.new_context()
        self.app.extensions["blog"] = self.context

    def tearDown(self):
        self.context.close()
        self.db.session.remove()
        self.app_context.pop()

    def new_context(self):
        from blog.context import BlogContext

        context = BlogContext(self.app.config, render=self._render)
        context.start()
        return context

    def _render(self, page, posts):
        self.rendered.append((page, [post.get("text") for post in posts]))

    def gate(self, cache=None):
        from blog.stores.local_store import LocalStore

        return self.context.session_gate(cache or LocalStore())

    def approved_session(self, username, password="pw1"):
        self.gate().register(username, password)
        self.context.admin.approve(ADMIN_SESSION, username)
        return {"username": username, "approved": True}
