"""Application-wide storage context.

One ``BlogContext`` is built per application. It owns the backends, the
backend selector and the services, and is stored on
``app.extensions["blog"]``; nothing else keeps storage handles at module
level.
"""
import logging
from threading import Lock

from flask import current_app

from blog.errors import ConfigurationError, StorageError
from blog.extensions.clients import build_redis_client
from blog.services.admin_service import AdminModeration
from blog.services.feed_service import FeedSync
from blog.services.media_service import MediaService
from blog.services.replay_service import replay_pending
from blog.services.session_service import SessionGate, seed_admin
from blog.stores.backends import LocalBackend, RemoteBackend
from blog.stores.local_store import LocalStore
from blog.stores.remote_store import RemoteStore
from blog.stores.selector import BackendSelector

logger = logging.getLogger(__name__)

STORAGE_BACKENDS = {"remote", "local"}


class BlogContext:
    def __init__(self, config, render=None):
        backend_name = config.get("STORAGE_BACKEND", "remote")
        if backend_name not in STORAGE_BACKENDS:
            raise ConfigurationError(f"Unknown storage backend: {backend_name}")

        self.config = config
        self.admin_username = config.get("ADMIN_USERNAME", "admin")

        local = LocalBackend(LocalStore())
        remote = None
        if backend_name == "remote":
            store = RemoteStore(
                build_redis_client(config),
                namespace=config.get("REDIS_NAMESPACE", "blog"),
            )
            remote = RemoteBackend(store)

        self.selector = BackendSelector(local, remote)
        self.media = MediaService(config)
        self.feeds = FeedSync(
            self.selector,
            self.media,
            render=render,
            admin_username=self.admin_username,
            anonymous_username=config.get("ANONYMOUS_USERNAME", "anonymous"),
        )
        self.admin = AdminModeration(self.selector, admin_username=self.admin_username)
        self.registration_lock = Lock()
        self.closed = False

    def start(self):
        """Check the remote store, replay offline records, seed the administrator."""
        selector = self.selector
        if selector.remote_active:
            try:
                selector.remote.ping()
                replay_pending(selector, self.config.get("SITE_PAGES", []))
            except StorageError as e:
                selector.downgrade(e)

        admin_password = self.config.get("ADMIN_PASSWORD", "admin")
        try:
            seed_admin(selector.local, self.admin_username, admin_password)
        except StorageError as e:
            raise ConfigurationError("No storage backend is reachable") from e

        if selector.remote_active:
            try:
                seed_admin(selector.remote, self.admin_username, admin_password)
            except StorageError as e:
                selector.downgrade(e)

        logger.info("Blog storage ready on %s backend", selector.current.name)

    def session_gate(self, cache):
        return SessionGate(
            self.selector,
            cache,
            on_change=self.feeds.refresh_all,
            registration_lock=self.registration_lock,
        )

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.feeds.close()
        self.selector.local.close()
        if self.selector.remote is not None:
            self.selector.remote.close()


def get_context() -> BlogContext:
    return current_app.extensions["blog"]
