import logging
from threading import Lock

from blog.errors import StorageError

logger = logging.getLogger(__name__)


class BackendSelector:
    """Tracks which backend is authoritative for the lifetime of a context.

    The remote backend is trusted until its first failure; after that every
    caller is routed to the local backend until the context is rebuilt.
    """

    def __init__(self, local, remote=None):
        self.local = local
        self.remote = remote
        self._remote_active = remote is not None
        self._lock = Lock()
        self._on_downgrade = []

    @property
    def remote_active(self) -> bool:
        return self._remote_active

    @property
    def current(self):
        return self.remote if self._remote_active else self.local

    def on_downgrade(self, callback):
        self._on_downgrade.append(callback)

    def downgrade(self, reason):
        with self._lock:
            if not self._remote_active:
                return
            self._remote_active = False
        logger.warning("Switching to local storage for this session: %s", reason)
        for callback in list(self._on_downgrade):
            callback()

    def read(self, method: str, *args, **kwargs):
        """Run a read on the current backend, retrying locally if remote fails."""
        backend = self.current
        try:
            return getattr(backend, method)(*args, **kwargs)
        except StorageError as e:
            if backend is self.local:
                raise
            self.downgrade(e)
        return getattr(self.local, method)(*args, **kwargs)
