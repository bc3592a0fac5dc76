import logging
from datetime import datetime, timezone
from threading import Lock

from marshmallow import ValidationError
from werkzeug.security import check_password_hash, generate_password_hash

from blog.errors import (
    InvalidCredentials,
    MissingFields,
    PendingApproval,
    StorageError,
    UsernameTaken,
)
from blog.schemas.user_schema import (
    PendingRegistrationSchema,
    SessionSchema,
    UserSchema,
)
from blog.stores.backends import PENDING_USERS, USERS

logger = logging.getLogger(__name__)

CURRENT_USER_KEY = "currentUser"


def _require_non_empty_string(value):
    return isinstance(value, str) and value.strip()


def _load(schema, doc):
    if doc is None:
        return None
    try:
        return schema.load(doc)
    except ValidationError as e:
        logger.warning("Ignoring malformed account record %s: %s", doc.get("id"), e.messages)
        return None


def find_user(selector, username):
    return _load(UserSchema(), selector.read("find", USERS, username=username))


def find_pending(selector, username):
    return _load(
        PendingRegistrationSchema(),
        selector.read("find", PENDING_USERS, username=username),
    )


def seed_admin(backend, username, password):
    """Create the built-in administrator on ``backend`` unless it exists."""
    if backend.find(USERS, username=username):
        return
    doc = UserSchema().dump({
        "username": username,
        "password_hash": generate_password_hash(password),
        "approved": True,
        "created": datetime.now(timezone.utc),
    })
    doc.pop("id", None)
    backend.create(USERS, doc)
    logger.info("Seeded administrator account %s on %s storage", username, backend.name)


class SessionGate:
    """Logs users in and out and remembers who is logged in.

    ``cache`` is any object with ``get``/``set``/``delete`` by key; the
    session lives there under ``currentUser`` and never reaches the remote
    store. ``on_change`` runs after every successful login or logout.
    Gates sharing a context share its ``registration_lock``.
    """

    def __init__(self, selector, cache, on_change=None, registration_lock=None):
        self.selector = selector
        self.cache = cache
        self.on_change = on_change
        self.registration_lock = registration_lock or Lock()

    def login(self, username, password):
        if not _require_non_empty_string(username) or not isinstance(password, str) or not password:
            raise InvalidCredentials()

        username = username.strip()
        user = find_user(self.selector, username)
        if user and check_password_hash(user["password_hash"], password):
            if not user["approved"]:
                raise PendingApproval()
            session = {"username": user["username"], "approved": True}
            self.cache.set(CURRENT_USER_KEY, session)
            self._changed()
            return session

        pending = find_pending(self.selector, username)
        if pending and check_password_hash(pending["password_hash"], password):
            raise PendingApproval()

        raise InvalidCredentials()

    def register(self, username, password):
        if not _require_non_empty_string(username) or not _require_non_empty_string(password):
            raise MissingFields()

        username = username.strip()
        with self.registration_lock:
            if find_user(self.selector, username) or find_pending(self.selector, username):
                raise UsernameTaken()

            doc = PendingRegistrationSchema().dump({
                "username": username,
                "password_hash": generate_password_hash(password),
                "requested": datetime.now(timezone.utc),
            })
            doc.pop("id", None)
            self._create_pending(doc)

    def logout(self):
        self.cache.delete(CURRENT_USER_KEY)
        self._changed()

    def current_session(self):
        raw = self.cache.get(CURRENT_USER_KEY)
        if not isinstance(raw, dict):
            return None
        try:
            return SessionSchema().load(raw)
        except ValidationError:
            return None

    def _create_pending(self, doc):
        backend = self.selector.current
        if backend is self.selector.remote:
            try:
                backend.create(PENDING_USERS, doc)
                return
            except StorageError as e:
                self.selector.downgrade(e)
        self.selector.local.create(PENDING_USERS, {**doc, "pendingSync": self.selector.remote is not None})

    def _changed(self):
        if self.on_change is not None:
            self.on_change()
