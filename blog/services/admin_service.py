import logging
from datetime import datetime, timezone

from marshmallow import ValidationError

from blog.errors import DocumentNotFound, RegistrationNotFound, Unauthorized
from blog.schemas.user_schema import PendingRegistrationSchema, UserSchema
from blog.stores.backends import PENDING_USERS, USERS

logger = logging.getLogger(__name__)


def _load_many(schema, docs):
    loaded = []
    for doc in docs:
        try:
            loaded.append(schema.load(doc))
        except ValidationError as e:
            logger.warning("Ignoring malformed account record %s: %s", doc.get("id"), e.messages)
    return loaded


class AdminModeration:
    """Registration review for the administrator.

    Approve and reject act on the current backend only: a remote failure is
    raised to the caller instead of being redirected to local storage.
    """

    def __init__(self, selector, admin_username="admin"):
        self.selector = selector
        self.admin_username = admin_username

    def require_admin(self, session):
        if not session or session.get("username") != self.admin_username:
            raise Unauthorized("Only the administrator can manage users")

    def list_pending(self, session):
        self.require_admin(session)
        pending = _load_many(
            PendingRegistrationSchema(),
            self.selector.read("list", PENDING_USERS),
        )
        pending.sort(key=lambda entry: (
            entry["requested"] or datetime.min.replace(tzinfo=timezone.utc),
            entry["username"],
        ))
        return pending

    def list_approved(self, session):
        self.require_admin(session)
        users = _load_many(UserSchema(), self.selector.read("list", USERS))
        users = [user for user in users if user["username"] != self.admin_username]
        users.sort(key=lambda user: user["username"])
        return users

    def approve(self, session, username):
        self.require_admin(session)
        backend = self.selector.current
        entry = self._pending_entry(backend, username)

        user = UserSchema().dump({
            "username": entry["username"],
            "password_hash": entry["password_hash"],
            "approved": True,
            "created": datetime.now(timezone.utc),
        })
        user.pop("id", None)
        try:
            backend.move(PENDING_USERS, entry["id"], USERS, user)
        except DocumentNotFound:
            raise RegistrationNotFound()
        logger.info("Approved registration for %s", username)

    def reject(self, session, username):
        self.require_admin(session)
        backend = self.selector.current
        entry = self._pending_entry(backend, username)
        try:
            backend.delete(PENDING_USERS, entry["id"])
        except DocumentNotFound:
            raise RegistrationNotFound()
        logger.info("Rejected registration for %s", username)

    def _pending_entry(self, backend, username):
        entry = backend.find(PENDING_USERS, username=username)
        if entry is None or not entry.get("id"):
            raise RegistrationNotFound()
        return entry
