"""Device-scoped key/value storage.

Values are JSON documents kept in a single SQL table. Reads never raise:
a missing, unreadable or corrupt value is reported as absent.
"""
import json
import logging

from sqlalchemy.exc import SQLAlchemyError

from blog.db import db
from blog.errors import StorageError
from blog.models.local_entry_model import LocalEntry

logger = logging.getLogger(__name__)


def _fetch(key: str):
    # Re-read the row even if this session already holds it; other threads write too.
    return db.session.get(LocalEntry, key, populate_existing=True)


class LocalStore:
    def get(self, key: str, default=None):
        try:
            entry = _fetch(key)
        except SQLAlchemyError:
            db.session.rollback()
            logger.warning("Local store read failed for %s", key, exc_info=True)
            return default

        if entry is None:
            return default

        try:
            return json.loads(entry.value)
        except ValueError:
            logger.warning("Discarding corrupt local value for %s", key)
            return default

    def get_list(self, key: str) -> list:
        value = self.get(key, [])
        if not isinstance(value, list):
            logger.warning("Expected a list under %s, found %s", key, type(value).__name__)
            return []
        return value

    def set(self, key: str, value):
        self.set_many({key: value})

    def set_many(self, values: dict):
        """Write several keys in one transaction."""
        try:
            for key, value in values.items():
                payload = json.dumps(value)
                entry = _fetch(key)
                if entry is None:
                    db.session.add(LocalEntry(key=key, value=payload))
                else:
                    entry.value = payload
            db.session.commit()
        except (SQLAlchemyError, TypeError) as e:
            db.session.rollback()
            raise StorageError("Local storage write failed") from e

    def delete(self, key: str):
        try:
            entry = _fetch(key)
            if entry is not None:
                db.session.delete(entry)
                db.session.commit()
        except SQLAlchemyError as e:
            db.session.rollback()
            raise StorageError("Local storage write failed") from e
