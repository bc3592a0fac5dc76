from flask import current_app, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, verify_jwt_in_request

from blog.context import get_context
from blog.services.session_service import CURRENT_USER_KEY


class RequestSessionCache:
    """Session cache for one request, seeded from the bearer token if present."""

    def __init__(self):
        self._session = None

    def _entries(self):
        if self._session is None:
            self._session = {}
            verify_jwt_in_request(optional=True)
            identity = get_jwt_identity()
            if identity:
                self._session[CURRENT_USER_KEY] = {
                    "username": identity,
                    "approved": bool(get_jwt().get("approved")),
                }
        return self._session

    def get(self, key, default=None):
        return self._entries().get(key, default)

    def set(self, key, value):
        self._entries()[key] = value

    def delete(self, key):
        self._entries().pop(key, None)


def session_gate():
    return get_context().session_gate(RequestSessionCache())


def current_session():
    return session_gate().current_session()


def unknown_page_response(page):
    if page not in current_app.config["SITE_PAGES"]:
        return jsonify({"error": "Page not found"}), 404
    return None


def error_response(error):
    return jsonify({"error": str(error)}), error.status_code


def read_json_body():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data
