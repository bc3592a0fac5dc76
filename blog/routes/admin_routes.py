from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required

from blog.context import get_context
from blog.errors import BlogError
from blog.routes.utils import current_session, error_response


admin_bp = Blueprint("admin", __name__)


def _public_entry(entry, timestamp_field):
    stamp = entry.get(timestamp_field)
    return {
        "username": entry["username"],
        timestamp_field: stamp.isoformat() if stamp else None,
    }


@admin_bp.route("/pending", methods=["GET"])
@jwt_required()
def list_pending():
    try:
        pending = get_context().admin.list_pending(current_session())
    except BlogError as e:
        return error_response(e)
    return jsonify({"pending": [_public_entry(p, "requested") for p in pending]}), 200


@admin_bp.route("/users", methods=["GET"])
@jwt_required()
def list_approved():
    try:
        users = get_context().admin.list_approved(current_session())
    except BlogError as e:
        return error_response(e)
    return jsonify({
        "users": [
            {**_public_entry(user, "created"), "approved": user["approved"]}
            for user in users
        ]
    }), 200


@admin_bp.route("/pending/<username>/approve", methods=["POST"])
@jwt_required()
def approve(username):
    try:
        get_context().admin.approve(current_session(), username)
    except BlogError as e:
        return error_response(e)
    return jsonify({"message": f"{username} approved"}), 200


@admin_bp.route("/pending/<username>/reject", methods=["POST"])
@jwt_required()
def reject(username):
    try:
        get_context().admin.reject(current_session(), username)
    except BlogError as e:
        return error_response(e)
    return jsonify({"message": f"{username} rejected"}), 200
