from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from blog.context import get_context
from blog.errors import BlogError
from blog.routes.utils import current_session, error_response, unknown_page_response
from blog.schemas.post_schema import PostSchema

post_bp = Blueprint("posts", __name__)


def read_submission():
    """Return ``(text, upload)`` from a JSON or multipart request, or ``None``."""
    content_type = (request.content_type or "").lower()
    if "multipart/form-data" in content_type:
        upload = request.files.get("media") or request.files.get("file")
        return request.form.get("text"), upload

    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return None
    return data.get("text"), None


@post_bp.route("/pages/<page>/posts", methods=["GET"])
def list_posts(page):
    not_found = unknown_page_response(page)
    if not_found:
        return not_found

    posts = get_context().feeds.list_posts(page)
    return jsonify({
        "page": page,
        "posts": PostSchema(many=True).dump(posts),
    }), 200


@post_bp.route("/pages/<page>/posts", methods=["POST"])
@jwt_required()
def create_post(page):
    not_found = unknown_page_response(page)
    if not_found:
        return not_found

    submission = read_submission()
    if submission is None:
        return jsonify({"error": "Invalid JSON body"}), 400
    text, upload = submission

    try:
        post = get_context().feeds.create_post(page, current_session(), text, upload)
    except BlogError as e:
        return error_response(e)

    return jsonify({
        "message": "Post created successfully",
        "post": PostSchema().dump(post),
    }), 201


@post_bp.route("/pages/<page>/posts/<post_id>", methods=["DELETE"])
@jwt_required()
def delete_post(page, post_id):
    not_found = unknown_page_response(page)
    if not_found:
        return not_found

    try:
        get_context().feeds.delete_post(page, post_id, current_session())
    except BlogError as e:
        return error_response(e)

    return jsonify({"message": "Post deleted"}), 200
