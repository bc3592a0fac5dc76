from flask import Blueprint, jsonify
from flask_jwt_extended import jwt_required

from blog.context import get_context
from blog.errors import BlogError
from blog.routes.post_routes import read_submission
from blog.routes.utils import current_session, error_response, unknown_page_response
from blog.schemas.post_schema import CommentSchema


comment_bp = Blueprint("comments", __name__)


@comment_bp.route("/pages/<page>/posts/<post_id>/comments", methods=["POST"])
@jwt_required(optional=True)
def create_comment(page, post_id):
    not_found = unknown_page_response(page)
    if not_found:
        return not_found

    submission = read_submission()
    if submission is None:
        return jsonify({"error": "Invalid JSON body"}), 400
    text, upload = submission

    try:
        comment = get_context().feeds.add_comment(
            page,
            post_id,
            current_session(),
            text,
            upload,
        )
    except BlogError as e:
        return error_response(e)

    return jsonify({
        "message": "Comment created",
        "comment": CommentSchema().dump(comment),
    }), 201
