from flask import Blueprint, jsonify
from flask_jwt_extended import (
    create_access_token,
    create_refresh_token,
    get_jwt_identity,
    jwt_required,
)

from blog.context import get_context
from blog.errors import BlogError
from blog.routes.utils import current_session, error_response, read_json_body, session_gate
from blog.services.session_service import find_user


auth_bp = Blueprint("auth", __name__)


def _tokens_for(session):
    claims = {"approved": session["approved"]}
    return {
        "access_token": create_access_token(
            identity=session["username"],
            additional_claims=claims,
        ),
        "refresh_token": create_refresh_token(
            identity=session["username"],
            additional_claims=claims,
        ),
    }


@auth_bp.route("/register", methods=["POST"])
def register():
    data = read_json_body()
    if data is None:
        return jsonify({"error": "Invalid JSON body"}), 400

    try:
        session_gate().register(data.get("username"), data.get("password"))
        return jsonify({"message": "Registration submitted, waiting for approval"}), 201
    except BlogError as e:
        return error_response(e)


@auth_bp.route("/login", methods=["POST"])
def login():
    data = read_json_body()
    if data is None:
        return jsonify({"error": "Invalid JSON body"}), 400

    try:
        session = session_gate().login(data.get("username"), data.get("password"))
    except BlogError as e:
        return error_response(e)

    return jsonify({"session": session, **_tokens_for(session)}), 200


@auth_bp.route("/refresh", methods=["POST"])
@auth_bp.route("/token", methods=["POST"])
@jwt_required(refresh=True)
def refresh_token():
    username = get_jwt_identity()
    user = find_user(get_context().selector, username)
    if not user or not user["approved"]:
        return jsonify({"error": "Invalid credentials"}), 401

    access_token = create_access_token(
        identity=username,
        additional_claims={"approved": True},
    )
    return jsonify({"access_token": access_token}), 200


@auth_bp.route("/logout", methods=["POST"])
def logout():
    session_gate().logout()
    return jsonify({"message": "Logged out"}), 200


@auth_bp.route("/me", methods=["GET"])
def me():
    return jsonify({"session": current_session()}), 200
