# Overview: Flask API routes for user registration and lifecycle; parses input and returns JSON responses.

from flask import Blueprint, jsonify, request

from ..decorators import require_auth, require_role
from ..security import current_username
from ..services import user_service
from ..validation import REGISTER_RULES, USER_UPDATE_RULES, validate_payload


users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@users_bp.post("/register")
def register():
    data = validate_payload(request.get_json(silent=True), REGISTER_RULES)
    user = user_service.register_user(**data)
    return jsonify(user.to_dict()), 201


@users_bp.get("")
@require_role("MANAGER")
def list_users():
    active_only = request.args.get("active", "").lower() in {"1", "true", "yes"}
    users = user_service.list_users(active_only=active_only)
    return jsonify([user.to_dict() for user in users]), 200


@users_bp.get("/me")
@require_auth
def get_current_user():
    user = user_service.get_user_by_username(current_username())
    return jsonify(user.to_dict()), 200


@users_bp.patch("/me")
@require_auth
def update_current_user():
    data = validate_payload(request.get_json(silent=True), USER_UPDATE_RULES, partial=True)
    user = user_service.update_current_user(current_username(), **data)
    return jsonify(user.to_dict()), 200


@users_bp.get("/<int:user_id>")
@require_role("MANAGER")
def get_user(user_id: int):
    user = user_service.get_user(user_id)
    return jsonify(user.to_dict()), 200


@users_bp.patch("/<int:user_id>")
@require_role("MANAGER")
def update_user(user_id: int):
    data = validate_payload(request.get_json(silent=True), USER_UPDATE_RULES, partial=True)
    user = user_service.update_user(user_id, **data)
    return jsonify(user.to_dict()), 200


@users_bp.put("/<int:user_id>/promote")
@require_role("MANAGER")
def promote_user(user_id: int):
    user = user_service.promote_user(user_id)
    return jsonify(user.to_dict()), 200


@users_bp.put("/<int:user_id>/demote")
@require_role("MANAGER")
def demote_user(user_id: int):
    user = user_service.demote_user(user_id)
    return jsonify(user.to_dict()), 200


@users_bp.delete("/<int:user_id>")
@require_role("MANAGER")
def delete_user(user_id: int):
    user_service.delete_user(user_id)
    return "", 204
