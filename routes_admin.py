from flask import Blueprint, current_app, g, jsonify, request

from auth import admin_required
from backoffice import (
    block_user,
    delete_user,
    get_profile,
    get_user,
    list_users,
    unblock_user,
    update_profile,
    update_user,
)
from pagination import page_params
from payloads import json_body
from sql_db import SessionLocal

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


# -----------------------
# Admin profile
# -----------------------
@admin_bp.get("/profile")
@admin_required
def admin_profile():
    with SessionLocal() as s:
        data = get_profile(s, g.user_id)
    return jsonify({"profile": data})


@admin_bp.put("/profile")
@admin_required
def admin_profile_update():
    data = json_body()
    # role and credentials are not editable here
    fields = {k: data[k] for k in ("full_name", "email") if k in data}
    with SessionLocal() as s:
        profile = update_profile(s, g.user_id, fields)
    return jsonify({"message": "Profile updated successfully", "profile": profile})


# -----------------------
# User management
# -----------------------
@admin_bp.get("/users")
@admin_required
def admin_users():
    cfg = current_app.config
    page, limit, skip = page_params(request.args, cfg["DEFAULT_PAGE_LIMIT"], cfg["MAX_PAGE_LIMIT"])
    with SessionLocal() as s:
        data = list_users(
            s,
            role=request.args.get("role"),
            is_blocked=request.args.get("is_blocked"),
            search=request.args.get("search"),
            page=page,
            limit=limit,
            skip=skip,
        )
    return jsonify(data)


@admin_bp.get("/users/<user_id>")
@admin_required
def admin_user(user_id: str):
    with SessionLocal() as s:
        data = get_user(s, user_id)
    return jsonify({"user": data})


@admin_bp.put("/users/<user_id>")
@admin_required
def admin_user_update(user_id: str):
    with SessionLocal() as s:
        data = update_user(s, g.user_id, user_id, json_body())
    return jsonify({"message": "User updated successfully", "user": data})


@admin_bp.patch("/users/<user_id>/block")
@admin_required
def admin_user_block(user_id: str):
    reason = json_body().get("reason")
    with SessionLocal() as s:
        data = block_user(s, g.user_id, user_id, reason)
    return jsonify({"message": "User blocked successfully", "user": data})


@admin_bp.patch("/users/<user_id>/unblock")
@admin_required
def admin_user_unblock(user_id: str):
    with SessionLocal() as s:
        data = unblock_user(s, g.user_id, user_id)
    return jsonify({"message": "User unblocked successfully", "user": data})


@admin_bp.delete("/users/<user_id>")
@admin_required
def admin_user_delete(user_id: str):
    with SessionLocal() as s:
        delete_user(s, g.user_id, user_id)
    return jsonify({"message": "User deleted successfully"})
