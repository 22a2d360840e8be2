from flask import Blueprint, g, jsonify, session
from sqlalchemy import select

from audit import security_event
from auth import (
    CUSTOMER,
    classify,
    hash_password,
    login_required,
    page_access,
    resolve_user,
    verify_password,
)
from backoffice import EMAIL_RE, get_profile, update_profile
from errors import Blocked, Conflict, Unauthenticated, ValidationFailed
from models import User, utcnow
from payloads import json_body
from sql_db import SessionLocal

auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

MIN_PASSWORD_LENGTH = 8


# -----------------------
# Auth
# -----------------------
@auth_bp.post("/register")
def register():
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    pw = str(data.get("password") or "")
    full_name = str(data.get("full_name") or "").strip()

    errors = []
    if not EMAIL_RE.match(email):
        errors.append({"field": "email", "message": "Invalid email format"})
    if len(pw) < MIN_PASSWORD_LENGTH:
        errors.append({"field": "password", "message": f"Password must be at least {MIN_PASSWORD_LENGTH} characters"})
    if errors:
        raise ValidationFailed("Validation failed", errors=errors)

    with SessionLocal() as s:
        if s.scalar(select(User.id).where(User.email == email)):
            raise Conflict("Email already exists.")

        # self-registration always creates customers
        u = User(email=email, full_name=full_name, password_hash=hash_password(pw), role=CUSTOMER)
        s.add(u)
        s.commit()

    return jsonify({"message": "Account created. Please login.", "id": u.id}), 201


@auth_bp.post("/login")
def login():
    data = json_body()
    email = str(data.get("email") or "").strip().lower()
    pw = str(data.get("password") or "")

    with SessionLocal() as s:
        u = s.scalar(select(User).where(User.email == email))
        if not u or not verify_password(pw, u.password_hash):
            security_event("Failed login", email=email)
            raise Unauthenticated("Invalid login.")

        if u.is_blocked:
            security_event("Blocked user attempted to login", userId=u.id, blockedReason=u.blocked_reason)
            raise Blocked(u.blocked_reason)

        u.last_login = utcnow()
        s.commit()

    session.clear()
    session["user_id"] = u.id
    return jsonify({"message": "Logged in.", "user": u.to_dict()})


@auth_bp.post("/logout")
def logout():
    session.clear()
    return jsonify({"message": "Logged out."})


@auth_bp.get("/me")
def me():
    user = resolve_user()
    role = classify(user)
    return jsonify({
        "user": user.to_dict() if user else None,
        "role": role,
        "access": page_access(role),
    })


# -----------------------
# Profile (customers and admins)
# -----------------------
@auth_bp.get("/profile")
@login_required
def profile():
    with SessionLocal() as s:
        data = get_profile(s, g.user_id)
    data["saved_cards"] = [
        {k: c.get(k) for k in ("last4", "brand", "expiry", "cardHolder")}
        for c in (g.user.saved_cards or [])
    ]
    return jsonify({"profile": data})


@auth_bp.put("/profile")
@login_required
def profile_update():
    with SessionLocal() as s:
        data = update_profile(s, g.user_id, json_body())
    return jsonify({"message": "Profile updated successfully", "profile": data})
