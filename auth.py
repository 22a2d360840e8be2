"""
Role guard.

One rule table drives both the API decorators (require_role and its aliases)
and the page decisions served to the storefront by /api/auth/me. Identity is
re-resolved from the session against the live user row on every request, so
blocking a user takes effect on their next call.
"""
from collections import namedtuple
from functools import wraps

from flask import g, request, session
from werkzeug.security import generate_password_hash, check_password_hash

from audit import security_event
from errors import Blocked, Forbidden, Unauthenticated
from models import User
from sql_db import SessionLocal

ANONYMOUS = "anonymous"
CUSTOMER = "customer"
ADMIN = "admin"
ROLES = (CUSTOMER, ADMIN)

AccessRule = namedtuple("AccessRule", "roles reason message redirect")
Decision = namedtuple("Decision", "allowed status reason redirect")

ACCESS_RULES = {
    "authenticated": AccessRule(
        frozenset({CUSTOMER, ADMIN}), "login_required", "Unauthorized. Please login.", "/login"
    ),
    "customer": AccessRule(
        frozenset({CUSTOMER}),
        "customer_only",
        "Access denied. This functionality is for customers only. Admins cannot place orders.",
        "/admin",
    ),
    "admin": AccessRule(
        frozenset({ADMIN}), "admin_required", "Access denied. Admin privileges required.", "/"
    ),
    "browse": AccessRule(
        frozenset({ANONYMOUS, CUSTOMER}), "customer_only", "Admins cannot use the storefront.", "/admin"
    ),
}

# storefront pages -> rule
PAGE_RULES = {
    "/menu": "browse",
    "/cart": "browse",
    "/checkout": "customer",
    "/orders": "customer",
    "/profile": "authenticated",
    "/admin": "admin",
}


def hash_password(pw: str) -> str:
    return generate_password_hash(pw)


def verify_password(pw: str, pw_hash: str) -> bool:
    return check_password_hash(pw_hash, pw)


def classify(user) -> str:
    if user is None:
        return ANONYMOUS
    return ADMIN if user.role == ADMIN else CUSTOMER


def check_access(role: str, rule_name: str) -> Decision:
    rule = ACCESS_RULES[rule_name]
    if role in rule.roles:
        return Decision(True, 200, None, None)
    if role == ANONYMOUS:
        return Decision(False, 401, "login_required", "/login")
    return Decision(False, 403, rule.reason, rule.redirect)


def page_access(role: str) -> dict:
    return {page: check_access(role, rule)._asdict() for page, rule in PAGE_RULES.items()}


def resolve_user():
    """
    Load the session's user. Returns None for anonymous callers.

    A session pointing at a missing or blocked account is cleared.
    """
    user_id = session.get("user_id")
    if not user_id:
        return None

    with SessionLocal() as s:
        user = s.get(User, user_id)

    if user is None:
        session.clear()
        raise Unauthenticated("User account not found. Please login again.")

    if user.is_blocked:
        security_event(
            "Blocked user attempted to access protected route",
            userId=user.id,
            blockedReason=user.blocked_reason,
        )
        session.clear()
        raise Blocked(user.blocked_reason)

    return user


def require_role(rule_name: str):
    rule = ACCESS_RULES[rule_name]

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            user = resolve_user()
            role = classify(user)
            decision = check_access(role, rule_name)

            if not decision.allowed:
                security_event(
                    "Access denied",
                    userId=user.id if user else None,
                    email=user.email if user else None,
                    role=role,
                    rule=rule_name,
                    method=request.method,
                    reason=decision.reason,
                )
                if decision.status == 401:
                    raise Unauthenticated()
                raise Forbidden(rule.message, reason=decision.reason, userRole=role)

            g.user = user
            g.user_id = user.id if user else None
            g.role = role
            return fn(*args, **kwargs)

        return wrapper

    return decorator


login_required = require_role("authenticated")
customer_required = require_role("customer")
admin_required = require_role("admin")
browse_allowed = require_role("browse")
