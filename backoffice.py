"""
Admin back-office: profiles, user management and the product catalog.

The admin self-protection rules live here rather than in the models: an
admin never edits, blocks, unblocks or deletes themself through the user
routes, and never touches another admin. A tripped rule raises RuleViolation
before anything is changed.
"""
import logging
import re

from sqlalchemy import func, or_, select

from audit import admin_action, security_event
from errors import Conflict, NotFound, RuleViolation, ValidationFailed
from models import Product, User, utcnow
from pagination import pagination

logger = logging.getLogger(__name__)

EMAIL_RE = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
ADDRESS_FIELDS = ("no", "street", "city", "state", "province", "zip_code", "phone")
USER_ROLES = ("customer", "admin")


# -----------------------
# Field validation
# -----------------------
def _full_name(value, errors: list):
    if value is None:
        return None
    name = str(value).strip()
    if not 2 <= len(name) <= 100:
        errors.append({"field": "full_name", "message": "Full name must be between 2 and 100 characters"})
        return None
    return name


def _email(value, errors: list):
    if value is None:
        return None
    email = str(value).strip().lower()
    if not EMAIL_RE.match(email):
        errors.append({"field": "email", "message": "Invalid email format"})
        return None
    return email


def _address(value, errors: list):
    if value is None:
        return None
    if not isinstance(value, dict):
        errors.append({"field": "address", "message": "Address must be an object"})
        return None
    return {k: str(v).strip() for k, v in value.items() if k in ADDRESS_FIELDS and v is not None}


def _raise_if(errors: list) -> None:
    if errors:
        raise ValidationFailed("Validation failed", errors=errors)


def _email_taken(db, email: str, exclude_id: str) -> bool:
    return db.scalar(select(User.id).where(User.email == email, User.id != exclude_id)) is not None


def _user_or_404(db, user_id: str) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found")
    return user


def _deny(message: str, reason: str, admin_id: str, user_id: str) -> RuleViolation:
    security_event("Admin action refused", adminId=admin_id, userId=user_id, reason=reason)
    return RuleViolation(message, reason)


# -----------------------
# Profile (own account)
# -----------------------
def get_profile(db, user_id: str) -> dict:
    return _user_or_404(db, user_id).to_dict()


def update_profile(db, user_id: str, data: dict) -> dict:
    errors = []
    full_name = _full_name(data.get("full_name"), errors)
    email = _email(data.get("email"), errors)
    address = _address(data.get("address"), errors)
    _raise_if(errors)

    user = _user_or_404(db, user_id)
    updated = []

    if full_name:
        user.full_name = full_name
        updated.append("full_name")

    if email and email != user.email:
        if _email_taken(db, email, user.id):
            raise Conflict("Email already in use by another account")
        user.email = email
        updated.append("email")

    if address is not None:
        user.address = {**(user.address or {}), **address}
        updated.append("address")

    db.commit()
    logger.info("Profile updated user=%s fields=%s", user.id, updated)
    return user.to_dict()


# -----------------------
# User management
# -----------------------
def _parse_blocked(value):
    if value is None or value == "":
        return None
    return str(value).lower() == "true"


def _like(term: str) -> str:
    escaped = term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def list_users(db, role=None, is_blocked=None, search=None, page: int = 1, limit: int = 20, skip: int = 0) -> dict:
    filters = []
    if role:
        filters.append(User.role == role)

    blocked = _parse_blocked(is_blocked)
    if blocked is not None:
        filters.append(User.is_blocked == blocked)

    if search:
        pattern = _like(search.strip())
        filters.append(or_(
            User.email.ilike(pattern, escape="\\"),
            User.full_name.ilike(pattern, escape="\\"),
        ))

    users = list(db.scalars(
        select(User).where(*filters).order_by(User.created_at.desc()).offset(skip).limit(limit)
    ))
    total = db.scalar(select(func.count()).select_from(User).where(*filters)) or 0
    return {"users": [u.to_dict() for u in users], "pagination": pagination(total, page, limit)}


def get_user(db, user_id: str) -> dict:
    return _user_or_404(db, user_id).to_dict()


def update_user(db, admin_id: str, user_id: str, data: dict) -> dict:
    errors = []
    full_name = _full_name(data.get("full_name"), errors)
    email = _email(data.get("email"), errors)
    address = _address(data.get("address"), errors)

    role = data.get("role")
    if role is not None and role not in USER_ROLES:
        errors.append({"field": "role", "message": "Role must be either customer or admin"})

    is_verified = data.get("is_verified")
    if is_verified is not None and not isinstance(is_verified, bool):
        errors.append({"field": "is_verified", "message": "is_verified must be a boolean"})
    _raise_if(errors)

    if user_id == admin_id:
        raise _deny("Use /api/admin/profile to edit your own profile", "self_edit", admin_id, user_id)

    user = _user_or_404(db, user_id)
    if user.role == "admin":
        raise _deny("Cannot edit admin users", "admin_target", admin_id, user_id)

    updated = []
    if full_name:
        user.full_name = full_name
        updated.append("full_name")
    if role is not None:
        user.role = role
        updated.append("role")
    if is_verified is not None:
        user.is_verified = is_verified
        updated.append("is_verified")
    if email and email != user.email:
        if _email_taken(db, email, user.id):
            raise Conflict("Email already in use by another account")
        user.email = email
        updated.append("email")
    if address is not None:
        user.address = {**(user.address or {}), **address}
        updated.append("address")

    db.commit()
    admin_action("user_updated", admin_id, user.id, updatedFields=updated)
    return user.to_dict()


def block_user(db, admin_id: str, user_id: str, reason: str | None = None) -> dict:
    if reason is not None:
        reason = str(reason).strip()
        if not 5 <= len(reason) <= 500:
            raise ValidationFailed(
                "Validation failed",
                errors=[{"field": "reason", "message": "Block reason must be between 5 and 500 characters"}],
            )

    if user_id == admin_id:
        raise _deny("You cannot block yourself", "self_block", admin_id, user_id)

    user = _user_or_404(db, user_id)
    if user.role == "admin":
        raise _deny("Cannot block admin users", "admin_target", admin_id, user_id)
    if user.is_blocked:
        raise RuleViolation("User is already blocked", "already_blocked")

    user.is_blocked = True
    user.blocked_reason = reason or "Blocked by admin"
    user.blocked_at = utcnow()
    user.blocked_by = admin_id
    db.commit()

    security_event(
        "User blocked by admin",
        userId=user.id,
        userEmail=user.email,
        adminId=admin_id,
        reason=reason or "No reason provided",
    )
    return user.to_dict()


def unblock_user(db, admin_id: str, user_id: str) -> dict:
    if user_id == admin_id:
        raise _deny("You cannot unblock yourself", "self_unblock", admin_id, user_id)

    user = _user_or_404(db, user_id)
    if user.role == "admin":
        raise _deny("Cannot unblock admin users", "admin_target", admin_id, user_id)
    if not user.is_blocked:
        raise RuleViolation("User is not blocked", "not_blocked")

    user.is_blocked = False
    user.blocked_reason = None
    user.blocked_at = None
    user.blocked_by = None
    db.commit()

    security_event("User unblocked by admin", userId=user.id, userEmail=user.email, adminId=admin_id)
    return user.to_dict()


def delete_user(db, admin_id: str, user_id: str) -> None:
    if user_id == admin_id:
        raise _deny("You cannot delete yourself", "self_delete", admin_id, user_id)

    user = _user_or_404(db, user_id)
    if user.role == "admin":
        raise _deny("Cannot delete admin users", "admin_target", admin_id, user_id)

    email = user.email
    db.delete(user)
    db.commit()

    security_event("User deleted by admin", userId=user_id, userEmail=email, adminId=admin_id)


# -----------------------
# Products
# -----------------------
def parse_price(value) -> float:
    v = str(value if value is not None else "").strip().replace("£", "").replace(",", ".")
    price = float(v)
    if price < 0:
        raise ValueError("negative price")
    return round(price, 2)


def _product_fields(data: dict, partial: bool) -> dict:
    errors = []
    fields = {}

    if "name" in data or not partial:
        name = str(data.get("name") or "").strip()
        if not name:
            errors.append({"field": "name", "message": "Name is required."})
        fields["name"] = name

    if "price" in data or not partial:
        try:
            fields["price"] = parse_price(data.get("price"))
        except ValueError:
            errors.append({"field": "price", "message": "Price must be a number like 9.99."})

    if "category" in data or not partial:
        fields["category"] = str(data.get("category") or "Pizza").strip()

    for key in ("description", "image"):
        if key in data:
            fields[key] = data.get(key)

    if "is_available" in data:
        if not isinstance(data["is_available"], bool):
            errors.append({"field": "is_available", "message": "is_available must be a boolean"})
        fields["is_available"] = data["is_available"]

    _raise_if(errors)
    return fields


def list_products(db, category: str | None = None, include_unavailable: bool = False) -> list:
    query = select(Product)
    if category:
        query = query.where(Product.category == category)
    if not include_unavailable:
        query = query.where(Product.is_available.is_(True))
    return [p.to_dict() for p in db.scalars(query.order_by(Product.category, Product.name))]


def get_product(db, product_id: str) -> Product:
    product = db.get(Product, product_id)
    if product is None:
        raise NotFound("Product not found")
    return product


def create_product(db, admin_id: str, data: dict) -> dict:
    product = Product(**_product_fields(data, partial=False))
    db.add(product)
    db.commit()
    admin_action("product_created", admin_id, product.id, name=product.name, price=product.price)
    return product.to_dict()


def update_product(db, admin_id: str, product_id: str, data: dict) -> dict:
    fields = _product_fields(data, partial=True)
    product = get_product(db, product_id)
    for key, value in fields.items():
        setattr(product, key, value)
    db.commit()
    admin_action("product_updated", admin_id, product.id, updatedFields=sorted(fields))
    return product.to_dict()


def delete_product(db, admin_id: str, product_id: str) -> None:
    product = get_product(db, product_id)
    db.delete(product)
    db.commit()
    admin_action("product_deleted", admin_id, product_id, name=product.name)
