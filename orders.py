"""
Order lifecycle store.

Orders are created by customer checkout (create_order) or by an admin phone
entry (admin_create_order); afterwards only the status moves. Items and
amounts are never edited.
"""
import logging
import random
import secrets
from datetime import timedelta

from sqlalchemy import func, select

from audit import admin_action, order_event, security_event
from errors import (
    IllegalTransition,
    InvalidStatus,
    NotFound,
    OrderLimitExceeded,
    PromoAbuse,
    StaleCart,
    ValidationFailed,
)
from models import Order, User, is_object_id, utcnow
from pagination import pagination
from pricing import DEFAULT_EPSILON, TAKEAWAY, product_ref, validate_order

logger = logging.getLogger(__name__)

ORDER_STATUSES = ("confirmed", "preparing", "ready", "out_for_delivery", "delivered", "cancelled")
TERMINAL_STATUSES = frozenset({"delivered", "cancelled"})

# forward-only; cancelled is reachable from every non-terminal status
TRANSITIONS = {
    "confirmed": {"preparing", "cancelled"},
    "preparing": {"ready", "cancelled"},
    "ready": {"out_for_delivery", "cancelled"},
    "out_for_delivery": {"delivered", "cancelled"},
    "delivered": set(),
    "cancelled": set(),
}

DEFAULT_MAX_ACTIVE_ORDERS = 5
DEFAULT_ETA_MINUTES = 45
ORDER_NUMBER_ATTEMPTS = 10

TAKEAWAY_ADDRESS = {
    "no": "N/A",
    "street": "Takeaway (Pick up at Store)",
    "city": "N/A",
    "province": "N/A",
    "zip_code": "N/A",
    "contact1": "N/A",
    "contact2": "N/A",
}

PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")


# -----------------------
# Helpers
# -----------------------
def count_active_orders(db, customer_id: str) -> int:
    return db.scalar(
        select(func.count())
        .select_from(Order)
        .where(Order.customer_id == customer_id, Order.status.not_in(TERMINAL_STATUSES))
    ) or 0


def generate_order_number(db, now=None) -> str:
    """ORD-YYYYMMDD-XXXX, re-rolled until unused."""
    now = now or utcnow()
    for _ in range(ORDER_NUMBER_ATTEMPTS):
        number = f"ORD-{now:%Y%m%d}-{random.randint(1000, 9999)}"
        exists = db.scalar(select(Order.id).where(Order.order_number == number))
        if not exists:
            return number
    raise RuntimeError(f"Could not allocate an order number for {now:%Y%m%d}")


def allowed_transitions(order: Order) -> set:
    allowed = set(TRANSITIONS[order.status])
    # pickup orders skip the driver
    if order.status == "ready" and order.delivery_type == TAKEAWAY:
        allowed.add("delivered")
    return allowed


def _history_entry(status: str, note: str) -> dict:
    return {"status": status, "timestamp": utcnow().isoformat(), "note": note}


def _check_product_ids(items) -> None:
    if not isinstance(items, list):
        return
    for item in items:
        pid = product_ref(item) if isinstance(item, dict) else None
        if not is_object_id(pid):
            raise StaleCart(pid)


def _object_field(payload: dict, key: str) -> dict:
    value = payload.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise ValidationFailed("Validation failed", errors=[{"field": key, "message": "Must be an object"}])
    return value


def _text_field(payload: dict, key: str, default: str | None, max_length: int) -> str | None:
    value = payload.get(key)
    if value is None or value == "":
        return default
    if not isinstance(value, str) or len(value.strip()) > max_length:
        message = f"Must be text of at most {max_length} characters"
        raise ValidationFailed("Validation failed", errors=[{"field": key, "message": message}])
    return value.strip() or default


def _line_items(lines) -> list:
    return [
        {
            "product": line.product.id,
            "product_snapshot": {
                "name": line.product.name,
                "description": line.product.description,
                "image": line.product.image,
            },
            "quantity": line.quantity,
            "customization": {"size": line.size, "crust": line.crust},
            "unit_price": line.unit_price,
            "total_price": line.line_total,
        }
        for line in lines
    ]


def _delivery_address(delivery_type: str, info: dict) -> dict:
    if delivery_type == TAKEAWAY:
        return dict(TAKEAWAY_ADDRESS)
    return {
        "no": info.get("no"),
        "street": info.get("street"),
        "city": info.get("city"),
        "province": info.get("province"),
        "zip_code": info.get("zipCode"),
        "contact1": info.get("contact1"),
        "contact2": info.get("contact2"),
    }


def _check_promo(db, customer_id: str, promo_code: str, max_uses: int) -> None:
    used = db.scalar(
        select(func.count())
        .select_from(Order)
        .where(Order.customer_id == customer_id, func.upper(Order.promo_code) == promo_code.upper())
    ) or 0
    if used >= max_uses:
        raise PromoAbuse(f"Promo code {promo_code} has already been used on this account")


def save_card(user: User, payment_info: dict) -> bool:
    """
    Keep a masked card on the customer. Only last4/brand/expiry/holder and a
    token are kept. Cards are matched by last four digits.
    """
    last4 = str(payment_info.get("last4") or "")
    if len(last4) != 4 or not last4.isdigit():
        return False

    cards = list(user.saved_cards or [])
    if any(c.get("last4") == last4 for c in cards):
        return False

    cards.append({
        "last4": last4,
        "brand": payment_info.get("brand") or "Visa",
        "expiry": payment_info.get("expiry"),
        "cardHolder": payment_info.get("cardHolder"),
        "token": payment_info.get("token") or f"tok_{secrets.token_hex(6)}",
    })
    user.saved_cards = cards
    return True


# -----------------------
# Create
# -----------------------
def create_order(
    db,
    customer_id: str,
    payload: dict,
    fee_policy,
    max_active: int = DEFAULT_MAX_ACTIVE_ORDERS,
    epsilon: float = DEFAULT_EPSILON,
    eta_minutes: int = DEFAULT_ETA_MINUTES,
    promo_max_uses: int = 1,
) -> Order:
    if not isinstance(payload, dict):
        raise ValidationFailed("Order payload must be an object")
    delivery_info = _object_field(payload, "deliveryInfo")
    payment_info = _object_field(payload, "paymentInfo")
    promo_code = _text_field(payload, "promoCode", None, 64)
    payment_method = _text_field(payload, "paymentMethod", "card", 20)

    # count-then-insert: two concurrent checkouts can both pass this check
    active = count_active_orders(db, customer_id)
    if active >= max_active:
        raise OrderLimitExceeded(active, max_active)

    _check_product_ids(payload.get("items"))

    result = validate_order(db, payload, fee_policy, epsilon)
    if not result.valid:
        security_event("Order validation failed - possible tampering", userId=customer_id, errors=result.errors)
        raise ValidationFailed(
            "Order validation failed. Prices may have changed or there was an error.",
            errors=result.errors,
            validationFailed=True,
        )

    if promo_code:
        try:
            _check_promo(db, customer_id, promo_code, promo_max_uses)
        except PromoAbuse:
            security_event("Promo code abuse detected", userId=customer_id, promoCode=promo_code)
            raise

    delivery_type = payload.get("deliveryType") or "delivery"
    now = utcnow()
    order = Order(
        order_number=generate_order_number(db, now),
        customer_id=customer_id,
        items=_line_items(result.lines),
        subtotal=result.subtotal,
        delivery_fee=result.delivery_fee,
        total=result.total,
        delivery_type=delivery_type,
        delivery_address=_delivery_address(delivery_type, delivery_info),
        status="confirmed",
        status_history=[_history_entry("confirmed", "Order created")],
        payment_status="paid",
        payment_method=payment_method,
        promo_code=promo_code,
        estimated_delivery_time=now + timedelta(minutes=eta_minutes),
        created_at=now,
    )
    db.add(order)

    if payment_info.get("saveCard"):
        user = db.get(User, customer_id)
        if user is not None:
            save_card(user, payment_info)

    db.commit()

    order_event(order.id, customer_id, "ORDER_CREATED", orderNumber=order.order_number, total=order.total)
    return order


def admin_create_order(db, admin_id: str, payload: dict, fee_policy, epsilon: float = DEFAULT_EPSILON) -> Order:
    if not isinstance(payload, dict):
        raise ValidationFailed("Order payload must be an object")
    customer_id = payload.get("customerId")
    items = payload.get("items")
    if not isinstance(customer_id, str) or not customer_id or not items or payload.get("total") in (None, ""):
        raise ValidationFailed("Missing required fields: customerId, items, and total are required")

    customer = db.get(User, customer_id)
    if customer is None:
        raise NotFound("Customer not found")

    status = payload.get("status") or "confirmed"
    if status not in ORDER_STATUSES:
        raise InvalidStatus()

    payment_status = payload.get("payment_status") or "pending"
    if payment_status not in PAYMENT_STATUSES:
        raise ValidationFailed(
            "Validation failed",
            errors=[{"field": "payment_status", "message": f"Must be one of: {', '.join(PAYMENT_STATUSES)}"}],
        )
    info = _object_field(payload, "deliveryInfo")
    payment_method = _text_field(payload, "paymentMethod", "cash", 20)
    note = _text_field(payload, "note", None, 1000)

    _check_product_ids(items)

    result = validate_order(db, payload, fee_policy, epsilon)
    if not result.valid:
        security_event(
            "Admin order creation validation failed",
            adminId=admin_id,
            customerId=customer_id,
            errors=result.errors,
        )
        raise ValidationFailed("Order validation failed", errors=result.errors, validationFailed=True)

    delivery_type = payload.get("deliveryType") or "delivery"
    address = _delivery_address(delivery_type, info)
    if delivery_type != TAKEAWAY and not address.get("contact1"):
        address["contact1"] = (customer.address or {}).get("phone")

    now = utcnow()
    order = Order(
        order_number=generate_order_number(db, now),
        customer_id=customer.id,
        items=_line_items(result.lines),
        subtotal=result.subtotal,
        delivery_fee=result.delivery_fee,
        total=result.total,
        delivery_type=delivery_type,
        delivery_address=address,
        status=status,
        status_history=[_history_entry(status, note or "Order created manually by admin")],
        payment_status=payment_status,
        payment_method=payment_method,
        notes=note,
        created_at=now,
    )
    db.add(order)
    db.commit()

    logger.info("Order %s created manually by admin %s for %s", order.order_number, admin_id, customer.id)
    order_event(order.id, admin_id, "ORDER_CREATED", orderNumber=order.order_number, total=order.total, manual=True)
    return order


# -----------------------
# Lifecycle
# -----------------------
def transition_status(db, order_id: str, new_status: str, note: str | None, admin_id: str, strict: bool = True) -> Order:
    if new_status not in ORDER_STATUSES:
        raise InvalidStatus()

    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")

    if strict and new_status not in allowed_transitions(order):
        raise IllegalTransition(order.status, new_status)

    previous = order.status
    order.status = new_status
    order.status_history = [
        *(order.status_history or []),
        _history_entry(new_status, note or f"Status updated to {new_status}"),
    ]
    db.commit()

    admin_action(
        "order_status_updated", admin_id, order.id,
        orderNumber=order.order_number, previousStatus=previous, newStatus=new_status,
    )
    order_event(order.id, admin_id, "ORDER_STATUS_CHANGED", status=new_status, previous=previous)
    return order


def delete_order(db, order_id: str, admin_id: str) -> dict:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")

    snapshot = {
        "id": order.id,
        "order_number": order.order_number,
        "customer": order.customer_id,
        "total": order.total,
        "status": order.status,
    }
    security_event("Order deleted by admin", adminId=admin_id, order=snapshot)

    db.delete(order)
    db.commit()

    order_event(snapshot["id"], admin_id, "ORDER_DELETED", **snapshot)
    return snapshot


# -----------------------
# Queries
# -----------------------
def _customers_by_id(db, orders) -> dict:
    ids = {o.customer_id for o in orders}
    if not ids:
        return {}
    users = db.scalars(select(User).where(User.id.in_(ids)))
    return {u.id: {"_id": u.id, "full_name": u.full_name, "email": u.email} for u in users}


def with_customers(db, orders) -> list:
    customers = _customers_by_id(db, orders)
    return [o.to_dict(customer=customers.get(o.customer_id)) for o in orders]


def list_customer_orders(db, customer_id: str) -> list:
    return list(db.scalars(
        select(Order).where(Order.customer_id == customer_id).order_by(Order.created_at.desc())
    ))


def get_customer_order(db, customer_id: str, order_id: str) -> Order:
    order = db.scalar(select(Order).where(Order.id == order_id, Order.customer_id == customer_id))
    if order is None:
        raise NotFound("Order not found")
    return order


def get_order(db, order_id: str) -> Order:
    order = db.get(Order, order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


def list_orders(db, status: str | None, page: int, limit: int, skip: int) -> dict:
    query = select(Order)
    count = select(func.count()).select_from(Order)
    if status and status != "all":
        query = query.where(Order.status == status)
        count = count.where(Order.status == status)

    orders = list(db.scalars(query.order_by(Order.created_at.desc()).offset(skip).limit(limit)))
    total = db.scalar(count) or 0
    return {"orders": with_customers(db, orders), "pagination": pagination(total, page, limit)}


def order_stats(db) -> dict:
    def count(*where):
        query = select(func.count()).select_from(Order)
        if where:
            query = query.where(*where)
        return db.scalar(query) or 0

    revenue = db.scalar(select(func.sum(Order.total)).where(Order.payment_status == "paid")) or 0.0
    customers = db.scalar(select(func.count()).select_from(User).where(User.role == "customer")) or 0
    recent = list(db.scalars(select(Order).order_by(Order.created_at.desc()).limit(5)))

    return {
        "stats": {
            "totalOrders": count(),
            "pendingOrders": count(Order.status == "confirmed"),
            "completedOrders": count(Order.status == "delivered"),
            "totalRevenue": round(float(revenue), 2),
            "totalCustomers": customers,
        },
        "recentOrders": with_customers(db, recent),
    }
