import re
from datetime import timedelta

import pytest

import orders
from conftest import Recorder, make_user, order_payload
from errors import (
    IllegalTransition,
    InvalidStatus,
    NotFound,
    OrderLimitExceeded,
    PromoAbuse,
    StaleCart,
    ValidationFailed,
)
from models import Order, User
from pricing import FixedFeePolicy

FEE = FixedFeePolicy(2.00)


def place(db, customer, product, **kw):
    return orders.create_order(db, customer.id, order_payload(product, **kw), FEE)


def seed_orders(db, customer, count, status="confirmed"):
    for i in range(count):
        db.add(Order(
            order_number=f"ORD-20260101-{1000 + i}-{status}",
            customer_id=customer.id,
            items=[],
            subtotal=10.0,
            delivery_fee=0.0,
            total=10.0,
            status=status,
            status_history=[{"status": status, "timestamp": "2026-01-01T00:00:00", "note": "seed"}],
        ))
    db.commit()


def test_create_order_persists_authoritative_snapshot(db, customer, margherita):
    order = place(db, customer, margherita)

    stored = db.get(Order, order.id)
    assert re.match(r"^ORD-\d{8}-\d{4}$", stored.order_number)
    assert stored.status == "confirmed"
    assert stored.payment_status == "paid"
    assert (stored.subtotal, stored.delivery_fee, stored.total) == (20.00, 2.00, 22.00)
    assert abs(stored.subtotal + stored.delivery_fee - stored.total) <= 0.01

    item = stored.items[0]
    assert item["product"] == margherita.id
    assert item["product_snapshot"]["name"] == "Margherita"
    assert item["customization"] == {"size": "Large", "crust": "Thin"}
    assert item["total_price"] == 20.00

    assert len(stored.status_history) == 1
    assert stored.status_history[0]["status"] == "confirmed"
    assert stored.status_history[0]["note"] == "Order created"
    assert stored.estimated_delivery_time - stored.created_at == timedelta(minutes=45)
    assert stored.delivery_address["street"] == "Main Street"


def test_takeaway_gets_sentinel_address(db, customer, margherita):
    order = place(db, customer, margherita, delivery_fee=0, delivery_type="takeaway", deliveryInfo=None)
    assert order.delivery_address["city"] == "N/A"
    assert order.delivery_address["street"] == "Takeaway (Pick up at Store)"
    assert order.total == 20.00


def test_price_mismatch_persists_nothing(db, customer, margherita, monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(orders, "security_event", recorder)

    with pytest.raises(ValidationFailed) as exc:
        place(db, customer, margherita, price=8.00)

    assert exc.value.extra["validationFailed"] is True
    assert db.query(Order).count() == 0
    assert recorder.messages == ["Order validation failed - possible tampering"]


def test_fifth_active_order_allowed_sixth_rejected(db, customer, margherita):
    seed_orders(db, customer, 4)
    place(db, customer, margherita)

    with pytest.raises(OrderLimitExceeded) as exc:
        place(db, customer, margherita)
    assert exc.value.extra == {"orderLimitReached": True, "activeOrders": 5}
    assert db.query(Order).count() == 5


def test_terminal_orders_do_not_count(db, customer, margherita):
    seed_orders(db, customer, 3, status="delivered")
    seed_orders(db, customer, 3, status="cancelled")
    seed_orders(db, customer, 4, status="preparing")
    assert orders.count_active_orders(db, customer.id) == 4
    place(db, customer, margherita)


def test_stale_product_id(db, customer, margherita):
    payload = order_payload(margherita)
    payload["items"][0]["_id"] = 42
    with pytest.raises(StaleCart):
        orders.create_order(db, customer.id, payload, FEE)


def test_promo_code_single_use(db, customer, margherita):
    place(db, customer, margherita, promoCode="PIZZA10")
    with pytest.raises(PromoAbuse):
        place(db, customer, margherita, promoCode="pizza10")
    assert db.query(Order).count() == 1


def test_save_card_masks_and_dedupes(db, customer, margherita):
    payment = {"last4": "4242", "brand": "Mastercard", "expiry": "12/29", "cardHolder": "Alice",
               "number": "4242424242424242", "saveCard": True}
    place(db, customer, margherita, paymentInfo=payment)
    place(db, customer, margherita, paymentInfo=payment)

    user = db.get(User, customer.id)
    db.refresh(user)
    assert len(user.saved_cards) == 1
    card = user.saved_cards[0]
    assert card["last4"] == "4242"
    assert card["token"].startswith("tok_")
    assert "number" not in card
    assert "4242424242424242" not in str(user.saved_cards)


def test_order_number_rerolls_on_collision(db, customer, margherita, monkeypatch):
    first = place(db, customer, margherita)
    taken = int(first.order_number[-4:])
    rolls = iter([taken, taken, 1234 if taken != 1234 else 4321])
    monkeypatch.setattr(orders.random, "randint", lambda a, b: next(rolls))

    second = place(db, customer, margherita)
    assert second.order_number != first.order_number


def test_strict_transitions(db, customer, admin, margherita):
    order = place(db, customer, margherita)

    for status in ("preparing", "ready", "out_for_delivery", "delivered"):
        orders.transition_status(db, order.id, status, None, admin.id)

    stored = db.get(Order, order.id)
    assert [h["status"] for h in stored.status_history] == [
        "confirmed", "preparing", "ready", "out_for_delivery", "delivered",
    ]
    assert stored.status_history[-1]["note"] == "Status updated to delivered"

    with pytest.raises(IllegalTransition):
        orders.transition_status(db, order.id, "confirmed", None, admin.id)


def test_cancel_from_any_non_terminal_state(db, customer, admin, margherita):
    order = place(db, customer, margherita)
    orders.transition_status(db, order.id, "preparing", None, admin.id)
    orders.transition_status(db, order.id, "cancelled", "Customer called", admin.id)

    with pytest.raises(IllegalTransition):
        orders.transition_status(db, order.id, "preparing", None, admin.id)


def test_takeaway_ready_to_delivered(db, customer, admin, margherita):
    order = place(db, customer, margherita, delivery_fee=0, delivery_type="takeaway")
    orders.transition_status(db, order.id, "preparing", None, admin.id)
    orders.transition_status(db, order.id, "ready", None, admin.id)
    orders.transition_status(db, order.id, "delivered", "Picked up", admin.id)
    assert db.get(Order, order.id).status == "delivered"


def test_lax_mode_allows_any_known_status(db, customer, admin, margherita):
    order = place(db, customer, margherita)
    orders.transition_status(db, order.id, "delivered", None, admin.id, strict=False)
    orders.transition_status(db, order.id, "confirmed", None, admin.id, strict=False)
    assert db.get(Order, order.id).status == "confirmed"


def test_unknown_status_and_missing_order(db, customer, admin, margherita):
    order = place(db, customer, margherita)
    with pytest.raises(InvalidStatus):
        orders.transition_status(db, order.id, "shipped", None, admin.id)
    with pytest.raises(NotFound):
        orders.transition_status(db, "0" * 24, "preparing", None, admin.id)


def test_delete_order_logs_snapshot(db, customer, admin, margherita, monkeypatch):
    recorder = Recorder()
    monkeypatch.setattr(orders, "security_event", recorder)
    order = place(db, customer, margherita)

    snapshot = orders.delete_order(db, order.id, admin.id)

    assert db.get(Order, order.id) is None
    assert snapshot["total"] == 22.00
    assert recorder.events[-1][0] == "Order deleted by admin"
    assert recorder.events[-1][1]["order"]["customer"] == customer.id


def test_admin_create_order(db, customer, admin, margherita):
    payload = order_payload(margherita, customerId=customer.id, note="Phone order")
    order = orders.admin_create_order(db, admin.id, payload, FEE)

    assert order.customer_id == customer.id
    assert order.payment_status == "pending"
    assert order.payment_method == "cash"
    assert order.status_history[0]["note"] == "Phone order"


@pytest.mark.parametrize("field, value", [
    ("paymentInfo", "x"),
    ("deliveryInfo", ["Main Street"]),
    ("promoCode", {"code": "PIZZA10"}),
    ("paymentMethod", 42),
])
def test_malformed_order_fields_are_rejected(db, customer, margherita, field, value):
    with pytest.raises(ValidationFailed) as exc:
        place(db, customer, margherita, **{field: value})

    assert exc.value.extra["errors"][0]["field"] == field
    assert db.query(Order).count() == 0


def test_non_object_payload_is_rejected(db, customer, admin):
    with pytest.raises(ValidationFailed):
        orders.create_order(db, customer.id, [1], FEE)
    with pytest.raises(ValidationFailed):
        orders.admin_create_order(db, admin.id, "order", FEE)


@pytest.mark.parametrize("payment_status", ["settled", {"state": "paid"}, "p" * 40])
def test_admin_create_order_rejects_unknown_payment_status(db, customer, admin, margherita, payment_status):
    payload = order_payload(margherita, customerId=customer.id, payment_status=payment_status)
    with pytest.raises(ValidationFailed) as exc:
        orders.admin_create_order(db, admin.id, payload, FEE)

    assert exc.value.extra["errors"][0]["field"] == "payment_status"
    assert db.query(Order).count() == 0


def test_admin_create_order_accepts_known_payment_status(db, customer, admin, margherita):
    payload = order_payload(margherita, customerId=customer.id, payment_status="paid")
    order = orders.admin_create_order(db, admin.id, payload, FEE)
    assert order.payment_status == "paid"


def test_admin_create_order_requires_fields(db, admin, margherita):
    with pytest.raises(ValidationFailed):
        orders.admin_create_order(db, admin.id, {"items": []}, FEE)
    with pytest.raises(NotFound):
        orders.admin_create_order(db, admin.id, order_payload(margherita, customerId="0" * 24), FEE)


def test_customer_order_scoping(db, customer, other_customer, margherita):
    order = place(db, customer, margherita)
    assert orders.get_customer_order(db, customer.id, order.id).id == order.id
    with pytest.raises(NotFound):
        orders.get_customer_order(db, other_customer.id, order.id)


def test_order_stats(db, customer, margherita):
    place(db, customer, margherita)
    place(db, customer, margherita, quantity=1)
    make_user("carol@example.com")

    data = orders.order_stats(db)
    assert data["stats"]["totalOrders"] == 2
    assert data["stats"]["pendingOrders"] == 2
    assert data["stats"]["totalRevenue"] == 34.00
    assert data["stats"]["totalCustomers"] == 2
    assert data["recentOrders"][0]["customer"]["email"] == customer.email
