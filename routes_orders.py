from flask import Blueprint, current_app, g, jsonify, request

from auth import admin_required, customer_required
from orders import (
    admin_create_order,
    create_order,
    delete_order,
    get_customer_order,
    get_order,
    list_customer_orders,
    list_orders,
    order_stats,
    transition_status,
    with_customers,
)
from pagination import page_params
from payloads import json_body
from pricing import fee_policy_from_config
from sql_db import SessionLocal

orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")


# -----------------------
# Customer routes (admins cannot place orders)
# -----------------------
@orders_bp.post("")
@customer_required
def place_order():
    payload = json_body()
    cfg = current_app.config

    with SessionLocal() as s:
        order = create_order(
            s,
            g.user_id,
            payload,
            fee_policy_from_config(cfg),
            max_active=cfg["MAX_ACTIVE_ORDERS"],
            epsilon=cfg["PRICE_TOTAL_EPSILON"],
            eta_minutes=cfg["ESTIMATED_DELIVERY_MINUTES"],
            promo_max_uses=cfg["PROMO_MAX_USES_PER_CUSTOMER"],
        )

    return jsonify({
        "message": "Order placed successfully",
        "orderId": order.id,
        "orderNumber": order.order_number,
    }), 201


@orders_bp.get("/mine")
@customer_required
def my_orders():
    with SessionLocal() as s:
        orders_list = list_customer_orders(s, g.user_id)
    return jsonify([o.to_dict() for o in orders_list])


@orders_bp.get("/<order_id>")
@customer_required
def my_order(order_id: str):
    with SessionLocal() as s:
        order = get_customer_order(s, g.user_id, order_id)
    return jsonify(order.to_dict())


# -----------------------
# Admin routes
# -----------------------
@orders_bp.get("/admin/all")
@admin_required
def admin_orders():
    cfg = current_app.config
    page, limit, skip = page_params(request.args, cfg["DEFAULT_PAGE_LIMIT"], cfg["MAX_PAGE_LIMIT"])
    with SessionLocal() as s:
        data = list_orders(s, request.args.get("status"), page, limit, skip)
    return jsonify(data)


@orders_bp.get("/admin/stats")
@admin_required
def admin_stats():
    with SessionLocal() as s:
        data = order_stats(s)
    return jsonify(data)


@orders_bp.get("/admin/<order_id>")
@admin_required
def admin_order(order_id: str):
    with SessionLocal() as s:
        order = with_customers(s, [get_order(s, order_id)])[0]
    return jsonify({"order": order})


@orders_bp.patch("/<order_id>/status")
@admin_required
def admin_update_status(order_id: str):
    data = json_body()
    with SessionLocal() as s:
        order = transition_status(
            s,
            order_id,
            data.get("status"),
            data.get("note"),
            g.user_id,
            strict=current_app.config["STRICT_STATUS_TRANSITIONS"],
        )
    return jsonify({"message": "Order status updated successfully", "order": order.to_dict()})


@orders_bp.delete("/admin/<order_id>")
@admin_required
def admin_delete_order(order_id: str):
    with SessionLocal() as s:
        snapshot = delete_order(s, order_id, g.user_id)
    return jsonify({
        "message": "Order deleted successfully",
        "deletedOrder": {"id": snapshot["id"], "order_number": snapshot["order_number"]},
    })


@orders_bp.post("/admin/create")
@admin_required
def admin_manual_order():
    payload = json_body()
    cfg = current_app.config
    with SessionLocal() as s:
        order = admin_create_order(
            s, g.user_id, payload, fee_policy_from_config(cfg), epsilon=cfg["PRICE_TOTAL_EPSILON"]
        )
        data = with_customers(s, [order])[0]
    return jsonify({"message": "Order created successfully", "order": data}), 201
