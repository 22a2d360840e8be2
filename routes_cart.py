from flask import Blueprint, jsonify, session

from auth import browse_allowed
from backoffice import get_product
from cart import CartStore
from errors import NotFound
from payloads import json_body
from sql_db import SessionLocal

cart_bp = Blueprint("cart", __name__, url_prefix="/api/cart")


def _line_args(data: dict) -> tuple:
    return data.get("productId"), data.get("size"), data.get("crust")


@cart_bp.get("")
@browse_allowed
def cart_view():
    return jsonify(CartStore(session).to_dict())


@cart_bp.post("/items")
@browse_allowed
def cart_add():
    product_id, size, crust = _line_args(json_body())

    with SessionLocal() as s:
        product = get_product(s, str(product_id))
    if not product.is_available:
        raise NotFound("Product not found")

    cart = CartStore(session)
    cart.add(product.to_dict(), size, crust)
    return jsonify(cart.to_dict()), 201


@cart_bp.patch("/items")
@browse_allowed
def cart_update():
    data = json_body()
    product_id, size, crust = _line_args(data)
    try:
        delta = int(data.get("delta", 0))
    except (TypeError, ValueError):
        delta = 0

    cart = CartStore(session)
    cart.update_quantity(product_id, size, crust, delta)
    return jsonify(cart.to_dict())


@cart_bp.delete("/items")
@browse_allowed
def cart_remove():
    product_id, size, crust = _line_args(json_body())
    cart = CartStore(session)
    cart.remove(product_id, size, crust)
    return jsonify(cart.to_dict())


@cart_bp.delete("")
@browse_allowed
def cart_clear():
    cart = CartStore(session)
    cart.clear()
    return jsonify(cart.to_dict())
