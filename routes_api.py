from flask import Blueprint, g, jsonify, request

from auth import admin_required
from backoffice import create_product, delete_product, get_product, list_products, update_product
from payloads import json_body
from sql_db import SessionLocal

api = Blueprint("api", __name__, url_prefix="/api")


@api.get("/products")
def get_menu():
    category = request.args.get("category", "").strip() or None
    with SessionLocal() as s:
        items = list_products(s, category)
    return jsonify(items)


@api.get("/products/all")
@admin_required
def get_all_products():
    category = request.args.get("category", "").strip() or None
    with SessionLocal() as s:
        items = list_products(s, category, include_unavailable=True)
    return jsonify(items)


@api.get("/products/<product_id>")
def get_menu_item(product_id: str):
    with SessionLocal() as s:
        item = get_product(s, product_id)
    return jsonify(item.to_dict())


@api.post("/products")
@admin_required
def create_menu():
    data = json_body()
    with SessionLocal() as s:
        item = create_product(s, g.user_id, data)
    return jsonify({"message": "Product created.", "product": item}), 201


@api.put("/products/<product_id>")
@admin_required
def update_menu(product_id: str):
    data = json_body()
    with SessionLocal() as s:
        item = update_product(s, g.user_id, product_id, data)
    return jsonify({"message": "Product updated.", "product": item})


@api.delete("/products/<product_id>")
@admin_required
def delete_menu(product_id: str):
    with SessionLocal() as s:
        delete_product(s, g.user_id, product_id)
    return jsonify({"message": "Product deleted."})
