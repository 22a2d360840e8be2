"""
Cart store.

The cart lives in a mutable mapping (the Flask session in the app). It is
validated when loaded and written back after every change. load_cart_items()
is pure so the stale-data rules can be tested without any storage.
"""
import json
import logging

from models import is_object_id

logger = logging.getLogger(__name__)

CART_KEY = "cart_items"


def is_valid_cart_item(item) -> bool:
    if not isinstance(item, dict):
        return False
    quantity = item.get("quantity")
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        return False
    return is_object_id(item.get("_id") or item.get("id"))


def load_cart_items(raw) -> list:
    """
    Parse persisted cart data. Any stale entry (numeric or malformed product
    id) clears the whole cart, as does unparsable data.
    """
    if raw is None or raw == "":
        return []

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            logger.warning("Failed to parse cart data; cart cleared")
            return []

    if not isinstance(raw, list):
        return []

    if not all(is_valid_cart_item(item) for item in raw):
        logger.warning("Stale cart data detected and cleared")
        return []

    return [dict(item) for item in raw]


def _line_key(item: dict) -> tuple:
    return (item.get("_id") or item.get("id"), item.get("selectedSize"), item.get("selectedCrust"))


class CartStore:
    def __init__(self, storage, key: str = CART_KEY):
        self.storage = storage
        self.key = key
        self.items = load_cart_items(storage.get(key))
        self._persist()

    def _persist(self) -> None:
        self.items = [i for i in self.items if is_valid_cart_item(i)]
        self.storage[self.key] = json.dumps(self.items)

    def _find(self, product_id: str, size=None, crust=None):
        for item in self.items:
            if _line_key(item) == (product_id, size, crust):
                return item
        return None

    def add(self, product: dict, size=None, crust=None) -> bool:
        product_id = product.get("_id") or product.get("id")
        if not is_object_id(product_id):
            logger.error("Cannot add invalid product to cart: %r", product_id)
            return False

        existing = self._find(product_id, size, crust)
        if existing:
            existing["quantity"] += 1
        else:
            self.items.append({
                "_id": product_id,
                "name": product.get("name"),
                "image": product.get("image"),
                "price": product.get("price"),
                "selectedSize": size,
                "selectedCrust": crust,
                "quantity": 1,
            })
        self._persist()
        return True

    def remove(self, product_id: str, size=None, crust=None) -> None:
        self.items = [i for i in self.items if _line_key(i) != (product_id, size, crust)]
        self._persist()

    def update_quantity(self, product_id: str, size=None, crust=None, delta: int = 0) -> None:
        item = self._find(product_id, size, crust)
        if item and item["quantity"] + delta > 0:
            item["quantity"] += delta
            self._persist()

    def clear(self) -> None:
        self.items = []
        self._persist()

    @property
    def total(self) -> float:
        return round(sum(float(i.get("price") or 0) * i["quantity"] for i in self.items), 2)

    @property
    def count(self) -> int:
        return sum(i["quantity"] for i in self.items)

    def to_dict(self) -> dict:
        return {"items": self.items, "total": self.total, "count": self.count}
