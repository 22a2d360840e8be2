"""
Server-side price validation for checkout.

Client-submitted prices are never trusted: every line is priced again from
the catalog, the delivery fee comes from the fee policy and the total is
recomputed. validate_order() reports problems in a ValidationResult instead of
raising; it only raises ValidationUnavailable when the catalog or the fee
policy cannot be reached, so an order is never accepted unchecked.
"""
import logging
import math
from dataclasses import dataclass, field

import requests
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from config import get_secret
from errors import ValidationUnavailable
from models import Product

logger = logging.getLogger(__name__)

DELIVERY = "delivery"
TAKEAWAY = "takeaway"
DELIVERY_TYPES = (DELIVERY, TAKEAWAY)

DEFAULT_EPSILON = 0.01


@dataclass
class PricedLine:
    product: Product
    quantity: int
    unit_price: float
    line_total: float
    size: str | None = None
    crust: str | None = None


@dataclass
class ValidationResult:
    valid: bool
    errors: list = field(default_factory=list)
    subtotal: float = 0.0
    delivery_fee: float = 0.0
    total: float = 0.0
    lines: list = field(default_factory=list)


# -----------------------
# Delivery fee policies
# -----------------------
class FixedFeePolicy:
    def __init__(self, amount: float):
        self.amount = round(float(amount), 2)

    def __call__(self, delivery_info: dict) -> float:
        return self.amount


class RemoteFeePolicy:
    """Distance-derived fee from the delivery fee function."""

    def __init__(self, url: str, timeout: float = 5.0):
        self.url = url
        self.timeout = timeout

    def __call__(self, delivery_info: dict) -> float:
        resp = requests.post(self.url, json={"address": delivery_info}, timeout=self.timeout)
        resp.raise_for_status()
        return round(float(resp.json()["fee"]), 2)


def fee_policy_from_config(config):
    if config.get("DELIVERY_FEE_MODE") == "remote":
        url = get_secret("DELIVERY_FEE_FUNCTION_URL")
        if not url:
            logger.error("DELIVERY_FEE_MODE=remote but DELIVERY_FEE_FUNCTION_URL is not set")
            raise ValidationUnavailable()
        return RemoteFeePolicy(url, float(config.get("DELIVERY_FEE_TIMEOUT", 5)))
    return FixedFeePolicy(config.get("DELIVERY_FEE", 0))


def delivery_fee_for(delivery_type: str, delivery_info: dict, fee_policy) -> float:
    if delivery_type == TAKEAWAY:
        return 0.0
    try:
        return fee_policy(delivery_info)
    except (requests.RequestException, KeyError, TypeError, ValueError) as e:
        logger.error("Delivery fee lookup failed: %s", e)
        raise ValidationUnavailable() from e


# -----------------------
# Helpers
# -----------------------
def product_ref(item: dict):
    return item.get("_id") or item.get("id")


def _money(value) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    # NaN and inf are never valid amounts
    return amount if math.isfinite(amount) else None


def _quantity(value) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if isinstance(value, int) and value > 0:
        return value
    return None


def _error(code: str, message: str, **extra) -> dict:
    return {"code": code, "message": message, **extra}


def has_delivery_address(info) -> bool:
    return isinstance(info, dict) and bool(info.get("street")) and bool(info.get("city"))


def _check_amount(errors: list, code: str, label: str, claimed, expected: float, epsilon: float) -> None:
    value = _money(claimed)
    if value is None or abs(value - expected) > epsilon:
        errors.append(_error(code, f"{label} does not match", expected=expected, received=claimed))


# -----------------------
# Validation
# -----------------------
def validate_order(db, payload: dict, fee_policy, epsilon: float = DEFAULT_EPSILON) -> ValidationResult:
    errors = []

    items = payload.get("items")
    if not isinstance(items, list) or not items:
        return ValidationResult(False, [_error("EmptyOrder", "Order must contain at least one item")])

    ids = {str(product_ref(i)) for i in items if isinstance(i, dict) and product_ref(i)}
    try:
        catalog = {p.id: p for p in db.scalars(select(Product).where(Product.id.in_(ids)))}
    except SQLAlchemyError as e:
        logger.exception("Catalog lookup failed during order validation")
        raise ValidationUnavailable() from e

    lines = []
    for item in items:
        if not isinstance(item, dict):
            errors.append(_error("InvalidItem", "Order item must be an object"))
            continue

        pid = product_ref(item)
        product = catalog.get(str(pid)) if pid else None
        if product is None or not product.is_available:
            errors.append(_error(
                "InvalidProduct",
                f"Product {item.get('name') or pid} is not available",
                productId=pid,
            ))
            continue

        quantity = _quantity(item.get("quantity"))
        if quantity is None:
            errors.append(_error("InvalidQuantity", f"Invalid quantity for {product.name}", productId=pid))
            continue

        # exact match, no rounding leniency on unit prices
        claimed = _money(item.get("price"))
        if claimed is None or claimed != product.price:
            errors.append(_error(
                "PriceMismatch",
                f"Price for {product.name} has changed",
                productId=pid,
                expected=product.price,
                received=item.get("price"),
            ))
            continue

        lines.append(PricedLine(
            product=product,
            quantity=quantity,
            unit_price=product.price,
            line_total=round(product.price * quantity, 2),
            size=item.get("selectedSize"),
            crust=item.get("selectedCrust"),
        ))

    delivery_type = payload.get("deliveryType") or DELIVERY
    delivery_info = payload.get("deliveryInfo") or {}
    if delivery_type not in DELIVERY_TYPES:
        errors.append(_error("InvalidDeliveryType", f"Unknown delivery type: {delivery_type}"))
    elif delivery_type == DELIVERY and not has_delivery_address(delivery_info):
        errors.append(_error("MissingAddress", "Delivery address is required"))

    if errors:
        return ValidationResult(False, errors)

    subtotal = round(sum(line.line_total for line in lines), 2)
    delivery_fee = delivery_fee_for(delivery_type, delivery_info, fee_policy)
    total = round(subtotal + delivery_fee, 2)

    _check_amount(errors, "SubtotalMismatch", "Subtotal", payload.get("subtotal"), subtotal, epsilon)
    _check_amount(errors, "DeliveryFeeMismatch", "Delivery fee", payload.get("deliveryFee", 0), delivery_fee, epsilon)
    _check_amount(errors, "TotalMismatch", "Total", payload.get("total"), total, epsilon)

    return ValidationResult(
        valid=not errors,
        errors=errors,
        subtotal=subtotal,
        delivery_fee=delivery_fee,
        total=total,
        lines=lines,
    )
