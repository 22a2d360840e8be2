import re
import secrets
from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import JSON, Boolean, DateTime, Float, String, Text

OBJECT_ID_RE = re.compile(r"^[a-f\d]{24}$", re.IGNORECASE)


def new_object_id() -> str:
    # 24 hex chars, same shape the storefront expects for product/order ids
    return secrets.token_hex(12)


def is_object_id(value) -> bool:
    return isinstance(value, str) and bool(OBJECT_ID_RE.match(value))


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    full_name: Mapped[str] = mapped_column(String(100), default="", nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    role: Mapped[str] = mapped_column(String(20), default="customer", nullable=False)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # set together on block, cleared together on unblock
    is_blocked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    blocked_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    blocked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    blocked_by: Mapped[str | None] = mapped_column(String(24), nullable=True)

    address: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    # masked cards only: last4/brand/expiry/card_holder/token
    saved_cards: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    last_login: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_verified": self.is_verified,
            "is_blocked": self.is_blocked,
            "blocked_reason": self.blocked_reason,
            "blocked_at": _iso(self.blocked_at),
            "blocked_by": self.blocked_by,
            "address": self.address or {},
            "last_login": _iso(self.last_login),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    category: Mapped[str] = mapped_column(String(60), nullable=False)
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)
    price: Mapped[float] = mapped_column(Float, nullable=False)
    is_available: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # store filename like "margherita.jpg"
    image: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self) -> dict:
        return {
            "_id": self.id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "price": self.price,
            "is_available": self.is_available,
            "image": self.image,
        }


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String(24), primary_key=True, default=new_object_id)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True, nullable=False)
    # reference, not a foreign key: orders outlive deleted accounts
    customer_id: Mapped[str] = mapped_column(String(24), index=True, nullable=False)

    # line items: product, product_snapshot, quantity, customization, unit_price, total_price
    items: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    subtotal: Mapped[float] = mapped_column(Float, nullable=False)
    delivery_fee: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    total: Mapped[float] = mapped_column(Float, nullable=False)

    delivery_type: Mapped[str] = mapped_column(String(20), default="delivery", nullable=False)
    delivery_address: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    status: Mapped[str] = mapped_column(String(30), default="confirmed", nullable=False)
    # append-only: {status, timestamp, note}
    status_history: Mapped[list] = mapped_column(JSON, default=list, nullable=False)

    payment_status: Mapped[str] = mapped_column(String(20), default="pending", nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), default="card", nullable=False)
    promo_code: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    estimated_delivery_time: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)

    def to_dict(self, customer: dict | None = None) -> dict:
        return {
            "_id": self.id,
            "order_number": self.order_number,
            "customer": customer if customer is not None else self.customer_id,
            "items": self.items,
            "subtotal": self.subtotal,
            "delivery_fee": self.delivery_fee,
            "total": self.total,
            "delivery_type": self.delivery_type,
            "delivery_address": self.delivery_address,
            "status": self.status,
            "status_history": self.status_history,
            "payment_status": self.payment_status,
            "payment_method": self.payment_method,
            "estimated_delivery_time": _iso(self.estimated_delivery_time),
            "createdAt": _iso(self.created_at),
            "updatedAt": _iso(self.updated_at),
        }
