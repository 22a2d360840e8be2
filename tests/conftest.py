import pytest

import sql_db
from app import create_app
from auth import hash_password
from config import Config
from models import Product, User
from sql_db import SessionLocal


def make_config(tmp_path, **overrides):
    attrs = {
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'test.db'}",
        "LOG_TO_FILE": False,
        "LOG_LEVEL": "WARNING",
        "AUDIT_TO_FIRESTORE": False,
        "DELIVERY_FEE": 2.00,
        "DELIVERY_FEE_MODE": "fixed",
        "PRICE_TOTAL_EPSILON": 0.01,
        "MAX_ACTIVE_ORDERS": 5,
        "ESTIMATED_DELIVERY_MINUTES": 45,
        "STRICT_STATUS_TRANSITIONS": True,
        "PROMO_MAX_USES_PER_CUSTOMER": 1,
        "DEFAULT_PAGE_LIMIT": 20,
        "MAX_PAGE_LIMIT": 100,
    }
    attrs.update(overrides)
    return type("TestConfig", (Config,), attrs)


@pytest.fixture
def app(tmp_path):
    app = create_app(make_config(tmp_path))
    yield app
    sql_db.engine.dispose()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    with SessionLocal() as s:
        yield s


def make_user(email, role="customer", full_name="Test User", password="password123", **kw):
    with SessionLocal() as s:
        u = User(email=email, role=role, full_name=full_name, password_hash=hash_password(password), **kw)
        s.add(u)
        s.commit()
        return u


def make_product(name, price, category="Pizza", is_available=True):
    with SessionLocal() as s:
        p = Product(name=name, price=price, category=category, is_available=is_available,
                    description=f"{name} description", image=f"{name.lower()}.jpg")
        s.add(p)
        s.commit()
        return p


@pytest.fixture
def customer(app):
    return make_user("alice@example.com", full_name="Alice Customer")


@pytest.fixture
def other_customer(app):
    return make_user("bob@example.com", full_name="Bob Customer")


@pytest.fixture
def admin(app):
    return make_user("admin@example.com", role="admin", full_name="Main Admin")


@pytest.fixture
def other_admin(app):
    return make_user("second.admin@example.com", role="admin", full_name="Second Admin")


@pytest.fixture
def margherita(app):
    return make_product("Margherita", 10.00)


@pytest.fixture
def pepperoni(app):
    return make_product("Pepperoni", 12.50)


@pytest.fixture
def sold_out(app):
    return make_product("Seasonal", 9.00, is_available=False)


def login(client, user):
    with client.session_transaction() as sess:
        sess["user_id"] = user.id
    return client


@pytest.fixture
def customer_client(app, customer):
    return login(app.test_client(), customer)


@pytest.fixture
def admin_client(app, admin):
    return login(app.test_client(), admin)


def order_payload(product, price=None, quantity=2, subtotal=None, delivery_fee=2.00, total=None,
                  delivery_type="delivery", **extra):
    price = product.price if price is None else price
    subtotal = round(price * quantity, 2) if subtotal is None else subtotal
    total = round(subtotal + delivery_fee, 2) if total is None else total
    payload = {
        "items": [{
            "_id": product.id,
            "name": product.name,
            "price": price,
            "quantity": quantity,
            "selectedSize": "Large",
            "selectedCrust": "Thin",
        }],
        "subtotal": subtotal,
        "deliveryFee": delivery_fee,
        "total": total,
        "deliveryType": delivery_type,
        "deliveryInfo": {
            "no": "12",
            "street": "Main Street",
            "city": "Colombo",
            "province": "Western",
            "zipCode": "00100",
            "contact1": "0771234567",
        },
    }
    payload.update(extra)
    return payload


class Recorder:
    """Stands in for audit.security_event and keeps the messages."""

    def __init__(self):
        self.events = []

    def __call__(self, message, level=None, **context):
        self.events.append((message, context))

    @property
    def messages(self):
        return [m for m, _ in self.events]
