import os

# Settings are read at import time, so they must be in place before the app loads
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["RATE_LIMIT_REQUESTS"] = "1000"
os.environ["WEBHOOK_URLS"] = ""

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient

from autoplux import auth, models
from autoplux.database import Base, SessionLocal, engine
from autoplux.main import app
from autoplux.rate_limit import limiter


@pytest.fixture(autouse=True)
def fresh_database():
    """Every test starts from empty tables and an empty rate limiter."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    limiter.reset()
    limiter.limit = 1000
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def make_user(db):
    """Create a user, plus the provider profile matching its role."""
    counter = {"n": 0}

    def _make_user(role: str = "BUYER", name: str = None, phone: str = None, city: str = "Lagos") -> models.User:
        counter["n"] += 1
        user = models.User(
            name=name or f"{role.title()} {counter['n']}",
            email=f"{role.lower()}{counter['n']}@example.com",
            password_hash=auth.get_password_hash("password123"),
            role=role,
            phone=phone,
            is_active=True,
        )
        db.add(user)
        db.flush()
        if role == "SUPPLIER":
            db.add(models.SupplierProfile(user_id=user.id, business_name=f"Parts Hub {counter['n']}", city=city))
        elif role == "MECHANIC":
            db.add(models.MechanicProfile(
                user_id=user.id, business_name=f"Fix It {counter['n']}", phone="08030000000", city=city
            ))
        elif role == "LOGISTICS":
            db.add(models.LogisticsProfile(
                user_id=user.id, business_name=f"Swift Movers {counter['n']}", phone="08040000000",
                city=city, vehicle_type="Van",
            ))
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_product(db):
    def _make_product(supplier: models.User, name: str = "Brake Pad", price: str = "1000", stock: int = 5) -> models.Product:
        product = models.Product(
            supplier_id=supplier.supplier_profile.id,
            name=name,
            price=Decimal(price),
            stock=stock,
        )
        db.add(product)
        db.commit()
        db.refresh(product)
        return product

    return _make_product


@pytest.fixture
def headers():
    def _headers(user: models.User) -> dict:
        return {"Authorization": f"Bearer {auth.token_for(user)}"}

    return _headers


@pytest.fixture
def buyer(make_user):
    return make_user("BUYER", name="Ada Buyer", phone="08011111111")


@pytest.fixture
def supplier(make_user):
    return make_user("SUPPLIER")


@pytest.fixture
def admin(make_user):
    return make_user("ADMIN")


@pytest.fixture
def order_payload():
    def _order_payload(*lines, payment_method: str = "CARD", **extra) -> dict:
        payload = {
            "items": [
                {"productId": product.id, "quantity": quantity, "price": str(product.price)}
                for product, quantity in lines
            ],
            "shippingAddress": {
                "fullName": "Ada Buyer",
                "phone": "08011111111",
                "address": "12 Allen Avenue",
                "city": "Ikeja",
                "state": "Lagos",
            },
            "paymentMethod": payment_method,
        }
        payload.update(extra)
        return payload

    return _order_payload


@pytest.fixture
def place_order(client, headers, order_payload):
    """Place an order through the API and return its id."""
    def _place_order(user: models.User, *lines, **kwargs) -> str:
        response = client.post("/orders", json=order_payload(*lines, **kwargs), headers=headers(user))
        assert response.status_code == 201, response.text
        return response.json()["orderId"]

    return _place_order
