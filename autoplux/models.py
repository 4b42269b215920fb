"""
SQLAlchemy ORM models for the marketplace.

Defines the database schema for users and provider profiles, the product
catalogue, orders, service bookings, notifications and the supplier wallet
ledger.
"""
import enum
import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .database import Base


def generate_id() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    BUYER = "BUYER"
    SUPPLIER = "SUPPLIER"
    MECHANIC = "MECHANIC"
    LOGISTICS = "LOGISTICS"
    ADMIN = "ADMIN"


class OrderStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    PENDING = "PENDING"
    PAID = "PAID"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class MechanicBookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class LogisticsBookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_TRANSIT = "IN_TRANSIT"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


BANK_TRANSFER = "BANK TRANSFER"
CASH_ON_DELIVERY = "CASH_ON_DELIVERY"


class User(Base):
    """
    User model representing an account on the marketplace.

    Attributes:
        id (int): Primary key, auto-incremented user ID
        name (str): User's full name
        email (str): User's email address (unique)
        password_hash (str): Hashed password
        role (str): One of BUYER, SUPPLIER, MECHANIC, LOGISTICS, ADMIN
        is_active (bool): Whether the user account is active
        created_at (datetime): Timestamp when the user was created
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    role = Column(String, default=Role.BUYER.value, nullable=False)
    phone = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    supplier_profile = relationship("SupplierProfile", back_populates="user", uselist=False)
    mechanic_profile = relationship("MechanicProfile", back_populates="user", uselist=False)
    logistics_profile = relationship("LogisticsProfile", back_populates="user", uselist=False)


class SupplierProfile(Base):
    __tablename__ = "supplier_profiles"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    business_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    city = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="supplier_profile")
    products = relationship("Product", back_populates="supplier")


class MechanicProfile(Base):
    __tablename__ = "mechanic_profiles"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    business_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    city = Column(String, nullable=True)
    rating = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="mechanic_profile")


class LogisticsProfile(Base):
    __tablename__ = "logistics_profiles"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    business_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    city = Column(String, nullable=True)
    vehicle_type = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    user = relationship("User", back_populates="logistics_profile")


class Product(Base):
    """
    Product listed by a supplier.

    Attributes:
        id (str): Primary key
        supplier_id (str): Owning supplier profile
        name (str): Display name
        price (Decimal): Current unit price
        stock (int): Units available, never negative
        created_at (datetime): Timestamp when the product was listed
    """
    __tablename__ = "products"
    __table_args__ = (CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),)

    id = Column(String, primary_key=True, default=generate_id)
    supplier_id = Column(String, ForeignKey("supplier_profiles.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)
    stock = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=datetime.utcnow)

    supplier = relationship("SupplierProfile", back_populates="products")


class Order(Base):
    """
    Order model representing a buyer's purchase.

    Attributes:
        id (str): Primary key
        tracking_id (str): Unique human-readable tracking ID ("EDM-...")
        user_id (int): ID of the buyer who placed the order
        total (Decimal): Sum of the snapshotted line totals
        status (str): PENDING, CONFIRMED, SHIPPED, DELIVERED or CANCELLED
        payment_method (str): Payment method chosen at checkout
        payment_status (str): PENDING, PAID, SUCCESS or FAILED
        paid_at (datetime): When payment was confirmed
        created_at (datetime): Timestamp when the order was created
        updated_at (datetime): Timestamp of the last status change
    """
    __tablename__ = "orders"

    id = Column(String, primary_key=True, index=True, default=generate_id)
    tracking_id = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    total = Column(Numeric(12, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default=OrderStatus.PENDING.value)
    payment_method = Column(String, nullable=False)
    payment_status = Column(String, nullable=False, default=PaymentStatus.PENDING.value)
    paid_at = Column(DateTime, nullable=True)
    delivery_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User")
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan")
    shipping_address = relationship(
        "ShippingAddress", back_populates="order", uselist=False, cascade="all, delete-orphan"
    )
    service_links = relationship("OrderServiceLink", back_populates="order", cascade="all, delete-orphan")


class OrderItem(Base):
    """
    Order line item. `price` is the unit price at purchase time and is never
    recomputed from the product.
    """
    __tablename__ = "order_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    product_id = Column(String, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    price = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class ShippingAddress(Base):
    __tablename__ = "shipping_addresses"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), unique=True, nullable=False)
    full_name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    state = Column(String, nullable=True)

    order = relationship("Order", back_populates="shipping_address")


class MechanicBooking(Base):
    """Vehicle service booked with a mechanic. Tracked as "MECH-<id>"."""
    __tablename__ = "mechanic_bookings"

    id = Column(String, primary_key=True, default=generate_id)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    mechanic_id = Column(String, ForeignKey("mechanic_profiles.id"), nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True)
    vehicle_make = Column(String, nullable=False)
    vehicle_model = Column(String, nullable=False)
    vehicle_year = Column(Integer, nullable=True)
    plate_number = Column(String, nullable=True)
    service_type = Column(String, nullable=False)
    custom_service = Column(String, nullable=True)
    additional_notes = Column(Text, nullable=True)
    date = Column(String, nullable=False)
    time = Column(String, nullable=False)
    address = Column(String, nullable=False)
    city = Column(String, nullable=False)
    estimated_price = Column(Numeric(12, 2), nullable=True)
    status = Column(String, nullable=False, default=MechanicBookingStatus.PENDING.value)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User")
    mechanic = relationship("MechanicProfile")


class LogisticsBooking(Base):
    """Package delivery booked with a logistics provider."""
    __tablename__ = "logistics_bookings"

    id = Column(String, primary_key=True, default=generate_id)
    tracking_number = Column(String, unique=True, index=True, nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    driver_id = Column(String, ForeignKey("logistics_profiles.id"), nullable=False, index=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=True)
    package_type = Column(String, nullable=False)
    pickup_address = Column(String, nullable=False)
    pickup_city = Column(String, nullable=False)
    delivery_address = Column(String, nullable=False)
    delivery_city = Column(String, nullable=False)
    recipient_name = Column(String, nullable=False)
    recipient_phone = Column(String, nullable=True)
    current_location = Column(String, nullable=True)
    estimated_price = Column(Numeric(12, 2), nullable=True)
    status = Column(String, nullable=False, default=LogisticsBookingStatus.PENDING.value)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User")
    driver = relationship("LogisticsProfile")


class OrderServiceLink(Base):
    """
    Link between an order and a mechanic or logistics booking. At most one
    link of each kind per order (checked before insert).
    """
    __tablename__ = "order_service_links"

    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(String, ForeignKey("orders.id"), nullable=False, index=True)
    mechanic_booking_id = Column(String, ForeignKey("mechanic_bookings.id"), nullable=True)
    logistics_booking_id = Column(String, ForeignKey("logistics_bookings.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    order = relationship("Order", back_populates="service_links")
    mechanic_booking = relationship("MechanicBooking")
    logistics_booking = relationship("LogisticsBooking")


class Notification(Base):
    """
    In-app notification. Rows are append-only; only `read` changes afterwards.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    title = Column(String, nullable=False)
    message = Column(Text, nullable=False)
    link = Column(String, nullable=True)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Wallet(Base):
    """
    Supplier wallet. `balance` is a running total kept in step with the
    transaction rows written alongside it.
    """
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    balance = Column(Numeric(14, 2), nullable=False, default=0)
    currency = Column(String, nullable=False, default="NGN")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    transactions = relationship("WalletTransaction", back_populates="wallet")


class WalletTransaction(Base):
    __tablename__ = "wallet_transactions"
    __table_args__ = (UniqueConstraint("reference", name="uq_wallet_transactions_reference"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    type = Column(String, nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    description = Column(String, nullable=False)
    reference = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    wallet = relationship("Wallet", back_populates="transactions")


class Withdrawal(Base):
    __tablename__ = "withdrawals"

    id = Column(Integer, primary_key=True, autoincrement=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)
    amount = Column(Numeric(14, 2), nullable=False)
    bank_code = Column(String, nullable=False)
    account_number = Column(String, nullable=False)
    status = Column(String, nullable=False, default="pending")
    reference = Column(String, unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
