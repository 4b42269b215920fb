"""
Pydantic schemas for request/response validation.

JSON bodies use camelCase keys; snake_case field names are accepted on input
as well.
"""
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ---------------------------------------------------------------------------
# Users and profiles
# ---------------------------------------------------------------------------

class UserRegister(CamelModel):
    """Schema for user registration with password."""
    name: str
    email: EmailStr
    password: str = Field(..., min_length=8, description="Password must be at least 8 characters")
    role: str = "BUYER"
    phone: Optional[str] = None

    @field_validator("role")
    @classmethod
    def role_is_public(cls, value: str) -> str:
        value = value.upper()
        if value not in ("BUYER", "SUPPLIER", "MECHANIC", "LOGISTICS"):
            raise ValueError("role must be one of BUYER, SUPPLIER, MECHANIC, LOGISTICS")
        return value


class UserLogin(CamelModel):
    email: EmailStr
    password: str


class Token(CamelModel):
    access_token: str
    token_type: str = "bearer"


class User(CamelModel):
    id: int
    name: str
    email: EmailStr
    role: str
    phone: Optional[str] = None
    is_active: bool
    created_at: datetime


class ProfileCreate(CamelModel):
    """Provider profile for the caller's role (supplier, mechanic or logistics)."""
    business_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    city: Optional[str] = None
    vehicle_type: Optional[str] = None


class Profile(CamelModel):
    id: str
    user_id: int
    business_name: str
    phone: Optional[str] = None
    city: Optional[str] = None


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1)
    price: Decimal = Field(..., ge=0)
    stock: int = Field(0, ge=0)


class ProductUpdate(CamelModel):
    """Schema for updating an existing product. All fields are optional."""
    name: Optional[str] = None
    price: Optional[Decimal] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)


class Product(CamelModel):
    id: str
    supplier_id: str
    name: str
    price: Decimal
    stock: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

class OrderItemIn(CamelModel):
    """Schema for an order line item."""
    product_id: str
    quantity: int = Field(..., description="Quantity ordered")
    price: Decimal = Field(..., description="Unit price at purchase")


class ShippingAddressIn(CamelModel):
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: Optional[str] = None


class OrderCreate(CamelModel):
    """Schema for placing a new order."""
    items: List[OrderItemIn] = Field(default_factory=list)
    total: Optional[Decimal] = None
    shipping_address: Optional[ShippingAddressIn] = None
    payment_method: str = Field(..., min_length=1)
    tracking_id: Optional[str] = None
    delivery_notes: Optional[str] = None


class OrderCreated(CamelModel):
    order_id: str
    tracking_id: str


class OrderItem(CamelModel):
    product_id: str
    quantity: int
    price: Decimal


class ShippingAddress(CamelModel):
    full_name: str
    phone: Optional[str] = None
    address: str
    city: str
    state: Optional[str] = None


class Order(CamelModel):
    """Schema for order responses."""
    id: str
    tracking_id: str
    user_id: int
    total: Decimal
    status: str
    payment_method: str
    payment_status: str
    paid_at: Optional[datetime] = None
    delivery_notes: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    shipping_address: Optional[ShippingAddress] = None
    created_at: datetime
    updated_at: datetime


class StatusUpdate(CamelModel):
    status: str = Field(..., min_length=1)
    current_location: Optional[str] = None


class OrderStatusResult(CamelModel):
    order: Order
    message: str


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

class MechanicBookingCreate(CamelModel):
    mechanic_id: str
    vehicle_make: str = Field(..., min_length=1)
    vehicle_model: str = Field(..., min_length=1)
    vehicle_year: Optional[int] = None
    plate_number: Optional[str] = None
    service_type: str = Field(..., min_length=1)
    custom_service: Optional[str] = None
    additional_notes: Optional[str] = None
    date: str = Field(..., pattern=r"^\d{4}-\d{2}-\d{2}$")
    time: str = Field(..., pattern=r"^\d{2}:\d{2}$")
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    estimated_price: Optional[Decimal] = Field(None, ge=0)


class MechanicBooking(CamelModel):
    id: str
    user_id: int
    mechanic_id: str
    order_id: Optional[str] = None
    vehicle_make: str
    vehicle_model: str
    vehicle_year: Optional[int] = None
    plate_number: Optional[str] = None
    service_type: str
    custom_service: Optional[str] = None
    date: str
    time: str
    address: str
    city: str
    estimated_price: Optional[Decimal] = None
    status: str
    created_at: datetime
    updated_at: datetime


class LogisticsBookingCreate(CamelModel):
    driver_id: str
    package_type: str = Field(..., min_length=1)
    pickup_address: str = Field(..., min_length=1)
    pickup_city: str = Field(..., min_length=1)
    delivery_address: str = Field(..., min_length=1)
    delivery_city: str = Field(..., min_length=1)
    recipient_name: str = Field(..., min_length=1)
    recipient_phone: Optional[str] = None
    estimated_price: Optional[Decimal] = Field(None, ge=0)


class LogisticsBooking(CamelModel):
    id: str
    tracking_number: str
    user_id: int
    driver_id: str
    order_id: Optional[str] = None
    package_type: str
    pickup_address: str
    pickup_city: str
    delivery_address: str
    delivery_city: str
    recipient_name: str
    recipient_phone: Optional[str] = None
    current_location: Optional[str] = None
    estimated_price: Optional[Decimal] = None
    status: str
    created_at: datetime
    updated_at: datetime


class ServiceLinkCreate(CamelModel):
    booking_id: str
    type: str

    @field_validator("type")
    @classmethod
    def known_type(cls, value: str) -> str:
        value = value.upper()
        if value not in ("MECHANIC", "LOGISTICS"):
            raise ValueError("type must be MECHANIC or LOGISTICS")
        return value


class ServiceLink(CamelModel):
    id: int
    order_id: str
    mechanic_booking_id: Optional[str] = None
    logistics_booking_id: Optional[str] = None
    created_at: datetime


# ---------------------------------------------------------------------------
# Notifications and wallet
# ---------------------------------------------------------------------------

class Notification(CamelModel):
    id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None
    read: bool
    created_at: datetime


class NotificationList(CamelModel):
    notifications: List[Notification]
    unread_count: int


class NotificationsMarkRead(CamelModel):
    notification_id: Optional[int] = None
    mark_all_read: bool = False


class Wallet(CamelModel):
    id: int
    user_id: int
    balance: Decimal
    currency: str


class WalletTransaction(CamelModel):
    id: int
    type: str
    amount: Decimal
    description: str
    reference: str
    created_at: datetime


class WithdrawalCreate(CamelModel):
    amount: Decimal = Field(..., gt=0)
    bank_code: str = Field(..., min_length=1)
    account_number: str = Field(..., min_length=10)


class Withdrawal(CamelModel):
    id: int
    amount: Decimal
    bank_code: str
    account_number: str
    status: str
    reference: str
    created_at: datetime
