"""
Resolve a caller's relationship to an order or booking.

The result is a closed set of tags consumed by the transition tables in
``validators``.
"""
import enum
from typing import Optional, Set

from . import models


class Relationship(str, enum.Enum):
    ADMIN = "ADMIN"
    SUPPLIER = "SUPPLIER"
    BUYER = "BUYER"
    PROVIDER = "PROVIDER"
    CUSTOMER = "CUSTOMER"


def supplier_user_ids(order: models.Order) -> Set[int]:
    """User ids of every supplier with at least one item on the order."""
    return {
        item.product.supplier.user_id
        for item in order.items
        if item.product is not None and item.product.supplier is not None
    }


def order_relationship(order: models.Order, user: models.User) -> Optional[Relationship]:
    """
    Admin takes precedence over supplier, supplier over buyer. A supplier of
    any item on the order counts as the order's supplier.
    """
    if user.role == models.Role.ADMIN.value:
        return Relationship.ADMIN
    if user.id in supplier_user_ids(order):
        return Relationship.SUPPLIER
    if order.user_id == user.id:
        return Relationship.BUYER
    return None


def _profile_id(user: models.User, attr: str) -> Optional[str]:
    profile = getattr(user, attr)
    return profile.id if profile is not None else None


def mechanic_booking_relationship(
    booking: models.MechanicBooking, user: models.User
) -> Optional[Relationship]:
    if user.role == models.Role.ADMIN.value:
        return Relationship.ADMIN
    if booking.mechanic_id == _profile_id(user, "mechanic_profile"):
        return Relationship.PROVIDER
    if booking.user_id == user.id:
        return Relationship.CUSTOMER
    return None


def logistics_booking_relationship(
    booking: models.LogisticsBooking, user: models.User
) -> Optional[Relationship]:
    if user.role == models.Role.ADMIN.value:
        return Relationship.ADMIN
    if booking.driver_id == _profile_id(user, "logistics_profile"):
        return Relationship.PROVIDER
    if booking.user_id == user.id:
        return Relationship.CUSTOMER
    return None
