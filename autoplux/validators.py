"""
Business rule validation for orders and bookings.

Holds the role-gated status transition tables and the line-item rules
applied before an order is placed.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from . import schemas
from .models import LogisticsBookingStatus, MechanicBookingStatus, OrderStatus
from .permissions import Relationship

ORDER_STATUSES = [s.value for s in OrderStatus]
MECHANIC_BOOKING_STATUSES = [s.value for s in MechanicBookingStatus]
LOGISTICS_BOOKING_STATUSES = [s.value for s in LogisticsBookingStatus]

ORDER_TERMINAL = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}
MECHANIC_TERMINAL = {MechanicBookingStatus.COMPLETED.value, MechanicBookingStatus.CANCELLED.value}
LOGISTICS_TERMINAL = {LogisticsBookingStatus.DELIVERED.value, LogisticsBookingStatus.CANCELLED.value}

# Largest value an order total column (Numeric(12, 2)) can hold
MAX_ORDER_TOTAL = Decimal("9999999999.99")

TransitionTable = Dict[Relationship, Dict[str, List[str]]]

ORDER_TRANSITIONS: TransitionTable = {
    Relationship.SUPPLIER: {
        "PENDING": ["CONFIRMED", "CANCELLED"],
        "CONFIRMED": ["SHIPPED", "CANCELLED"],
        "SHIPPED": [],
        "DELIVERED": [],
        "CANCELLED": [],
    },
    Relationship.BUYER: {
        "PENDING": ["CANCELLED"],
        "CONFIRMED": [],
        "SHIPPED": ["DELIVERED"],
        "DELIVERED": [],
        "CANCELLED": [],
    },
}

MECHANIC_BOOKING_TRANSITIONS: TransitionTable = {
    Relationship.PROVIDER: {
        "PENDING": ["CONFIRMED", "CANCELLED"],
        "CONFIRMED": ["IN_PROGRESS", "CANCELLED"],
        "IN_PROGRESS": ["COMPLETED"],
    },
    Relationship.CUSTOMER: {
        "PENDING": ["CANCELLED"],
        "CONFIRMED": ["CANCELLED"],
    },
}

LOGISTICS_BOOKING_TRANSITIONS: TransitionTable = {
    Relationship.PROVIDER: {
        "PENDING": ["CONFIRMED", "CANCELLED"],
        "CONFIRMED": ["IN_TRANSIT", "CANCELLED"],
        "IN_TRANSIT": ["DELIVERED"],
    },
    Relationship.CUSTOMER: {
        "PENDING": ["CANCELLED"],
        "CONFIRMED": ["CANCELLED"],
    },
}


def allowed_next_statuses(
    table: TransitionTable,
    statuses: List[str],
    terminal: set,
    relationship: Relationship,
    current: str,
) -> List[str]:
    """
    Statuses the actor may move to from ``current``.

    Admins may move a non-terminal record to any other status; nobody leaves
    a terminal status.
    """
    if current in terminal:
        return []
    if relationship == Relationship.ADMIN:
        return [s for s in statuses if s != current]
    return list(table.get(relationship, {}).get(current, []))


def allowed_order_statuses(relationship: Relationship, current: str) -> List[str]:
    return allowed_next_statuses(ORDER_TRANSITIONS, ORDER_STATUSES, ORDER_TERMINAL, relationship, current)


def allowed_mechanic_statuses(relationship: Relationship, current: str) -> List[str]:
    return allowed_next_statuses(
        MECHANIC_BOOKING_TRANSITIONS, MECHANIC_BOOKING_STATUSES, MECHANIC_TERMINAL, relationship, current
    )


def allowed_logistics_statuses(relationship: Relationship, current: str) -> List[str]:
    return allowed_next_statuses(
        LOGISTICS_BOOKING_TRANSITIONS, LOGISTICS_BOOKING_STATUSES, LOGISTICS_TERMINAL, relationship, current
    )


def validate_order_items(items: List[schemas.OrderItemIn]) -> Tuple[bool, str]:
    """
    Validate order items for business rules.

    Args:
        items: List of order items

    Returns:
        Tuple of (is_valid, error_message)
    """
    if not items:
        return False, "Order must contain at least one item"

    if len(items) > 100:
        return False, "Order cannot contain more than 100 items"

    product_ids = [item.product_id for item in items]
    if len(product_ids) != len(set(product_ids)):
        return False, "Order contains duplicate products"

    for item in items:
        if item.quantity <= 0:
            return False, f"Item {item.product_id}: quantity must be positive"

        if item.quantity > 10000:
            return False, f"Item {item.product_id}: quantity exceeds maximum (10000)"

        if item.price < 0:
            return False, f"Item {item.product_id}: price cannot be negative"

        if item.price > Decimal("1000000"):
            return False, f"Item {item.product_id}: price exceeds maximum (1,000,000)"

    if order_items_total(items) > MAX_ORDER_TOTAL:
        return False, "Order total exceeds maximum (9,999,999,999.99)"

    return True, ""


def order_items_total(items: List[schemas.OrderItemIn]) -> Decimal:
    return sum((Decimal(str(item.price)) * item.quantity for item in items), Decimal("0"))


def validate_order_total(items: List[schemas.OrderItemIn], claimed_total: Optional[Decimal]) -> Tuple[bool, str]:
    """
    Validate that the claimed total matches the sum of line totals.

    A missing total is accepted; the computed one is used.
    """
    if claimed_total is None:
        return True, ""

    calculated_total = order_items_total(items)

    # Allow small rounding differences (up to 0.01)
    if abs(calculated_total - Decimal(str(claimed_total))) > Decimal("0.01"):
        return False, f"Order total mismatch: calculated {calculated_total}, claimed {claimed_total}"

    return True, ""
