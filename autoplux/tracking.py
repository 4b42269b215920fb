"""
Unified tracking: resolve a public tracking identifier to an order, a
logistics booking or a mechanic booking and describe its progress.

Timelines are not stored. They are rebuilt on every call from the record's
status and timestamps, so the displayed dates are estimates except for the
steps that actually happened.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import crud, models
from .exceptions import NotFound, ValidationError

logger = logging.getLogger(__name__)

ORDER = "ORDER"
LOGISTICS = "LOGISTICS"
MECHANIC = "MECHANIC"

# Longest prefix first so "MECH" is not shadowed by a shorter entry
TRACKING_PREFIXES = (
    ("MECH", MECHANIC),
    ("EDM", ORDER),
    ("LOG", LOGISTICS),
    ("TRK", LOGISTICS),
)

ORDER_DELIVERY_DAYS = 5
LOGISTICS_DELIVERY_DAYS = 3


def resolve_tracking_type(identifier: str) -> Optional[str]:
    """Record type for a tracking identifier, matched case-insensitively."""
    upper = identifier.strip().upper()
    for prefix, kind in TRACKING_PREFIXES:
        if upper.startswith(prefix):
            return kind
    return None


def _add_days(when: datetime, days: float) -> datetime:
    # Whole days only: fractional offsets collapse onto the base date.
    return when + timedelta(days=int(days))


def _step(status: str, when: datetime, completed: bool, location: Optional[str] = None, **extra) -> Dict[str, Any]:
    step = {"status": status, "timestamp": when.isoformat(), "location": location, "completed": completed}
    step.update(extra)
    return step


def build_order_timeline(order: models.Order, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or datetime.utcnow()
    created = order.created_at
    address = order.shipping_address
    city = address.city if address is not None else "Your City"
    destination = address.address if address is not None else "Destination"
    status = order.status

    timeline = [_step("Order Placed", created, True, city)]

    if status in ("CONFIRMED", "SHIPPED", "DELIVERED"):
        timeline.append(_step("Processing", _add_days(created, 0.5), True, "Warehouse"))
    elif status == "PENDING":
        timeline.append(_step("Processing", now, False, "Warehouse"))

    if status in ("SHIPPED", "DELIVERED"):
        timeline.append(_step("Shipped", created + timedelta(days=2), True, "In Transit"))
    elif status == "CONFIRMED":
        timeline.append(_step("Shipped", created + timedelta(days=2), False, "In Transit"))

    if status == "DELIVERED":
        timeline.append(_step("Out for Delivery", created + timedelta(days=4), True, city))
        timeline.append(_step("Delivered", order.updated_at, True, destination))
    elif status != "CANCELLED":
        timeline.append(_step("Out for Delivery", created + timedelta(days=4), False, city))
        timeline.append(_step("Delivered", created + timedelta(days=ORDER_DELIVERY_DAYS), False, destination))

    if status == "CANCELLED":
        timeline.append(_step("Cancelled", order.updated_at, True, "System"))

    return timeline


def build_logistics_timeline(booking: models.LogisticsBooking) -> List[Dict[str, Any]]:
    created = booking.created_at
    status = booking.status

    timeline = [_step("Booking Confirmed", created, True, booking.pickup_city)]

    if status in ("CONFIRMED", "IN_TRANSIT", "DELIVERED"):
        timeline.append(_step("Picked Up", _add_days(created, 0.5), True, booking.pickup_address))

    if status in ("IN_TRANSIT", "DELIVERED"):
        timeline.append(_step("In Transit", created + timedelta(days=1), True, booking.current_location or "En Route"))

    if status == "DELIVERED":
        timeline.append(_step("Out for Delivery", created + timedelta(days=2), True, booking.delivery_city))
        timeline.append(_step("Delivered", booking.updated_at, True, booking.delivery_address))
    elif status != "CANCELLED":
        timeline.append(_step("Out for Delivery", created + timedelta(days=2), False, booking.delivery_city))
        timeline.append(_step(
            "Delivered", created + timedelta(days=LOGISTICS_DELIVERY_DAYS), False, booking.delivery_address
        ))

    return timeline


def scheduled_at(booking: models.MechanicBooking) -> datetime:
    """Scheduled date and time of a booking; creation time if unparseable."""
    try:
        return datetime.strptime(f"{booking.date}T{booking.time}", "%Y-%m-%dT%H:%M")
    except ValueError:
        logger.warning(f"Booking {booking.id} has an unparseable schedule {booking.date} {booking.time}")
        return booking.created_at


def build_mechanic_timeline(booking: models.MechanicBooking) -> List[Dict[str, Any]]:
    scheduled = scheduled_at(booking)
    status = booking.status
    city = booking.city

    timeline = [_step("Booking Confirmed", booking.created_at, True, city, description="Service scheduled")]

    if status in ("CONFIRMED", "IN_PROGRESS", "COMPLETED"):
        timeline.append(_step("Vehicle Received", scheduled, True, city, description="Initial inspection done"))

    if status in ("IN_PROGRESS", "COMPLETED"):
        timeline.append(_step(
            "Diagnostics", _add_days(scheduled, 0.1), True, city, description="Issues identified"
        ))
        timeline.append(_step(
            "Repair in Progress",
            _add_days(scheduled, 0.2),
            True,
            city,
            description=f"Working on {booking.service_type}",
        ))

    if status == "COMPLETED":
        timeline.append(_step("Quality Check", _add_days(scheduled, 0.4), True, city, description="Testing repairs"))
        timeline.append(_step("Ready for Pickup", booking.updated_at, True, city, description="Service complete"))
    elif status == "IN_PROGRESS":
        timeline.append(_step("Quality Check", _add_days(scheduled, 0.4), False, city, description="Testing repairs"))
        timeline.append(_step(
            "Ready for Pickup", _add_days(scheduled, 0.5), False, city, description="Service complete"
        ))

    return timeline


def build_mechanic_progress(booking: models.MechanicBooking) -> List[Dict[str, str]]:
    status = booking.status
    if status == "IN_PROGRESS":
        service_state = "in_progress"
    elif status == "COMPLETED":
        service_state = "completed"
    else:
        service_state = "pending"

    return [
        {
            "title": "Initial Inspection",
            "status": "completed" if status in ("CONFIRMED", "IN_PROGRESS", "COMPLETED") else "pending",
            "notes": f"Checking {booking.vehicle_make} {booking.vehicle_model} for {booking.service_type}",
        },
        {
            "title": "Service in Progress",
            "status": service_state,
            "notes": booking.custom_service or f"Performing {booking.service_type}",
        },
        {
            "title": "Final Testing",
            "status": "completed" if status == "COMPLETED" else "pending",
            "notes": booking.additional_notes or "Quality check and test drive",
        },
    ]


def _money(value) -> Optional[float]:
    return float(value) if value is not None else None


def order_result(order: models.Order, now: Optional[datetime] = None) -> Dict[str, Any]:
    address = order.shipping_address
    return {
        "type": ORDER,
        "id": order.tracking_id,
        "status": order.status,
        "title": "Auto Parts Order",
        "items": [
            {"name": item.product.name, "quantity": item.quantity, "price": _money(item.price)}
            for item in order.items
        ],
        "total": _money(order.total),
        "created": order.created_at.isoformat(),
        "timeline": build_order_timeline(order, now),
        "customer": {
            "name": order.user.name or "Customer",
            "phone": order.user.phone or (address.phone if address is not None else None) or "N/A",
            "city": address.city if address is not None else "N/A",
        },
        "estimatedDelivery": (order.created_at + timedelta(days=ORDER_DELIVERY_DAYS)).isoformat(),
    }


def logistics_result(booking: models.LogisticsBooking) -> Dict[str, Any]:
    driver = booking.driver
    return {
        "type": LOGISTICS,
        "id": booking.tracking_number,
        "status": booking.status,
        "title": "Package Delivery",
        "packageType": booking.package_type,
        "pickup": {"address": booking.pickup_address, "city": booking.pickup_city},
        "delivery": {"address": booking.delivery_address, "city": booking.delivery_city},
        "estimatedPrice": _money(booking.estimated_price),
        "created": booking.created_at.isoformat(),
        "currentLocation": {"name": booking.current_location or booking.pickup_city},
        "timeline": build_logistics_timeline(booking),
        "driver": {
            "name": driver.business_name,
            "phone": driver.phone,
            "vehicle": driver.vehicle_type,
        } if driver is not None else None,
        "recipient": {"name": booking.recipient_name, "phone": booking.recipient_phone},
        "estimatedDelivery": (booking.created_at + timedelta(days=LOGISTICS_DELIVERY_DAYS)).isoformat(),
    }


def mechanic_result(booking: models.MechanicBooking) -> Dict[str, Any]:
    mechanic = booking.mechanic
    return {
        "type": MECHANIC,
        "id": f"MECH-{booking.id}",
        "status": booking.status,
        "title": "Vehicle Service",
        "vehicle": {
            "make": booking.vehicle_make,
            "model": booking.vehicle_model,
            "year": booking.vehicle_year,
            "plate": booking.plate_number or "N/A",
        },
        "service": booking.service_type,
        "customService": booking.custom_service,
        "estimatedPrice": _money(booking.estimated_price),
        "scheduled": {"date": booking.date, "time": booking.time},
        "location": {"address": booking.address, "city": booking.city},
        "created": booking.created_at.isoformat(),
        "timeline": build_mechanic_timeline(booking),
        "mechanic": {
            "name": mechanic.business_name,
            "phone": mechanic.phone,
            "rating": mechanic.rating,
        } if mechanic is not None else None,
        "progress": build_mechanic_progress(booking),
    }


def strip_prefix(identifier: str, prefix: str) -> str:
    """Drop ``prefix`` and one following dash, keeping the case of the rest."""
    rest = identifier.strip()[len(prefix):]
    return rest[1:] if rest.startswith("-") else rest


def track(db: Session, identifier: Optional[str], now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Resolve ``identifier`` and build its tracking view.

    Raises:
        ValidationError: no identifier given
        NotFound: unknown prefix or no matching record
    """
    if not identifier or not identifier.strip():
        raise ValidationError("Tracking ID is required")

    kind = resolve_tracking_type(identifier)
    upper = identifier.strip().upper()

    if kind == ORDER:
        order = crud.get_order_by_tracking_id(db, upper)
        if order is not None:
            return order_result(order, now)
    elif kind == LOGISTICS:
        booking = crud.get_logistics_booking_by_tracking_number(db, upper)
        if booking is not None:
            return logistics_result(booking)
    elif kind == MECHANIC:
        booking_id = strip_prefix(identifier, "MECH")
        booking = (
            db.query(models.MechanicBooking)
            .filter(func.lower(models.MechanicBooking.id) == booking_id.lower())
            .first()
        )
        if booking is not None:
            return mechanic_result(booking)

    logger.info(f"Tracking lookup miss for {identifier!r} (type {kind})")
    raise NotFound("Tracking ID not found")
