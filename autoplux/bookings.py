"""
Mechanic and logistics bookings, and the links that attach them to orders.

Bookings follow the same pattern as orders: created once by the customer,
then moved through a role-gated status table by the assigned provider, the
customer or an admin.
"""
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from fastapi import BackgroundTasks
from sqlalchemy import update
from sqlalchemy.orm import Session

from . import crud, events, models, schemas, validators
from .exceptions import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from .orders import generate_tracking_id
from .permissions import Relationship, logistics_booking_relationship, mechanic_booking_relationship

logger = logging.getLogger(__name__)

MECHANIC = "MECHANIC"
LOGISTICS = "LOGISTICS"


def _check_transition(allowed: List[str], current: str, new_status: str) -> None:
    if new_status not in allowed:
        raise InvalidTransition(
            f"Cannot change status from {current} to {new_status}",
            details={"currentStatus": current, "allowedStatuses": allowed},
        )


def _apply_status(db: Session, model, booking, current: str, values: dict) -> None:
    """Compare-and-set the booking status, committing on success."""
    result = db.execute(
        update(model)
        .where(model.id == booking.id, model.status == current)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("Booking status changed while processing the request")
    db.commit()
    db.refresh(booking)


def _counterparty(relationship: Relationship, customer_id: int, provider_user_id: Optional[int]) -> Optional[int]:
    if relationship == Relationship.CUSTOMER:
        return provider_user_id
    return customer_id


# ---------------------------------------------------------------------------
# Mechanic bookings
# ---------------------------------------------------------------------------

def create_mechanic_booking(
    db: Session,
    user: models.User,
    booking_in: schemas.MechanicBookingCreate,
    background_tasks: Optional[BackgroundTasks] = None,
) -> models.MechanicBooking:
    mechanic = crud.get_mechanic_profile(db, booking_in.mechanic_id)
    if mechanic is None:
        raise NotFound("Mechanic not found")

    booking = models.MechanicBooking(user_id=user.id, **booking_in.model_dump())
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(f"Mechanic booking {booking.id} created by user {user.id} for mechanic {mechanic.id}")

    summary = (
        f"{booking.service_type} for {booking.vehicle_make} {booking.vehicle_model} "
        f"on {booking.date} at {booking.time}"
    )
    events.publish(
        db,
        events.booking_created(MECHANIC, booking.id, user.id, mechanic.user_id, summary),
        background_tasks,
    )
    return booking


def get_mechanic_booking(db: Session, booking_id: str, user: models.User) -> models.MechanicBooking:
    booking = crud.get_mechanic_booking(db, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if mechanic_booking_relationship(booking, user) is None:
        raise Forbidden("Not authorized to view this booking")
    return booking


def update_mechanic_booking_status(
    db: Session,
    booking_id: str,
    user: models.User,
    update_in: schemas.StatusUpdate,
    background_tasks: Optional[BackgroundTasks] = None,
) -> models.MechanicBooking:
    new_status = update_in.status.strip().upper()
    if new_status not in validators.MECHANIC_BOOKING_STATUSES:
        raise ValidationError(
            f"Invalid status {new_status}",
            details={"validStatuses": validators.MECHANIC_BOOKING_STATUSES},
        )

    booking = crud.get_mechanic_booking(db, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    relationship = mechanic_booking_relationship(booking, user)
    if relationship is None:
        raise Forbidden("Not authorized to update this booking")

    current = booking.status
    _check_transition(validators.allowed_mechanic_statuses(relationship, current), current, new_status)
    _apply_status(db, models.MechanicBooking, booking, current, {
        "status": new_status,
        "updated_at": datetime.utcnow(),
    })
    logger.info(f"Mechanic booking {booking.id} status {current} -> {new_status} by user {user.id}")

    provider_user_id = booking.mechanic.user_id if booking.mechanic is not None else None
    events.publish(
        db,
        events.booking_status_changed(
            MECHANIC, booking.id, current, new_status,
            _counterparty(relationship, booking.user_id, provider_user_id),
        ),
        background_tasks,
    )
    return booking


# ---------------------------------------------------------------------------
# Logistics bookings
# ---------------------------------------------------------------------------

def create_logistics_booking(
    db: Session,
    user: models.User,
    booking_in: schemas.LogisticsBookingCreate,
    background_tasks: Optional[BackgroundTasks] = None,
) -> models.LogisticsBooking:
    driver = crud.get_logistics_profile(db, booking_in.driver_id)
    if driver is None:
        raise NotFound("Logistics provider not found")

    tracking_number = generate_tracking_id("LOG")
    while crud.get_logistics_booking_by_tracking_number(db, tracking_number) is not None:
        tracking_number = generate_tracking_id("LOG")

    booking = models.LogisticsBooking(
        user_id=user.id,
        tracking_number=tracking_number,
        **booking_in.model_dump(),
    )
    db.add(booking)
    db.commit()
    db.refresh(booking)
    logger.info(f"Logistics booking {booking.id} ({tracking_number}) created by user {user.id}")

    summary = (
        f"{booking.package_type} from {booking.pickup_city} to {booking.delivery_city}. "
        f"Tracking number {tracking_number}"
    )
    events.publish(
        db,
        events.booking_created(LOGISTICS, booking.id, user.id, driver.user_id, summary),
        background_tasks,
    )
    return booking


def get_logistics_booking(db: Session, booking_id: str, user: models.User) -> models.LogisticsBooking:
    booking = crud.get_logistics_booking(db, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if logistics_booking_relationship(booking, user) is None:
        raise Forbidden("Not authorized to view this booking")
    return booking


def update_logistics_booking_status(
    db: Session,
    booking_id: str,
    user: models.User,
    update_in: schemas.StatusUpdate,
    background_tasks: Optional[BackgroundTasks] = None,
) -> models.LogisticsBooking:
    """Status transition for a delivery; may also move its current location."""
    new_status = update_in.status.strip().upper()
    if new_status not in validators.LOGISTICS_BOOKING_STATUSES:
        raise ValidationError(
            f"Invalid status {new_status}",
            details={"validStatuses": validators.LOGISTICS_BOOKING_STATUSES},
        )

    booking = crud.get_logistics_booking(db, booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    relationship = logistics_booking_relationship(booking, user)
    if relationship is None:
        raise Forbidden("Not authorized to update this booking")

    current = booking.status
    _check_transition(validators.allowed_logistics_statuses(relationship, current), current, new_status)

    values = {"status": new_status, "updated_at": datetime.utcnow()}
    if update_in.current_location:
        values["current_location"] = update_in.current_location
    _apply_status(db, models.LogisticsBooking, booking, current, values)
    logger.info(f"Logistics booking {booking.id} status {current} -> {new_status} by user {user.id}")

    provider_user_id = booking.driver.user_id if booking.driver is not None else None
    events.publish(
        db,
        events.booking_status_changed(
            LOGISTICS, booking.id, current, new_status,
            _counterparty(relationship, booking.user_id, provider_user_id),
        ),
        background_tasks,
    )
    return booking


# ---------------------------------------------------------------------------
# Order service links
# ---------------------------------------------------------------------------

def _buyer_order(db: Session, order_id: str, user: models.User, allow_admin: bool = False) -> models.Order:
    order = crud.get_order(db, order_id)
    if order is None:
        raise NotFound("Order not found")
    if order.user_id != user.id and not (allow_admin and user.role == models.Role.ADMIN.value):
        raise Forbidden("Not authorized to manage services for this order")
    return order


def get_service_links(db: Session, order_id: str, user: models.User) -> List[models.OrderServiceLink]:
    order = _buyer_order(db, order_id, user, allow_admin=True)
    return list(order.service_links)


def _link_column(link_type: str):
    if link_type == MECHANIC:
        return models.OrderServiceLink.mechanic_booking_id
    return models.OrderServiceLink.logistics_booking_id


def _find_link(db: Session, order_id: str, link_type: str) -> Optional[models.OrderServiceLink]:
    return (
        db.query(models.OrderServiceLink)
        .filter(models.OrderServiceLink.order_id == order_id, _link_column(link_type).isnot(None))
        .first()
    )


def _linkable_booking(db: Session, link_type: str, booking_id: str) -> Tuple[type, object]:
    if link_type == MECHANIC:
        return models.MechanicBooking, crud.get_mechanic_booking(db, booking_id)
    return models.LogisticsBooking, crud.get_logistics_booking(db, booking_id)


def create_service_link(
    db: Session,
    order_id: str,
    user: models.User,
    link_in: schemas.ServiceLinkCreate,
) -> models.OrderServiceLink:
    """
    Attach one of the buyer's bookings to their order. An order holds at most
    one mechanic and one logistics link.

    Raises:
        NotFound: unknown order or booking
        Forbidden: caller is not the order's buyer or does not own the booking
        Conflict: a link of this type already exists
    """
    order = _buyer_order(db, order_id, user)

    model, booking = _linkable_booking(db, link_in.type, link_in.booking_id)
    if booking is None:
        raise NotFound("Booking not found")
    if booking.user_id != user.id:
        raise Forbidden("Booking does not belong to you")

    if _find_link(db, order.id, link_in.type) is not None:
        raise Conflict(f"{link_in.type} service already booked for this order")

    link = models.OrderServiceLink(order_id=order.id)
    if link_in.type == MECHANIC:
        link.mechanic_booking_id = booking.id
    else:
        link.logistics_booking_id = booking.id

    try:
        db.execute(update(model).where(model.id == booking.id).values(order_id=order.id))
        db.add(link)
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Failed to link booking {booking.id} to order {order.id}: {e}", exc_info=True)
        raise

    db.refresh(link)
    logger.info(f"Linked {link_in.type} booking {booking.id} to order {order.id}")
    return link


def delete_service_link(db: Session, order_id: str, user: models.User, link_type: Optional[str]) -> None:
    if not link_type:
        raise ValidationError("Type parameter required")
    link_type = link_type.upper()
    if link_type not in (MECHANIC, LOGISTICS):
        raise ValidationError("type must be MECHANIC or LOGISTICS")

    order = _buyer_order(db, order_id, user)
    link = _find_link(db, order.id, link_type)
    if link is None:
        raise NotFound("Service link not found")

    model = models.MechanicBooking if link_type == MECHANIC else models.LogisticsBooking
    booking_id = link.mechanic_booking_id if link_type == MECHANIC else link.logistics_booking_id
    try:
        db.execute(update(model).where(model.id == booking_id).values(order_id=None))
        db.delete(link)
        db.commit()
    except Exception:
        db.rollback()
        raise
    logger.info(f"Removed {link_type} service link from order {order.id}")
