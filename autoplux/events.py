"""
Domain events emitted after a state change has been committed.

An event carries the in-app notifications it produces and a webhook payload.
Delivery is best effort: failures are logged and never reach the caller, and
nothing here runs inside the transaction that produced the event.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import BackgroundTasks
from sqlalchemy.orm import Session

from . import models, webhooks

logger = logging.getLogger(__name__)


@dataclass
class NotificationSpec:
    user_id: int
    type: str
    title: str
    message: str
    link: Optional[str] = None


@dataclass
class DomainEvent:
    name: str
    payload: Dict[str, Any]
    notifications: List[NotificationSpec] = field(default_factory=list)


def deliver_notifications(db: Session, notifications: List[NotificationSpec]) -> bool:
    """
    Write notification rows in their own commit.

    Returns:
        True if every row was written
    """
    if not notifications:
        return True
    try:
        for spec in notifications:
            db.add(models.Notification(
                user_id=spec.user_id,
                type=spec.type,
                title=spec.title,
                message=spec.message,
                link=spec.link,
            ))
        db.commit()
        return True
    except Exception as e:
        db.rollback()
        logger.warning(f"Failed to write {len(notifications)} notification(s): {e}")
        return False


def publish(db: Session, event: DomainEvent, background_tasks: Optional[BackgroundTasks] = None) -> None:
    """
    Publish an event whose state change is already committed.

    Notifications are written immediately; webhook fan-out is scheduled on
    ``background_tasks`` when one is given.
    """
    deliver_notifications(db, event.notifications)
    if background_tasks is not None:
        background_tasks.add_task(webhooks.send_webhook, event.name, event.payload)
    logger.info(f"Published {event.name} ({len(event.notifications)} notification(s))")


def _timestamp(now: Optional[datetime] = None) -> str:
    return (now or datetime.utcnow()).strftime("%b %d, %Y, %I:%M %p")


# ---------------------------------------------------------------------------
# Order events
# ---------------------------------------------------------------------------

ORDER_STATUS_COPY = {
    "CONFIRMED": (
        "Order Confirmed",
        "Your order #{tracking_id} has been confirmed by the seller. It will be shipped soon. ({ts})",
        "Order Confirmed",
        "Order #{tracking_id} has been confirmed. Please prepare it for shipping. ({ts})",
    ),
    "SHIPPED": (
        "Order Shipped",
        "Great news! Your order #{tracking_id} has been shipped and is on its way to you. ({ts})",
        "Order Shipped",
        "Order #{tracking_id} has been marked as shipped. ({ts})",
    ),
    "DELIVERED": (
        "Order Delivered",
        "Your order #{tracking_id} has been marked as delivered. Thank you for shopping with EDMICH! ({ts})",
        "Order Delivered",
        "Order #{tracking_id} has been delivered. Revenue for your items is credited to your wallet. ({ts})",
    ),
    "CANCELLED": (
        "Order Cancelled",
        "Your order #{tracking_id} has been cancelled. ({ts})",
        "Order Cancelled",
        "Order #{tracking_id} has been cancelled. ({ts})",
    ),
}

DEFAULT_ORDER_STATUS_COPY = (
    "Order Update",
    "Your order #{tracking_id} status has been updated to {status}. ({ts})",
    "Order Update",
    "Order #{tracking_id} status has been updated to {status}. ({ts})",
)


def order_created(order: models.Order) -> DomainEvent:
    return DomainEvent(
        name="order.created",
        payload={
            "order_id": order.id,
            "tracking_id": order.tracking_id,
            "status": order.status,
            "total": str(order.total),
        },
        notifications=[NotificationSpec(
            user_id=order.user_id,
            type="ORDER",
            title="Order Placed",
            message=f"Your order #{order.tracking_id} has been placed. ({_timestamp()})",
            link=f"/orders/{order.id}",
        )],
    )


def order_status_changed(
    order: models.Order,
    old_status: str,
    supplier_user_ids: List[int],
) -> DomainEvent:
    """One buyer-facing notification plus one per supplier on the order."""
    buyer_title, buyer_message, supplier_title, supplier_message = ORDER_STATUS_COPY.get(
        order.status, DEFAULT_ORDER_STATUS_COPY
    )
    values = {"tracking_id": order.tracking_id, "status": order.status, "ts": _timestamp()}

    notifications = [NotificationSpec(
        user_id=order.user_id,
        type="ORDER",
        title=buyer_title,
        message=buyer_message.format(**values),
        link=f"/orders/{order.id}",
    )]
    for supplier_user_id in sorted(supplier_user_ids):
        notifications.append(NotificationSpec(
            user_id=supplier_user_id,
            type="ORDER",
            title=supplier_title,
            message=supplier_message.format(**values),
            link="/dashboard/supplier",
        ))

    return DomainEvent(
        name="order.status_changed",
        payload={"order_id": order.id, "old_status": old_status, "new_status": order.status},
        notifications=notifications,
    )


def payment_confirmed(order: models.Order) -> DomainEvent:
    return DomainEvent(
        name="order.payment_confirmed",
        payload={"order_id": order.id, "payment_status": order.payment_status},
        notifications=[NotificationSpec(
            user_id=order.user_id,
            type="PAYMENT",
            title="Payment Confirmed",
            message=f"Payment for order #{order.tracking_id} has been confirmed. ({_timestamp()})",
            link=f"/orders/{order.id}",
        )],
    )


# ---------------------------------------------------------------------------
# Booking events
# ---------------------------------------------------------------------------

def booking_created(kind: str, booking_id: str, customer_id: int, provider_user_id: int, summary: str) -> DomainEvent:
    label = "Delivery" if kind == "LOGISTICS" else "Service"
    return DomainEvent(
        name="booking.created",
        payload={"kind": kind, "booking_id": booking_id},
        notifications=[
            NotificationSpec(
                user_id=customer_id,
                type="BOOKING",
                title=f"{label} Booked",
                message=summary,
                link="/dashboard/buyer/bookings",
            ),
            NotificationSpec(
                user_id=provider_user_id,
                type="BOOKING",
                title=f"New {label} Request",
                message=summary,
                link=f"/dashboard/{kind.lower()}/bookings",
            ),
        ],
    )


def booking_status_changed(kind: str, booking_id: str, old_status: str, new_status: str, notify_user_id: Optional[int]) -> DomainEvent:
    notifications = []
    if notify_user_id is not None:
        label = "delivery" if kind == "LOGISTICS" else "mechanic booking"
        notifications.append(NotificationSpec(
            user_id=notify_user_id,
            type="DELIVERY" if kind == "LOGISTICS" else "BOOKING",
            title="Booking Status Updated",
            message=f"Your {label} has been {new_status.lower().replace('_', ' ')}",
            link="/dashboard/bookings",
        ))
    return DomainEvent(
        name="booking.status_changed",
        payload={"kind": kind, "booking_id": booking_id, "old_status": old_status, "new_status": new_status},
        notifications=notifications,
    )
