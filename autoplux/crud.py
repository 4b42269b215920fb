"""
CRUD (Create, Read, Update, Delete) operations for the marketplace.

This module contains the database access helpers shared by the order,
booking, tracking and wallet modules. Functions that take part in a larger
transaction only flush; committing is left to the caller.
"""
from typing import List, Optional
import logging

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, joinedload

from . import models, schemas

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Users and profiles
# ---------------------------------------------------------------------------

def get_user(db: Session, user_id: int) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.id == user_id).first()


def get_user_by_email(db: Session, email: str) -> Optional[models.User]:
    return db.query(models.User).filter(models.User.email == email).first()


def get_mechanic_profile(db: Session, profile_id: str) -> Optional[models.MechanicProfile]:
    return db.query(models.MechanicProfile).filter(models.MechanicProfile.id == profile_id).first()


def get_logistics_profile(db: Session, profile_id: str) -> Optional[models.LogisticsProfile]:
    return db.query(models.LogisticsProfile).filter(models.LogisticsProfile.id == profile_id).first()


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

def get_product(db: Session, product_id: str) -> Optional[models.Product]:
    """
    Retrieve a single product by ID.

    Args:
        db: Database session
        product_id: ID of the product to retrieve

    Returns:
        Product object or None if not found
    """
    return db.query(models.Product).filter(models.Product.id == product_id).first()


def get_products(db: Session, skip: int = 0, limit: int = 100) -> List[models.Product]:
    return db.query(models.Product).order_by(models.Product.created_at.desc()).offset(skip).limit(limit).all()


def create_product(db: Session, supplier: models.SupplierProfile, product: schemas.ProductCreate) -> models.Product:
    db_product = models.Product(
        supplier_id=supplier.id,
        name=product.name,
        price=product.price,
        stock=product.stock,
    )
    db.add(db_product)
    db.commit()
    db.refresh(db_product)
    return db_product


def update_product(db: Session, db_product: models.Product, product: schemas.ProductUpdate) -> models.Product:
    update_data = product.model_dump(exclude_unset=True)
    for key, value in update_data.items():
        setattr(db_product, key, value)

    db.commit()
    db.refresh(db_product)
    return db_product


def lock_product(db: Session, product_id: str) -> Optional[models.Product]:
    """
    Re-read a product inside the current transaction, bypassing the identity
    map. Takes a row lock on dialects that support ``FOR UPDATE``.
    """
    return (
        db.query(models.Product)
        .filter(models.Product.id == product_id)
        .populate_existing()
        .with_for_update()
        .first()
    )


def decrement_stock(db: Session, product_id: str, quantity: int) -> bool:
    """
    Atomically take ``quantity`` units from a product's stock.

    The floor check and the decrement are one conditional UPDATE, so stock
    cannot go negative whatever the isolation level.

    Returns:
        True if the stock was decremented, False if not enough stock remained
    """
    result = db.execute(
        update(models.Product)
        .where(models.Product.id == product_id, models.Product.stock >= quantity)
        .values(stock=models.Product.stock - quantity)
    )
    return result.rowcount == 1


def restore_stock(db: Session, product_id: str, quantity: int) -> None:
    db.execute(
        update(models.Product)
        .where(models.Product.id == product_id)
        .values(stock=models.Product.stock + quantity)
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

def _order_query(db: Session):
    return db.query(models.Order).options(
        joinedload(models.Order.items).joinedload(models.OrderItem.product).joinedload(models.Product.supplier),
        joinedload(models.Order.shipping_address),
    )


def get_order(db: Session, order_id: str) -> Optional[models.Order]:
    """
    Retrieve a single order by ID with its items, their suppliers and the
    shipping address loaded.
    """
    return _order_query(db).filter(models.Order.id == order_id).first()


def get_order_by_tracking_id(db: Session, tracking_id: str) -> Optional[models.Order]:
    return _order_query(db).filter(models.Order.tracking_id == tracking_id).first()


def get_orders_for_user(db: Session, user: models.User, skip: int = 0, limit: int = 100) -> List[models.Order]:
    """
    Orders visible to a user: all for admins, otherwise the user's own orders
    plus orders containing one of the user's products.
    """
    query = db.query(models.Order)
    if user.role != models.Role.ADMIN.value:
        supplied = (
            select(models.OrderItem.order_id)
            .join(models.Product, models.OrderItem.product_id == models.Product.id)
            .join(models.SupplierProfile, models.Product.supplier_id == models.SupplierProfile.id)
            .where(models.SupplierProfile.user_id == user.id)
        )
        query = query.filter(or_(models.Order.user_id == user.id, models.Order.id.in_(supplied)))
    return query.order_by(models.Order.created_at.desc()).offset(skip).limit(limit).all()


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

def get_mechanic_booking(db: Session, booking_id: str) -> Optional[models.MechanicBooking]:
    return db.query(models.MechanicBooking).filter(models.MechanicBooking.id == booking_id).first()


def get_logistics_booking(db: Session, booking_id: str) -> Optional[models.LogisticsBooking]:
    return db.query(models.LogisticsBooking).filter(models.LogisticsBooking.id == booking_id).first()


def get_logistics_booking_by_tracking_number(db: Session, tracking_number: str) -> Optional[models.LogisticsBooking]:
    return (
        db.query(models.LogisticsBooking)
        .filter(models.LogisticsBooking.tracking_number == tracking_number)
        .first()
    )


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def get_notifications(db: Session, user_id: int, limit: int = 50) -> List[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id)
        .order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        .limit(limit)
        .all()
    )


def count_unread_notifications(db: Session, user_id: int) -> int:
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id, models.Notification.read.is_(False))
        .count()
    )


def mark_notifications_read(db: Session, user_id: int, notification_id: Optional[int] = None) -> int:
    """
    Mark one notification, or all of a user's unread notifications, as read.

    Returns:
        Number of rows updated
    """
    query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if notification_id is not None:
        query = query.filter(models.Notification.id == notification_id)
    else:
        query = query.filter(models.Notification.read.is_(False))
    updated = query.update({models.Notification.read: True}, synchronize_session=False)
    db.commit()
    return updated


def delete_notification(db: Session, user_id: int, notification_id: int) -> bool:
    notification = (
        db.query(models.Notification)
        .filter(models.Notification.id == notification_id, models.Notification.user_id == user_id)
        .first()
    )
    if notification is None:
        return False
    db.delete(notification)
    db.commit()
    return True
