"""
Order lifecycle: stock-safe placement, the role-gated status machine and
payment confirmation.

Validation and ownership checks run before any mutation. Every mutation that
must be atomic shares one transaction; notifications, webhooks and wallet
credits run after the commit and never fail the request.
"""
import logging
import secrets
import string
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import BackgroundTasks
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import crud, events, models, schemas, validators, wallet
from .exceptions import (
    APIException,
    Conflict,
    Forbidden,
    InsufficientStock,
    InternalError,
    InvalidTransition,
    NotFound,
    PaymentNotConfirmed,
    StockConflict,
    ValidationError,
)
from .models import BANK_TRANSFER, CASH_ON_DELIVERY, OrderStatus, PaymentStatus
from .permissions import order_relationship, supplier_user_ids

logger = logging.getLogger(__name__)

ORDER_PREFIX = "EDM"
SETTLED_PAYMENT_STATUSES = (PaymentStatus.PAID.value, PaymentStatus.SUCCESS.value)
_TOKEN_ALPHABET = string.ascii_uppercase + string.digits


def generate_tracking_id(prefix: str = ORDER_PREFIX, length: int = 7) -> str:
    """Human-friendly tracking ID such as ``EDM-MHZ0QV5``."""
    token = "".join(secrets.choice(_TOKEN_ALPHABET) for _ in range(length))
    return f"{prefix}-{token}"


def normalise_payment_method(payment_method: str) -> str:
    """Canonical spelling of a payment method: ``cash on delivery`` becomes ``CASH_ON_DELIVERY``."""
    return "_".join(payment_method.replace("-", " ").replace("_", " ").upper().split())


def is_bank_transfer(payment_method: str) -> bool:
    return normalise_payment_method(payment_method) == normalise_payment_method(BANK_TRANSFER)


def is_cash_on_delivery(payment_method: str) -> bool:
    return normalise_payment_method(payment_method) == CASH_ON_DELIVERY


def initial_status(payment_method: str) -> str:
    """Bank transfers wait for payment; every other method is confirmed at once."""
    if is_bank_transfer(payment_method):
        return OrderStatus.PENDING.value
    return OrderStatus.CONFIRMED.value


def check_stock_availability(db: Session, items: List[schemas.OrderItemIn]) -> List[Dict[str, Any]]:
    """
    Best-effort stock pre-check, outside any transaction.

    Returns:
        Every failing line: missing products and lines asking for more than
        is in stock. Empty when all lines can be served right now.
    """
    failures = []
    for item in items:
        product = crud.get_product(db, item.product_id)
        if product is None:
            failures.append({
                "productId": item.product_id,
                "name": None,
                "available": 0,
                "requested": item.quantity,
                "reason": "not_found",
            })
        elif product.stock < item.quantity:
            failures.append({
                "productId": product.id,
                "name": product.name,
                "available": product.stock,
                "requested": item.quantity,
                "reason": "insufficient_stock",
            })
    return failures


def place_order(db: Session, user: models.User, order_in: schemas.OrderCreate) -> models.Order:
    """
    Create an order with its items and shipping address, taking the ordered
    quantities out of stock, all in one transaction.

    Raises:
        ValidationError: malformed items, missing address, bad tracking ID or total
        Conflict: the tracking ID is already in use
        InsufficientStock: the pre-check found lines that cannot be served
        StockConflict: stock ran out between the pre-check and the transaction
        InternalError: anything else; nothing is persisted
    """
    is_valid, error_message = validators.validate_order_items(order_in.items)
    if not is_valid:
        raise ValidationError(error_message)

    if order_in.shipping_address is None:
        raise ValidationError("Shipping address is required")

    is_valid, error_message = validators.validate_order_total(order_in.items, order_in.total)
    if not is_valid:
        raise ValidationError(error_message)

    tracking_id = (order_in.tracking_id or generate_tracking_id()).strip().upper()
    if not tracking_id.startswith(ORDER_PREFIX):
        raise ValidationError(f"Tracking ID must start with {ORDER_PREFIX}")
    if crud.get_order_by_tracking_id(db, tracking_id) is not None:
        raise Conflict(f"Tracking ID {tracking_id} is already in use")

    failures = check_stock_availability(db, order_in.items)
    if failures:
        raise InsufficientStock(
            "Insufficient stock for one or more items",
            details={"items": failures},
        )

    address = order_in.shipping_address
    try:
        db_order = models.Order(
            tracking_id=tracking_id,
            user_id=user.id,
            total=validators.order_items_total(order_in.items),
            status=initial_status(order_in.payment_method),
            payment_method=order_in.payment_method,
            payment_status=PaymentStatus.PENDING.value,
            delivery_notes=order_in.delivery_notes,
        )
        db.add(db_order)
        db.flush()

        for item in order_in.items:
            product = crud.lock_product(db, item.product_id)
            if product is None or product.stock < item.quantity or not crud.decrement_stock(db, product.id, item.quantity):
                current = crud.lock_product(db, item.product_id)
                available = current.stock if current is not None else 0
                name = current.name if current is not None else item.product_id
                raise StockConflict(
                    f"Stock for {name} changed while your order was being placed; only {available} left",
                    details={"productId": item.product_id, "available": available, "requested": item.quantity},
                )
            db.add(models.OrderItem(
                order_id=db_order.id,
                product_id=product.id,
                quantity=item.quantity,
                price=item.price,
            ))

        db.add(models.ShippingAddress(
            order_id=db_order.id,
            full_name=address.full_name,
            phone=address.phone,
            address=address.address,
            city=address.city,
            state=address.state,
        ))
        db.commit()
    except APIException:
        db.rollback()
        raise
    except IntegrityError as e:
        db.rollback()
        logger.warning(f"Order {tracking_id} rejected by database constraints: {e}")
        raise Conflict(f"Order {tracking_id} conflicts with existing data")
    except Exception as e:
        db.rollback()
        logger.error(f"Order creation error for {tracking_id}: {e}", exc_info=True)
        raise InternalError("Failed to create order")

    db.refresh(db_order)
    logger.info(f"Order {db_order.id} ({tracking_id}) placed by user {user.id} with status {db_order.status}")
    return db_order


def update_order_status(
    db: Session, order_id: str, user: models.User, new_status: str
) -> Tuple[models.Order, str]:
    """
    Apply a status transition requested by ``user``. Returns the refreshed
    order and the status it moved from.

    The status write is a compare-and-set on the status the decision was
    made from, so a transition can only fire once.

    Raises:
        ValidationError: unknown status value
        NotFound: no such order
        Forbidden: caller is not the buyer, a supplier on the order or an admin
        InvalidTransition: transition not in the caller's table
        PaymentNotConfirmed: shipping an order whose payment is not settled
    """
    new_status = new_status.strip().upper()
    if new_status not in validators.ORDER_STATUSES:
        raise ValidationError(
            f"Invalid status {new_status}",
            details={"validStatuses": validators.ORDER_STATUSES},
        )

    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise NotFound("Order not found")

    relationship = order_relationship(db_order, user)
    if relationship is None:
        raise Forbidden("Not authorized to update this order")

    current_status = db_order.status
    allowed = validators.allowed_order_statuses(relationship, current_status)
    if new_status not in allowed:
        raise InvalidTransition(
            f"Cannot change status from {current_status} to {new_status}",
            details={"currentStatus": current_status, "allowedStatuses": allowed},
        )

    if new_status == OrderStatus.SHIPPED.value and db_order.payment_status not in SETTLED_PAYMENT_STATUSES:
        raise PaymentNotConfirmed("Payment not confirmed; the order cannot be shipped yet")

    now = datetime.utcnow()
    values = {"status": new_status, "updated_at": now}
    if new_status == OrderStatus.DELIVERED.value and is_cash_on_delivery(db_order.payment_method):
        values.update(payment_status=PaymentStatus.PAID.value, paid_at=now)

    try:
        result = db.execute(
            update(models.Order)
            .where(models.Order.id == db_order.id, models.Order.status == current_status)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict("Order status changed while processing the request")

        if new_status == OrderStatus.CANCELLED.value:
            for item in db_order.items:
                crud.restore_stock(db, item.product_id, item.quantity)

        db.commit()
    except APIException:
        db.rollback()
        raise

    db.refresh(db_order)
    logger.info(f"Order {db_order.id} status {current_status} -> {new_status} by user {user.id} ({relationship.value})")
    return db_order, current_status


def after_status_change(
    db: Session,
    db_order: models.Order,
    old_status: str,
    background_tasks: Optional[BackgroundTasks] = None,
) -> None:
    """Post-commit side effects of a status transition. Never raises."""
    suppliers = sorted(supplier_user_ids(db_order))
    events.publish(db, events.order_status_changed(db_order, old_status, suppliers), background_tasks)

    if db_order.status == OrderStatus.DELIVERED.value:
        try:
            wallet.credit_suppliers_for_order(db, db_order)
        except Exception as e:
            db.rollback()
            logger.warning(f"Failed to credit supplier wallets for order {db_order.id}: {e}", exc_info=True)


def confirm_payment(db: Session, order_id: str) -> models.Order:
    """
    Mark an order's payment as received. A pending bank-transfer order is
    confirmed in the same update.

    Raises:
        NotFound: no such order
        Conflict: payment already confirmed
        ValidationError: the order is cancelled
    """
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise NotFound("Order not found")
    if db_order.payment_status in SETTLED_PAYMENT_STATUSES:
        raise Conflict("Payment already confirmed for this order")
    if db_order.status == OrderStatus.CANCELLED.value:
        raise ValidationError("Cannot confirm payment for a cancelled order")

    now = datetime.utcnow()
    values = {"payment_status": PaymentStatus.PAID.value, "paid_at": now, "updated_at": now}
    if db_order.status == OrderStatus.PENDING.value and is_bank_transfer(db_order.payment_method):
        values["status"] = OrderStatus.CONFIRMED.value

    result = db.execute(
        update(models.Order)
        .where(models.Order.id == db_order.id, models.Order.payment_status == db_order.payment_status)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise Conflict("Payment status changed while processing the request")
    db.commit()

    db.refresh(db_order)
    logger.info(f"Payment confirmed for order {db_order.id}")
    return db_order
