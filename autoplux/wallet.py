"""
Supplier wallet ledger.

Every balance change is written together with its WalletTransaction row in
one commit. Transaction references are unique, which is what makes the
delivery credit idempotent.
"""
import logging
import uuid
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from . import config, models, schemas
from .exceptions import Conflict, NotFound, ValidationError

logger = logging.getLogger(__name__)

CREDIT = "credit"
DEBIT = "debit"


def get_wallet(db: Session, user_id: int) -> Optional[models.Wallet]:
    return db.query(models.Wallet).filter(models.Wallet.user_id == user_id).first()


def get_or_create_wallet(db: Session, user_id: int) -> models.Wallet:
    """Return the user's wallet, creating an empty one on first use."""
    wallet = get_wallet(db, user_id)
    if wallet is not None:
        return wallet
    wallet = models.Wallet(user_id=user_id, balance=Decimal("0"), currency=config.WALLET_CURRENCY)
    db.add(wallet)
    try:
        db.commit()
    except IntegrityError:
        # Created concurrently by another request
        db.rollback()
        return get_wallet(db, user_id)
    db.refresh(wallet)
    return wallet


def get_transactions(db: Session, user_id: int, limit: int = 50) -> List[models.WalletTransaction]:
    wallet = get_wallet(db, user_id)
    if wallet is None:
        return []
    return (
        db.query(models.WalletTransaction)
        .filter(models.WalletTransaction.wallet_id == wallet.id)
        .order_by(models.WalletTransaction.created_at.desc(), models.WalletTransaction.id.desc())
        .limit(limit)
        .all()
    )


def supplier_subtotals(order: models.Order) -> Dict[int, Decimal]:
    """Sum of snapshotted line totals per supplier user id."""
    subtotals: Dict[int, Decimal] = {}
    for item in order.items:
        supplier_user_id = item.product.supplier.user_id
        line_total = Decimal(str(item.price)) * item.quantity
        subtotals[supplier_user_id] = subtotals.get(supplier_user_id, Decimal("0")) + line_total
    return subtotals


def delivery_reference(order_id: str, supplier_user_id: int) -> str:
    return f"ORDER-{order_id}-{supplier_user_id}"


def credit_suppliers_for_order(db: Session, order: models.Order) -> Dict[int, Decimal]:
    """
    Credit each supplier on a delivered order with the subtotal of their items.

    Runs at most once per (order, supplier): an existing transaction with the
    delivery reference is skipped, and a concurrent duplicate loses on the
    unique reference constraint.

    Returns:
        Amounts credited by this call, keyed by supplier user id
    """
    credited: Dict[int, Decimal] = {}
    for supplier_user_id, amount in supplier_subtotals(order).items():
        reference = delivery_reference(order.id, supplier_user_id)
        exists = (
            db.query(models.WalletTransaction.id)
            .filter(models.WalletTransaction.reference == reference)
            .first()
        )
        if exists:
            logger.info(f"Wallet credit {reference} already applied")
            continue

        wallet = get_or_create_wallet(db, supplier_user_id)
        db.add(models.WalletTransaction(
            wallet_id=wallet.id,
            type=CREDIT,
            amount=amount,
            description=f"Sale proceeds for order #{order.tracking_id}",
            reference=reference,
        ))
        db.execute(
            update(models.Wallet)
            .where(models.Wallet.id == wallet.id)
            .values(balance=models.Wallet.balance + amount)
        )
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            logger.info(f"Wallet credit {reference} applied concurrently")
            continue

        credited[supplier_user_id] = amount
        logger.info(f"Credited {amount} to wallet of user {supplier_user_id} for order {order.id}")
    return credited


def request_withdrawal(db: Session, user: models.User, request: schemas.WithdrawalCreate) -> models.Withdrawal:
    """
    Move funds out of a wallet into a pending bank withdrawal.

    Raises:
        ValidationError: amount under the minimum or above the balance
        NotFound: the user has no wallet
        Conflict: the balance changed underneath the request
    """
    amount = Decimal(str(request.amount))
    if amount < config.MIN_WITHDRAWAL_AMOUNT:
        raise ValidationError(f"Minimum withdrawal is {config.MIN_WITHDRAWAL_AMOUNT} {config.WALLET_CURRENCY}")

    wallet = get_wallet(db, user.id)
    if wallet is None:
        raise NotFound("Wallet not found")
    if wallet.balance < amount:
        raise ValidationError(
            "Insufficient balance",
            details={"balance": str(wallet.balance), "requested": str(amount)},
        )

    reference = f"WD-{uuid.uuid4().hex[:12].upper()}"
    try:
        result = db.execute(
            update(models.Wallet)
            .where(models.Wallet.id == wallet.id, models.Wallet.balance >= amount)
            .values(balance=models.Wallet.balance - amount)
        )
        if result.rowcount != 1:
            raise Conflict("Wallet balance changed, please retry")

        withdrawal = models.Withdrawal(
            wallet_id=wallet.id,
            amount=amount,
            bank_code=request.bank_code,
            account_number=request.account_number,
            status="pending",
            reference=reference,
        )
        db.add(withdrawal)
        db.add(models.WalletTransaction(
            wallet_id=wallet.id,
            type=DEBIT,
            amount=amount,
            description=f"Withdrawal to bank ({request.account_number})",
            reference=reference,
        ))
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(withdrawal)
    logger.info(f"Withdrawal {reference} of {amount} requested by user {user.id}")
    return withdrawal
