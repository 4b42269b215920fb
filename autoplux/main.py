"""
Edmich Autoplux API

This module implements the FastAPI application for the auto-parts
marketplace: accounts and provider profiles, the product catalogue, orders
and their status lifecycle, mechanic and logistics bookings, unified
tracking, notifications and supplier wallets.

Endpoints:
    GET /healthz: Health check endpoint for orchestration systems
    POST /auth/register, POST /auth/login, GET /auth/me: Accounts
    POST /me/profile: Supplier, mechanic or logistics profile of the caller
    GET/POST /products, GET/PUT /products/{id}: Catalogue
    POST/GET /orders, GET /orders/{id}, PATCH /orders/{id}/status: Orders
    POST /admin/orders/{id}/confirm-payment: Payment confirmation
    GET/POST/DELETE /orders/{id}/service-links: Services attached to an order
    /bookings/mechanic, /bookings/logistics: Service bookings
    GET /track?id=: Unified tracking
    /notifications, /wallet: In-app notifications and supplier wallet

Attributes:
    app (FastAPI): The FastAPI application instance
"""
import logging
from typing import List, Optional

from fastapi import BackgroundTasks, Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import auth, bookings, config, crud, events, models, orders, schemas, tracking, wallet
from .database import engine, get_db
from .exceptions import Conflict, Forbidden, NotFound, Unauthorized, ValidationError, register_exception_handlers
from .permissions import order_relationship
from .rate_limit import rate_limit

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Create database tables
models.Base.metadata.create_all(bind=engine)

app = FastAPI(title="edmich-autoplux")
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_methods=["*"],
    allow_headers=["*"],
)
register_exception_handlers(app)


@app.get("/healthz", response_model=dict)
def health():
    """
    Health check endpoint.

    Returns:
        dict: {"status": "healthy"} when the service is operational
    """
    return {"status": "healthy"}


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

@app.post("/auth/register", response_model=schemas.Token, status_code=status.HTTP_201_CREATED)
def register(user: schemas.UserRegister, db: Session = Depends(get_db)):
    """
    Register a new account.

    Raises:
        Conflict: 409 if the email is already registered
    """
    if crud.get_user_by_email(db, email=user.email):
        raise Conflict("Email already registered")

    db_user = models.User(
        name=user.name,
        email=user.email,
        password_hash=auth.get_password_hash(user.password),
        role=user.role,
        phone=user.phone,
        is_active=True,
    )
    db.add(db_user)
    db.commit()
    db.refresh(db_user)
    logger.info(f"Registered user {db_user.id} as {db_user.role}")

    return schemas.Token(access_token=auth.token_for(db_user))


@app.post("/auth/login", response_model=schemas.Token, dependencies=[Depends(rate_limit("login"))])
def login(credentials: schemas.UserLogin, db: Session = Depends(get_db)):
    """
    Authenticate and login a user.

    Raises:
        Unauthorized: 401 if credentials are invalid
    """
    user = auth.authenticate_user(db, credentials.email, credentials.password)
    if not user:
        raise Unauthorized("Incorrect email or password")
    return schemas.Token(access_token=auth.token_for(user))


@app.get("/auth/me", response_model=schemas.User)
def get_current_user_info(current_user: models.User = Depends(auth.get_current_user)):
    return current_user


PROFILE_MODELS = {
    models.Role.SUPPLIER.value: ("supplier_profile", models.SupplierProfile),
    models.Role.MECHANIC.value: ("mechanic_profile", models.MechanicProfile),
    models.Role.LOGISTICS.value: ("logistics_profile", models.LogisticsProfile),
}


@app.post("/me/profile", response_model=schemas.Profile, status_code=status.HTTP_201_CREATED)
def create_profile(
    profile: schemas.ProfileCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """Create the provider profile matching the caller's role."""
    if current_user.role not in PROFILE_MODELS:
        raise Forbidden(f"{current_user.role} accounts do not have a provider profile")

    attr, model = PROFILE_MODELS[current_user.role]
    if getattr(current_user, attr) is not None:
        raise Conflict("Profile already exists")

    fields = profile.model_dump(exclude_none=True)
    if model is not models.LogisticsProfile:
        fields.pop("vehicle_type", None)
    db_profile = model(user_id=current_user.id, **fields)
    db.add(db_profile)
    db.commit()
    db.refresh(db_profile)
    return db_profile


# ---------------------------------------------------------------------------
# Products
# ---------------------------------------------------------------------------

@app.get("/products", response_model=List[schemas.Product])
def list_products(skip: int = 0, limit: int = 100, db: Session = Depends(get_db)):
    return crud.get_products(db, skip=skip, limit=limit)


@app.get("/products/{product_id}", response_model=schemas.Product)
def get_product(product_id: str, db: Session = Depends(get_db)):
    db_product = crud.get_product(db, product_id)
    if db_product is None:
        raise NotFound("Product not found")
    return db_product


@app.post("/products", response_model=schemas.Product, status_code=status.HTTP_201_CREATED)
def create_product(
    product: schemas.ProductCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """
    List a new product (suppliers with a profile only).

    Raises:
        Forbidden: 403 if the caller has no supplier profile
    """
    if current_user.supplier_profile is None:
        raise Forbidden("A supplier profile is required to list products")
    return crud.create_product(db, current_user.supplier_profile, product)


@app.put("/products/{product_id}", response_model=schemas.Product)
def update_product(
    product_id: str,
    product: schemas.ProductUpdate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """
    Update a product. Price changes never affect existing orders.

    Raises:
        NotFound: 404 if the product does not exist
        Forbidden: 403 if the caller neither owns the product nor is an admin
    """
    db_product = crud.get_product(db, product_id)
    if db_product is None:
        raise NotFound("Product not found")

    supplier = current_user.supplier_profile
    is_owner = supplier is not None and supplier.id == db_product.supplier_id
    if not is_owner and current_user.role != models.Role.ADMIN.value:
        raise Forbidden("Not authorized to update this product")
    return crud.update_product(db, db_product, product)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------

@app.post(
    "/orders",
    response_model=schemas.OrderCreated,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("orders"))],
)
def create_order(
    order: schemas.OrderCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """
    Place an order.

    Stock is checked up front, then re-checked and decremented inside the
    order transaction.

    Returns:
        {"orderId", "trackingId"} of the created order

    Raises:
        ValidationError: 400 on malformed items, address, tracking ID or total
        InsufficientStock: 400 listing every line that cannot be served
        StockConflict: 409 if stock ran out while the order was being placed
        RateLimited: 429 if the caller places orders too quickly
    """
    db_order = orders.place_order(db, current_user, order)
    events.publish(db, events.order_created(db_order), background_tasks)
    return schemas.OrderCreated(order_id=db_order.id, tracking_id=db_order.tracking_id)


@app.get("/orders", response_model=List[schemas.Order])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """
    List orders with pagination. Buyers see their own orders, suppliers also
    see orders containing their products, admins see all.
    """
    return crud.get_orders_for_user(db, current_user, skip=skip, limit=limit)


@app.get("/orders/{order_id}", response_model=schemas.Order)
def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    db_order = crud.get_order(db, order_id)
    if db_order is None:
        raise NotFound("Order not found")
    if order_relationship(db_order, current_user) is None:
        raise Forbidden("Not authorized to view this order")
    return db_order


@app.patch("/orders/{order_id}/status", response_model=schemas.OrderStatusResult)
def update_order_status(
    order_id: str,
    update: schemas.StatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """
    Move an order to a new status.

    Raises:
        ValidationError: 400 for an unknown status
        InvalidTransition: 400 with the statuses the caller may choose from
        PaymentNotConfirmed: 403 when shipping an unpaid order
        Forbidden: 403 if the caller has no relationship to the order
        NotFound: 404 if the order does not exist
    """
    db_order, old_status = orders.update_order_status(db, order_id, current_user, update.status)
    orders.after_status_change(db, db_order, old_status, background_tasks)
    return schemas.OrderStatusResult(
        order=schemas.Order.model_validate(db_order),
        message=f"Order status updated to {db_order.status}",
    )


@app.post("/admin/orders/{order_id}/confirm-payment", response_model=schemas.Order)
def confirm_payment(
    order_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    admin: models.User = Depends(auth.require_admin),
):
    db_order = orders.confirm_payment(db, order_id)
    events.publish(db, events.payment_confirmed(db_order), background_tasks)
    return db_order


@app.get("/orders/{order_id}/service-links", response_model=List[schemas.ServiceLink])
def list_service_links(
    order_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.get_service_links(db, order_id, current_user)


@app.post(
    "/orders/{order_id}/service-links",
    response_model=schemas.ServiceLink,
    status_code=status.HTTP_201_CREATED,
)
def create_service_link(
    order_id: str,
    link: schemas.ServiceLinkCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.create_service_link(db, order_id, current_user, link)


@app.delete("/orders/{order_id}/service-links", response_model=dict)
def delete_service_link(
    order_id: str,
    link_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    bookings.delete_service_link(db, order_id, current_user, link_type)
    return {"success": True}


# ---------------------------------------------------------------------------
# Bookings
# ---------------------------------------------------------------------------

@app.post("/bookings/mechanic", response_model=schemas.MechanicBooking, status_code=status.HTTP_201_CREATED)
def create_mechanic_booking(
    booking: schemas.MechanicBookingCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.create_mechanic_booking(db, current_user, booking, background_tasks)


@app.get("/bookings/mechanic/{booking_id}", response_model=schemas.MechanicBooking)
def get_mechanic_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.get_mechanic_booking(db, booking_id, current_user)


@app.patch("/bookings/mechanic/{booking_id}/status", response_model=schemas.MechanicBooking)
def update_mechanic_booking_status(
    booking_id: str,
    update: schemas.StatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.update_mechanic_booking_status(db, booking_id, current_user, update, background_tasks)


@app.post("/bookings/logistics", response_model=schemas.LogisticsBooking, status_code=status.HTTP_201_CREATED)
def create_logistics_booking(
    booking: schemas.LogisticsBookingCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.create_logistics_booking(db, current_user, booking, background_tasks)


@app.get("/bookings/logistics/{booking_id}", response_model=schemas.LogisticsBooking)
def get_logistics_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.get_logistics_booking(db, booking_id, current_user)


@app.patch("/bookings/logistics/{booking_id}/status", response_model=schemas.LogisticsBooking)
def update_logistics_booking_status(
    booking_id: str,
    update: schemas.StatusUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return bookings.update_logistics_booking_status(db, booking_id, current_user, update, background_tasks)


# ---------------------------------------------------------------------------
# Tracking
# ---------------------------------------------------------------------------

@app.get("/track", response_model=dict)
def track(tracking_id: Optional[str] = Query(None, alias="id"), db: Session = Depends(get_db)):
    """
    Resolve an order (EDM-), delivery (LOG-/TRK-) or mechanic service (MECH-)
    tracking ID. Public: anyone holding the ID may track it.

    Raises:
        ValidationError: 400 if no ID is given
        NotFound: 404 for an unknown prefix or ID
    """
    return tracking.track(db, tracking_id)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

@app.get("/notifications", response_model=schemas.NotificationList)
def list_notifications(
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return schemas.NotificationList(
        notifications=[
            schemas.Notification.model_validate(n)
            for n in crud.get_notifications(db, current_user.id, limit=limit)
        ],
        unread_count=crud.count_unread_notifications(db, current_user.id),
    )


@app.patch("/notifications", response_model=dict)
def mark_notifications_read(
    request: schemas.NotificationsMarkRead,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    if request.notification_id is None and not request.mark_all_read:
        raise ValidationError("Provide notificationId or markAllRead")
    notification_id = None if request.mark_all_read else request.notification_id
    updated = crud.mark_notifications_read(db, current_user.id, notification_id)
    return {"success": True, "updated": updated}


@app.delete("/notifications/{notification_id}", response_model=dict)
def delete_notification(
    notification_id: int,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    if not crud.delete_notification(db, current_user.id, notification_id):
        raise NotFound("Notification not found")
    return {"success": True}


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------

@app.get("/wallet", response_model=schemas.Wallet)
def get_wallet(
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return wallet.get_or_create_wallet(db, current_user.id)


@app.get("/wallet/transactions", response_model=List[schemas.WalletTransaction])
def list_wallet_transactions(
    limit: int = 50,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    return wallet.get_transactions(db, current_user.id, limit=limit)


@app.post("/wallet/withdrawal", response_model=schemas.Withdrawal, status_code=status.HTTP_201_CREATED)
def request_withdrawal(
    request: schemas.WithdrawalCreate,
    db: Session = Depends(get_db),
    current_user: models.User = Depends(auth.get_current_user),
):
    """
    Withdraw from the caller's wallet to a bank account.

    Raises:
        ValidationError: 400 below the minimum or above the balance
        NotFound: 404 if the caller has no wallet
    """
    return wallet.request_withdrawal(db, current_user, request)
