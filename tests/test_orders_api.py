"""
API tests for order placement, the order status machine and payment
confirmation.
"""
from decimal import Decimal

import pytest

from autoplux import models, orders


def notification_count(db, user_id=None):
    db.expire_all()
    query = db.query(models.Notification)
    if user_id is not None:
        query = query.filter(models.Notification.user_id == user_id)
    return query.count()


def set_order_state(db, order_id, **values):
    db.query(models.Order).filter(models.Order.id == order_id).update(values)
    db.commit()


class TestOrderPlacement:
    """Stock-safe order creation"""

    def test_placement_decrements_stock_and_snapshots_price(
        self, client, db, buyer, supplier, make_product, headers, order_payload
    ):
        p1 = make_product(supplier, price="1000", stock=5)

        response = client.post("/orders", json=order_payload((p1, 3)), headers=headers(buyer))

        assert response.status_code == 201
        body = response.json()
        assert set(body) == {"orderId", "trackingId"}
        assert body["trackingId"].startswith("EDM-")

        db.expire_all()
        assert db.get(models.Product, p1.id).stock == 2
        order = db.get(models.Order, body["orderId"])
        assert order.total == Decimal("3000")
        assert order.status == "CONFIRMED"
        assert order.payment_status == "PENDING"
        assert order.shipping_address.city == "Ikeja"

    def test_price_change_after_purchase_does_not_touch_order(
        self, client, db, buyer, supplier, make_product, headers, place_order
    ):
        p1 = make_product(supplier, price="1000", stock=5)
        order_id = place_order(buyer, (p1, 3))

        response = client.put(f"/products/{p1.id}", json={"price": "1500"}, headers=headers(supplier))
        assert response.status_code == 200

        response = client.get(f"/orders/{order_id}", headers=headers(buyer))
        body = response.json()
        assert Decimal(str(body["total"])) == Decimal("3000")
        assert Decimal(str(body["items"][0]["price"])) == Decimal("1000")

    def test_bank_transfer_orders_start_pending(self, client, db, buyer, supplier, make_product, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1), payment_method="BANK TRANSFER")

        db.expire_all()
        assert db.get(models.Order, order_id).status == "PENDING"

    def test_precheck_reports_every_failing_line(
        self, client, db, buyer, supplier, make_product, headers, order_payload
    ):
        p1 = make_product(supplier, name="Oil Filter", stock=1)
        p2 = make_product(supplier, name="Spark Plug", stock=0)
        p3 = make_product(supplier, name="Wiper", stock=10)

        response = client.post(
            "/orders", json=order_payload((p1, 2), (p2, 1), (p3, 1)), headers=headers(buyer)
        )

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "InsufficientStock"
        failing = {item["name"]: item for item in body["details"]["items"]}
        assert set(failing) == {"Oil Filter", "Spark Plug"}
        assert failing["Oil Filter"]["available"] == 1
        assert failing["Oil Filter"]["requested"] == 2

        db.expire_all()
        assert db.get(models.Product, p3.id).stock == 10
        assert db.query(models.Order).count() == 0

    def test_missing_product_is_reported(self, client, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier)
        payload = order_payload((p1, 1))
        payload["items"].append({"productId": "does-not-exist", "quantity": 1, "price": "10"})

        response = client.post("/orders", json=payload, headers=headers(buyer))

        assert response.status_code == 400
        ids = [item["productId"] for item in response.json()["details"]["items"]]
        assert ids == ["does-not-exist"]

    def test_second_placement_loses_when_stock_runs_out(
        self, client, db, buyer, supplier, make_product, headers, order_payload, monkeypatch
    ):
        p1 = make_product(supplier, name="Alternator", stock=5)

        first = client.post("/orders", json=order_payload((p1, 3)), headers=headers(buyer))
        assert first.status_code == 201

        # Simulate a pre-check that ran before the first order committed
        monkeypatch.setattr(orders, "check_stock_availability", lambda db, items: [])
        second = client.post("/orders", json=order_payload((p1, 3)), headers=headers(buyer))

        assert second.status_code == 409
        body = second.json()
        assert body["error"] == "StockConflict"
        assert "Alternator" in body["message"]
        assert body["details"]["available"] <= 2

        db.expire_all()
        assert db.get(models.Product, p1.id).stock == 2
        assert db.query(models.Order).count() == 1

    def test_stock_never_negative(self, client, db, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier, stock=2)
        for _ in range(4):
            client.post("/orders", json=order_payload((p1, 1)), headers=headers(buyer))

        db.expire_all()
        assert db.get(models.Product, p1.id).stock == 0
        assert db.query(models.Order).count() == 2

    def test_client_tracking_id_is_normalised(self, client, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier)
        response = client.post(
            "/orders", json=order_payload((p1, 1), trackingId="edm-abc1234"), headers=headers(buyer)
        )
        assert response.status_code == 201
        assert response.json()["trackingId"] == "EDM-ABC1234"

    def test_duplicate_tracking_id_conflicts(self, client, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier)
        payload = order_payload((p1, 1), trackingId="EDM-SAME001")
        assert client.post("/orders", json=payload, headers=headers(buyer)).status_code == 201

        response = client.post("/orders", json=payload, headers=headers(buyer))
        assert response.status_code == 409
        assert response.json()["error"] == "Conflict"

    def test_foreign_tracking_prefix_rejected(self, client, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier)
        response = client.post(
            "/orders", json=order_payload((p1, 1), trackingId="LOG-1234567"), headers=headers(buyer)
        )
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_total_mismatch_rejected(self, client, db, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier, price="1000", stock=5)
        response = client.post("/orders", json=order_payload((p1, 2), total="1500"), headers=headers(buyer))

        assert response.status_code == 400
        db.expire_all()
        assert db.get(models.Product, p1.id).stock == 5

    def test_empty_order_rejected(self, client, buyer, headers, order_payload):
        response = client.post("/orders", json=order_payload(), headers=headers(buyer))
        assert response.status_code == 400
        assert "at least one item" in response.json()["message"]

    def test_missing_shipping_address_rejected(self, client, buyer, supplier, make_product, headers, order_payload):
        p1 = make_product(supplier)
        payload = order_payload((p1, 1))
        del payload["shippingAddress"]
        response = client.post("/orders", json=payload, headers=headers(buyer))
        assert response.status_code == 400

    def test_requires_authentication(self, client, order_payload):
        response = client.post("/orders", json=order_payload())
        assert response.status_code == 401
        assert response.json()["error"] == "Unauthorized"

    def test_buyer_is_notified(self, client, db, buyer, supplier, make_product, place_order):
        p1 = make_product(supplier)
        place_order(buyer, (p1, 1))
        assert notification_count(db, buyer.id) == 1


class TestOrderVisibility:
    def test_buyer_supplier_admin_views(
        self, client, buyer, supplier, admin, make_user, make_product, headers, place_order
    ):
        other_supplier = make_user("SUPPLIER")
        other_buyer = make_user("BUYER")
        p1 = make_product(supplier)
        p2 = make_product(other_supplier)
        mine = place_order(buyer, (p1, 1))
        place_order(other_buyer, (p2, 1))

        assert [o["id"] for o in client.get("/orders", headers=headers(buyer)).json()] == [mine]
        assert [o["id"] for o in client.get("/orders", headers=headers(supplier)).json()] == [mine]
        assert len(client.get("/orders", headers=headers(admin)).json()) == 2

    def test_stranger_cannot_read_order(self, client, buyer, supplier, make_user, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))

        response = client.get(f"/orders/{order_id}", headers=headers(make_user("BUYER")))
        assert response.status_code == 403


class TestOrderStatusMachine:
    """Role-gated order status transitions"""

    def test_supplier_cannot_skip_to_shipped(
        self, client, db, buyer, supplier, make_product, headers, place_order
    ):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1), payment_method="BANK TRANSFER")

        response = client.patch(f"/orders/{order_id}/status", json={"status": "SHIPPED"}, headers=headers(supplier))

        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "InvalidTransition"
        assert body["details"]["allowedStatuses"] == ["CONFIRMED", "CANCELLED"]
        db.expire_all()
        assert db.get(models.Order, order_id).status == "PENDING"

    def test_supplier_confirms_then_ships_paid_order(
        self, client, db, buyer, supplier, make_product, headers, place_order
    ):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1), payment_method="BANK TRANSFER")

        response = client.patch(f"/orders/{order_id}/status", json={"status": "CONFIRMED"}, headers=headers(supplier))
        assert response.status_code == 200
        body = response.json()
        assert body["order"]["status"] == "CONFIRMED"
        assert body["message"]

        set_order_state(db, order_id, payment_status="PAID")
        response = client.patch(f"/orders/{order_id}/status", json={"status": "SHIPPED"}, headers=headers(supplier))
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "SHIPPED"

    def test_unpaid_order_cannot_ship(self, client, db, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))
        before = notification_count(db)

        response = client.patch(f"/orders/{order_id}/status", json={"status": "SHIPPED"}, headers=headers(supplier))

        assert response.status_code == 403
        assert response.json()["error"] == "PaymentNotConfirmed"
        db.expire_all()
        assert db.get(models.Order, order_id).status == "CONFIRMED"
        assert notification_count(db) == before

    def test_success_payment_status_passes_gate(self, client, db, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))
        set_order_state(db, order_id, payment_status="SUCCESS")

        response = client.patch(f"/orders/{order_id}/status", json={"status": "SHIPPED"}, headers=headers(supplier))
        assert response.status_code == 200

    def test_buyer_may_only_cancel_pending(self, client, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))

        response = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=headers(buyer))

        assert response.status_code == 400
        assert response.json()["details"]["allowedStatuses"] == []

    def test_buyer_confirms_delivery(self, client, db, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))
        set_order_state(db, order_id, status="SHIPPED", payment_status="PAID")

        response = client.patch(f"/orders/{order_id}/status", json={"status": "DELIVERED"}, headers=headers(buyer))
        assert response.status_code == 200
        assert response.json()["order"]["status"] == "DELIVERED"

    def test_unknown_status_is_validation_error(self, client, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))

        response = client.patch(f"/orders/{order_id}/status", json={"status": "LOST"}, headers=headers(supplier))
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"

    def test_stranger_is_forbidden(self, client, buyer, supplier, make_user, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))

        response = client.patch(
            f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=headers(make_user("SUPPLIER"))
        )
        assert response.status_code == 403

    def test_unknown_order_is_not_found(self, client, admin, headers):
        response = client.patch("/orders/nope/status", json={"status": "CANCELLED"}, headers=headers(admin))
        assert response.status_code == 404

    def test_admin_may_jump_but_not_leave_terminal(self, client, db, buyer, supplier, admin, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))

        response = client.patch(f"/orders/{order_id}/status", json={"status": "DELIVERED"}, headers=headers(admin))
        assert response.status_code == 200

        response = client.patch(f"/orders/{order_id}/status", json={"status": "PENDING"}, headers=headers(admin))
        assert response.status_code == 400
        assert response.json()["details"]["allowedStatuses"] == []

    def test_repeat_terminal_request_fires_no_notifications(
        self, client, db, buyer, supplier, make_product, headers, place_order
    ):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1), payment_method="BANK TRANSFER")

        first = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=headers(buyer))
        assert first.status_code == 200
        after_first = notification_count(db)

        second = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=headers(buyer))
        assert second.status_code == 400
        assert notification_count(db) == after_first

    def test_transition_notifies_buyer_and_each_supplier(
        self, client, db, buyer, supplier, make_user, make_product, headers, place_order
    ):
        other_supplier = make_user("SUPPLIER")
        p1 = make_product(supplier)
        p2 = make_product(other_supplier, name="Clutch")
        order_id = place_order(buyer, (p1, 1), (p2, 1), payment_method="BANK TRANSFER")
        before = {u.id: notification_count(db, u.id) for u in (buyer, supplier, other_supplier)}

        response = client.patch(f"/orders/{order_id}/status", json={"status": "CONFIRMED"}, headers=headers(supplier))
        assert response.status_code == 200

        for user in (buyer, supplier, other_supplier):
            assert notification_count(db, user.id) == before[user.id] + 1

    def test_cancel_restores_stock(self, client, db, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier, stock=5)
        order_id = place_order(buyer, (p1, 3), payment_method="BANK TRANSFER")

        response = client.patch(f"/orders/{order_id}/status", json={"status": "CANCELLED"}, headers=headers(supplier))
        assert response.status_code == 200

        db.expire_all()
        assert db.get(models.Product, p1.id).stock == 5

    @pytest.mark.parametrize("payment_method", ["CASH_ON_DELIVERY", "cash on delivery", "Cash-On-Delivery"])
    def test_cash_on_delivery_settles_on_delivery(
        self, client, db, buyer, supplier, make_product, headers, place_order, payment_method
    ):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1), payment_method=payment_method)
        set_order_state(db, order_id, status="SHIPPED")

        response = client.patch(f"/orders/{order_id}/status", json={"status": "DELIVERED"}, headers=headers(buyer))

        assert response.status_code == 200
        order = response.json()["order"]
        assert order["paymentStatus"] == "PAID"
        assert order["paidAt"] is not None

    def test_delivery_credits_supplier_wallet(self, client, db, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier, price="1000", stock=5)
        order_id = place_order(buyer, (p1, 2))
        set_order_state(db, order_id, status="SHIPPED", payment_status="PAID")

        client.patch(f"/orders/{order_id}/status", json={"status": "DELIVERED"}, headers=headers(buyer))

        wallet = client.get("/wallet", headers=headers(supplier)).json()
        assert Decimal(str(wallet["balance"])) == Decimal("2000")


class TestConfirmPayment:
    def test_admin_confirms_bank_transfer(self, client, db, buyer, supplier, admin, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1), payment_method="BANK TRANSFER")

        response = client.post(f"/admin/orders/{order_id}/confirm-payment", headers=headers(admin))

        assert response.status_code == 200
        body = response.json()
        assert body["paymentStatus"] == "PAID"
        assert body["status"] == "CONFIRMED"

    def test_second_confirmation_conflicts(self, client, buyer, supplier, admin, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))
        assert client.post(f"/admin/orders/{order_id}/confirm-payment", headers=headers(admin)).status_code == 200

        response = client.post(f"/admin/orders/{order_id}/confirm-payment", headers=headers(admin))
        assert response.status_code == 409

    def test_admin_only(self, client, buyer, supplier, make_product, headers, place_order):
        p1 = make_product(supplier)
        order_id = place_order(buyer, (p1, 1))

        response = client.post(f"/admin/orders/{order_id}/confirm-payment", headers=headers(buyer))
        assert response.status_code == 403
