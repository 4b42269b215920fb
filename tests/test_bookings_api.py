"""
API tests for mechanic and logistics bookings and order service links
"""
import pytest

from autoplux import models


@pytest.fixture
def mechanic(make_user):
    return make_user("MECHANIC")


@pytest.fixture
def driver(make_user):
    return make_user("LOGISTICS")


@pytest.fixture
def book_mechanic(client, headers):
    def _book(customer, mechanic, **overrides):
        payload = {
            "mechanicId": mechanic.mechanic_profile.id,
            "vehicleMake": "Toyota",
            "vehicleModel": "Camry",
            "vehicleYear": 2015,
            "serviceType": "Oil Change",
            "date": "2025-04-10",
            "time": "09:00",
            "address": "5 Herbert Macaulay Way",
            "city": "Yaba",
        }
        payload.update(overrides)
        response = client.post("/bookings/mechanic", json=payload, headers=headers(customer))
        assert response.status_code == 201, response.text
        return response.json()

    return _book


@pytest.fixture
def book_delivery(client, headers):
    def _book(customer, driver):
        payload = {
            "driverId": driver.logistics_profile.id,
            "packageType": "Auto parts",
            "pickupAddress": "3 Wharf Road",
            "pickupCity": "Apapa",
            "deliveryAddress": "12 Allen Avenue",
            "deliveryCity": "Ikeja",
            "recipientName": "Ada Buyer",
            "recipientPhone": "08011111111",
        }
        response = client.post("/bookings/logistics", json=payload, headers=headers(customer))
        assert response.status_code == 201, response.text
        return response.json()

    return _book


def unread(db, user_id):
    db.expire_all()
    return (
        db.query(models.Notification)
        .filter(models.Notification.user_id == user_id, models.Notification.read.is_(False))
        .count()
    )


class TestMechanicBookings:
    def test_create_notifies_both_parties(self, db, buyer, mechanic, book_mechanic):
        booking = book_mechanic(buyer, mechanic)

        assert booking["status"] == "PENDING"
        assert booking["userId"] == buyer.id
        assert unread(db, buyer.id) == 1
        assert unread(db, mechanic.id) == 1

    def test_unknown_mechanic(self, client, buyer, headers):
        response = client.post(
            "/bookings/mechanic",
            json={
                "mechanicId": "missing",
                "vehicleMake": "Toyota",
                "vehicleModel": "Camry",
                "serviceType": "Oil Change",
                "date": "2025-04-10",
                "time": "09:00",
                "address": "5 Herbert Macaulay Way",
                "city": "Yaba",
            },
            headers=headers(buyer),
        )
        assert response.status_code == 404

    def test_bad_date_format(self, client, buyer, mechanic, headers):
        response = client.post(
            "/bookings/mechanic",
            json={
                "mechanicId": mechanic.mechanic_profile.id,
                "vehicleMake": "Toyota",
                "vehicleModel": "Camry",
                "serviceType": "Oil Change",
                "date": "10/04/2025",
                "time": "09:00",
                "address": "5 Herbert Macaulay Way",
                "city": "Yaba",
            },
            headers=headers(buyer),
        )
        assert response.status_code == 400
        assert "date" in response.json()["details"]["fields"]

    def test_provider_walks_the_flow(self, client, buyer, mechanic, headers, book_mechanic):
        booking = book_mechanic(buyer, mechanic)
        url = f"/bookings/mechanic/{booking['id']}/status"

        for status in ("CONFIRMED", "IN_PROGRESS", "COMPLETED"):
            response = client.patch(url, json={"status": status}, headers=headers(mechanic))
            assert response.status_code == 200
            assert response.json()["status"] == status

        response = client.patch(url, json={"status": "CANCELLED"}, headers=headers(mechanic))
        assert response.status_code == 400

    def test_customer_cannot_complete(self, client, buyer, mechanic, headers, book_mechanic):
        booking = book_mechanic(buyer, mechanic)
        response = client.patch(
            f"/bookings/mechanic/{booking['id']}/status", json={"status": "CONFIRMED"}, headers=headers(buyer)
        )
        assert response.status_code == 400
        assert response.json()["details"]["allowedStatuses"] == ["CANCELLED"]

    def test_customer_cancel_notifies_mechanic(self, client, db, buyer, mechanic, headers, book_mechanic):
        booking = book_mechanic(buyer, mechanic)
        before = unread(db, mechanic.id)

        response = client.patch(
            f"/bookings/mechanic/{booking['id']}/status", json={"status": "CANCELLED"}, headers=headers(buyer)
        )

        assert response.status_code == 200
        assert unread(db, mechanic.id) == before + 1

    def test_only_parties_can_view(self, client, buyer, mechanic, admin, make_user, headers, book_mechanic):
        booking = book_mechanic(buyer, mechanic)
        url = f"/bookings/mechanic/{booking['id']}"

        assert client.get(url, headers=headers(buyer)).status_code == 200
        assert client.get(url, headers=headers(mechanic)).status_code == 200
        assert client.get(url, headers=headers(admin)).status_code == 200
        assert client.get(url, headers=headers(make_user("BUYER"))).status_code == 403


class TestLogisticsBookings:
    def test_create_assigns_tracking_number(self, buyer, driver, book_delivery):
        booking = book_delivery(buyer, driver)
        assert booking["trackingNumber"].startswith("LOG-")
        assert len(booking["trackingNumber"]) == len("LOG-") + 7

    def test_transit_updates_location(self, client, buyer, driver, headers, book_delivery):
        booking = book_delivery(buyer, driver)
        url = f"/bookings/logistics/{booking['id']}/status"

        client.patch(url, json={"status": "CONFIRMED"}, headers=headers(driver))
        response = client.patch(url, json={"status": "IN_TRANSIT", "currentLocation": "Ojota"}, headers=headers(driver))

        assert response.status_code == 200
        assert response.json()["currentLocation"] == "Ojota"

    def test_driver_update_notifies_customer(self, client, db, buyer, driver, headers, book_delivery):
        booking = book_delivery(buyer, driver)
        before = unread(db, buyer.id)

        client.patch(
            f"/bookings/logistics/{booking['id']}/status", json={"status": "CONFIRMED"}, headers=headers(driver)
        )

        db.expire_all()
        latest = (
            db.query(models.Notification)
            .filter(models.Notification.user_id == buyer.id)
            .order_by(models.Notification.id.desc())
            .first()
        )
        assert unread(db, buyer.id) == before + 1
        assert latest.message == "Your delivery has been confirmed"

    def test_other_driver_forbidden(self, client, buyer, driver, make_user, headers, book_delivery):
        booking = book_delivery(buyer, driver)
        response = client.patch(
            f"/bookings/logistics/{booking['id']}/status",
            json={"status": "CONFIRMED"},
            headers=headers(make_user("LOGISTICS")),
        )
        assert response.status_code == 403


class TestServiceLinks:
    def test_link_and_unlink(self, client, db, buyer, supplier, driver, make_product, headers, place_order, book_delivery):
        order_id = place_order(buyer, (make_product(supplier), 1))
        booking = book_delivery(buyer, driver)

        response = client.post(
            f"/orders/{order_id}/service-links",
            json={"bookingId": booking["id"], "type": "logistics"},
            headers=headers(buyer),
        )
        assert response.status_code == 201
        assert response.json()["logisticsBookingId"] == booking["id"]

        db.expire_all()
        assert db.get(models.LogisticsBooking, booking["id"]).order_id == order_id

        links = client.get(f"/orders/{order_id}/service-links", headers=headers(buyer)).json()
        assert len(links) == 1

        response = client.delete(f"/orders/{order_id}/service-links?type=LOGISTICS", headers=headers(buyer))
        assert response.status_code == 200
        assert client.get(f"/orders/{order_id}/service-links", headers=headers(buyer)).json() == []

    def test_one_link_per_type(self, client, buyer, supplier, mechanic, make_product, headers, place_order, book_mechanic):
        order_id = place_order(buyer, (make_product(supplier), 1))
        first = book_mechanic(buyer, mechanic)
        second = book_mechanic(buyer, mechanic)
        url = f"/orders/{order_id}/service-links"

        assert client.post(url, json={"bookingId": first["id"], "type": "MECHANIC"}, headers=headers(buyer)).status_code == 201
        response = client.post(url, json={"bookingId": second["id"], "type": "MECHANIC"}, headers=headers(buyer))
        assert response.status_code == 409

    def test_only_buyer_links_own_booking(
        self, client, buyer, supplier, mechanic, make_user, make_product, headers, place_order, book_mechanic
    ):
        order_id = place_order(buyer, (make_product(supplier), 1))
        stranger = make_user("BUYER")
        strangers_booking = book_mechanic(stranger, mechanic)
        url = f"/orders/{order_id}/service-links"

        response = client.post(url, json={"bookingId": strangers_booking["id"], "type": "MECHANIC"}, headers=headers(buyer))
        assert response.status_code == 403

        response = client.post(url, json={"bookingId": strangers_booking["id"], "type": "MECHANIC"}, headers=headers(stranger))
        assert response.status_code == 403

    def test_delete_requires_type(self, client, buyer, supplier, make_product, headers, place_order):
        order_id = place_order(buyer, (make_product(supplier), 1))
        response = client.delete(f"/orders/{order_id}/service-links", headers=headers(buyer))
        assert response.status_code == 400
