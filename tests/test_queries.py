from datetime import timedelta

import pytest

from conftest import tomorrow


@pytest.fixture
def alice_bookings(clients, book, world):
    day1 = tomorrow()
    day2 = day1 + timedelta(days=1)
    day3 = day1 + timedelta(days=2)
    created = [
        book(day=day1, at="09:00:00"),
        book(day=day2, at="11:00:00", service=world.tyres),
        book(day=day3, at="08:30:00"),
        book(day=day1, at="14:00:00"),
    ]
    # bob's booking never shows up in alice's list
    book(client=clients.bob, vehicle=world.bob_car, day=day1, at="16:00:00")
    return created


def ids(resp):
    return [row["id"] for row in resp.get_json()["data"]]


def test_customer_list_is_scoped_and_paginated(clients, alice_bookings):
    resp = clients.alice.get("/bookings")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["success"] is True
    assert len(body["data"]) == 4
    assert body["pagination"] == {
        "pageNumber": 1,
        "pageSize": 10,
        "totalCount": 4,
        "totalPages": 1,
        "hasPreviousPage": False,
        "hasNextPage": False,
    }


def test_page_windows(clients, alice_bookings):
    first = clients.alice.get("/bookings?pageSize=3").get_json()
    assert len(first["data"]) == 3
    assert first["pagination"]["totalPages"] == 2
    assert first["pagination"]["hasNextPage"] is True

    second = clients.alice.get("/bookings?pageSize=3&pageNumber=2").get_json()
    assert len(second["data"]) == 1
    assert second["pagination"]["hasPreviousPage"] is True
    assert second["pagination"]["hasNextPage"] is False
    assert not set(r["id"] for r in first["data"]) & set(r["id"] for r in second["data"])


def test_default_sort_is_date_descending(clients, alice_bookings):
    b1, b2, b3, b4 = alice_bookings
    assert ids(clients.alice.get("/bookings")) == [b3["id"], b2["id"], b4["id"], b1["id"]]


def test_date_ascending(clients, alice_bookings):
    b1, b2, b3, b4 = alice_bookings
    resp = clients.alice.get("/bookings?sortBy=date&sortOrder=Asc")
    assert ids(resp) == [b1["id"], b4["id"], b2["id"], b3["id"]]


def test_sort_by_created_at(clients, alice_bookings):
    resp = clients.alice.get("/bookings?sortBy=CreatedAt&sortOrder=Asc")
    assert ids(resp) == [b["id"] for b in alice_bookings]


def test_sort_by_status_follows_lifecycle(clients, alice_bookings):
    b1, b2, b3, b4 = alice_bookings
    clients.employee.post(f"/admin/bookings/{b3['id']}/confirm")
    clients.alice.post(f"/bookings/{b2['id']}/cancel", json={"reason": "Change of plans"})

    statuses = [r["status"] for r in clients.alice.get("/bookings?sortBy=Status&sortOrder=Asc").get_json()["data"]]
    assert statuses == ["Pending", "Pending", "Confirmed", "Cancelled"]


def test_status_and_date_filters(clients, alice_bookings):
    b1, b2, b3, b4 = alice_bookings
    clients.employee.post(f"/admin/bookings/{b1['id']}/confirm")

    assert ids(clients.alice.get("/bookings?status=confirmed")) == [b1["id"]]

    day2 = b2["bookingDate"]
    assert ids(clients.alice.get(f"/bookings?fromDate={day2}&toDate={day2}")) == [b2["id"]]
    assert set(ids(clients.alice.get(f"/bookings?fromDate={day2}"))) == {b2["id"], b3["id"]}


def test_effective_price_uses_override_then_base(clients, alice_bookings):
    rows = {r["id"]: r for r in clients.alice.get("/bookings").get_json()["data"]}
    b1, b2 = alice_bookings[0], alice_bookings[1]
    assert rows[b1["id"]]["servicePrice"] == 80.0
    assert rows[b2["id"]]["servicePrice"] == 60.0
    assert rows[b2["id"]]["serviceName"] == "Tyre Rotation"
    assert rows[b1["id"]]["vehicleInfo"] == "Toyota Corolla (2020)"


@pytest.mark.parametrize("query", [
    "pageSize=101",
    "pageSize=0",
    "pageNumber=0",
    "pageNumber=x",
    "sortBy=price",
    "sortOrder=sideways",
    "status=archived",
    "fromDate=2025-13-01",
    "fromDate=2025-06-02&toDate=2025-06-01",
])
def test_bad_list_parameters(clients, world, query):
    resp = clients.alice.get(f"/bookings?{query}")
    assert resp.status_code == 400
    assert resp.get_json()["errorCode"] == "VALIDATION_ERROR"


def test_staff_list_is_unscoped(clients, alice_bookings):
    resp = clients.employee.get("/admin/bookings?pageSize=100")
    assert resp.status_code == 200
    assert resp.get_json()["pagination"]["totalCount"] == 5

    assert clients.alice.get("/admin/bookings").status_code == 403


def test_staff_detail_includes_history(clients, alice_bookings):
    b1 = alice_bookings[0]
    resp = clients.employee.get(f"/admin/bookings/{b1['id']}")
    assert resp.status_code == 200
    data = resp.get_json()["data"]
    assert data["customerEmail"] == "alice@example.com"
    assert data["serviceCenterName"] == "Downtown Auto"
    assert data["statusHistory"][0]["newStatus"] == "Pending"
    assert data["bookingDateTime"].endswith("T09:00:00")
