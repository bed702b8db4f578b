from datetime import datetime

from gocart.dashboards import round_half_up

from conftest import ADMIN_ID, BUYER_ID, SELLER_ID


def test_admin_dashboard_without_orders(client, auth_headers, make_store):
    make_store()

    response = client.get("/api/admin/dashboard", headers=auth_headers(ADMIN_ID))

    assert response.status_code == 200
    assert response.get_json() == {
        "dashboardData": {"orders": 0, "stores": 1, "products": 0, "revenue": 0}
    }


def test_admin_dashboard_rounds_revenue(client, auth_headers, db, make_store, make_product):
    store_id = make_store()
    make_product(store_id)
    db.orders.insert_many(
        [{"store_id": store_id, "total": 123.456}, {"store_id": store_id, "total": 10}]
    )

    response = client.get("/api/admin/dashboard", headers=auth_headers(ADMIN_ID))

    data = response.get_json()["dashboardData"]
    assert data["orders"] == 2
    assert data["stores"] == 1
    assert data["products"] == 1
    assert data["revenue"] == 133.46


def test_admin_dashboard_requires_admin(client, auth_headers):
    response = client.get("/api/admin/dashboard", headers=auth_headers(BUYER_ID))
    assert response.status_code == 403


def test_seller_dashboard_scopes_to_store(client, auth_headers, db, make_store, make_product):
    store_id = make_store()
    other_store = make_store(user_id="other_seller", username="other")
    lamp = make_product(store_id, name="Lamp")
    make_product(store_id, name="Chair")
    foreign = make_product(other_store, name="Foreign")

    db.users.insert_one({"_id": BUYER_ID, "name": "Bea", "email": "bea@example.com"})
    db.orders.insert_many(
        [
            {"store_id": store_id, "total": 10.25},
            {"store_id": store_id, "total": 5.25},
            {"store_id": other_store, "total": 999},
        ]
    )
    db.ratings.insert_many(
        [
            {"product_id": lamp, "user_id": BUYER_ID, "rating": 4, "review": "Nice", "created_at": datetime.utcnow()},
            {"product_id": foreign, "user_id": BUYER_ID, "rating": 1, "review": "Meh", "created_at": datetime.utcnow()},
        ]
    )

    response = client.get("/api/store/dashboard", headers=auth_headers(SELLER_ID))

    assert response.status_code == 200
    data = response.get_json()["dashboardData"]
    assert data["totalOrders"] == 2
    assert data["totalEarnings"] == 16
    assert data["totalProducts"] == 2
    assert len(data["ratings"]) == 1
    rating = data["ratings"][0]
    assert rating["rating"] == 4
    assert rating["user"]["name"] == "Bea"
    assert rating["product"]["name"] == "Lamp"


def test_seller_dashboard_for_empty_store(client, auth_headers, make_store):
    make_store()

    response = client.get("/api/store/dashboard", headers=auth_headers(SELLER_ID))

    assert response.get_json()["dashboardData"] == {
        "ratings": [],
        "totalOrders": 0,
        "totalEarnings": 0,
        "totalProducts": 0,
    }


def test_seller_dashboard_requires_approved_store(client, auth_headers, make_store):
    make_store(status="rejected", is_active=False)
    response = client.get("/api/store/dashboard", headers=auth_headers(SELLER_ID))
    assert response.status_code == 403
    assert response.get_json() == {"error": "Not authorized"}


def test_round_half_up_matches_storefront_rounding():
    assert round_half_up(0.5) == 1
    assert round_half_up(2.5) == 3
    assert round_half_up(2.49) == 2
