"""
Per-user listings: favorites, publications, orders and view history.
"""

import pytest

from conftest import insert_product


@pytest.fixture
def catalog(db, seller):
    return [
        insert_product(db, seller, title="Lamp", price="30"),
        insert_product(db, seller, title="Chair", price="45"),
        insert_product(db, seller, title="Kettle", price="15"),
    ]


class TestUserListings:

    def test_requires_token(self, client):
        for path in ("/api/user/favorites", "/api/user/publications", "/api/user/orders", "/api/user/view-history"):
            assert client.get(path).status_code == 401

    def test_favorites(self, client, buyer, catalog, auth_headers):
        client.post(f"/api/products/{catalog[1]}/favorite", headers=auth_headers(buyer))

        favorites = client.get("/api/user/favorites", headers=auth_headers(buyer)).get_json()
        assert [p["title"] for p in favorites] == ["Chair"]
        assert "image" not in favorites[0]

    def test_publications(self, client, seller, buyer, catalog, auth_headers):
        mine = client.get("/api/user/publications", headers=auth_headers(seller)).get_json()
        assert sorted(p["title"] for p in mine) == ["Chair", "Kettle", "Lamp"]

        theirs = client.get("/api/user/publications", headers=auth_headers(buyer)).get_json()
        assert theirs == []

    def test_orders(self, client, seller, catalog, auth_headers):
        client.post(f"/api/products/{catalog[0]}/sell", headers=auth_headers(seller))

        orders = client.get("/api/user/orders", headers=auth_headers(seller)).get_json()
        assert len(orders) == 1
        assert orders[0]["productTitle"] == "Lamp"
        assert orders[0]["price"] == 30.0

    def test_view_history_is_recent_first_and_paginated(self, client, buyer, catalog, auth_headers):
        for product_id in (catalog[0], catalog[1], catalog[2], catalog[0]):
            client.put(f"/api/products/{product_id}/view", headers=auth_headers(buyer))

        body = client.get("/api/user/view-history?limit=2", headers=auth_headers(buyer)).get_json()
        assert [item["product"]["title"] for item in body["history"]] == ["Lamp", "Kettle"]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2}

        page_two = client.get("/api/user/view-history?limit=2&page=2", headers=auth_headers(buyer)).get_json()
        assert [item["product"]["title"] for item in page_two["history"]] == ["Chair"]

    def test_view_history_pages_ignore_deleted_products(self, client, db, buyer, catalog, auth_headers):
        for product_id in catalog:
            client.put(f"/api/products/{product_id}/view", headers=auth_headers(buyer))
        db.products.delete_one({"_id": catalog[0]})

        body = client.get("/api/user/view-history?limit=2", headers=auth_headers(buyer)).get_json()
        assert [item["product"]["title"] for item in body["history"]] == ["Kettle", "Chair"]
        assert body["pagination"] == {"page": 1, "limit": 2, "total": 2, "pages": 1}
