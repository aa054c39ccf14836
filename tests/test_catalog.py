"""Tests for product CRUD and search."""

import pytest
from bson import ObjectId

import catalog
from errors import InvalidRequest, NotFound


@pytest.fixture
def seller(make_account):
    return make_account("seller", email="s@x.com")


@pytest.fixture
def admin(make_account):
    return make_account("admin", email="root@x.com")


class TestAddProduct:
    def test_seller_adds_product(self, client, seller):
        account, headers = seller
        response = client.post(
            "/api/addproduct",
            json={"name": "Lamp", "price": 35.5, "color": "Blue", "quantity": 4, "description": "desk lamp"},
            headers=headers,
        )
        assert response.status_code == 201
        product = response.json()["product"]
        assert product["name"] == "Lamp"
        assert product["quantity"] == 4
        assert product["seller_id"] == account["id"]
        assert "id" in product

    def test_negative_price_rejected(self, client, seller):
        _, headers = seller
        response = client.post("/api/addproduct", json={"name": "Lamp", "price": -1}, headers=headers)
        assert response.status_code == 400

    def test_negative_quantity_rejected(self, client, seller):
        _, headers = seller
        response = client.post(
            "/api/seller/addproduct", json={"name": "Lamp", "price": 1, "quantity": -3}, headers=headers
        )
        assert response.status_code == 400


class TestReadProducts:
    def test_view_products(self, client, make_product):
        make_product(name="A")
        make_product(name="B")
        response = client.get("/api/viewproducts")
        assert response.status_code == 200
        assert response.json()["count"] == 2
        assert {p["name"] for p in response.json()["products"]} == {"A", "B"}

    def test_get_product(self, client, make_product):
        product = make_product(name="Chair")
        response = client.get(f"/api/product/{product['id']}")
        assert response.status_code == 200
        assert response.json()["name"] == "Chair"

    def test_get_missing_product(self, client):
        response = client.get(f"/api/product/{ObjectId()}")
        assert response.status_code == 404
        assert response.json() == {"message": "Product not found"}

    def test_get_malformed_id(self, client):
        response = client.get("/api/product/not-an-id")
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid product id"


class TestUpdateProduct:
    def test_partial_update(self, client, seller, make_product):
        _, headers = seller
        product = make_product(name="Chair", price=10, quantity=1)
        response = client.put(f"/api/product/{product['id']}", json={"quantity": 9}, headers=headers)
        assert response.status_code == 200
        updated = response.json()["product"]
        assert updated["quantity"] == 9
        assert updated["name"] == "Chair"
        assert updated["price"] == 10

    def test_update_missing(self, client, admin):
        _, headers = admin
        response = client.put(f"/api/admin/product/{ObjectId()}", json={"price": 3}, headers=headers)
        assert response.status_code == 404

    def test_empty_update(self, client, seller, make_product):
        _, headers = seller
        product = make_product()
        response = client.put(f"/api/seller/product/{product['id']}", json={}, headers=headers)
        assert response.status_code == 400
        assert response.json()["message"] == "No fields to update"

    def test_quantity_cannot_go_negative(self, client, seller, make_product):
        _, headers = seller
        product = make_product()
        response = client.put(f"/api/product/{product['id']}", json={"quantity": -1}, headers=headers)
        assert response.status_code == 400


class TestDeleteProduct:
    def test_admin_deletes(self, client, admin, make_product):
        _, headers = admin
        product = make_product()
        response = client.delete(f"/api/product/{product['id']}", headers=headers)
        assert response.status_code == 200
        assert client.get(f"/api/product/{product['id']}").status_code == 404

    def test_delete_missing(self, client, admin):
        _, headers = admin
        response = client.delete(f"/api/admin/product/{ObjectId()}", headers=headers)
        assert response.status_code == 404

    def test_service_delete_missing(self, db):
        with pytest.raises(NotFound):
            catalog.delete_product(db, str(ObjectId()))


class TestMyProducts:
    def test_seller_sees_own_products(self, client, db, seller, make_account):
        account, headers = seller
        catalog.create_product(db, {"name": "Mine", "price": 1}, seller_id=account["id"])
        other, _ = make_account("seller")
        catalog.create_product(db, {"name": "Theirs", "price": 1}, seller_id=other["id"])

        response = client.get("/api/seller/myproducts", headers=headers)
        assert response.status_code == 200
        assert [p["name"] for p in response.json()["products"]] == ["Mine"]

    def test_admin_sees_everything(self, client, admin, make_product):
        _, headers = admin
        make_product(name="A")
        make_product(name="B")
        response = client.get("/api/seller/myproducts", headers=headers)
        assert response.json()["count"] == 2


class TestSearch:
    @pytest.fixture(autouse=True)
    def products(self, make_product):
        make_product(name="Red Shirt", price=10, color="Crimson Red")
        make_product(name="Blue Shirt", price=25, color="Navy Blue")
        make_product(name="Shoes", price=10.5, color="black")
        make_product(name="Hat", price=5, color="RED")

    def search(self, client, **params):
        response = client.get("/api/search", params=params)
        assert response.status_code == 200
        return sorted(p["name"] for p in response.json()["products"])

    def test_no_filters_returns_everything(self, client):
        assert self.search(client) == ["Blue Shirt", "Hat", "Red Shirt", "Shoes"]

    def test_name_is_case_insensitive_substring(self, client):
        assert self.search(client, name="shirt") == ["Blue Shirt", "Red Shirt"]

    def test_color_is_case_insensitive_substring(self, client):
        assert self.search(client, color="red") == ["Hat", "Red Shirt"]

    def test_exact_price_bounds(self, client):
        assert self.search(client, min_price=10, max_price=10) == ["Red Shirt"]

    def test_price_range_inclusive(self, client):
        assert self.search(client, min_price=5, max_price=10.5) == ["Hat", "Red Shirt", "Shoes"]

    def test_filters_are_anded(self, client):
        assert self.search(client, name="shirt", max_price=20) == ["Red Shirt"]

    def test_regex_characters_are_literal(self, client):
        assert self.search(client, name=".*") == []

    def test_camel_case_price_params(self, client):
        assert self.search(client, minPrice=10, maxPrice=10) == ["Red Shirt"]

    def test_count_matches(self, client):
        response = client.get("/api/search", params={"color": "blue"})
        assert response.json()["count"] == 1

    def test_non_numeric_price(self, client):
        response = client.get("/api/search", params={"min_price": "cheap"})
        assert response.status_code == 400


def test_build_search_query():
    query = catalog.build_search_query(name="a+b", min_price=1)
    assert query == {"name": {"$regex": r"a\+b", "$options": "i"}, "price": {"$gte": 1.0}}


def test_update_rejects_malformed_id(db):
    with pytest.raises(InvalidRequest):
        catalog.update_product(db, "zzz", {"price": 1})
