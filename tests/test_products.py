import pytest

from errors import InvalidQuantityError


def test_add_product_sets_id_and_timestamps(services):
    product = services.products.add_product({"name": "Tulips", "price": 12.5, "category": "bouquets"})
    assert product["id"].startswith("prod-")
    assert product["created_at"] == product["updated_at"]
    assert product["stock"] is None
    assert services.products.get_product(product["id"]) == product


def test_products_by_category_includes_subcategories(services, catalog):
    all_ids = {p["id"] for p in services.products.get_products_by_category("bouquets")}
    assert all_ids == {catalog["rose"]["id"], catalog["vase"]["id"]}
    direct = services.products.get_products_by_category("bouquets", include_subcategories=False)
    assert [p["id"] for p in direct] == [catalog["vase"]["id"]]


def test_search_products(services, catalog):
    assert [p["id"] for p in services.products.search_products("rose")] == [catalog["rose"]["id"]]
    assert len(services.products.search_products("")) == 2


def test_popular_and_featured(services):
    services.products.add_product({"name": "A", "price": 1, "category": "c", "popular": True})
    services.products.add_product({"name": "B", "price": 1, "category": "c", "popular": True, "featured": True})
    assert len(services.products.get_popular_products()) == 2
    assert len(services.products.get_popular_products(limit=1)) == 1
    assert [p["name"] for p in services.products.get_featured_products()] == ["B"]


def test_update_and_delete_product(services, catalog):
    rose_id = catalog["rose"]["id"]
    updated = services.products.update_product(rose_id, {"price": 27.0, "id": "hijack"})
    assert updated["id"] == rose_id
    assert updated["price"] == 27.0
    assert services.products.update_product("missing", {"price": 1}) is None
    assert services.products.delete_product(rose_id)
    assert services.products.delete_product(rose_id) is False


def test_update_stock(services, catalog):
    rose_id = catalog["rose"]["id"]
    assert services.products.update_product_stock(rose_id, 10)["stock"] == 10
    assert services.products.update_product_stock(rose_id, None)["stock"] is None
    with pytest.raises(InvalidQuantityError):
        services.products.update_product_stock(rose_id, -1)
