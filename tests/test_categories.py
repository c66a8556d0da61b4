import pytest

from categories import UNCATEGORIZED, slugify
from errors import CategoryCycleError, CategoryExistsError, CategoryInUseError, UnknownCategoryError


@pytest.fixture
def tree(services):
    categories = services.categories
    categories.add_category({"id": "a", "name": "A"})
    categories.add_category({"id": "b", "name": "B", "parent_id": "a"})
    categories.add_category({"id": "c", "name": "C", "parent_id": "b"})
    categories.add_category({"id": "d", "name": "D"})
    return categories


def test_slugify():
    assert slugify("Dried  Flowers & Co") == "dried-flowers-co"
    assert slugify("--Roses_rouges--") == "roses-rouges"


def test_add_category_derives_id_and_order(services):
    first = services.categories.add_category({"name": "Dried Flowers"})
    second = services.categories.add_category({"name": "Plants"})
    assert first["id"] == "dried-flowers"
    assert first["parent_id"] is None
    assert (first["order"], second["order"]) == (1, 2)


def test_add_category_rejects_duplicates_and_unknown_parent(tree):
    with pytest.raises(CategoryExistsError):
        tree.add_category({"id": "a", "name": "Again"})
    with pytest.raises(UnknownCategoryError):
        tree.add_category({"name": "Orphan", "parent_id": "missing"})


def test_category_path_runs_root_to_node(tree):
    for category in tree.get_all_categories():
        path = tree.get_category_path(category["id"])
        assert path[-1]["id"] == category["id"]
        assert path[0]["parent_id"] is None
    assert [c["id"] for c in tree.get_category_path("c")] == ["a", "b", "c"]


def test_category_path_stops_at_missing_parent(services, storage):
    storage.local.set("categories", [{"id": "x", "name": "X", "parent_id": "ghost", "order": 1}])
    assert [c["id"] for c in services.categories.get_category_path("x")] == ["x"]
    assert services.categories.get_category_path("nope") == []


def test_main_and_child_categories(tree):
    assert [c["id"] for c in tree.get_main_categories()] == ["a", "d"]
    assert [c["id"] for c in tree.get_child_categories("a")] == ["b"]
    assert sorted(tree.get_subcategory_ids("a")) == ["b", "c"]


def test_reparent_into_descendant_is_refused(tree):
    with pytest.raises(CategoryCycleError):
        tree.update_category("a", {"parent_id": "c"})
    with pytest.raises(CategoryCycleError):
        tree.update_category("a", {"parent_id": "a"})
    assert tree.get_category("a")["parent_id"] is None


def test_update_category(tree):
    updated = tree.update_category("d", {"name": "Dahlias", "parent_id": "a"})
    assert updated["name"] == "Dahlias"
    assert [c["id"] for c in tree.get_child_categories("a")] == ["b", "d"]
    assert tree.update_category("missing", {"name": "X"}) is None


def test_reorder_renumbers_siblings(services):
    for name in ("One", "Two", "Three"):
        services.categories.add_category({"name": name})
    assert services.categories.reorder_category("three", 1)
    assert [c["id"] for c in services.categories.get_main_categories()] == ["three", "one", "two"]
    assert [c["order"] for c in services.categories.get_main_categories()] == [1, 2, 3]
    assert services.categories.reorder_category("missing", 1) is False


def test_reorder_under_descendant_is_refused(tree):
    with pytest.raises(CategoryCycleError):
        tree.reorder_category("b", 1, "c")


def test_delete_reassigns_products_to_parent(services, catalog):
    services.categories.add_category({"id": "mini", "name": "Mini", "parent_id": "roses"})
    assert services.categories.delete_category("roses", reassign_products=True)

    assert services.products.get_product(catalog["rose"]["id"])["category"] == "bouquets"
    assert all(p["category"] != "roses" for p in services.products.get_all_products())
    assert services.categories.get_category("mini")["parent_id"] == "bouquets"
    assert "roses" not in [c["id"] for c in services.categories.get_child_categories("bouquets")]


def test_delete_root_moves_products_to_uncategorized(services, catalog):
    assert services.categories.delete_category("bouquets", reassign_products=True)
    assert services.products.get_product(catalog["vase"]["id"])["category"] == UNCATEGORIZED
    assert services.categories.get_category("roses")["parent_id"] is None


def test_delete_with_products_requires_reassignment(services, catalog):
    with pytest.raises(CategoryInUseError) as exc:
        services.categories.delete_category("roses")
    assert exc.value.product_count == 1
    assert services.categories.get_category("roses") is not None
    assert services.products.get_product(catalog["rose"]["id"])["category"] == "roses"


def test_delete_unknown_category(services):
    assert services.categories.delete_category("missing") is False
