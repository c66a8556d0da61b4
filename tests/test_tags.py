import pytest

from errors import ProductNotFoundError, TagExistsError, UnknownTagError


@pytest.fixture
def tags(services):
    services.tags.add_tag({"name": "Promotion", "description": "Products on sale", "color": "#ef4444"})
    services.tags.add_tag({"name": "Eco-friendly", "description": "Grown sustainably"})
    return services.tags


def test_add_tag_derives_id(tags):
    assert [t["id"] for t in tags.get_all_tags()] == ["promotion", "eco-friendly"]
    tag = tags.get_tag("eco-friendly")
    assert tag["color"] == "#6b7280"
    assert tag["created_at"] == tag["updated_at"]
    with pytest.raises(TagExistsError):
        tags.add_tag({"name": "Promotion"})


def test_update_tag_keeps_id(tags):
    updated = tags.update_tag("promotion", {"id": "sale", "name": "On sale"})
    assert (updated["id"], updated["name"]) == ("promotion", "On sale")
    assert tags.update_tag("missing", {"name": "x"}) is None


def test_search_tags(tags):
    assert [t["id"] for t in tags.search_tags("SUSTAIN")] == ["eco-friendly"]
    assert len(tags.search_tags("")) == 2


def test_product_links(services, catalog, tags):
    rose_id, vase_id = catalog["rose"]["id"], catalog["vase"]["id"]
    assert tags.set_product_tags(rose_id, ["promotion", "eco-friendly", "promotion"]) == ["promotion", "eco-friendly"]
    assert tags.add_tag_to_product(vase_id, "promotion")
    assert tags.add_tag_to_product(vase_id, "promotion") is False

    assert [t["id"] for t in tags.get_product_tags(rose_id)] == ["promotion", "eco-friendly"]
    assert [p["id"] for p in tags.get_products_by_tag("promotion")] == [rose_id, vase_id]

    assert tags.remove_tag_from_product(vase_id, "promotion")
    assert tags.remove_tag_from_product(vase_id, "promotion") is False
    assert vase_id not in tags.get_all_product_tags()

    tags.set_product_tags(rose_id, [])
    assert tags.get_all_product_tags() == {}


def test_links_are_validated(catalog, tags):
    with pytest.raises(UnknownTagError):
        tags.add_tag_to_product(catalog["rose"]["id"], "nope")
    with pytest.raises(ProductNotFoundError):
        tags.set_product_tags("ghost", ["promotion"])
    assert tags.get_all_product_tags() == {}


def test_delete_tag_unlinks_products(catalog, tags):
    rose_id = catalog["rose"]["id"]
    tags.set_product_tags(rose_id, ["promotion", "eco-friendly"])
    tags.set_product_tags(catalog["vase"]["id"], ["promotion"])
    assert tags.delete_tag("promotion")
    assert tags.delete_tag("promotion") is False
    assert tags.get_all_product_tags() == {rose_id: ["eco-friendly"]}


def test_deleting_product_drops_its_tags(services, catalog, tags):
    tags.set_product_tags(catalog["rose"]["id"], ["promotion"])
    assert services.products.delete_product(catalog["rose"]["id"])
    assert tags.get_all_product_tags() == {}


def test_seed_default_tags(services, catalog):
    products = services.products.get_all_products()
    services.tags.seed_default_tags(products)
    services.tags.seed_default_tags(products)
    assert len(services.tags.get_all_tags()) == 4
    assert services.tags.get_all_product_tags() == {
        catalog["rose"]["id"]: ["new", "bestseller"],
        catalog["vase"]["id"]: ["promotion"],
    }
