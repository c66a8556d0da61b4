import pytest

from errors import InsufficientStockError, InvalidQuantityError, ProductNotFoundError

USER = "user-1"
SESSION_ID = "guest-abc"


def test_stock_limit_keeps_quantity(services, catalog):
    rose_id = catalog["rose"]["id"]
    services.cart.add_to_cart(rose_id, 2, user_id=USER)
    with pytest.raises(InsufficientStockError) as exc:
        services.cart.add_to_cart(rose_id, 1, user_id=USER)
    assert exc.value.available == 2
    assert exc.value.to_dict() == {
        "success": False,
        "message": "Requested quantity exceeds available stock (2)",
        "available": 2,
    }
    assert services.cart.get_cart(user_id=USER)[0]["quantity"] == 2


def test_untracked_stock_has_no_limit(services, catalog):
    services.cart.add_to_cart(catalog["vase"]["id"], 50, user_id=USER)
    assert services.cart.get_cart_item_count(user_id=USER) == 50


def test_add_merges_lines_and_snapshots_product(services, catalog):
    vase_id = catalog["vase"]["id"]
    services.cart.add_to_cart(vase_id, user_id=USER)
    cart = services.cart.add_to_cart(vase_id, 2, user_id=USER)
    assert len(cart) == 1
    assert cart[0]["quantity"] == 3
    assert cart[0]["product"] == {"id": vase_id, "name": "Glass Vase", "price": 15.0, "images": [], "sku": None}
    assert services.cart.get_cart_total(user_id=USER) == 45.0


def test_add_rejects_bad_input(services, catalog):
    with pytest.raises(InvalidQuantityError):
        services.cart.add_to_cart(catalog["vase"]["id"], 0, user_id=USER)
    with pytest.raises(ProductNotFoundError):
        services.cart.add_to_cart("missing", 1, user_id=USER)
    with pytest.raises(ValueError):
        services.cart.get_cart()


def test_update_quantity(services, catalog):
    rose_id = catalog["rose"]["id"]
    services.cart.add_to_cart(rose_id, 1, user_id=USER)
    with pytest.raises(InsufficientStockError):
        services.cart.update_cart_item_quantity(rose_id, 3, user_id=USER)
    assert services.cart.update_cart_item_quantity(rose_id, 2, user_id=USER)
    assert services.cart.get_cart(user_id=USER)[0]["quantity"] == 2
    assert services.cart.update_cart_item_quantity(catalog["vase"]["id"], 1, user_id=USER) is False
    assert services.cart.update_cart_item_quantity(rose_id, 0, user_id=USER)
    assert services.cart.get_cart(user_id=USER) == []


def test_remove_and_clear(services, catalog):
    services.cart.add_to_cart(catalog["rose"]["id"], 1, user_id=USER)
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER)
    assert services.cart.remove_from_cart(catalog["rose"]["id"], user_id=USER)
    assert services.cart.remove_from_cart(catalog["rose"]["id"], user_id=USER) is False
    assert services.cart.clear_cart(user_id=USER)
    assert services.cart.get_cart(user_id=USER) == []


def test_guest_cart_lives_in_session_store(services, storage, catalog):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, session_id=SESSION_ID)
    assert storage.local.get("guest_cart") is None
    assert SESSION_ID in storage.session.get("guest_cart")
    assert services.cart.get_cart(user_id=USER) == []


def test_migrate_guest_cart_merges_once(services, catalog):
    vase_id = catalog["vase"]["id"]
    services.cart.add_to_cart(vase_id, 1, user_id=USER)
    services.cart.add_to_cart(vase_id, 2, session_id=SESSION_ID)
    services.cart.add_to_cart(catalog["rose"]["id"], 1, session_id=SESSION_ID)

    assert services.cart.migrate_guest_cart(USER, SESSION_ID)
    assert services.cart.migrate_guest_cart(USER, SESSION_ID) is False

    cart = {item["product"]["id"]: item["quantity"] for item in services.cart.get_cart(user_id=USER)}
    assert cart == {vase_id: 3, catalog["rose"]["id"]: 1}
    assert services.cart.get_cart(session_id=SESSION_ID) == []


def test_migrate_empty_guest_cart(services):
    assert services.cart.migrate_guest_cart(USER, "nobody") is False


def test_listeners_are_notified(services, catalog):
    seen = []
    listener = services.cart.subscribe(lambda owner, cart: seen.append((owner, len(cart))))
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER)
    services.cart.unsubscribe(listener)
    services.cart.clear_cart(user_id=USER)
    assert seen == [(USER, 1)]


def test_listeners_wait_for_outer_commit(services, storage, catalog):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER)
    seen = []
    services.cart.subscribe(lambda owner, cart: seen.append(len(cart)))

    with pytest.raises(RuntimeError):
        with storage.transaction():
            services.cart.clear_cart(user_id=USER)
            raise RuntimeError("checkout failed")
    assert seen == []
    assert services.cart.get_cart_item_count(user_id=USER) == 1

    with storage.transaction():
        services.cart.clear_cart(user_id=USER)
        assert seen == []
    assert seen == [0]


def test_emptied_guest_cart_leaves_session_store(services, storage, catalog):
    vase_id = catalog["vase"]["id"]
    services.cart.add_to_cart(vase_id, 1, session_id=SESSION_ID)
    services.cart.add_to_cart(vase_id, 1, session_id="guest-other")
    services.cart.remove_from_cart(vase_id, session_id=SESSION_ID)
    assert list(storage.session.get("guest_cart")) == ["guest-other"]
    services.cart.clear_cart(session_id="guest-other")
    assert storage.session.get("guest_cart") == {}
    assert services.cart.get_cart(session_id=SESSION_ID) == []


def test_failing_listener_does_not_break_cart(services, catalog):
    def broken(owner, cart):
        raise RuntimeError("listener down")

    services.cart.subscribe(broken)
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER)
    assert services.cart.get_cart_item_count(user_id=USER) == 1


def test_clean_cart_drops_malformed_items(services, storage, catalog):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER)
    carts = storage.local.get("cart")
    carts[USER].append({"product": {"id": "x", "price": "free"}, "quantity": 1})
    carts[USER].append({"quantity": 2})
    storage.local.set("cart", carts)
    cleaned = services.cart.clean_cart(user_id=USER)
    assert [item["product"]["id"] for item in cleaned] == [catalog["vase"]["id"]]
    assert len(services.cart.get_cart(user_id=USER)) == 1
