import pytest

from errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidStatusError,
    InvalidTransitionError,
    MissingAddressError,
    ProductNotFoundError,
)
from orders import TRANSITIONS, can_transition

USER_ID = "user-1"


def place_order(services, addresses, shipping_cost=0):
    shipping, billing = addresses
    return services.orders.create_order(USER_ID, shipping["id"], billing["id"], "card", shipping_cost=shipping_cost)


def test_create_order_totals_and_history(services, catalog, addresses):
    services.cart.add_to_cart(catalog["rose"]["id"], 2, user_id=USER_ID)
    order = place_order(services, addresses, shipping_cost=7.90)

    assert order["subtotal"] == 50.0
    assert order["total"] == 57.90
    assert order["status"] == "pending"
    assert [h["status"] for h in order["status_history"]] == ["pending"]
    assert order["items"][0]["product_id"] == catalog["rose"]["id"]
    assert order["shipping_address"]["city"] == "Lyon"

    assert services.products.get_product(catalog["rose"]["id"])["stock"] == 0
    assert services.cart.get_cart(user_id=USER_ID) == []
    assert services.orders.get_order(USER_ID, order["id"]) == order


def test_cart_listeners_hear_about_checkout_after_commit(services, catalog, addresses):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    seen = []
    services.cart.subscribe(lambda owner, cart: seen.append((len(cart), len(services.orders.get_user_orders(owner)))))
    place_order(services, addresses)
    assert seen == [(0, 1)]


def test_cancel_restores_stock(services, catalog, addresses):
    services.cart.add_to_cart(catalog["rose"]["id"], 2, user_id=USER_ID)
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    order = place_order(services, addresses)

    cancelled = services.orders.cancel_order(order["id"])
    assert cancelled["status"] == "cancelled"
    assert cancelled["status_history"][-1]["comment"] == "Order cancelled by customer"
    assert services.products.get_product(catalog["rose"]["id"])["stock"] == 2
    assert services.products.get_product(catalog["vase"]["id"])["stock"] is None


def test_create_order_requires_cart_and_addresses(services, catalog, addresses):
    with pytest.raises(EmptyCartError):
        place_order(services, addresses)
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    with pytest.raises(MissingAddressError):
        services.orders.create_order(USER_ID, None, addresses[1]["id"], "card")
    with pytest.raises(MissingAddressError):
        services.orders.create_order(USER_ID, "addr-unknown", addresses[1]["id"], "card")


def test_stock_checked_before_anything_changes(services, catalog, addresses):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    services.cart.add_to_cart(catalog["rose"]["id"], 2, user_id=USER_ID)
    services.products.update_product_stock(catalog["rose"]["id"], 1)

    with pytest.raises(InsufficientStockError) as exc:
        place_order(services, addresses)
    assert exc.value.available == 1
    assert exc.value.product_name == "Red Roses"
    assert services.products.get_product(catalog["rose"]["id"])["stock"] == 1
    assert len(services.cart.get_cart(user_id=USER_ID)) == 2
    assert services.orders.get_user_orders(USER_ID) == []


def test_deleted_product_blocks_checkout(services, catalog, addresses):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    services.products.delete_product(catalog["vase"]["id"])
    with pytest.raises(ProductNotFoundError):
        place_order(services, addresses)


def test_status_transitions(services, catalog, addresses):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    order = place_order(services, addresses)

    with pytest.raises(InvalidTransitionError):
        services.orders.update_order_status(order["id"], "delivered")
    with pytest.raises(InvalidStatusError):
        services.orders.update_order_status(order["id"], "lost")

    services.orders.update_order_status(order["id"], "processing")
    shipped = services.orders.update_order_status(order["id"], "shipped", "Colissimo 123")
    assert shipped["status_history"][-1]["comment"] == "Colissimo 123"
    with pytest.raises(InvalidTransitionError):
        services.orders.cancel_order(order["id"])
    delivered = services.orders.update_order_status(order["id"], "delivered")
    assert [h["status"] for h in delivered["status_history"]] == ["pending", "processing", "shipped", "delivered"]
    assert services.orders.update_order_status("order-missing", "processing") is None


def test_terminal_states():
    assert TRANSITIONS["delivered"] == set()
    assert not can_transition("cancelled", "pending")
    assert can_transition("pending", "cancelled")
    assert can_transition("processing", "cancelled")


def test_admin_views_span_users(services, catalog, addresses):
    services.cart.add_to_cart(catalog["vase"]["id"], 1, user_id=USER_ID)
    order = place_order(services, addresses)
    all_orders = services.orders.get_all_orders()
    assert [o["id"] for o in all_orders] == [order["id"]]
    assert all_orders[0]["user_id"] == USER_ID
    assert services.orders.get_any_order(order["id"])["user_id"] == USER_ID
    assert services.orders.get_any_order("order-missing") is None
