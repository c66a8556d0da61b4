"""
Order lifecycle: checkout from the cart, status transitions, cancellation.

    pending -> processing -> shipped -> delivered
       |            |
       +------------+--> cancelled

Cancelling puts every tracked line item back in stock. Checkout and
cancellation each run as one storage transaction, so stock, cart and order
collections are committed together or not at all.
"""
import logging
from typing import Any, Dict, List, Optional

from addresses import AddressBook
from cart import CartService, cart_total
from categories import PRODUCTS_KEY
from database import Storage, generate_id, now_iso
from errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidStatusError,
    InvalidTransitionError,
    MissingAddressError,
    ProductNotFoundError,
)
from schemas import AddressSnapshot, Order, OrderItem

logger = logging.getLogger(__name__)

ORDERS_KEY = "orders"

PENDING = "pending"
PROCESSING = "processing"
SHIPPED = "shipped"
DELIVERED = "delivered"
CANCELLED = "cancelled"
ORDER_STATUSES = (PENDING, PROCESSING, SHIPPED, DELIVERED, CANCELLED)

TRANSITIONS = {
    PENDING: {PROCESSING, CANCELLED},
    PROCESSING: {SHIPPED, CANCELLED},
    SHIPPED: {DELIVERED},
    DELIVERED: set(),
    CANCELLED: set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


class OrderService:
    def __init__(self, storage: Storage, cart: CartService, addresses: AddressBook):
        self.storage = storage
        self.cart = cart
        self.addresses = addresses

    def get_user_orders(self, user_id: str) -> List[Dict[str, Any]]:
        return self.storage.get(ORDERS_KEY, {}).get(user_id, [])

    def get_order(self, user_id: str, order_id: str) -> Optional[Dict[str, Any]]:
        return next((o for o in self.get_user_orders(user_id) if o["id"] == order_id), None)

    def get_all_orders(self) -> List[Dict[str, Any]]:
        orders = []
        for user_id, user_orders in self.storage.get(ORDERS_KEY, {}).items():
            orders.extend({**order, "user_id": user_id} for order in user_orders)
        return sorted(orders, key=lambda o: o.get("created_at") or "", reverse=True)

    def get_any_order(self, order_id: str) -> Optional[Dict[str, Any]]:
        for user_id, user_orders in self.storage.get(ORDERS_KEY, {}).items():
            for order in user_orders:
                if order["id"] == order_id:
                    return {**order, "user_id": user_id}
        return None

    def create_order(self, user_id: str, shipping_address_id: Optional[str], billing_address_id: Optional[str],
                     payment_method: str, shipping_cost: float = 0) -> Dict[str, Any]:
        with self.storage.transaction() as tx:
            cart = self.cart.get_cart(user_id=user_id)
            if not cart:
                raise EmptyCartError()

            shipping = self.addresses.get_address(user_id, shipping_address_id) if shipping_address_id else None
            billing = self.addresses.get_address(user_id, billing_address_id) if billing_address_id else None
            if not shipping or not billing:
                raise MissingAddressError()

            products = tx.get(PRODUCTS_KEY, [])
            by_id = {p["id"]: p for p in products}
            for item in cart:
                product = by_id.get(item["product"]["id"])
                if product is None:
                    raise ProductNotFoundError(item["product"]["id"])
                stock = product.get("stock")
                if stock is not None and item["quantity"] > stock:
                    raise InsufficientStockError(stock, product_name=product["name"])

            for item in cart:
                product = by_id[item["product"]["id"]]
                if product.get("stock") is not None:
                    product["stock"] -= item["quantity"]
                    product["updated_at"] = now_iso()
                    logger.info("Stock of %s decreased to %d", product["id"], product["stock"])
            tx.set(PRODUCTS_KEY, products)

            subtotal = cart_total(cart)
            timestamp = now_iso()
            order = Order(
                id=generate_id("order"),
                user_id=user_id,
                items=[
                    OrderItem(
                        product_id=item["product"]["id"],
                        name=item["product"]["name"],
                        price=item["product"]["price"],
                        quantity=item["quantity"],
                        image=(item["product"].get("images") or [None])[0],
                    )
                    for item in cart
                ],
                shipping_address=AddressSnapshot(**shipping),
                billing_address=AddressSnapshot(**billing),
                status=PENDING,
                payment_method=payment_method,
                subtotal=subtotal,
                shipping_cost=shipping_cost or 0,
                total=round(subtotal + (shipping_cost or 0), 2),
                status_history=[{"status": PENDING, "date": timestamp, "comment": "Order created"}],
                created_at=timestamp,
                updated_at=timestamp,
            ).model_dump()

            all_orders = tx.get(ORDERS_KEY, {})
            all_orders.setdefault(user_id, []).append(order)
            tx.set(ORDERS_KEY, all_orders)

            self.cart.clear_cart(user_id=user_id)
        logger.info("Order %s created for %s (total %.2f)", order["id"], user_id, order["total"])
        return order

    def update_order_status(self, order_id: str, status: str, comment: str = "") -> Optional[Dict[str, Any]]:
        if status not in ORDER_STATUSES:
            raise InvalidStatusError(status)
        with self.storage.transaction() as tx:
            all_orders = tx.get(ORDERS_KEY, {})
            order = None
            for user_orders in all_orders.values():
                order = next((o for o in user_orders if o["id"] == order_id), None)
                if order is not None:
                    break
            if order is None:
                return None
            if not can_transition(order["status"], status):
                raise InvalidTransitionError(order["status"], status)

            timestamp = now_iso()
            order["status"] = status
            order["updated_at"] = timestamp
            order.setdefault("status_history", []).append({
                "status": status,
                "date": timestamp,
                "comment": comment or f'Status changed to "{status}"',
            })

            if status == CANCELLED:
                self._restock(tx, order["items"])
            tx.set(ORDERS_KEY, all_orders)
        logger.info("Order %s moved to %s", order_id, status)
        return order

    def _restock(self, tx, items: List[Dict[str, Any]]) -> None:
        products = tx.get(PRODUCTS_KEY, [])
        by_id = {p["id"]: p for p in products}
        for item in items:
            product = by_id.get(item["product_id"])
            if product is None or product.get("stock") is None:
                continue
            product["stock"] += item["quantity"]
            product["updated_at"] = now_iso()
            logger.info("Stock of %s restored to %d", product["id"], product["stock"])
        tx.set(PRODUCTS_KEY, products)

    def cancel_order(self, order_id: str, reason: str = "") -> Optional[Dict[str, Any]]:
        return self.update_order_status(order_id, CANCELLED, reason or "Order cancelled by customer")
