import logging
from typing import Any, Dict, List, Optional

from categories import CategoryTree, PRODUCTS_KEY
from database import Storage, generate_id, now_iso
from errors import InvalidQuantityError
from schemas import Product
from tags import PRODUCT_TAGS_KEY

logger = logging.getLogger(__name__)


class ProductRepository:
    """CRUD over the product catalog plus the stock reads/writes used by orders."""

    def __init__(self, storage: Storage, categories: CategoryTree):
        self.storage = storage
        self.categories = categories

    def get_all_products(self) -> List[Dict[str, Any]]:
        return self.storage.get(PRODUCTS_KEY, [])

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        return next((p for p in self.get_all_products() if p["id"] == product_id), None)

    def get_products_by_category(self, category_id: str, include_subcategories: bool = True) -> List[Dict[str, Any]]:
        products = self.get_all_products()
        if not include_subcategories:
            return [p for p in products if p.get("category") == category_id]
        wanted = {category_id, *self.categories.get_subcategory_ids(category_id)}
        return [p for p in products if p.get("category") in wanted]

    def get_popular_products(self, limit: int = 0) -> List[Dict[str, Any]]:
        popular = [p for p in self.get_all_products() if p.get("popular")]
        return popular[:limit] if limit > 0 else popular

    def get_featured_products(self, limit: int = 0) -> List[Dict[str, Any]]:
        featured = [p for p in self.get_all_products() if p.get("featured")]
        return featured[:limit] if limit > 0 else featured

    def search_products(self, query: Optional[str]) -> List[Dict[str, Any]]:
        products = self.get_all_products()
        if not query:
            return products
        term = query.lower()
        return [
            p for p in products
            if term in p.get("name", "").lower()
            or term in (p.get("description") or "").lower()
            or term in (p.get("sku") or "").lower()
            or term in (p.get("category") or "").lower()
        ]

    def add_product(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if not data.get("id"):
            data["id"] = generate_id("prod")
        timestamp = now_iso()
        data["created_at"] = timestamp
        data["updated_at"] = timestamp
        product = Product(**data).model_dump()
        with self.storage.transaction() as tx:
            products = tx.get(PRODUCTS_KEY, [])
            products.append(product)
            tx.set(PRODUCTS_KEY, products)
        logger.info("Product %s added", product["id"])
        return product

    def update_product(self, product_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in data.items() if k not in ("id", "created_at")}
        with self.storage.transaction() as tx:
            products = tx.get(PRODUCTS_KEY, [])
            index = next((i for i, p in enumerate(products) if p["id"] == product_id), None)
            if index is None:
                return None
            updated = Product(**{**products[index], **changes, "updated_at": now_iso()}).model_dump()
            products[index] = updated
            tx.set(PRODUCTS_KEY, products)
        return updated

    def delete_product(self, product_id: str) -> bool:
        with self.storage.transaction() as tx:
            products = tx.get(PRODUCTS_KEY, [])
            remaining = [p for p in products if p["id"] != product_id]
            if len(remaining) == len(products):
                return False
            tx.set(PRODUCTS_KEY, remaining)
            links = tx.get(PRODUCT_TAGS_KEY, {})
            if links.pop(product_id, None) is not None:
                tx.set(PRODUCT_TAGS_KEY, links)
        logger.info("Product %s deleted", product_id)
        return True

    def update_product_stock(self, product_id: str, new_stock: Optional[int]) -> Optional[Dict[str, Any]]:
        if new_stock is not None and new_stock < 0:
            raise InvalidQuantityError(f"Stock cannot be negative ({new_stock})")
        return self.update_product(product_id, {"stock": new_stock})
