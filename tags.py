import logging
import time
from typing import Any, Dict, List, Optional

from categories import PRODUCTS_KEY, slugify
from database import Storage, now_iso
from errors import ProductNotFoundError, TagExistsError, UnknownTagError
from schemas import Tag

logger = logging.getLogger(__name__)

TAGS_KEY = "tags"
PRODUCT_TAGS_KEY = "product_tags"

DEFAULT_TAGS: List[dict] = [
    {"id": "promotion", "name": "Promotion", "description": "Products on sale", "color": "#ef4444"},
    {"id": "new", "name": "New", "description": "New arrivals", "color": "#3b82f6"},
    {"id": "bestseller", "name": "Bestseller", "description": "Our best-selling products", "color": "#f59e0b"},
    {"id": "eco-friendly", "name": "Eco-friendly", "description": "Grown and packed sustainably", "color": "#22c55e"},
]


class TagService:
    """
    Tags and their links to products. Links are stored as a map from product
    id to a list of tag ids; a product with no tags has no entry.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def get_all_tags(self) -> List[Dict[str, Any]]:
        return self.storage.get(TAGS_KEY, [])

    def get_tag(self, tag_id: str) -> Optional[Dict[str, Any]]:
        return next((t for t in self.get_all_tags() if t["id"] == tag_id), None)

    def search_tags(self, query: Optional[str]) -> List[Dict[str, Any]]:
        tags = self.get_all_tags()
        if not query:
            return tags
        term = query.lower()
        return [t for t in tags if term in t["name"].lower() or term in (t.get("description") or "").lower()]

    def add_tag(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if not data.get("id"):
            data["id"] = slugify(data.get("name") or "") or f"tag-{int(time.time() * 1000)}"
        timestamp = now_iso()
        tag = Tag(**{**data, "created_at": timestamp, "updated_at": timestamp}).model_dump()
        with self.storage.transaction() as tx:
            tags = tx.get(TAGS_KEY, [])
            if any(t["id"] == tag["id"] for t in tags):
                raise TagExistsError(tag["id"])
            tags.append(tag)
            tx.set(TAGS_KEY, tags)
        logger.info("Tag %s added", tag["id"])
        return tag

    def update_tag(self, tag_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in data.items() if k not in ("id", "created_at")}
        with self.storage.transaction() as tx:
            tags = tx.get(TAGS_KEY, [])
            index = next((i for i, t in enumerate(tags) if t["id"] == tag_id), None)
            if index is None:
                return None
            updated = Tag(**{**tags[index], **changes, "updated_at": now_iso()}).model_dump()
            tags[index] = updated
            tx.set(TAGS_KEY, tags)
        return updated

    def delete_tag(self, tag_id: str) -> bool:
        """Delete a tag and unlink it from every product."""
        with self.storage.transaction() as tx:
            tags = tx.get(TAGS_KEY, [])
            remaining = [t for t in tags if t["id"] != tag_id]
            if len(remaining) == len(tags):
                return False
            links = tx.get(PRODUCT_TAGS_KEY, {})
            kept = {}
            for product_id, tag_ids in links.items():
                tag_ids = [t for t in tag_ids if t != tag_id]
                if tag_ids:
                    kept[product_id] = tag_ids
            tx.set(TAGS_KEY, remaining)
            tx.set(PRODUCT_TAGS_KEY, kept)
        logger.info("Tag %s deleted", tag_id)
        return True

    # ---------- Product links ----------

    def get_all_product_tags(self) -> Dict[str, List[str]]:
        return self.storage.get(PRODUCT_TAGS_KEY, {})

    def get_product_tags(self, product_id: str) -> List[Dict[str, Any]]:
        tag_ids = self.get_all_product_tags().get(product_id, [])
        return [t for t in self.get_all_tags() if t["id"] in tag_ids]

    def get_products_by_tag(self, tag_id: str) -> List[Dict[str, Any]]:
        links = self.get_all_product_tags()
        return [p for p in self.storage.get(PRODUCTS_KEY, []) if tag_id in links.get(p["id"], [])]

    def _check(self, tx, product_id: str, tag_ids: List[str]) -> None:
        if not any(p["id"] == product_id for p in tx.get(PRODUCTS_KEY, [])):
            raise ProductNotFoundError(product_id)
        known = {t["id"] for t in tx.get(TAGS_KEY, [])}
        for tag_id in tag_ids:
            if tag_id not in known:
                raise UnknownTagError(tag_id)

    def set_product_tags(self, product_id: str, tag_ids: List[str]) -> List[str]:
        tag_ids = list(dict.fromkeys(tag_ids))
        with self.storage.transaction() as tx:
            self._check(tx, product_id, tag_ids)
            links = tx.get(PRODUCT_TAGS_KEY, {})
            if tag_ids:
                links[product_id] = tag_ids
            else:
                links.pop(product_id, None)
            tx.set(PRODUCT_TAGS_KEY, links)
        return tag_ids

    def add_tag_to_product(self, product_id: str, tag_id: str) -> bool:
        with self.storage.transaction() as tx:
            self._check(tx, product_id, [tag_id])
            links = tx.get(PRODUCT_TAGS_KEY, {})
            current = links.get(product_id, [])
            if tag_id in current:
                return False
            links[product_id] = current + [tag_id]
            tx.set(PRODUCT_TAGS_KEY, links)
        return True

    def remove_tag_from_product(self, product_id: str, tag_id: str) -> bool:
        with self.storage.transaction() as tx:
            links = tx.get(PRODUCT_TAGS_KEY, {})
            current = links.get(product_id, [])
            if tag_id not in current:
                return False
            current.remove(tag_id)
            if current:
                links[product_id] = current
            else:
                links.pop(product_id)
            tx.set(PRODUCT_TAGS_KEY, links)
        return True

    def seed_default_tags(self, products: List[Dict[str, Any]]) -> None:
        """Add the default tags and tag the first few products, on an empty tag list only."""
        if self.get_all_tags():
            return
        with self.storage.transaction():
            for tag in DEFAULT_TAGS:
                self.add_tag(tag)
            for product, tag_ids in zip(products, (["new", "bestseller"], ["promotion"], ["eco-friendly"])):
                self.set_product_tags(product["id"], tag_ids)
        logger.info("Seeded %d default tags", len(DEFAULT_TAGS))
