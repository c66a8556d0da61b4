import logging
import re
import time
from typing import Any, Dict, List, Optional

from database import Storage
from errors import CategoryCycleError, CategoryExistsError, CategoryInUseError, UnknownCategoryError
from schemas import Category

logger = logging.getLogger(__name__)

CATEGORIES_KEY = "categories"
PRODUCTS_KEY = "products"
UNCATEGORIZED = "uncategorized"


def slugify(name: str) -> str:
    slug = name.lower()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[\s_-]+", "-", slug)
    return slug.strip("-")


def _by_order(categories: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return sorted(categories, key=lambda c: c.get("order") or 0)


class CategoryTree:
    """
    Flat list of categories linked by parent pointers.

    The parent graph is kept acyclic on every write (add, update, reorder);
    reads therefore walk it without a cycle guard, except get_category_path
    which also has to cope with dangling parent ids.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def get_all_categories(self) -> List[Dict[str, Any]]:
        return self.storage.get(CATEGORIES_KEY, [])

    def get_category(self, category_id: str) -> Optional[Dict[str, Any]]:
        return next((c for c in self.get_all_categories() if c["id"] == category_id), None)

    def get_main_categories(self) -> List[Dict[str, Any]]:
        return _by_order([c for c in self.get_all_categories() if not c.get("parent_id")])

    def get_child_categories(self, parent_id: str) -> List[Dict[str, Any]]:
        return _by_order([c for c in self.get_all_categories() if c.get("parent_id") == parent_id])

    def get_category_path(self, category_id: str) -> List[Dict[str, Any]]:
        """Root-to-node list. A missing parent truncates the path silently."""
        by_id = {c["id"]: c for c in self.get_all_categories()}
        path: List[Dict[str, Any]] = []
        seen = set()
        current = category_id
        while current and current not in seen:
            category = by_id.get(current)
            if category is None:
                break
            seen.add(current)
            path.insert(0, category)
            current = category.get("parent_id")
        return path

    def get_subcategory_ids(self, category_id: str) -> List[str]:
        categories = self.get_all_categories()
        return self._descendants(categories, category_id)

    def _descendants(self, categories: List[Dict[str, Any]], category_id: str) -> List[str]:
        children = [c["id"] for c in categories if c.get("parent_id") == category_id]
        ids = list(children)
        for child_id in children:
            ids.extend(self._descendants(categories, child_id))
        return ids

    @staticmethod
    def _would_cycle(categories: List[Dict[str, Any]], category_id: str, parent_id: Optional[str]) -> bool:
        by_id = {c["id"]: c for c in categories}
        current = parent_id
        seen = set()
        while current and current not in seen:
            if current == category_id:
                return True
            seen.add(current)
            parent = by_id.get(current)
            if parent is None:
                break
            current = parent.get("parent_id")
        return False

    def add_category(self, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        with self.storage.transaction() as tx:
            categories = tx.get(CATEGORIES_KEY, [])
            if not data.get("id"):
                data["id"] = slugify(data.get("name") or "") or f"cat-{int(time.time() * 1000)}"
            if any(c["id"] == data["id"] for c in categories):
                raise CategoryExistsError(data["id"])
            parent_id = data.get("parent_id") or None
            if parent_id and not any(c["id"] == parent_id for c in categories):
                raise UnknownCategoryError(parent_id)
            data["parent_id"] = parent_id
            if data.get("order") is None:
                siblings = [c for c in categories if (c.get("parent_id") or None) == parent_id]
                data["order"] = max((c.get("order") or 0 for c in siblings), default=0) + 1
            category = Category(**data).model_dump()
            categories.append(category)
            tx.set(CATEGORIES_KEY, categories)
        logger.info("Category %s added under %s", category["id"], parent_id or "root")
        return category

    def update_category(self, category_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in data.items() if k != "id"}
        with self.storage.transaction() as tx:
            categories = tx.get(CATEGORIES_KEY, [])
            index = next((i for i, c in enumerate(categories) if c["id"] == category_id), None)
            if index is None:
                return None
            if "parent_id" in changes:
                parent_id = changes["parent_id"] or None
                changes["parent_id"] = parent_id
                if parent_id:
                    if not any(c["id"] == parent_id for c in categories):
                        raise UnknownCategoryError(parent_id)
                    if self._would_cycle(categories, category_id, parent_id):
                        raise CategoryCycleError(category_id, parent_id)
            updated = Category(**{**categories[index], **changes}).model_dump()
            categories[index] = updated
            tx.set(CATEGORIES_KEY, categories)
        return updated

    def reorder_category(self, category_id: str, new_order: int, new_parent_id: Optional[str] = None) -> bool:
        """Move a category to position ``new_order`` under ``new_parent_id``.

        The other children of the new parent are renumbered 1..n around the
        freed slot.
        """
        new_parent_id = new_parent_id or None
        with self.storage.transaction() as tx:
            categories = tx.get(CATEGORIES_KEY, [])
            if not any(c["id"] == category_id for c in categories):
                return False
            if new_parent_id:
                if not any(c["id"] == new_parent_id for c in categories):
                    raise UnknownCategoryError(new_parent_id)
                if self._would_cycle(categories, category_id, new_parent_id):
                    raise CategoryCycleError(category_id, new_parent_id)

            siblings = _by_order([
                c for c in categories
                if c["id"] != category_id and (c.get("parent_id") or None) == new_parent_id
            ])
            positions = {}
            position = 1
            for sibling in siblings:
                if position == new_order:
                    position += 1
                positions[sibling["id"]] = position
                position += 1

            for category in categories:
                if category["id"] == category_id:
                    category["order"] = new_order
                    category["parent_id"] = new_parent_id
                elif category["id"] in positions:
                    category["order"] = positions[category["id"]]
            tx.set(CATEGORIES_KEY, categories)
        return True

    def delete_category(self, category_id: str, reassign_products: bool = False) -> bool:
        with self.storage.transaction() as tx:
            categories = tx.get(CATEGORIES_KEY, [])
            target = next((c for c in categories if c["id"] == category_id), None)
            if target is None:
                return False
            parent_id = target.get("parent_id") or None

            products = tx.get(PRODUCTS_KEY, [])
            in_category = [p for p in products if p.get("category") == category_id]
            if in_category and not reassign_products:
                raise CategoryInUseError(category_id, len(in_category))
            if in_category:
                new_category = parent_id or UNCATEGORIZED
                for product in in_category:
                    product["category"] = new_category
                tx.set(PRODUCTS_KEY, products)
                logger.info("Moved %d product(s) from %s to %s", len(in_category), category_id, new_category)

            remaining = []
            for category in categories:
                if category["id"] == category_id:
                    continue
                if category.get("parent_id") == category_id:
                    category["parent_id"] = parent_id
                remaining.append(category)
            tx.set(CATEGORIES_KEY, remaining)
        logger.info("Category %s deleted", category_id)
        return True
