"""
Business-rule errors raised by the shop services.

Each error carries the HTTP status the API layer answers with. Not-found
lookups are not errors: services return None / False for those.
"""
from typing import Any, Dict, Optional


class ShopError(Exception):
    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class InsufficientStockError(ShopError):
    status_code = 409

    def __init__(self, available: int, product_name: Optional[str] = None):
        if product_name:
            message = f'Insufficient stock for "{product_name}" (available: {available})'
        else:
            message = f"Requested quantity exceeds available stock ({available})"
        super().__init__(message)
        self.available = available
        self.product_name = product_name

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["available"] = self.available
        return data


class InvalidQuantityError(ShopError):
    pass


class ProductNotFoundError(ShopError):
    status_code = 404

    def __init__(self, product_id: str):
        super().__init__(f"Product not found: {product_id}")
        self.product_id = product_id


class EmptyCartError(ShopError):
    def __init__(self):
        super().__init__("Cart is empty")


class MissingAddressError(ShopError):
    def __init__(self):
        super().__init__("Shipping and billing addresses are required")


class InvalidStatusError(ShopError):
    def __init__(self, status: str):
        super().__init__(f"Invalid status: {status}")
        self.status = status


class InvalidTransitionError(ShopError):
    status_code = 409

    def __init__(self, current: str, target: str):
        super().__init__(f'Cannot move from "{current}" to "{target}"')
        self.current = current
        self.target = target


class UnknownCategoryError(ShopError):
    def __init__(self, category_id: str):
        super().__init__(f"Unknown category: {category_id}")
        self.category_id = category_id


class CategoryExistsError(ShopError):
    status_code = 409

    def __init__(self, category_id: str):
        super().__init__(f"Category already exists: {category_id}")
        self.category_id = category_id


class CategoryCycleError(ShopError):
    status_code = 409

    def __init__(self, category_id: str, parent_id: str):
        super().__init__(f'Category "{category_id}" cannot be moved under its own descendant "{parent_id}"')
        self.category_id = category_id
        self.parent_id = parent_id


class CategoryInUseError(ShopError):
    status_code = 409

    def __init__(self, category_id: str, product_count: int):
        super().__init__(
            f'Category "{category_id}" still holds {product_count} product(s); reassign them to delete it'
        )
        self.category_id = category_id
        self.product_count = product_count


class DuplicateEmailError(ShopError):
    status_code = 409

    def __init__(self, email: str):
        super().__init__("A user with this email already exists")
        self.email = email


class InvalidEmailError(ShopError):
    def __init__(self, email: str):
        super().__init__("Invalid email")
        self.email = email


class AuthenticationError(ShopError):
    status_code = 401


class SchedulingError(ShopError):
    pass


class ConcurrentModificationError(ShopError):
    status_code = 409

    def __init__(self, key: str):
        super().__init__(f'"{key}" was modified concurrently, please retry')
        self.key = key


class TagExistsError(ShopError):
    status_code = 409

    def __init__(self, tag_id: str):
        super().__init__(f"Tag already exists: {tag_id}")
        self.tag_id = tag_id


class UnknownTagError(ShopError):
    def __init__(self, tag_id: str):
        super().__init__(f"Unknown tag: {tag_id}")
        self.tag_id = tag_id
