from typing import Any, Dict, List, Optional

from database import Storage, generate_id
from schemas import Address

ADDRESSES_KEY = "user_addresses"


class AddressBook:
    """Per-user shipping and billing addresses.

    At most one address per (user, type) has ``is_default`` set: setting a
    new default clears the others, and deleting the default promotes the
    first remaining address of that type.
    """

    def __init__(self, storage: Storage):
        self.storage = storage

    def get_user_addresses(self, user_id: str) -> List[Dict[str, Any]]:
        return self.storage.get(ADDRESSES_KEY, {}).get(user_id, [])

    def get_address(self, user_id: str, address_id: str) -> Optional[Dict[str, Any]]:
        return next((a for a in self.get_user_addresses(user_id) if a["id"] == address_id), None)

    def get_addresses_by_type(self, user_id: str, address_type: str) -> List[Dict[str, Any]]:
        return [a for a in self.get_user_addresses(user_id) if a.get("type") == address_type]

    def get_default_address(self, user_id: str, address_type: str) -> Optional[Dict[str, Any]]:
        return next((a for a in self.get_addresses_by_type(user_id, address_type) if a.get("is_default")), None)

    def add_address(self, user_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        data = dict(data)
        if not data.get("id"):
            data["id"] = generate_id("addr")
        address = Address(**data).model_dump()
        with self.storage.transaction() as tx:
            all_addresses = tx.get(ADDRESSES_KEY, {})
            addresses = all_addresses.get(user_id, [])
            same_type = [a for a in addresses if a.get("type") == address["type"]]
            if not same_type:
                address["is_default"] = True
            if address["is_default"]:
                for other in same_type:
                    other["is_default"] = False
            addresses.append(address)
            all_addresses[user_id] = addresses
            tx.set(ADDRESSES_KEY, all_addresses)
        return address

    def update_address(self, user_id: str, address_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in data.items() if k != "id"}
        with self.storage.transaction() as tx:
            all_addresses = tx.get(ADDRESSES_KEY, {})
            addresses = all_addresses.get(user_id, [])
            index = next((i for i, a in enumerate(addresses) if a["id"] == address_id), None)
            if index is None:
                return None
            previous_type = addresses[index].get("type")
            updated = Address(**{**addresses[index], **changes}).model_dump()
            if updated["is_default"]:
                for other in addresses:
                    if other["id"] != address_id and other.get("type") == updated["type"]:
                        other["is_default"] = False
            addresses[index] = updated
            if previous_type != updated["type"]:
                _ensure_default(addresses, previous_type)
                _ensure_default(addresses, updated["type"])
            all_addresses[user_id] = addresses
            tx.set(ADDRESSES_KEY, all_addresses)
        return updated

    def set_default_address(self, user_id: str, address_id: str) -> bool:
        return self.update_address(user_id, address_id, {"is_default": True}) is not None

    def delete_address(self, user_id: str, address_id: str) -> bool:
        with self.storage.transaction() as tx:
            all_addresses = tx.get(ADDRESSES_KEY, {})
            addresses = all_addresses.get(user_id, [])
            address = next((a for a in addresses if a["id"] == address_id), None)
            if address is None:
                return False
            remaining = [a for a in addresses if a["id"] != address_id]
            if address.get("is_default"):
                _ensure_default(remaining, address.get("type"))
            all_addresses[user_id] = remaining
            tx.set(ADDRESSES_KEY, all_addresses)
        return True


def _ensure_default(addresses: List[Dict[str, Any]], address_type: Optional[str]) -> None:
    same_type = [a for a in addresses if a.get("type") == address_type]
    if same_type and not any(a.get("is_default") for a in same_type):
        same_type[0]["is_default"] = True
