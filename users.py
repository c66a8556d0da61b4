import logging
from typing import Any, Dict, List, Optional

from auth import hash_password, verify_password
from database import Storage, generate_id, now_iso
from errors import AuthenticationError, DuplicateEmailError, InvalidStatusError, ShopError
from schemas import AuditLog, User

logger = logging.getLogger(__name__)

USERS_KEY = "users"
AUDIT_LOGS_KEY = "audit_logs"
MAX_AUDIT_LOGS = 1000

ROLES = ("client", "admin", "superadmin")
USER_STATUSES = ("active", "suspended", "locked")


def public_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """The user record without its password hash."""
    if user is None:
        return None
    return {k: v for k, v in user.items() if k != "password_hash"}


class UserService:
    """Accounts, credentials and the admin audit trail."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def _all(self) -> List[Dict[str, Any]]:
        return self.storage.get(USERS_KEY, [])

    def get_all_users(self) -> List[Dict[str, Any]]:
        return [public_user(u) for u in self._all()]

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return public_user(next((u for u in self._all() if u["id"] == user_id), None))

    def get_user_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        email = email.lower()
        return public_user(next((u for u in self._all() if u["email"].lower() == email), None))

    def create_user(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Create an account from ``data`` holding a plain ``password``."""
        data = dict(data)
        password = data.pop("password")
        with self.storage.transaction() as tx:
            users = tx.get(USERS_KEY, [])
            if any(u["email"].lower() == data["email"].lower() for u in users):
                raise DuplicateEmailError(data["email"])
            user = User(
                id=data.get("id") or generate_id("user"),
                email=data["email"],
                first_name=data.get("first_name", ""),
                last_name=data.get("last_name", ""),
                password_hash=hash_password(password),
                role=data.get("role") or "client",
                status=data.get("status") or "active",
                created_at=now_iso(),
            ).model_dump()
            users.append(user)
            tx.set(USERS_KEY, users)
        logger.info("User %s created with role %s", user["id"], user["role"])
        return public_user(user)

    def register(self, email: str, password: str, first_name: str, last_name: str) -> Dict[str, Any]:
        return self.create_user({
            "email": email,
            "password": password,
            "first_name": first_name,
            "last_name": last_name,
            "role": "client",
        })

    def update_user(self, user_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in data.items() if k not in ("id", "created_at", "password_hash")}
        if "password" in changes:
            changes["password_hash"] = hash_password(changes.pop("password"))
        with self.storage.transaction() as tx:
            users = tx.get(USERS_KEY, [])
            index = next((i for i, u in enumerate(users) if u["id"] == user_id), None)
            if index is None:
                return None
            new_email = changes.get("email")
            if new_email and new_email.lower() != users[index]["email"].lower():
                if any(i != index and u["email"].lower() == new_email.lower() for i, u in enumerate(users)):
                    raise DuplicateEmailError(new_email)
            updated = User(**{**users[index], **changes, "updated_at": now_iso()}).model_dump()
            users[index] = updated
            tx.set(USERS_KEY, users)
        return public_user(updated)

    def delete_user(self, user_id: str) -> bool:
        with self.storage.transaction() as tx:
            users = tx.get(USERS_KEY, [])
            remaining = [u for u in users if u["id"] != user_id]
            if len(remaining) == len(users):
                return False
            tx.set(USERS_KEY, remaining)
        logger.info("User %s deleted", user_id)
        return True

    def change_user_status(self, user_id: str, status: str) -> Optional[Dict[str, Any]]:
        if status not in USER_STATUSES:
            raise InvalidStatusError(status)
        return self.update_user(user_id, {"status": status})

    def change_user_role(self, user_id: str, role: str) -> Optional[Dict[str, Any]]:
        if role not in ROLES:
            raise ShopError(f"Invalid role: {role}")
        return self.update_user(user_id, {"role": role})

    def change_user_password(self, user_id: str, new_password: str) -> bool:
        return self.update_user(user_id, {"password": new_password}) is not None

    def authenticate(self, email: str, password: str) -> Dict[str, Any]:
        email = email.lower()
        user = next((u for u in self._all() if u["email"].lower() == email), None)
        if user is None:
            raise AuthenticationError("No account found with this email")
        if not verify_password(password, user.get("password_hash", "")):
            raise AuthenticationError("Incorrect password")
        if user.get("status", "active") != "active":
            raise AuthenticationError(f"Account is {user['status']}", status_code=403)
        return public_user(user)

    # ---------- Audit log ----------

    def get_audit_logs(self) -> List[Dict[str, Any]]:
        return self.storage.get(AUDIT_LOGS_KEY, [])

    def add_audit_log(self, action: str, actor_id: Optional[str] = None, target_id: Optional[str] = None,
                      details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        entry = AuditLog(
            id=generate_id("log"),
            timestamp=now_iso(),
            action=action,
            actor_id=actor_id,
            target_id=target_id,
            details=details or {},
        ).model_dump()
        with self.storage.transaction() as tx:
            logs = tx.get(AUDIT_LOGS_KEY, [])
            logs.insert(0, entry)
            tx.set(AUDIT_LOGS_KEY, logs[:MAX_AUDIT_LOGS])
        logger.info("Audit: %s by %s on %s", action, actor_id, target_id)
        return entry
