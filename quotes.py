from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from database import Storage, generate_id, now_iso
from errors import InvalidStatusError
from schemas import Quote

QUOTES_KEY = "quotes"

QUOTE_STATUSES = ("pending", "processing", "sent", "accepted", "declined", "expired", "cancelled")
QUOTE_VALIDITY_DAYS = 30


class QuoteService:
    """Custom arrangement quote requests (weddings, events), one list per user."""

    def __init__(self, storage: Storage):
        self.storage = storage

    def get_user_quotes(self, user_id: str) -> List[Dict[str, Any]]:
        return self.storage.get(QUOTES_KEY, {}).get(user_id, [])

    def get_quote(self, user_id: str, quote_id: str) -> Optional[Dict[str, Any]]:
        return next((q for q in self.get_user_quotes(user_id) if q["id"] == quote_id), None)

    def get_all_quotes(self) -> List[Dict[str, Any]]:
        quotes = []
        for user_id, user_quotes in self.storage.get(QUOTES_KEY, {}).items():
            quotes.extend({**q, "user_id": user_id} for q in user_quotes)
        return sorted(quotes, key=lambda q: q.get("created_at") or "", reverse=True)

    def get_any_quote(self, quote_id: str) -> Optional[Dict[str, Any]]:
        return next((q for q in self.get_all_quotes() if q["id"] == quote_id), None)

    def get_quotes_by_status(self, status: str) -> List[Dict[str, Any]]:
        return [q for q in self.get_all_quotes() if q.get("status") == status]

    def create_quote(self, user: Dict[str, Any], data: Dict[str, Any]) -> Dict[str, Any]:
        timestamp = now_iso()
        quote = Quote(
            id=generate_id("quote"),
            user_id=user["id"],
            title=data.get("title") or "Quote request",
            event_type=data.get("event_type"),
            event_date=data.get("event_date"),
            description=data.get("description"),
            budget=data.get("budget"),
            customer_name=f"{user.get('first_name', '')} {user.get('last_name', '')}".strip(),
            customer_email=user["email"],
            customer_phone=data.get("phone"),
            address=data.get("address"),
            attachments=data.get("attachments") or [],
            notes=data.get("notes") or "",
            status_history=[{"status": "pending", "date": timestamp, "comment": "Quote request created"}],
            created_at=timestamp,
            updated_at=timestamp,
        ).model_dump()
        with self.storage.transaction() as tx:
            all_quotes = tx.get(QUOTES_KEY, {})
            all_quotes.setdefault(user["id"], []).append(quote)
            tx.set(QUOTES_KEY, all_quotes)
        return quote

    def _edit(self, quote_id: str, edit) -> Optional[Dict[str, Any]]:
        with self.storage.transaction() as tx:
            all_quotes = tx.get(QUOTES_KEY, {})
            for user_quotes in all_quotes.values():
                index = next((i for i, q in enumerate(user_quotes) if q["id"] == quote_id), None)
                if index is not None:
                    updated = Quote(**edit(user_quotes[index])).model_dump()
                    user_quotes[index] = updated
                    tx.set(QUOTES_KEY, all_quotes)
                    return updated
        return None

    def update_quote(self, quote_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: v for k, v in data.items() if k not in ("id", "status_history", "created_at")}
        return self._edit(quote_id, lambda q: {**q, **changes, "updated_at": now_iso()})

    def update_quote_status(self, quote_id: str, status: str, comment: str = "") -> Optional[Dict[str, Any]]:
        if status not in QUOTE_STATUSES:
            raise InvalidStatusError(status)

        def apply(quote):
            timestamp = now_iso()
            history = list(quote.get("status_history") or [])
            history.append({"status": status, "date": timestamp, "comment": comment or f'Status changed to "{status}"'})
            return {**quote, "status": status, "status_history": history, "updated_at": timestamp}

        return self._edit(quote_id, apply)

    def accept_quote(self, quote_id: str, comment: str = "") -> Optional[Dict[str, Any]]:
        return self.update_quote_status(quote_id, "accepted", comment or "Quote accepted by customer")

    def decline_quote(self, quote_id: str, reason: str = "") -> Optional[Dict[str, Any]]:
        return self.update_quote_status(quote_id, "declined", reason or "Quote declined by customer")

    def cancel_quote(self, quote_id: str, reason: str = "") -> Optional[Dict[str, Any]]:
        return self.update_quote_status(quote_id, "cancelled", reason or "Quote cancelled")

    def send_quote(self, quote_id: str, details: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Attach priced lines to a quote and mark it sent to the customer."""
        details = dict(details)
        if not details.get("valid_until"):
            details["valid_until"] = (datetime.now(timezone.utc) + timedelta(days=QUOTE_VALIDITY_DAYS)).isoformat()
        if "quote_items" in details and "subtotal" not in details:
            subtotal = sum(line.get("quantity", 1) * line["unit_price"] for line in details["quote_items"])
            details["subtotal"] = round(subtotal, 2)
            details["total"] = round(subtotal + (details.get("tax") or 0), 2)
        with self.storage.transaction():
            if self.update_quote(quote_id, details) is None:
                return None
            return self.update_quote_status(quote_id, "sent", "Quote sent to customer")

    def delete_quote(self, quote_id: str) -> bool:
        with self.storage.transaction() as tx:
            all_quotes = tx.get(QUOTES_KEY, {})
            for user_id, user_quotes in all_quotes.items():
                remaining = [q for q in user_quotes if q["id"] != quote_id]
                if len(remaining) != len(user_quotes):
                    all_quotes[user_id] = remaining
                    tx.set(QUOTES_KEY, all_quotes)
                    return True
        return False
