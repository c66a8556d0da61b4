import csv
import io
from typing import Any, Dict, List

from database import Storage, now_iso
from errors import InvalidEmailError
from schemas import Subscriber

NEWSLETTER_SUBSCRIBERS_KEY = "newsletter_subscribers"


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class NewsletterService:
    def __init__(self, storage: Storage):
        self.storage = storage

    def get_all_subscribers(self) -> List[Dict[str, Any]]:
        return self.storage.get(NEWSLETTER_SUBSCRIBERS_KEY, [])

    def is_subscribed(self, email: str) -> bool:
        email = normalize_email(email)
        return any(s["email"] == email for s in self.get_all_subscribers())

    def add_subscriber(self, email: str) -> bool:
        """Returns False when the address is already subscribed."""
        normalized = normalize_email(email)
        if "@" not in normalized:
            raise InvalidEmailError(email)
        with self.storage.transaction() as tx:
            subscribers = tx.get(NEWSLETTER_SUBSCRIBERS_KEY, [])
            if any(s["email"] == normalized for s in subscribers):
                return False
            subscribers.append(Subscriber(email=normalized, subscribed_at=now_iso()).model_dump())
            tx.set(NEWSLETTER_SUBSCRIBERS_KEY, subscribers)
        return True

    def remove_subscriber(self, email: str) -> bool:
        normalized = normalize_email(email)
        with self.storage.transaction() as tx:
            subscribers = tx.get(NEWSLETTER_SUBSCRIBERS_KEY, [])
            remaining = [s for s in subscribers if s["email"] != normalized]
            if len(remaining) == len(subscribers):
                return False
            tx.set(NEWSLETTER_SUBSCRIBERS_KEY, remaining)
        return True

    def export_subscribers_csv(self) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(["Email", "SubscribedAt"])
        for subscriber in self.get_all_subscribers():
            writer.writerow([subscriber["email"], subscriber.get("subscribed_at", "")])
        return buffer.getvalue()
