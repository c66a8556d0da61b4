from datetime import datetime, timezone

import pytest

from database import parse_iso
from errors import InvalidStatusError

USER = {"id": "user-1", "email": "claire@chezflora.fr", "first_name": "Claire", "last_name": "Martin"}


@pytest.fixture
def quote(services):
    return services.quotes.create_quote(USER, {"title": "Wedding in June", "event_type": "wedding", "budget": 800})


def test_create_quote(services, quote):
    assert quote["status"] == "pending"
    assert quote["customer_name"] == "Claire Martin"
    assert quote["customer_email"] == "claire@chezflora.fr"
    assert [h["status"] for h in quote["status_history"]] == ["pending"]
    assert services.quotes.get_user_quotes("user-1") == [quote]
    assert services.quotes.get_quote("user-2", quote["id"]) is None


def test_send_quote_prices_lines(services, quote):
    sent = services.quotes.send_quote(quote["id"], {
        "quote_items": [
            {"description": "Bridal bouquet", "quantity": 1, "unit_price": 150},
            {"description": "Table centrepiece", "quantity": 10, "unit_price": 45.5},
        ],
        "tax": 121,
    })
    assert sent["status"] == "sent"
    assert sent["subtotal"] == 605.0
    assert sent["total"] == 726.0
    assert parse_iso(sent["valid_until"]) > datetime.now(timezone.utc)
    assert [h["status"] for h in sent["status_history"]] == ["pending", "sent"]
    assert services.quotes.send_quote("quote-missing", {}) is None


def test_accept_decline_cancel(services, quote):
    assert services.quotes.accept_quote(quote["id"])["status"] == "accepted"
    assert services.quotes.decline_quote(quote["id"], "Too expensive")["status_history"][-1]["comment"] == "Too expensive"
    assert services.quotes.cancel_quote(quote["id"])["status"] == "cancelled"
    with pytest.raises(InvalidStatusError):
        services.quotes.update_quote_status(quote["id"], "lost")


def test_admin_views(services, quote):
    other = services.quotes.create_quote({**USER, "id": "user-2"}, {"title": "Funeral wreath"})
    services.quotes.update_quote_status(other["id"], "processing")
    assert {q["user_id"] for q in services.quotes.get_all_quotes()} == {"user-1", "user-2"}
    assert [q["id"] for q in services.quotes.get_quotes_by_status("pending")] == [quote["id"]]
    assert services.quotes.get_any_quote(other["id"])["user_id"] == "user-2"


def test_update_and_delete(services, quote):
    updated = services.quotes.update_quote(quote["id"], {"admin_notes": "Call back Monday", "status_history": []})
    assert updated["admin_notes"] == "Call back Monday"
    assert len(updated["status_history"]) == 1
    assert services.quotes.delete_quote(quote["id"])
    assert services.quotes.delete_quote(quote["id"]) is False
    assert services.quotes.update_quote(quote["id"], {"notes": "x"}) is None
