import pytest

from errors import InvalidEmailError


def test_subscribe_normalizes_and_deduplicates(services):
    assert services.newsletter.add_subscriber("  Lucie@ChezFlora.fr ")
    assert services.newsletter.add_subscriber("lucie@chezflora.fr") is False
    assert services.newsletter.is_subscribed("LUCIE@chezflora.fr")
    subscribers = services.newsletter.get_all_subscribers()
    assert [s["email"] for s in subscribers] == ["lucie@chezflora.fr"]
    assert subscribers[0]["subscribed_at"]


def test_invalid_email_is_rejected(services):
    with pytest.raises(InvalidEmailError):
        services.newsletter.add_subscriber("not-an-email")
    assert services.newsletter.get_all_subscribers() == []


def test_unsubscribe(services):
    services.newsletter.add_subscriber("lucie@chezflora.fr")
    assert services.newsletter.remove_subscriber("Lucie@chezflora.fr")
    assert services.newsletter.remove_subscriber("lucie@chezflora.fr") is False


def test_export_csv(services):
    services.newsletter.add_subscriber("lucie@chezflora.fr")
    services.newsletter.add_subscriber("paul@chezflora.fr")
    lines = services.newsletter.export_subscribers_csv().splitlines()
    assert lines[0] == "Email,SubscribedAt"
    assert [line.split(",")[0] for line in lines[1:]] == ["lucie@chezflora.fr", "paul@chezflora.fr"]
