USER = "user-1"


def address_data(address_type):
    return {
        "type": address_type,
        "first_name": "Claire",
        "last_name": "Martin",
        "address_line1": "12 rue des Lilas",
        "city": "Lyon",
        "postal_code": "69003",
    }


def test_first_address_of_a_type_becomes_default(services):
    shipping = services.addresses.add_address(USER, address_data("shipping"))
    billing = services.addresses.add_address(USER, address_data("billing"))
    assert shipping["is_default"] and billing["is_default"]
    assert shipping["id"].startswith("addr-")
    assert shipping["country"] == "France"


def test_single_default_per_type(services):
    first = services.addresses.add_address(USER, address_data("shipping"))
    second = services.addresses.add_address(USER, {**address_data("shipping"), "is_default": True})
    assert services.addresses.get_default_address(USER, "shipping")["id"] == second["id"]
    assert services.addresses.set_default_address(USER, first["id"])
    defaults = [a for a in services.addresses.get_addresses_by_type(USER, "shipping") if a["is_default"]]
    assert [a["id"] for a in defaults] == [first["id"]]


def test_deleting_default_promotes_another(services):
    first = services.addresses.add_address(USER, address_data("shipping"))
    second = services.addresses.add_address(USER, address_data("shipping"))
    assert services.addresses.delete_address(USER, first["id"])
    assert services.addresses.get_default_address(USER, "shipping")["id"] == second["id"]
    assert services.addresses.delete_address(USER, first["id"]) is False


def test_changing_type_keeps_defaults_consistent(services):
    first = services.addresses.add_address(USER, address_data("shipping"))
    second = services.addresses.add_address(USER, address_data("shipping"))
    moved = services.addresses.update_address(USER, first["id"], {"type": "billing"})
    assert moved["type"] == "billing"
    assert services.addresses.get_default_address(USER, "shipping")["id"] == second["id"]
    assert services.addresses.get_default_address(USER, "billing")["id"] == first["id"]


def test_addresses_are_per_user(services):
    address = services.addresses.add_address(USER, address_data("shipping"))
    assert services.addresses.get_address("user-2", address["id"]) is None
    assert services.addresses.update_address("user-2", address["id"], {"city": "Paris"}) is None
    assert services.addresses.get_user_addresses("user-2") == []
