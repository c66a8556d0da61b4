import pytest
from fastapi.testclient import TestClient

from auth import create_token
from database import MemoryKeyValueStore, Storage
from main import Services, app, get_services

USER_ID = "user-1"


@pytest.fixture
def storage():
    return Storage(MemoryKeyValueStore())


@pytest.fixture
def services(storage):
    return Services(storage, poll_interval=0.01)


@pytest.fixture
def catalog(services):
    services.categories.add_category({"id": "bouquets", "name": "Bouquets"})
    services.categories.add_category({"id": "roses", "name": "Roses", "parent_id": "bouquets"})
    rose = services.products.add_product({"name": "Red Roses", "price": 25.0, "stock": 2, "category": "roses"})
    vase = services.products.add_product({"name": "Glass Vase", "price": 15.0, "stock": None, "category": "bouquets"})
    return {"rose": rose, "vase": vase}


def address_data(address_type):
    return {
        "type": address_type,
        "first_name": "Claire",
        "last_name": "Martin",
        "address_line1": "12 rue des Lilas",
        "city": "Lyon",
        "postal_code": "69003",
    }


@pytest.fixture
def addresses(services):
    shipping = services.addresses.add_address(USER_ID, address_data("shipping"))
    billing = services.addresses.add_address(USER_ID, address_data("billing"))
    return shipping, billing


@pytest.fixture
def client(services):
    app.dependency_overrides[get_services] = lambda: services
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def customer(services):
    user = services.users.register("claire@chezflora.fr", "secret123", "Claire", "Martin")
    return user, {"Authorization": f"Bearer {create_token(user)}"}


@pytest.fixture
def admin(services):
    user = services.users.create_user({
        "email": "admin@chezflora.fr",
        "password": "admin-pass",
        "first_name": "Admin",
        "last_name": "ChezFlora",
        "role": "superadmin",
    })
    return user, {"Authorization": f"Bearer {create_token(user)}"}
