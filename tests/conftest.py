import pytest

from access import AccessControl
from shop import Shop
from tests.helpers import PIN, PIN_HASH, FakeGateway


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def shop(gateway):
    access = AccessControl(PIN_HASH, "test-secret", store=gateway)
    shop = Shop(gateway, access, persist_delay=60)
    yield shop
    shop.close()


@pytest.fixture
def admin_shop(shop):
    shop.enter_pin(PIN)
    return shop
