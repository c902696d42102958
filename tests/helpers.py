import uuid
from datetime import datetime, timezone

from access import get_pin_hash
from errors import PersistenceError
from schemas import CustomerInfo, ProductCreate, Sale

PIN = "1234"
PIN_HASH = get_pin_hash(PIN)
IMAGE = "data:image/jpeg;base64,/9j/4AAQSkZJRg=="


def product_input(**overrides) -> ProductCreate:
    data = dict(
        name="Cà Phê Sữa",
        brand="Trung Nguyên",
        purchase_price=12000,
        selling_price=20000,
        stock=10,
        image_url=IMAGE,
    )
    data.update(overrides)
    return ProductCreate(**data)


def make_sale(timestamp: datetime, product_id="P1", quantity=1, selling_price=20000, purchase_price=12000,
              customer_name=None, id_card="", product_name="Cà Phê Sữa") -> Sale:
    customer = CustomerInfo(full_name=customer_name, id_card=id_card) if customer_name else None
    return Sale(
        id=str(uuid.uuid4()),
        product_id=product_id,
        product_name=product_name,
        quantity=quantity,
        selling_price=selling_price,
        purchase_price=purchase_price,
        total_amount=selling_price * quantity,
        timestamp=timestamp,
        customer=customer,
    )


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeGateway:
    """In-memory persistence gateway; set `fail` to make every write raise."""

    def __init__(self, products=(), sales=()):
        self.products = list(products)
        self.sales = list(sales)
        self.single_sales = []
        self.session = None
        self.settings = None
        self.fail = False
        self.full_saves = 0

    def _check(self):
        if self.fail:
            raise PersistenceError("disk full")

    def status(self):
        return {"database": "fake", "collections": ["product", "sale"]}

    def load_catalog(self):
        return list(self.products)

    def load_sales(self):
        return list(self.sales)

    def save_catalog(self, products):
        self._check()
        self.products = list(products)
        self.full_saves += 1

    def save_sale(self, sale):
        self._check()
        self.single_sales.append(sale)

    def save_all_sales(self, sales):
        self._check()
        self.sales = list(sales)

    def load_session(self):
        return self.session

    def save_session(self, token):
        self._check()
        self.session = token

    def clear_session(self):
        self._check()
        self.session = None

    def load_settings(self):
        return self.settings

    def save_settings(self, settings):
        self._check()
        self.settings = settings
