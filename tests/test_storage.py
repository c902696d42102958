import json
from datetime import datetime, timezone

import mongomock
import pytest
import requests

from catalog import Catalog
from errors import ValidationError
from schemas import CustomerInfo, Settings
from sales import Ledger, record_sale
from storage import (HybridGateway, MongoStore, RemoteMirror, export_snapshot, import_snapshot, snapshot_filename,
                     snapshot_json, storage_usage)
from tests.helpers import product_input, utc


@pytest.fixture
def store():
    return MongoStore(mongomock.MongoClient().smartshop)


@pytest.fixture
def stocked():
    catalog = Catalog()
    ledger = Ledger()
    coffee = catalog.add_product(product_input())
    catalog.add_product(product_input(name="Trà Xanh", brand=None))
    record_sale(catalog, ledger, coffee.id, 2, CustomerInfo(full_name="Lan", id_card="079"))
    return catalog, ledger


class FakeResponse:
    def __init__(self, status=200, payload=None):
        self.status_code = status
        self.payload = payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self.payload


class FakeSession:
    def __init__(self, response=None, error=None):
        self.response = response or FakeResponse()
        self.error = error
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.response

    def post(self, url, **kwargs):
        return self._respond("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._respond("GET", url, **kwargs)


class FakeMirror:
    def __init__(self, rows=None, error=None):
        self.rows = rows or {}
        self.error = error
        self.pushed = []

    def push(self, table, rows):
        if self.error:
            raise self.error
        self.pushed.append((table, [r.id for r in rows]))

    def fetch(self, table, order):
        if self.error:
            raise self.error
        return self.rows.get(table, [])


def test_catalog_round_trip(store, stocked):
    catalog, _ = stocked
    store.save_catalog(catalog.all())
    loaded = store.load_catalog()
    assert [(p.id, p.name, p.stock, p.brand) for p in loaded] == [(p.id, p.name, p.stock, p.brand) for p in catalog.all()]
    assert all(p.created_at.tzinfo is not None for p in loaded)


def test_save_catalog_replaces_previous_content(store, stocked):
    catalog, _ = stocked
    store.save_catalog(catalog.all())
    keep = catalog.all()[0]
    store.save_catalog([keep])
    assert [p.id for p in store.load_catalog()] == [keep.id]


def test_sales_round_trip(store, stocked):
    _, ledger = stocked
    sale = ledger.all()[0]
    store.save_sale(sale)
    loaded = store.load_sales()
    assert [s.id for s in loaded] == [sale.id]
    assert loaded[0].customer == sale.customer
    assert loaded[0].total_amount == sale.total_amount

    store.save_all_sales([])
    assert store.load_sales() == []


def test_session_and_settings(store):
    assert store.load_session() is None
    store.save_session("token-1")
    assert store.load_session() == "token-1"
    store.clear_session()
    assert store.load_session() is None

    assert store.load_settings() is None
    store.save_settings(Settings(shop_name="Tạp hoá Lan", require_customer_name=False))
    loaded = store.load_settings()
    assert loaded.shop_name == "Tạp hoá Lan"
    assert loaded.require_customer_name is False


def test_hybrid_pushes_to_mirror(store, stocked):
    catalog, ledger = stocked
    mirror = FakeMirror()
    gateway = HybridGateway(store, mirror)

    gateway.save_catalog(catalog.all())
    gateway.save_sale(ledger.all()[0])

    assert mirror.pushed == [
        ("products", [p.id for p in catalog.all()]),
        ("sales", [ledger.all()[0].id]),
    ]
    assert len(store.load_catalog()) == 2


def test_mirror_failure_is_swallowed(store, stocked):
    catalog, _ = stocked
    gateway = HybridGateway(store, FakeMirror(error=requests.ConnectionError("offline")))
    gateway.save_catalog(catalog.all())
    assert len(store.load_catalog()) == 2


def test_empty_local_store_is_seeded_from_mirror(store, stocked):
    catalog, _ = stocked
    rows = [p.model_dump(mode="json", by_alias=True) for p in catalog.all()]
    gateway = HybridGateway(store, FakeMirror(rows={"products": rows}))

    loaded = gateway.load_catalog()

    assert [p.id for p in loaded] == [p.id for p in catalog.all()]
    assert [p.id for p in store.load_catalog()] == [p.id for p in catalog.all()]


def test_local_data_wins_over_mirror(store, stocked):
    catalog, _ = stocked
    store.save_catalog(catalog.all()[:1])
    rows = [p.model_dump(mode="json", by_alias=True) for p in catalog.all()]
    gateway = HybridGateway(store, FakeMirror(rows={"products": rows}))
    assert len(gateway.load_catalog()) == 1


def test_unreachable_mirror_falls_back_to_local(store):
    gateway = HybridGateway(store, FakeMirror(error=requests.Timeout("slow")))
    assert gateway.load_sales() == []


def test_status_reports_collections(store, stocked):
    catalog, _ = stocked
    store.save_catalog(catalog.all())
    info = HybridGateway(store).status()
    assert "product" in info["collections"]
    assert info["database_name"] == "smartshop"


def test_remote_mirror_upserts_with_postgrest_headers(stocked):
    catalog, _ = stocked
    session = FakeSession()
    mirror = RemoteMirror("https://example.supabase.co/", "anon-key", session=session)

    mirror.push("products", catalog.all())

    method, url, kwargs = session.calls[0]
    assert (method, url) == ("POST", "https://example.supabase.co/rest/v1/products")
    assert kwargs["params"] == {"on_conflict": "id"}
    assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates"
    assert kwargs["headers"]["apikey"] == "anon-key"
    assert kwargs["json"][0]["sellingPrice"] == 20000
    assert kwargs["timeout"] == 5.0


def test_remote_mirror_skips_empty_push():
    session = FakeSession()
    RemoteMirror("https://example.supabase.co", "k", session=session).push("sales", [])
    assert session.calls == []


def test_remote_mirror_raises_http_errors():
    session = FakeSession(response=FakeResponse(status=404))
    with pytest.raises(requests.HTTPError):
        RemoteMirror("https://example.supabase.co", "k", session=session).fetch("sales", "timestamp.asc")


def test_snapshot_round_trip(stocked):
    catalog, ledger = stocked
    snapshot = export_snapshot(catalog.all(), ledger.all(), now=utc(2024, 3, 10, 8))

    restored = import_snapshot(snapshot_json(snapshot))

    assert restored.products == catalog.all()
    assert restored.sales == ledger.all()
    assert restored.version == snapshot.version
    assert snapshot_filename(snapshot) == "SmartShop_Backup_2024-03-10.json"


def test_snapshot_uses_camel_case_keys(stocked):
    catalog, ledger = stocked
    data = json.loads(snapshot_json(export_snapshot(catalog.all(), ledger.all())))
    assert set(data) == {"version", "timestamp", "products", "sales"}
    assert "purchasePrice" in data["products"][0]
    assert "totalAmount" in data["sales"][0]


def test_import_accepts_backups_with_epoch_millis():
    backup = {
        "version": "4.5-hybrid",
        "timestamp": 1710057600000,
        "products": [{
            "id": "A1B2C3D4", "name": "Bánh mì", "description": "", "purchasePrice": 8000,
            "sellingPrice": 15000, "stock": 4, "imageUrl": "data:image/jpeg;base64,AA==", "createdAt": 1710057600000,
        }],
        "sales": [{
            "id": "s-1", "productId": "A1B2C3D4", "productName": "Bánh mì", "quantity": 2, "sellingPrice": 15000,
            "purchasePrice": 8000, "totalAmount": 30000, "timestamp": 1710057600000,
            "customer": {"fullName": "Lan", "address": "", "idCard": ""},
        }],
    }
    snapshot = import_snapshot(json.dumps(backup).encode("utf-8"))
    assert snapshot.products[0].created_at == datetime(2024, 3, 10, 8, 0, tzinfo=timezone.utc)
    assert snapshot.sales[0].customer.full_name == "Lan"


@pytest.mark.parametrize("payload", [
    b"not json",
    b"[]",
    json.dumps({"products": []}).encode(),
    json.dumps({"sales": [], "products": {}}).encode(),
    json.dumps({"products": [{"id": "x"}], "sales": []}).encode(),
])
def test_import_rejects_malformed_backups(payload):
    with pytest.raises(ValidationError):
        import_snapshot(payload)


def test_storage_usage_text(stocked):
    catalog, ledger = stocked
    usage = storage_usage(export_snapshot(catalog.all(), ledger.all()))
    assert usage["bytes"] > 0
    assert usage["text"].endswith((" B", " KB"))
