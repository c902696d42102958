"""
Persistence gateway.

The local MongoDB store is authoritative. A hosted PostgREST endpoint (the
Supabase REST API, for instance) can be configured as a mirror: every local
write is pushed there afterwards, and failures on that side only get logged.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Union

import pydantic
import requests
from pymongo import ReplaceOne
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError, PyMongoError

from database import create_document, get_documents, to_document
from errors import PersistenceError, ValidationError
from schemas import Product, Sale, Settings, Snapshot

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = "1.0"
SESSION_KEY = "session"
SETTINGS_KEY = "shop"


class MongoStore:
    def __init__(self, database: Database):
        self.db = database

    @property
    def name(self) -> str:
        return self.db.name

    def collections(self) -> List[str]:
        try:
            return self.db.list_collection_names()
        except PyMongoError as exc:
            raise PersistenceError(f"Local store unreachable: {exc}") from exc

    def load_catalog(self) -> List[Product]:
        try:
            docs = get_documents("product", sort="created_at", database=self.db)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not read products: {exc}") from exc
        return [Product.model_validate(d) for d in docs]

    def load_sales(self) -> List[Sale]:
        try:
            docs = get_documents("sale", sort="timestamp", database=self.db)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not read sales: {exc}") from exc
        return [Sale.model_validate(d) for d in docs]

    def save_catalog(self, products: Iterable[Product]) -> None:
        self._replace_all("product", products)

    def save_sale(self, sale: Sale) -> None:
        try:
            create_document("sale", sale, database=self.db)
        except DuplicateKeyError:
            logger.debug("Sale %s already stored", sale.id)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not write sale {sale.id}: {exc}") from exc

    def save_all_sales(self, sales: Iterable[Sale]) -> None:
        self._replace_all("sale", sales)

    def load_session(self) -> Optional[str]:
        doc = self._get_setting(SESSION_KEY)
        return doc.get("token") if doc else None

    def save_session(self, token: str) -> None:
        self._put_setting(SESSION_KEY, {"token": token})

    def clear_session(self) -> None:
        try:
            self.db.settings.delete_one({"_id": SESSION_KEY})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not clear session: {exc}") from exc

    def load_settings(self) -> Optional[Settings]:
        doc = self._get_setting(SETTINGS_KEY)
        return Settings.model_validate(doc) if doc else None

    def save_settings(self, settings: Settings) -> None:
        self._put_setting(SETTINGS_KEY, settings.model_dump())

    def _replace_all(self, collection_name: str, items: Iterable[pydantic.BaseModel]) -> None:
        docs = [to_document(item) for item in items]
        collection = self.db[collection_name]
        try:
            if docs:
                collection.bulk_write([ReplaceOne({"_id": d["_id"]}, d, upsert=True) for d in docs])
            collection.delete_many({"_id": {"$nin": [d["_id"] for d in docs]}})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not write {collection_name} collection: {exc}") from exc

    def _get_setting(self, key: str) -> Optional[dict]:
        try:
            return self.db.settings.find_one({"_id": key})
        except PyMongoError as exc:
            raise PersistenceError(f"Could not read {key}: {exc}") from exc

    def _put_setting(self, key: str, values: dict) -> None:
        values = dict(values, updated_at=datetime.now(timezone.utc))
        try:
            self.db.settings.update_one({"_id": key}, {"$set": values}, upsert=True)
        except PyMongoError as exc:
            raise PersistenceError(f"Could not write {key}: {exc}") from exc


class RemoteMirror:
    """Upserts rows into a PostgREST table, keyed on `id`."""

    def __init__(self, url: str, api_key: str, timeout: float = 5.0, session: Optional[requests.Session] = None):
        self.url = url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    def _headers(self, **extra) -> dict:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        headers.update(extra)
        return headers

    def push(self, table: str, rows: List[pydantic.BaseModel]) -> None:
        if not rows:
            return
        payload = [r.model_dump(mode="json", by_alias=True) for r in rows]
        response = self.session.post(
            f"{self.url}/rest/v1/{table}",
            params={"on_conflict": "id"},
            json=payload,
            headers=self._headers(Prefer="resolution=merge-duplicates"),
            timeout=self.timeout,
        )
        response.raise_for_status()

    def fetch(self, table: str, order: str) -> List[dict]:
        response = self.session.get(
            f"{self.url}/rest/v1/{table}",
            params={"select": "*", "order": order},
            headers=self._headers(),
            timeout=self.timeout,
        )
        response.raise_for_status()
        return response.json()


class HybridGateway:
    """Local store first; the mirror is written best-effort and read only to seed an empty store."""

    def __init__(self, local: MongoStore, mirror: Optional[RemoteMirror] = None):
        self.local = local
        self.mirror = mirror

    def status(self) -> dict:
        info = {
            "database": "❌ Not Available",
            "database_name": self.local.name,
            "collections": [],
            "mirror": "✅ Configured" if self.mirror is not None else "Not configured",
        }
        try:
            info["collections"] = self.local.collections()
            info["database"] = "✅ Connected & Working"
        except PersistenceError as e:
            info["database"] = f"⚠️ Error: {str(e)[:80]}"
        return info

    def load_catalog(self) -> List[Product]:
        products = self.local.load_catalog()
        if products or self.mirror is None:
            return products
        remote = self._pull("products", "createdAt.asc", Product)
        if remote:
            logger.info("Seeding local store with %d products from the mirror", len(remote))
            self.local.save_catalog(remote)
        return remote

    def load_sales(self) -> List[Sale]:
        sales = self.local.load_sales()
        if sales or self.mirror is None:
            return sales
        remote = self._pull("sales", "timestamp.asc", Sale)
        if remote:
            logger.info("Seeding local store with %d sales from the mirror", len(remote))
            self.local.save_all_sales(remote)
        return remote

    def save_catalog(self, products: List[Product]) -> None:
        self.local.save_catalog(products)
        self._push("products", products)

    def save_sale(self, sale: Sale) -> None:
        self.local.save_sale(sale)
        self._push("sales", [sale])

    def save_all_sales(self, sales: List[Sale]) -> None:
        self.local.save_all_sales(sales)
        self._push("sales", sales)

    def load_session(self) -> Optional[str]:
        return self.local.load_session()

    def save_session(self, token: str) -> None:
        self.local.save_session(token)

    def clear_session(self) -> None:
        self.local.clear_session()

    def load_settings(self) -> Optional[Settings]:
        return self.local.load_settings()

    def save_settings(self, settings: Settings) -> None:
        self.local.save_settings(settings)

    def _push(self, table: str, rows: list) -> None:
        if self.mirror is None:
            return
        try:
            self.mirror.push(table, rows)
        except requests.RequestException as exc:
            logger.warning("Mirror sync of %s skipped: %s", table, exc)

    def _pull(self, table: str, order: str, model) -> list:
        try:
            return [model.model_validate(row) for row in self.mirror.fetch(table, order)]
        except (requests.RequestException, pydantic.ValidationError) as exc:
            logger.debug("Mirror fetch of %s failed, using local data: %s", table, exc)
            return []


def export_snapshot(products: Iterable[Product], sales: Iterable[Sale], now: Optional[datetime] = None) -> Snapshot:
    return Snapshot(
        version=SNAPSHOT_VERSION,
        timestamp=now or datetime.now(timezone.utc),
        products=list(products),
        sales=list(sales),
    )


def snapshot_json(snapshot: Snapshot) -> str:
    return snapshot.model_dump_json(by_alias=True, indent=2)


def snapshot_filename(snapshot: Snapshot) -> str:
    return f"SmartShop_Backup_{snapshot.timestamp.date().isoformat()}.json"


def import_snapshot(data: Union[bytes, str, dict]) -> Snapshot:
    """Parse a backup file; both the products and the sales arrays must be present."""
    if isinstance(data, (bytes, str)):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise ValidationError("Backup file is not valid JSON") from exc

    if not isinstance(data, dict) or not isinstance(data.get("products"), list) or not isinstance(data.get("sales"), list):
        raise ValidationError("Backup file must contain products and sales arrays")

    data = dict(data)
    data.setdefault("version", "unknown")
    data.setdefault("timestamp", datetime.now(timezone.utc))
    try:
        return Snapshot.model_validate(data)
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Backup file has {exc.error_count()} invalid field(s)") from exc


def storage_usage(snapshot: Snapshot) -> dict:
    size = len(snapshot.model_dump_json(by_alias=True).encode("utf-8"))
    if size < 1024:
        text = f"{size} B"
    elif size < 1024 * 1024:
        text = f"{size / 1024:.2f} KB"
    else:
        text = f"{size / (1024 * 1024):.2f} MB"
    return {"bytes": size, "text": text}
