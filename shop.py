"""
The shop controller: sole owner of the catalog, the ledger and the role.

Every mutation happens under one lock and is visible as soon as the call
returns; persistence is handed to the background scheduler afterwards.
"""

import logging
import threading
from datetime import date, timezone, tzinfo
from typing import List, Optional, Union

from access import AccessControl, Role
from catalog import Catalog
from errors import PermissionDeniedError
from recognition import ScanJobs, candidates_from, resolve_scan
from reports import build_report, catalog_stats, report_csv, sold_products
from sales import Ledger, record_sale
from schemas import (CatalogStats, CustomerInfo, Product, ProductCreate, ProductUpdate, Report, Sale,
                     Settings, Snapshot, SoldProduct)
from storage import export_snapshot, import_snapshot, storage_usage
from sync import PersistScheduler

logger = logging.getLogger(__name__)


class Shop:
    def __init__(
        self,
        gateway,
        access: AccessControl,
        settings: Optional[Settings] = None,
        recognizer=None,
        persist_delay: float = 2.0,
        tz: tzinfo = timezone.utc,
    ):
        self.gateway = gateway
        self.access = access
        self.settings = settings or Settings()
        self.tz = tz
        self.catalog = Catalog()
        self.ledger = Ledger()
        self.scheduler = PersistScheduler(self._save, delay=persist_delay)
        self.scans = ScanJobs(recognizer)
        self._lock = threading.RLock()

    def load(self) -> None:
        with self._lock:
            self.catalog.replace(self.gateway.load_catalog())
            self.ledger.replace(self.gateway.load_sales())
            stored = self.gateway.load_settings()
            if stored is not None:
                self.settings = stored
            self.access.restore()
        logger.info("Loaded %d products and %d sales", len(self.catalog), len(self.ledger))

    def close(self) -> None:
        self.scans.close()
        self.scheduler.close()

    # Access

    @property
    def role(self) -> Role:
        return self.access.role

    @property
    def is_admin(self) -> bool:
        return self.access.is_admin

    def require_admin(self) -> None:
        if not self.access.is_admin:
            raise PermissionDeniedError("Admin PIN required")

    def enter_pin(self, pin: str, role: Role = Role.ADMIN) -> Role:
        with self._lock:
            return self.access.enter_pin(pin, role)

    def press_pin_digit(self, digit: str, role: Role = Role.ADMIN) -> Optional[Role]:
        with self._lock:
            return self.access.press_digit(digit, role)

    def logout(self) -> None:
        with self._lock:
            self.access.logout()

    # Catalog

    def list_products(self, query: Optional[str] = None) -> List[Product]:
        with self._lock:
            return self.catalog.list_products(query)

    def get_product(self, product_id: str) -> Product:
        with self._lock:
            return self.catalog.get(product_id)

    def add_product(self, data: ProductCreate) -> Product:
        with self._lock:
            product = self.catalog.add_product(data)
        self.scheduler.schedule()
        return product

    def update_product(self, product_id: str, patch: ProductUpdate) -> Product:
        with self._lock:
            product = self.catalog.update_product(product_id, patch)
        self.scheduler.schedule()
        return product

    def restock(self, product_id: str, delta: int) -> Product:
        with self._lock:
            product = self.catalog.restock(product_id, delta)
        self.scheduler.schedule()
        return product

    # Sales

    def record_sale(self, product_id: str, quantity: int, customer: Optional[CustomerInfo] = None) -> Sale:
        with self._lock:
            sale = record_sale(
                self.catalog, self.ledger, product_id, quantity, customer,
                require_customer_name=self.settings.require_customer_name,
            )
        self.scheduler.submit(self.gateway.save_sale, sale)
        self.scheduler.schedule()
        return sale

    def sales(self) -> List[Sale]:
        with self._lock:
            return self.ledger.all()

    # Reporting

    def report(self, date_from: date, date_to: date, customer_query: Optional[str] = None,
               product_id: Optional[str] = None) -> Report:
        return build_report(self.sales(), date_from, date_to, customer_query, product_id, tz=self.tz)

    def report_csv(self, report: Report) -> str:
        return report_csv(report, self.settings.walk_in_label, tz=self.tz)

    def stats(self) -> CatalogStats:
        with self._lock:
            products = self.catalog.all()
        return catalog_stats(products, self.settings.low_stock_threshold)

    def sold_products(self) -> List[SoldProduct]:
        return sold_products(self.sales())

    # Settings

    def update_settings(self, settings: Settings) -> Settings:
        with self._lock:
            self.gateway.save_settings(settings)
            self.settings = settings
        logger.info("Settings updated")
        return settings

    # Backups

    def export_snapshot(self) -> Snapshot:
        with self._lock:
            return export_snapshot(self.catalog.all(), self.ledger.all())

    def import_snapshot(self, data: Union[bytes, str, dict]) -> Snapshot:
        snapshot = import_snapshot(data)
        with self._lock:
            self.catalog.replace(snapshot.products)
            self.ledger.replace(snapshot.sales)
        self.scheduler.schedule()
        logger.info("Restored backup with %d products and %d sales", len(snapshot.products), len(snapshot.sales))
        return snapshot

    def storage_usage(self) -> dict:
        return storage_usage(self.export_snapshot())

    def flush(self) -> None:
        self.scheduler.flush()

    def _save(self) -> None:
        with self._lock:
            products = self.catalog.all()
            sales = self.ledger.all()
        self.gateway.save_catalog(products)
        self.gateway.save_all_sales(sales)

    # Recognition

    def start_scan(self, image: bytes) -> str:
        with self._lock:
            candidates = candidates_from(self.catalog.all())
        return self.scans.submit(image, candidates)

    def scan_status(self, job_id: str) -> dict:
        status = self.scans.poll(job_id)
        if status["status"] == "done":
            with self._lock:
                status["outcome"] = resolve_scan(status.pop("result"), self.catalog)
        return status

    def abandon_scan(self, job_id: str) -> bool:
        return self.scans.abandon(job_id)
