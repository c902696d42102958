import logging
import re
import unicodedata
import uuid
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from errors import NotFoundError, ValidationError
from schemas import Product, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

_COMBINING_MARKS = re.compile("[\u0300-\u036f]")


def fold_accents(text: str) -> str:
    """Lowercase and strip Vietnamese diacritics: "Cà Phê Sữa" -> "ca phe sua"."""
    decomposed = unicodedata.normalize("NFD", text)
    stripped = _COMBINING_MARKS.sub("", decomposed)
    return stripped.replace("đ", "d").replace("Đ", "D").lower()


def new_product_id() -> str:
    return uuid.uuid4().hex[:8].upper()


class Catalog:
    """In-memory product list, kept in insertion order."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {}
        self.replace(products)

    def __len__(self) -> int:
        return len(self._products)

    def replace(self, products: Iterable[Product]) -> None:
        self._products = {p.id: p for p in products}

    def all(self) -> List[Product]:
        return list(self._products.values())

    def get(self, product_id: str) -> Product:
        product = self._products.get(product_id)
        if product is None:
            raise NotFoundError(f"Product {product_id} not found")
        return product

    def find(self, product_id: Optional[str]) -> Optional[Product]:
        if not product_id:
            return None
        return self._products.get(product_id)

    def put(self, product: Product) -> None:
        # dicts keep their original insertion slot on overwrite
        self._products[product.id] = product

    def add_product(self, data: ProductCreate) -> Product:
        if not data.name.strip():
            raise ValidationError("Product name is required")
        if not data.image_url:
            raise ValidationError("A product photo is required")

        product_id = new_product_id()
        while product_id in self._products:
            product_id = new_product_id()

        product = Product(
            id=product_id,
            created_at=datetime.now(timezone.utc),
            **data.model_dump(),
        )
        self._products[product.id] = product
        logger.info("Added product %s (%s), stock %d", product.id, product.name, product.stock)
        return product

    def update_product(self, product_id: str, patch: ProductUpdate) -> Product:
        existing = self.get(product_id)
        changes = patch.model_dump(exclude_none=True)
        added = changes.pop("add_stock", 0)

        if "name" in changes and not changes["name"].strip():
            raise ValidationError("Product name is required")
        if "image_url" in changes and not changes["image_url"]:
            raise ValidationError("A product photo is required")

        changes["stock"] = changes.get("stock", existing.stock) + added
        updated = existing.model_copy(update=changes)
        self.put(updated)
        logger.info("Updated product %s", product_id)
        return updated

    def restock(self, product_id: str, delta: int) -> Product:
        if delta < 1:
            raise ValidationError("Restock quantity must be at least 1")
        existing = self.get(product_id)
        updated = existing.model_copy(update={"stock": existing.stock + delta})
        self.put(updated)
        logger.info("Restocked %s by %d, now %d", product_id, delta, updated.stock)
        return updated

    def list_products(self, query: Optional[str] = None) -> List[Product]:
        if not query or not query.strip():
            return self.all()
        needle = fold_accents(query.strip())
        return [
            p for p in self._products.values()
            if needle in fold_accents(f"{p.name} {p.brand or ''} {p.id}")
        ]
