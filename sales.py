import logging
import uuid
from datetime import datetime, timezone
from typing import Iterable, List, Optional

from catalog import Catalog
from errors import InsufficientStockError, ValidationError
from schemas import CustomerInfo, Sale

logger = logging.getLogger(__name__)


class Ledger:
    """Completed sales, oldest first. Entries are frozen once appended."""

    def __init__(self, sales: Iterable[Sale] = ()):
        self._sales: List[Sale] = list(sales)

    def __len__(self) -> int:
        return len(self._sales)

    def replace(self, sales: Iterable[Sale]) -> None:
        self._sales = list(sales)

    def append(self, sale: Sale) -> None:
        self._sales.append(sale)

    def all(self) -> List[Sale]:
        return list(self._sales)


def _normalize_customer(customer: Optional[CustomerInfo], require_name: bool) -> Optional[CustomerInfo]:
    if customer is None or not customer.full_name.strip():
        if require_name:
            raise ValidationError("Customer name is required")
        # walk-in sale
        return None
    return customer.model_copy(update={
        "full_name": customer.full_name.strip(),
        "address": customer.address.strip(),
        "id_card": customer.id_card.strip(),
    })


def record_sale(
    catalog: Catalog,
    ledger: Ledger,
    product_id: str,
    quantity: int,
    customer: Optional[CustomerInfo] = None,
    require_customer_name: bool = True,
    now: Optional[datetime] = None,
) -> Sale:
    """
    Sell `quantity` units of a product.

    All checks run before anything changes; the stock decrement and the
    ledger append are then applied back to back, so callers holding the
    shop lock never observe one without the other.
    """
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")
    product = catalog.get(product_id)
    if quantity > product.stock:
        raise InsufficientStockError(
            f"Only {product.stock} of {product.name} left, cannot sell {quantity}"
        )
    buyer = _normalize_customer(customer, require_customer_name)

    sale = Sale(
        id=str(uuid.uuid4()),
        product_id=product.id,
        product_name=product.name,
        quantity=quantity,
        selling_price=product.selling_price,
        purchase_price=product.purchase_price,
        total_amount=product.selling_price * quantity,
        timestamp=now or datetime.now(timezone.utc),
        customer=buyer,
    )
    catalog.put(product.model_copy(update={"stock": product.stock - quantity}))
    ledger.append(sale)
    logger.info("Sold %d x %s (%s), %d left", quantity, product.id, product.name, product.stock - quantity)
    return sale
