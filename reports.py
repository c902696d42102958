import csv
from datetime import date, datetime, time, timezone, tzinfo
from io import StringIO
from typing import Iterable, List, Optional
from zoneinfo import ZoneInfo

from catalog import fold_accents
from schemas import CatalogStats, Product, Report, Sale, SoldProduct


def get_timezone(name: str) -> tzinfo:
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def start_of_day(day: date, tz: tzinfo = timezone.utc) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo = timezone.utc) -> datetime:
    return datetime.combine(day, time.max, tzinfo=tz)


def _matches_customer(sale: Sale, needle: str) -> bool:
    if sale.customer is None:
        return False
    name = sale.customer.full_name
    id_card = sale.customer.id_card
    return bool(
        (name and needle in fold_accents(name))
        or (id_card and needle in fold_accents(id_card))
    )


def build_report(
    sales: Iterable[Sale],
    date_from: date,
    date_to: date,
    customer_query: Optional[str] = None,
    product_id: Optional[str] = None,
    tz: tzinfo = timezone.utc,
) -> Report:
    """
    Aggregate the sales recorded between the start of `date_from` and the end
    of `date_to` (both inclusive, in `tz`).

    Cost and profit use the prices copied onto each sale, never the current
    catalog prices. The input is not modified; rows come back newest first.
    """
    start = start_of_day(date_from, tz)
    end = end_of_day(date_to, tz)
    rows = [s for s in sales if start <= s.timestamp <= end]

    if customer_query and customer_query.strip():
        needle = fold_accents(customer_query.strip())
        rows = [s for s in rows if _matches_customer(s, needle)]

    if product_id:
        rows = [s for s in rows if s.product_id == product_id]

    revenue = sum(s.total_amount for s in rows)
    cost = sum(s.purchase_price * s.quantity for s in rows)
    return Report(
        sales=sorted(rows, key=lambda s: s.timestamp, reverse=True),
        revenue=revenue,
        cost=cost,
        profit=revenue - cost,
        count=len(rows),
    )


def catalog_stats(products: Iterable[Product], low_stock_threshold: int = 5) -> CatalogStats:
    products = list(products)
    return CatalogStats(
        count=len(products),
        total_items=sum(p.stock for p in products),
        investment=sum(p.purchase_price * p.stock for p in products),
        low_stock=[p.id for p in products if p.stock < low_stock_threshold],
    )


def sold_products(sales: Iterable[Sale]) -> List[SoldProduct]:
    # one entry per product id, first name seen
    seen = {}
    for sale in sales:
        if sale.product_id not in seen:
            seen[sale.product_id] = sale.product_name
    return [SoldProduct(id=pid, name=name) for pid, name in seen.items()]


def report_csv(report: Report, walk_in_label: str = "Khách lẻ", tz: tzinfo = timezone.utc) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(["id", "timestamp", "product_id", "product_name", "quantity", "selling_price", "total_amount", "customer", "id_card"])
    for s in report.sales:
        customer = s.customer.full_name if s.customer else walk_in_label
        id_card = s.customer.id_card if s.customer else ""
        writer.writerow([
            s.id, s.timestamp.astimezone(tz).isoformat(), s.product_id, s.product_name, s.quantity, s.selling_price, s.total_amount, customer, id_card
        ])
    return output.getvalue()
