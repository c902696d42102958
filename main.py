import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from access import AccessControl, Role, get_pin_hash
from config import (ADMIN_PIN, ALGORITHM, LOG_LEVEL, MIRROR_KEY, MIRROR_TIMEOUT, MIRROR_URL, OPENAI_API_KEY,
                    PERSIST_DELAY_SECONDS, PIN_LOCKOUT_SECONDS, PIN_MAX_ATTEMPTS, PORT, RECOGNITION_MODEL,
                    REPORT_TIMEZONE, REQUIRE_CUSTOMER_NAME, SECRET_KEY, SESSION_EXPIRE_MINUTES)
from database import db
from errors import ShopError
from recognition import OpenAIRecognizer, decode_image
from reports import get_timezone
from schemas import CamelModel, CustomerInfo, Product, ProductCreate, ProductUpdate, Report, Settings
from shop import Shop
from storage import HybridGateway, MongoStore, RemoteMirror, snapshot_filename, snapshot_json

logging.basicConfig(level=getattr(logging, LOG_LEVEL.upper(), logging.INFO), format="[%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def create_shop() -> Shop:
    if db is None:
        raise RuntimeError("DATABASE_URL is not set, the local store is required")
    mirror = RemoteMirror(MIRROR_URL, MIRROR_KEY, timeout=MIRROR_TIMEOUT) if MIRROR_URL else None
    gateway = HybridGateway(MongoStore(db), mirror)
    access = AccessControl(
        get_pin_hash(ADMIN_PIN),
        SECRET_KEY,
        store=gateway,
        algorithm=ALGORITHM,
        session_ttl=timedelta(minutes=SESSION_EXPIRE_MINUTES) if SESSION_EXPIRE_MINUTES else None,
        max_attempts=PIN_MAX_ATTEMPTS,
        lockout_seconds=PIN_LOCKOUT_SECONDS,
    )
    recognizer = OpenAIRecognizer(OPENAI_API_KEY, model=RECOGNITION_MODEL) if OPENAI_API_KEY else None
    return Shop(
        gateway,
        access,
        settings=Settings(require_customer_name=REQUIRE_CUSTOMER_NAME),
        recognizer=recognizer,
        persist_delay=PERSIST_DELAY_SECONDS,
        tz=get_timezone(REPORT_TIMEZONE),
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    shop = create_shop()
    shop.load()
    app.state.shop = shop
    yield
    shop.close()


app = FastAPI(title="SmartShop POS API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ShopError)
async def shop_error_handler(request: Request, exc: ShopError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


# Request bodies
class PinRequest(BaseModel):
    pin: str
    role: Role = Role.ADMIN


class DigitRequest(BaseModel):
    digit: str
    role: Role = Role.ADMIN


class RestockRequest(BaseModel):
    delta: int = Field(..., ge=1)


class SaleRequest(CamelModel):
    product_id: str
    quantity: int = Field(1, ge=1)
    customer: Optional[CustomerInfo] = None


class ScanRequest(CamelModel):
    image: str = Field(..., description="base64 JPEG/PNG, optionally as a data: URI")


# Dependencies
def get_shop(request: Request) -> Shop:
    return request.app.state.shop


def require_admin(shop: Shop = Depends(get_shop)) -> Shop:
    shop.require_admin()
    return shop


# Role-dependent views; purchase prices and profit are admin-only
def product_view(product: Product, admin: bool) -> dict:
    return product.model_dump(mode="json", by_alias=True, exclude=None if admin else {"purchase_price"})


def report_view(report: Report, admin: bool) -> dict:
    if admin:
        return report.model_dump(mode="json", by_alias=True)
    return report.model_dump(
        mode="json", by_alias=True,
        exclude={"cost": True, "profit": True, "sales": {"__all__": {"purchase_price"}}},
    )


@app.get("/")
def read_root():
    return {"message": "SmartShop POS API"}


@app.get("/health")
def health(shop: Shop = Depends(get_shop)):
    info = {"backend": "✅ Running"}
    try:
        info.update(shop.gateway.status())
    except Exception as e:
        info["database"] = f"⚠️ Error: {str(e)[:80]}"
    last_saved = shop.scheduler.last_saved_at
    info.update({
        "pending_save": shop.scheduler.pending,
        "last_saved_at": last_saved.isoformat() if last_saved else None,
        "last_persistence_error": shop.scheduler.last_error,
    })
    return info


# Helper to accept either JSON or form, like the PIN pad posts
async def parse_pin_request(request: Request) -> PinRequest:
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return PinRequest(pin=str(form.get("pin") or ""), role=form.get("role") or Role.ADMIN)
    data = await request.json()
    return PinRequest(**data)


# Access
@app.post("/auth/pin")
async def enter_pin(request: Request, shop: Shop = Depends(get_shop)):
    try:
        req = await parse_pin_request(request)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    role = shop.enter_pin(req.pin, req.role)
    return {"role": role.value}


@app.post("/auth/pin/digit")
def press_digit(req: DigitRequest, shop: Shop = Depends(get_shop)):
    role = shop.press_pin_digit(req.digit, req.role)
    return {
        "complete": role is not None,
        "entered": shop.access.pad.entered,
        "role": shop.role.value,
    }


@app.post("/auth/logout")
def logout(shop: Shop = Depends(get_shop)):
    shop.logout()
    return {"role": shop.role.value}


@app.get("/auth/session")
def session(shop: Shop = Depends(get_shop)):
    return {"role": shop.role.value, "lockedFor": round(shop.access.locked_for, 1)}


# Products
@app.get("/products")
def list_products(q: Optional[str] = None, shop: Shop = Depends(get_shop)):
    return [product_view(p, shop.is_admin) for p in shop.list_products(q)]


@app.get("/products/{product_id}")
def get_product(product_id: str, shop: Shop = Depends(get_shop)):
    return product_view(shop.get_product(product_id), shop.is_admin)


@app.post("/products", status_code=201)
def create_product(product: ProductCreate, shop: Shop = Depends(require_admin)):
    return product_view(shop.add_product(product), True)


@app.put("/products/{product_id}")
def update_product(product_id: str, update: ProductUpdate, shop: Shop = Depends(require_admin)):
    return product_view(shop.update_product(product_id, update), True)


@app.post("/products/{product_id}/restock")
def restock(product_id: str, req: RestockRequest, shop: Shop = Depends(require_admin)):
    return product_view(shop.restock(product_id, req.delta), True)


@app.get("/stats")
def stats(shop: Shop = Depends(get_shop)):
    exclude = None if shop.is_admin else {"investment"}
    return shop.stats().model_dump(by_alias=True, exclude=exclude)


# Sales
@app.post("/sales", status_code=201)
def create_sale(req: SaleRequest, shop: Shop = Depends(get_shop)):
    sale = shop.record_sale(req.product_id, req.quantity, req.customer)
    exclude = None if shop.is_admin else {"purchase_price"}
    return sale.model_dump(mode="json", by_alias=True, exclude=exclude)


def _report_for(shop: Shop, date_from: Optional[date], date_to: Optional[date],
                customer: Optional[str], product_id: Optional[str]) -> Report:
    today = datetime.now(shop.tz).date()
    return shop.report(
        date_from or today.replace(day=1),
        date_to or today,
        customer_query=customer,
        product_id=product_id,
    )


@app.get("/sales/report")
def sales_report(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    customer: Optional[str] = None,
    product_id: Optional[str] = Query(None, alias="productId"),
    shop: Shop = Depends(get_shop),
):
    report = _report_for(shop, date_from, date_to, customer, product_id)
    return report_view(report, shop.is_admin)


@app.get("/sales/export")
def export_sales(
    date_from: Optional[date] = Query(None, alias="from"),
    date_to: Optional[date] = Query(None, alias="to"),
    customer: Optional[str] = None,
    product_id: Optional[str] = Query(None, alias="productId"),
    shop: Shop = Depends(get_shop),
):
    report = _report_for(shop, date_from, date_to, customer, product_id)
    return Response(
        content=shop.report_csv(report),
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="sales.csv"'},
    )


@app.get("/sales/products")
def sold_products(shop: Shop = Depends(get_shop)):
    return [p.model_dump(by_alias=True) for p in shop.sold_products()]


# Product recognition
@app.post("/scan", status_code=202)
def start_scan(req: ScanRequest, shop: Shop = Depends(get_shop)):
    job_id = shop.start_scan(decode_image(req.image))
    return {"jobId": job_id, "status": "pending"}


@app.get("/scan/{job_id}")
def scan_status(job_id: str, shop: Shop = Depends(get_shop)):
    status = shop.scan_status(job_id)
    outcome = status.pop("outcome", None)
    if outcome is not None:
        exclude = None if shop.is_admin else {"product": {"purchase_price"}}
        status["outcome"] = outcome.model_dump(mode="json", by_alias=True, exclude=exclude)
    return status


@app.delete("/scan/{job_id}")
def abandon_scan(job_id: str, shop: Shop = Depends(get_shop)):
    return {"abandoned": shop.abandon_scan(job_id)}


# Backups
@app.get("/backup")
def download_backup(shop: Shop = Depends(require_admin)):
    snapshot = shop.export_snapshot()
    return Response(
        content=snapshot_json(snapshot),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{snapshot_filename(snapshot)}"'},
    )


@app.post("/backup")
async def restore_backup(request: Request, shop: Shop = Depends(require_admin)):
    content_type = request.headers.get("content-type", "")
    if "multipart/form-data" in content_type:
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise HTTPException(status_code=400, detail="Attach the backup as 'file'")
        data = await upload.read()
    else:
        data = await request.body()
    snapshot = shop.import_snapshot(data)
    return {"status": "ok", "products": len(snapshot.products), "sales": len(snapshot.sales)}


@app.post("/backup/flush")
def flush_backup(shop: Shop = Depends(require_admin)):
    shop.flush()
    return {"status": "ok"}


@app.get("/backup/usage")
def backup_usage(shop: Shop = Depends(get_shop)):
    return shop.storage_usage()


# Settings
@app.get("/settings")
def get_settings(shop: Shop = Depends(get_shop)):
    return shop.settings.model_dump(by_alias=True)


@app.put("/settings")
def update_settings(s: Settings, shop: Shop = Depends(require_admin)):
    return shop.update_settings(s).model_dump(by_alias=True)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=PORT)
