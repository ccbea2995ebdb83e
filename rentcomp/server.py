from __future__ import annotations
import logging
import os
import sys
from typing import Optional

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import HTMLResponse, ORJSONResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_303_SEE_OTHER

from . import config
from .auth import (
    AdminPrincipal, current_admin, current_customer, current_super_admin
)
from .infra.logs import setup_logging
from .infra.sql import make_async_engine
from .infra.timings import install_shutdown_dump, snapshot
from .model import catalog, confirmation, rentals, reports, services, users
from .model import wallet
from .model.fulfillment import BACKEND as GATE_BACKEND, new_gate
from .model.orm import Base
from .payments import MockPay, PaymentAdapter, PaymentGatewayError, new_adapter

setup_logging(config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# ----------------------------
# Config & Constants
# ----------------------------
if config.DATABASE_URL is None:
    logger.error("NEED DATABASE_URL! e.g. postgresql://user:pw@host/rentcomp")
    sys.exit(1)

MOCKPAY_STATUSES = ("settlement", "deny", "cancel", "expire")

templates = Jinja2Templates(
    directory=os.path.join(os.path.dirname(__file__), "templates")
)

engine, SessionAsync, _, gated = make_async_engine(config.DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session

adapter: PaymentAdapter = new_adapter(
    config.PAYMENT_GATEWAY,
    server_key=config.MIDTRANS_SERVER_KEY,
    env=config.MIDTRANS_ENV,
    callback_url=config.PAYMENT_CALLBACK_URL,
    timeout=config.GATEWAY_TIMEOUT_SECONDS,
)

app = FastAPI(
    title="rentcomp",
    default_response_class=ORJSONResponse,
)

install_shutdown_dump(app)


async def fulfillment_gate(db: AsyncSession = Depends(get_db)):
    # same session as the handler's, so a pg gate commits with the effects
    return new_gate(db=db, r=getattr(app.state, "redis", None))


# ----------------------------
# Error rendering: {"message": ...} everywhere
# ----------------------------
@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException):
    return ORJSONResponse(
        {"message": exc.detail},
        status_code=exc.status_code,
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError):
    return ORJSONResponse({"message": "Invalid request"}, status_code=400)


@app.exception_handler(PaymentGatewayError)
async def _gateway_error(request: Request, exc: PaymentGatewayError):
    logger.error("payment gateway error on %s: %s", request.url.path, exc)
    return ORJSONResponse(
        {"message": "Payment gateway error"}, status_code=502
    )


@app.exception_handler(Exception)
async def _unhandled(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s",
                     request.method, request.url.path)
    return ORJSONResponse(
        {"message": "Internal Server Error"}, status_code=500
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    logger.info("=" * 50)
    logger.info("rentcomp is starting up...")
    logger.info("   - Payment gateway:     %s", adapter.name)
    logger.info("   - Fulfillment gate:    %s",
                "Redis" if GATE_BACKEND == "redis" else "SQL")
    logger.info("=" * 50)


@app.on_event("startup")
async def _db_init():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=config.GATEWAY_TIMEOUT_SECONDS,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=16),
    )
    if hasattr(adapter, "http"):
        adapter.http = app.state.http


@app.on_event("startup")
async def _redis_start():
    if GATE_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            max_connections=config.REDIS_MAX_CONN,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        if getattr(adapter, "http", None) is http:
            adapter.http = None
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Public: accounts
# ----------------------------
@app.post("/customer/register")
async def register_customer(payload: dict, db: AsyncSession = Depends(get_db)):
    return await users.register_customer(db, gated, payload)


@app.post("/customer/login")
async def login_customer(payload: dict, db: AsyncSession = Depends(get_db)):
    return await users.login_customer(db, gated, payload)


@app.post("/admin/register")
async def register_admin(payload: dict, db: AsyncSession = Depends(get_db)):
    return await users.register_admin(db, gated, payload)


@app.post("/admin/login")
async def login_admin(payload: dict, db: AsyncSession = Depends(get_db)):
    return await users.login_admin(db, gated, payload)


# ----------------------------
# Public: catalog
# ----------------------------
@app.get("/computers")
async def get_computers(available: bool = False,
                        db: AsyncSession = Depends(get_db)):
    items = await catalog.list_computers(db, gated, available_only=available)
    return {"items": items}


@app.get("/services")
async def get_services(db: AsyncSession = Depends(get_db)):
    return {"items": await catalog.list_services(db, gated)}


# ----------------------------
# Customer
# ----------------------------
@app.get("/customer/wallet/balance")
async def wallet_balance(
    customer_id: int = Depends(current_customer),
    db: AsyncSession = Depends(get_db),
):
    return await wallet.get_balance(db, gated, customer_id)


@app.post("/customer/wallet/payment")
async def wallet_payment(
    payload: dict,
    customer_id: int = Depends(current_customer),
    db: AsyncSession = Depends(get_db),
):
    return await wallet.create_payment(db, gated, adapter, customer_id, payload)


@app.get("/customer/wallet/payment-status/{order_id}")
async def wallet_payment_status(
    order_id: str,
    customer_id: int = Depends(current_customer),
    db: AsyncSession = Depends(get_db),
    gate=Depends(fulfillment_gate),
):
    return await confirmation.confirm_payment(
        db, gated, adapter, gate, order_id, customer_id=customer_id
    )


@app.get("/customer/booking/report")
async def customer_booking_report(
    recent: bool = False,
    customer_id: int = Depends(current_customer),
    db: AsyncSession = Depends(get_db),
):
    return await reports.booking_report(db, gated, customer_id, recent=recent)


# ----------------------------
# Admin
# ----------------------------
@app.post("/admin/rental")
async def admin_rent_computer(
    payload: dict,
    payment_method: Optional[str] = None,
    admin: AdminPrincipal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await rentals.rent_computer(
        db, gated, adapter, admin, payload, payment_method
    )


@app.post("/admin/rental/{rental_id}/return")
async def admin_return_computer(
    rental_id: int,
    admin: AdminPrincipal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await rentals.return_computer(db, gated, admin, rental_id)


@app.post("/admin/services/purchase")
async def admin_purchase_services(
    payload: dict,
    admin: AdminPrincipal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await services.purchase_services(db, gated, adapter, admin, payload)


@app.post("/admin/computers")
async def admin_add_computer(
    payload: dict,
    admin: AdminPrincipal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await catalog.add_computer(db, gated, admin, payload)


@app.post("/admin/services")
async def admin_upsert_service(
    payload: dict,
    admin: AdminPrincipal = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    return await catalog.upsert_service(db, gated, admin, payload)


@app.post("/admin/revenue-report")
async def admin_revenue_report(
    payload: dict,
    admin: AdminPrincipal = Depends(current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    return await reports.revenue_report(db, gated, admin, payload)


@app.get("/admin/timings")
async def admin_timings(_: AdminPrincipal = Depends(current_super_admin)):
    return snapshot()


# ----------------------------
# Webhook endpoint (gateway notifications)
# ----------------------------
@app.post("/webhook/payment")
async def payments_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gate=Depends(fulfillment_gate),
):
    try:
        payload = await request.json()
    except ValueError:
        raise HTTPException(400, detail="Invalid JSON")
    if not isinstance(payload, dict):
        raise HTTPException(400, detail="Invalid notification")

    event = adapter.verify_notification(payload)
    result = await confirmation.confirm_payment(
        db, gated, adapter, gate, str(event["order_id"])
    )
    return {
        "ok": True,
        "order_id": event["order_id"],
        "transaction_status": result.get("transaction_status"),
        "fulfillment": result["fulfillment"],
    }


# ----------------------------
# MockPay UI (dev only): approve / deny a pending charge
# ----------------------------
def _mockpay() -> MockPay:
    if not isinstance(adapter, MockPay):
        raise HTTPException(404, detail="Not Found")
    return adapter


@app.get("/mockpay/{order_id}", response_class=HTMLResponse)
async def mockpay_screen(request: Request, order_id: str,
                         status: Optional[str] = None):
    mp = _mockpay()
    if not mp.has_order(order_id):
        raise HTTPException(404, detail="payment not found")
    info = await mp.get_status(order_id)
    return templates.TemplateResponse(
        request,
        "mockpay.html",
        {
            "order_id": order_id,
            "amount": info["gross_amount"],
            "current": info["transaction_status"],
            "emitted": status,
            "statuses": MOCKPAY_STATUSES,
            "webhook_url": config.MOCK_WEBHOOK_URL,
        },
    )


@app.post("/mockpay/{order_id}/emit")
async def mockpay_emit(order_id: str, request: Request):
    mp = _mockpay()
    form = await request.form()
    status = form.get("status")
    if status not in MOCKPAY_STATUSES:
        raise HTTPException(400, detail="invalid status")
    if not mp.has_order(order_id):
        raise HTTPException(404, detail="payment not found")

    event = await mp.emit(order_id, status)

    client_http: httpx.AsyncClient = app.state.http
    try:
        await client_http.post(config.MOCK_WEBHOOK_URL, json=event)
    except httpx.HTTPError as e:
        # the customer can still poll payment-status
        logger.warning("mockpay webhook delivery failed: %s", e)

    return RedirectResponse(
        url=f"/mockpay/{order_id}?status={status}",
        status_code=HTTP_303_SEE_OTHER,
    )
