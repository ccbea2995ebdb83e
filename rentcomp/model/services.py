from __future__ import annotations
import logging
from typing import Any, Dict

from fastapi import HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AdminPrincipal
from ..helpers import require_int
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..payments import PaymentAdapter
from . import bookings

logger = logging.getLogger(__name__)


async def purchase_services(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    admin: AdminPrincipal,
    payload: dict,
) -> Dict[str, Any]:
    customer_id = require_int(payload, "customer_id", minimum=1)
    services = bookings.parse_service_lines(payload.get("services"))
    if not services:
        raise HTTPException(400, detail="At least one service is required")
    payment_method = payload.get("payment_method")
    if payment_method not in ("wallet", "gopay"):
        raise HTTPException(400, detail="Invalid payment method")

    async with gated():
        async with db.begin():
            await bookings.ensure_customer(db, customer_id)
            total_cost = await bookings.price_services(db, services)

    if payment_method == "gopay":
        order_id = bookings.new_order_id("service", customer_id)
        async with timeit("gateway.charge"):
            charge = await adapter.charge_gopay(order_id, total_cost)
        async with gated():
            async with db.begin():
                await bookings.insert_transaction(
                    db,
                    customer_id=customer_id,
                    transaction_type=bookings.TYPE_SERVICE,
                    amount=total_cost,
                    method=bookings.METHOD_GOPAY,
                    status=bookings.STATUS_PENDING,
                    order_id=order_id,
                    payment_url=charge["payment_url"],
                    meta={
                        "admin_id": admin.admin_id,
                        "services": [s.to_json() for s in services],
                    },
                )
        logger.info("service order %s awaiting gopay payment", order_id)
        return {
            "message": "Payment initiated",
            "order_id": order_id,
            "payment_url": charge["payment_url"],
            "total_cost": total_cost,
        }

    async with timeit("db.services_wallet"):
        async with gated():
            async with db.begin():
                await bookings.charge_wallet(db, customer_id, total_cost)
                await bookings.apply_service_purchase(
                    db, customer_id=customer_id, services=services,
                    strict=True,
                )
                await bookings.insert_transaction(
                    db,
                    customer_id=customer_id,
                    transaction_type=bookings.TYPE_SERVICE,
                    amount=total_cost,
                    method=bookings.METHOD_WALLET,
                    status=bookings.STATUS_SETTLEMENT,
                )

    logger.info(
        "customer %s bought %d service line(s) for %s",
        customer_id, len(services), total_cost,
    )
    return {
        "message": "Services purchased successfully",
        "total_cost": total_cost,
    }
