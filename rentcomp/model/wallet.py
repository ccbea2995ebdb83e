from __future__ import annotations
import logging
from typing import Any, Dict

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import require_int
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..payments import PaymentAdapter
from . import bookings

logger = logging.getLogger(__name__)


async def get_balance(
    db: AsyncSession, gated: Gated, customer_id: int
) -> Dict[str, int]:
    async with gated():
        async with db.begin():
            balance = (await db.execute(
                text("SELECT wallet FROM customer WHERE id = :id"),
                {"id": customer_id},
            )).scalar_one_or_none()
    if balance is None:
        raise HTTPException(404, detail="Customer not found")
    return {"balance": int(balance)}


async def create_payment(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    customer_id: int,
    payload: dict,
) -> Dict[str, Any]:
    """Start a gateway payment for a wallet top-up."""
    amount = require_int(payload, "amount")
    if amount <= 0:
        raise HTTPException(
            400, detail="Payment amount must be greater than zero"
        )
    purpose = payload.get("purpose") or bookings.TYPE_TOP_UP
    if purpose != bookings.TYPE_TOP_UP:
        # rentals and services carry their own metadata; they start from
        # /admin/rental and /admin/services/purchase
        raise HTTPException(400, detail="purpose must be Top-Up")

    async with gated():
        async with db.begin():
            await bookings.ensure_customer(db, customer_id)

    order_id = bookings.new_order_id("order", customer_id)
    async with timeit("gateway.charge"):
        charge = await adapter.charge_gopay(order_id, amount)

    async with gated():
        async with db.begin():
            await bookings.insert_transaction(
                db,
                customer_id=customer_id,
                transaction_type=purpose,
                amount=amount,
                method=bookings.METHOD_BANK_TRANSFER,
                status=bookings.STATUS_PENDING,
                order_id=order_id,
                payment_url=charge["payment_url"],
            )

    logger.info("top-up %s of %s started for customer %s",
                order_id, amount, customer_id)
    return {
        "message": "Payment request created",
        "transaction_id": charge["transaction_id"],
        "order_id": charge["order_id"],
        "payment_url": charge["payment_url"],
        "gross_amount": charge["gross_amount"],
        "status": charge["status"],
    }
