"""
Payment confirmation.

The gateway is the source of truth for a payment's status. On every check we
mirror that status onto our transaction row; once it reads paid, the stored
``transaction_type`` decides which side-effect sequence runs:

    Top-Up           -> credit the wallet
    Rental Payment   -> book the computer (+ services) from the metadata
    Service Payment  -> deliver the services from the metadata

The fulfillment gate makes that happen at most once per order, no matter how
often the customer polls or the gateway re-sends its notification.
"""
from __future__ import annotations
import json
import logging
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..payments import PAID_STATUSES, PaymentAdapter
from . import bookings
from .activity import write_log

logger = logging.getLogger(__name__)

APPLIED = "applied"
ALREADY_APPLIED = "already_applied"
NOT_PAID = "not_paid"


def _bad_meta(field: str) -> HTTPException:
    return HTTPException(500, detail=f"Invalid {field} in metadata")


def _load_meta(raw: Optional[str]) -> Dict[str, Any]:
    if not raw:
        raise HTTPException(500, detail="Missing transaction metadata")
    try:
        meta = json.loads(raw)
    except (TypeError, ValueError):
        raise HTTPException(500, detail="Failed to parse transaction metadata")
    if not isinstance(meta, dict):
        raise HTTPException(500, detail="Failed to parse transaction metadata")
    return meta


def _meta_int(meta: dict, field: str, optional: bool = False) -> Optional[int]:
    v = meta.get(field)
    if v is None and optional:
        return None
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise _bad_meta(field)
    return int(v)


def _meta_number(meta: dict, field: str) -> float:
    v = meta.get(field)
    if isinstance(v, bool) or not isinstance(v, (int, float)):
        raise _bad_meta(field)
    return float(v)


def _meta_services(meta: dict) -> List[bookings.ServiceLine]:
    try:
        return bookings.parse_service_lines(meta.get("services"))
    except HTTPException:
        raise _bad_meta("services")


async def _apply(db: AsyncSession, row: dict, gateway: dict) -> None:
    ttype = row["transaction_type"]
    customer_id = int(row["customer_id"])
    amount = int(row["amount"])
    order_id = row["order_id"]

    gross = gateway.get("gross_amount")
    try:
        if gross is not None and int(float(gross)) != amount:
            logger.warning(
                "order %s: gateway gross %s differs from stored amount %s",
                order_id, gross, amount,
            )
    except (TypeError, ValueError):
        logger.warning("order %s: unreadable gross_amount %r",
                       order_id, gross)

    if ttype == bookings.TYPE_TOP_UP:
        await bookings.credit_wallet(db, customer_id, amount)
        await write_log(
            db,
            f"Customer {customer_id} topped up {amount} (order {order_id})",
            customer_id=customer_id,
        )
        logger.info("wallet of customer %s credited %s", customer_id, amount)

    elif ttype == bookings.TYPE_RENTAL:
        meta = _load_meta(row["metadata"])
        activity = meta.get("activity_desc", "")
        if not isinstance(activity, str):
            raise _bad_meta("activity_desc")
        await bookings.apply_rental(
            db,
            customer_id=customer_id,
            computer_id=_meta_int(meta, "computer_id"),
            admin_id=_meta_int(meta, "admin_id", optional=True),
            rental_start=_meta_number(meta, "rental_start"),
            rental_end=_meta_number(meta, "rental_end"),
            total_cost=_meta_int(meta, "total_cost"),
            activity_desc=activity,
            services=_meta_services(meta),
            strict=False,
        )

    elif ttype == bookings.TYPE_SERVICE:
        meta = _load_meta(row["metadata"])
        await bookings.apply_service_purchase(
            db,
            customer_id=customer_id,
            services=_meta_services(meta),
            strict=False,
        )

    else:
        raise HTTPException(
            500, detail=f"Unknown transaction type {ttype!r}"
        )


async def confirm_payment(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    gate,
    order_id: str,
    customer_id: Optional[int] = None,
) -> Dict[str, Any]:
    """Mirror the gateway status and fulfil the order once it is paid.

    ``customer_id`` restricts the lookup to that customer's own orders.
    Returns the gateway status payload plus a ``fulfillment`` field.
    """
    sql = """
        SELECT id, customer_id, transaction_type, amount, status, order_id,
               metadata
        FROM transactions WHERE order_id = :order_id
    """
    params: Dict[str, Any] = {"order_id": order_id}
    if customer_id is not None:
        sql += " AND customer_id = :customer_id"
        params["customer_id"] = customer_id
    async with gated():
        async with db.begin():
            row = (await db.execute(text(sql), params)).mappings().first()
    if row is None:
        raise HTTPException(404, detail="Transaction not found")
    row = dict(row)

    async with timeit("gateway.status"):
        gateway = await adapter.get_status(order_id)
    status = str(gateway.get("transaction_status", "")).lower()
    logger.info("order %s gateway status %s", order_id, status)

    claimed = False
    try:
        async with timeit("db.confirm"):
            async with gated():
                async with db.begin():
                    await db.execute(
                        text("""
                            UPDATE transactions
                            SET status = :status, updated_at = :ts
                            WHERE order_id = :order_id
                        """),
                        {"status": status, "ts": now_ts(),
                         "order_id": order_id},
                    )
                    if status not in PAID_STATUSES:
                        outcome = NOT_PAID
                    else:
                        claimed = await gate.claim(order_id)
                        if not claimed:
                            outcome = ALREADY_APPLIED
                        else:
                            await _apply(db, row, gateway)
                            outcome = APPLIED
    except Exception:
        if claimed:
            await gate.release(order_id)
        raise

    if outcome == APPLIED:
        logger.info("order %s (%s) fulfilled", order_id,
                    row["transaction_type"])
    out = dict(gateway)
    out["fulfillment"] = outcome
    return out
