from __future__ import annotations
import logging
from typing import Any, Dict

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AdminPrincipal
from ..helpers import billable_hours, now_ts, parse_timestamp, require_int
from ..infra.sql import Gated
from ..infra.timings import timeit
from ..payments import PaymentAdapter
from . import bookings
from .activity import write_log

logger = logging.getLogger(__name__)

PAYMENT_METHODS = ("wallet", "gopay")


async def rent_computer(
    db: AsyncSession,
    gated: Gated,
    adapter: PaymentAdapter,
    admin: AdminPrincipal,
    payload: dict,
    payment_method: str | None,
) -> Dict[str, Any]:
    customer_id = require_int(payload, "customer_id", minimum=1)
    computer_id = require_int(payload, "computer_id", minimum=1)
    start = parse_timestamp(payload.get("rental_start"), "rental_start")
    end = parse_timestamp(payload.get("rental_end"), "rental_end")
    services = bookings.parse_service_lines(payload.get("services"))
    activity = payload.get("activity_description") or ""
    if not isinstance(activity, str):
        raise HTTPException(400, detail="activity_description must be a string")

    hours = billable_hours(start, end)
    if hours < 1:
        raise HTTPException(
            400, detail="rental_end must be at least one hour after "
                        "rental_start"
        )
    if payment_method not in PAYMENT_METHODS:
        raise HTTPException(400, detail="Invalid payment method")

    # price everything before touching money
    async with gated():
        async with db.begin():
            rate = await bookings.available_rate(db, computer_id)
            await bookings.ensure_customer(db, customer_id)
            services_cost = await bookings.price_services(db, services)

    rental_cost = hours * rate
    total_cost = rental_cost + services_cost
    duration = (end - start) / 3600.0

    if payment_method == "gopay":
        order_id = bookings.new_order_id("rental", customer_id)
        async with timeit("gateway.charge"):
            charge = await adapter.charge_gopay(order_id, total_cost)
        meta = {
            "admin_id": admin.admin_id,
            "computer_id": computer_id,
            "rental_start": start,
            "rental_end": end,
            "activity_desc": activity,
            "total_cost": total_cost,
            "services": [s.to_json() for s in services],
        }
        async with gated():
            async with db.begin():
                await bookings.insert_transaction(
                    db,
                    customer_id=customer_id,
                    transaction_type=bookings.TYPE_RENTAL,
                    amount=total_cost,
                    method=bookings.METHOD_GOPAY,
                    status=bookings.STATUS_PENDING,
                    order_id=order_id,
                    payment_url=charge["payment_url"],
                    meta=meta,
                )
        logger.info("rental order %s awaiting gopay payment", order_id)
        return {
            "message": "Payment initiated",
            "order_id": order_id,
            "payment_url": charge["payment_url"],
            "total_cost": total_cost,
        }

    async with timeit("db.rent_wallet"):
        async with gated():
            async with db.begin():
                await bookings.charge_wallet(db, customer_id, total_cost)
                await bookings.insert_transaction(
                    db,
                    customer_id=customer_id,
                    transaction_type=bookings.TYPE_RENTAL,
                    amount=total_cost,
                    method=bookings.METHOD_WALLET,
                    status=bookings.STATUS_SETTLEMENT,
                )
                rental_id = await bookings.apply_rental(
                    db,
                    customer_id=customer_id,
                    computer_id=computer_id,
                    admin_id=admin.admin_id,
                    rental_start=start,
                    rental_end=end,
                    total_cost=total_cost,
                    activity_desc=activity,
                    services=services,
                    strict=True,
                )

    return {
        "message": "Rental recorded successfully",
        "rental_history": rental_id,
        "rental_cost": rental_cost,
        "services_cost": services_cost,
        "total_cost": total_cost,
        "rental_duration": duration,
    }


async def return_computer(
    db: AsyncSession, gated: Gated, admin: AdminPrincipal, rental_id: int
) -> Dict[str, Any]:
    async with gated():
        async with db.begin():
            row = (await db.execute(
                text("""
                    SELECT id, customer_id, computer_id, booking_status
                    FROM rental_history WHERE id = :id
                """),
                {"id": rental_id},
            )).mappings().first()
            if row is None:
                raise HTTPException(404, detail="Rental not found")
            if row["booking_status"] == bookings.BOOKING_COMPLETED:
                raise HTTPException(400, detail="Rental already returned")

            ts = now_ts()
            await db.execute(
                text("""
                    UPDATE rental_history SET booking_status = :status
                    WHERE id = :id
                """),
                {"status": bookings.BOOKING_COMPLETED, "id": rental_id},
            )
            # a late settlement can leave a second active rental on the pc
            freed = await db.execute(
                text("""
                    UPDATE computer SET is_available = TRUE
                    WHERE id = :id AND NOT EXISTS (
                        SELECT 1 FROM rental_history
                        WHERE computer_id = :id
                          AND booking_status = :active
                          AND id <> :rid
                    )
                """),
                {"id": row["computer_id"], "rid": rental_id,
                 "active": bookings.BOOKING_SETTLED},
            )
            state = (
                "is available again" if freed.rowcount
                else "stays rented by another booking"
            )
            await write_log(
                db,
                f"Admin {admin.admin_id} closed rental {rental_id}; "
                f"Computer {row['computer_id']} {state}",
                customer_id=row["customer_id"],
                computer_id=row["computer_id"],
                logout_time=ts,
            )

    logger.info("rental %s returned", rental_id)
    return {
        "message": "Computer returned successfully",
        "rental_history": rental_id,
        "computer_id": row["computer_id"],
        "computer_available": bool(freed.rowcount),
    }
