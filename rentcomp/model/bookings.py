"""
Side-effect sequences shared by the wallet path (applied immediately) and the
gateway path (applied when the payment settles):

- charge a customer's wallet
- record a transaction row
- book a computer rental, optionally with additional services
- deliver a standalone service purchase

Every function here expects to run inside the caller's ``db.begin()`` block;
none of them commits.
"""
from __future__ import annotations
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts, require_int, to_iso
from .activity import write_log

logger = logging.getLogger(__name__)

TYPE_TOP_UP = "Top-Up"
TYPE_RENTAL = "Rental Payment"
TYPE_SERVICE = "Service Payment"
TRANSACTION_TYPES = (TYPE_TOP_UP, TYPE_RENTAL, TYPE_SERVICE)

METHOD_WALLET = "Wallet"
METHOD_GOPAY = "GoPay"
METHOD_BANK_TRANSFER = "Bank Transfer"

STATUS_PENDING = "pending"
STATUS_SETTLEMENT = "settlement"

BOOKING_SETTLED = "settlement"
BOOKING_COMPLETED = "completed"


@dataclass(frozen=True)
class ServiceLine:
    service_id: int
    quantity: int

    def to_json(self) -> Dict[str, int]:
        return {"service_id": self.service_id, "quantity": self.quantity}


def parse_service_lines(raw: Any) -> List[ServiceLine]:
    """Validate ``[{service_id, quantity}, ...]``; repeated ids are merged."""
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise HTTPException(400, detail="services must be a list")
    merged: Dict[int, int] = {}
    for entry in raw:
        if not isinstance(entry, dict):
            raise HTTPException(400, detail="Invalid service entry")
        sid = require_int(entry, "service_id", minimum=1)
        qty = require_int(entry, "quantity", minimum=1)
        merged[sid] = merged.get(sid, 0) + qty
    return [ServiceLine(sid, qty) for sid, qty in merged.items()]


def new_order_id(prefix: str, customer_id: int) -> str:
    return f"{prefix}-{customer_id}-{int(time.time())}-{uuid.uuid4().hex[:6]}"


# ----------------------------
# Lookups (validation before money moves)
# ----------------------------
async def ensure_customer(db: AsyncSession, customer_id: int) -> None:
    found = (await db.execute(
        text("SELECT id FROM customer WHERE id = :id"), {"id": customer_id}
    )).first()
    if found is None:
        raise HTTPException(404, detail="Customer not found")


async def available_rate(db: AsyncSession, computer_id: int) -> int:
    rate = (await db.execute(
        text("""
            SELECT hourly_rate FROM computer
            WHERE id = :id AND is_available = TRUE
        """),
        {"id": computer_id},
    )).scalar_one_or_none()
    if rate is None:
        raise HTTPException(400, detail="Computer not available")
    return int(rate)


async def price_services(
    db: AsyncSession, lines: Sequence[ServiceLine]
) -> int:
    """Total price of ``lines``; 400 when a service is unknown or short."""
    total = 0
    for line in lines:
        row = (await db.execute(
            text("SELECT price, quantity FROM service WHERE id = :id"),
            {"id": line.service_id},
        )).mappings().first()
        if row is None:
            raise HTTPException(
                400, detail=f"Invalid service ID {line.service_id}"
            )
        if line.quantity > row["quantity"]:
            raise HTTPException(
                400,
                detail=(
                    f"Insufficient stock for Service ID {line.service_id}. "
                    f"Available: {row['quantity']}, "
                    f"Requested: {line.quantity}"
                ),
            )
        total += int(row["price"]) * line.quantity
    return total


# ----------------------------
# Money
# ----------------------------
async def charge_wallet(
    db: AsyncSession, customer_id: int, amount: int
) -> None:
    res = await db.execute(
        text("""
            UPDATE customer SET wallet = wallet - :amount, updated_at = :ts
            WHERE id = :id AND wallet >= :amount
        """),
        {"amount": amount, "id": customer_id, "ts": now_ts()},
    )
    if res.rowcount == 0:
        await ensure_customer(db, customer_id)
        raise HTTPException(400, detail="Insufficient wallet balance")


async def credit_wallet(
    db: AsyncSession, customer_id: int, amount: int
) -> None:
    res = await db.execute(
        text("""
            UPDATE customer SET wallet = wallet + :amount, updated_at = :ts
            WHERE id = :id
        """),
        {"amount": amount, "id": customer_id, "ts": now_ts()},
    )
    if res.rowcount == 0:
        raise RuntimeError(f"customer {customer_id} vanished")


async def insert_transaction(
    db: AsyncSession,
    *,
    customer_id: int,
    transaction_type: str,
    amount: int,
    method: str,
    status: str,
    order_id: Optional[str] = None,
    payment_url: Optional[str] = None,
    meta: Optional[dict] = None,
) -> int:
    ts = now_ts()
    return (await db.execute(
        text("""
            INSERT INTO transactions (customer_id, transaction_type, amount,
                                      transaction_method, status, payment_url,
                                      order_id, metadata, transaction_date,
                                      updated_at)
            VALUES (:customer_id, :ttype, :amount, :method, :status,
                    :payment_url, :order_id, :meta, :ts, :ts)
            RETURNING id
        """),
        {
            "customer_id": customer_id,
            "ttype": transaction_type,
            "amount": amount,
            "method": method,
            "status": status,
            "payment_url": payment_url,
            "order_id": order_id,
            "meta": json.dumps(meta) if meta is not None else None,
            "ts": ts,
        },
    )).scalar_one()


# ----------------------------
# Inventory
# ----------------------------
async def take_stock(
    db: AsyncSession,
    customer_id: int,
    line: ServiceLine,
    rental_history_id: Optional[int],
    *,
    strict: bool,
) -> bool:
    """Decrement stock and record the line.

    With ``strict`` a shortfall aborts the caller's transaction (409);
    otherwise the line is skipped and logged, which is what a payment that
    already settled has to live with.
    """
    res = await db.execute(
        text("""
            UPDATE service SET quantity = quantity - :q
            WHERE id = :id AND quantity >= :q
        """),
        {"q": line.quantity, "id": line.service_id},
    )
    if res.rowcount == 0:
        msg = (
            f"Insufficient stock for Service ID {line.service_id}. "
            f"Requested: {line.quantity}"
        )
        if strict:
            raise HTTPException(409, detail=msg)
        logger.warning(
            "service %s short by settlement time for customer %s",
            line.service_id, customer_id,
        )
        await write_log(
            db,
            f"Could not deliver Service ID {line.service_id} "
            f"(Quantity: {line.quantity}) to Customer {customer_id}: "
            "out of stock",
            customer_id=customer_id,
        )
        return False

    await db.execute(
        text("""
            INSERT INTO rental_services (rental_history_id, service_id,
                                         quantity, created_at)
            VALUES (:rh, :sid, :q, :ts)
        """),
        {"rh": rental_history_id, "sid": line.service_id,
         "q": line.quantity, "ts": now_ts()},
    )
    await write_log(
        db,
        f"Customer {customer_id} purchased Service ID {line.service_id} "
        f"(Quantity: {line.quantity})",
        customer_id=customer_id,
    )
    return True


# ----------------------------
# Side-effect sequences
# ----------------------------
async def apply_rental(
    db: AsyncSession,
    *,
    customer_id: int,
    computer_id: int,
    admin_id: Optional[int],
    rental_start: float,
    rental_end: float,
    total_cost: int,
    activity_desc: str,
    services: Sequence[ServiceLine],
    strict: bool,
) -> int:
    """Book the computer; returns the rental_history id."""
    claimed = await db.execute(
        text("""
            UPDATE computer SET is_available = FALSE
            WHERE id = :id AND is_available = TRUE
        """),
        {"id": computer_id},
    )
    if claimed.rowcount == 0:
        if strict:
            raise HTTPException(400, detail="Computer not available")
        # paid for already; book it anyway and let staff sort out the clash
        logger.warning(
            "computer %s already rented when payment for customer %s settled",
            computer_id, customer_id,
        )

    rental_id = (await db.execute(
        text("""
            INSERT INTO rental_history (customer_id, computer_id, admin_id,
                                        rental_start_time, rental_end_time,
                                        total_cost, booking_status,
                                        created_at)
            VALUES (:customer_id, :computer_id, :admin_id, :start, :end,
                    :total_cost, :status, :ts)
            RETURNING id
        """),
        {
            "customer_id": customer_id,
            "computer_id": computer_id,
            "admin_id": admin_id,
            "start": rental_start,
            "end": rental_end,
            "total_cost": total_cost,
            "status": BOOKING_SETTLED,
            "ts": now_ts(),
        },
    )).scalar_one()

    await write_log(
        db,
        f"Rental payment completed for Customer {customer_id}, with "
        f"Computer {computer_id} from {to_iso(rental_start)} to "
        f"{to_iso(rental_end)}. Activity: {activity_desc}",
        customer_id=customer_id,
        computer_id=computer_id,
        login_time=rental_start,
        logout_time=rental_end,
    )

    for line in services:
        await take_stock(db, customer_id, line, rental_id, strict=strict)

    logger.info(
        "rental %s recorded: customer %s computer %s cost %s",
        rental_id, customer_id, computer_id, total_cost,
    )
    return rental_id


async def apply_service_purchase(
    db: AsyncSession,
    *,
    customer_id: int,
    services: Sequence[ServiceLine],
    strict: bool,
) -> int:
    """Deliver standalone services; returns the number of lines delivered."""
    delivered = 0
    for line in services:
        if await take_stock(db, customer_id, line, None, strict=strict):
            delivered += 1
    return delivered
