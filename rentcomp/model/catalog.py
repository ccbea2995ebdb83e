from __future__ import annotations
from typing import Any, Dict, List

from fastapi import HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AdminPrincipal
from ..helpers import now_ts, require_int, require_str
from ..infra.sql import Gated
from .activity import write_log


async def list_computers(
    db: AsyncSession, gated: Gated, available_only: bool = False
) -> List[Dict[str, Any]]:
    sql = """
        SELECT id, name, specs, hourly_rate, is_available
        FROM computer
    """
    if available_only:
        sql += " WHERE is_available = TRUE"
    sql += " ORDER BY id"
    async with gated():
        async with db.begin():
            rows = (await db.execute(text(sql))).mappings().all()
    return [
        {
            "id": r["id"],
            "name": r["name"],
            "specs": r["specs"] or "",
            "hourly_rate": r["hourly_rate"],
            "is_available": bool(r["is_available"]),
        }
        for r in rows
    ]


async def add_computer(
    db: AsyncSession, gated: Gated, admin: AdminPrincipal, payload: dict
) -> Dict[str, Any]:
    name = require_str(payload, "name")
    rate = require_int(payload, "hourly_rate", minimum=0)
    specs = payload.get("specs")
    if specs is not None and not isinstance(specs, str):
        raise HTTPException(400, detail="specs must be a string")

    async with gated():
        async with db.begin():
            computer_id = (await db.execute(
                text("""
                    INSERT INTO computer (name, specs, hourly_rate,
                                          is_available, created_at)
                    VALUES (:name, :specs, :rate, TRUE, :ts)
                    RETURNING id
                """),
                {"name": name, "specs": specs, "rate": rate, "ts": now_ts()},
            )).scalar_one()
            await write_log(
                db,
                f"Admin {admin.admin_id} added Computer {computer_id} "
                f"({name}) at {rate}/hour",
                computer_id=computer_id,
            )
    return {
        "message": "Computer added successfully",
        "id": computer_id,
        "name": name,
        "hourly_rate": rate,
    }


async def list_services(
    db: AsyncSession, gated: Gated
) -> List[Dict[str, Any]]:
    async with gated():
        async with db.begin():
            rows = (await db.execute(text("""
                SELECT id, name, price, quantity FROM service ORDER BY id
            """))).mappings().all()
    return [dict(r) for r in rows]


async def upsert_service(
    db: AsyncSession, gated: Gated, admin: AdminPrincipal, payload: dict
) -> Dict[str, Any]:
    """Create a service, or restock one when ``service_id`` is given."""
    service_id = payload.get("service_id")
    if service_id is not None:
        service_id = require_int(payload, "service_id", minimum=1)
        add_qty = require_int(payload, "quantity", minimum=1)
        async with gated():
            async with db.begin():
                row = (await db.execute(
                    text("""
                        UPDATE service SET quantity = quantity + :q
                        WHERE id = :id
                        RETURNING id, name, price, quantity
                    """),
                    {"q": add_qty, "id": service_id},
                )).mappings().first()
                if row is None:
                    raise HTTPException(404, detail="Service not found")
                await write_log(
                    db,
                    f"Admin {admin.admin_id} restocked Service ID "
                    f"{service_id} (+{add_qty})",
                )
        return {"message": "Service restocked successfully", **dict(row)}

    name = require_str(payload, "name")
    price = require_int(payload, "price", minimum=0)
    qty = require_int(payload, "quantity", minimum=0)
    async with gated():
        async with db.begin():
            new_id = (await db.execute(
                text("""
                    INSERT INTO service (name, price, quantity, created_at)
                    VALUES (:name, :price, :q, :ts)
                    RETURNING id
                """),
                {"name": name, "price": price, "q": qty, "ts": now_ts()},
            )).scalar_one()
            await write_log(
                db,
                f"Admin {admin.admin_id} added Service ID {new_id} ({name})",
            )
    return {
        "message": "Service added successfully",
        "id": new_id,
        "name": name,
        "price": price,
        "quantity": qty,
    }
