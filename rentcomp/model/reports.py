from __future__ import annotations
import json
import logging
from typing import Any, Dict

from sqlalchemy import bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth import AdminPrincipal
from ..helpers import now_ts, parse_day_range, to_iso
from ..infra.sql import Gated
from ..payments import PAID_STATUSES
from .activity import write_log

logger = logging.getLogger(__name__)

REVENUE_REPORT = "Revenue Report"
TOP_SERVICES_LIMIT = 5


async def booking_report(
    db: AsyncSession, gated: Gated, customer_id: int, recent: bool = False
) -> Dict[str, Any]:
    sql = """
        SELECT rh.id AS rental_id, rh.computer_id, c.name AS computer_name,
               rh.admin_id, a.username AS admin_username,
               rh.rental_start_time, rh.rental_end_time, rh.total_cost,
               rh.booking_status
        FROM rental_history rh
        LEFT JOIN computer c ON rh.computer_id = c.id
        LEFT JOIN admin a ON rh.admin_id = a.id
        WHERE rh.customer_id = :customer_id
        ORDER BY rh.rental_start_time DESC, rh.id DESC
    """
    if recent:
        sql += " LIMIT 1"

    async with gated():
        async with db.begin():
            rows = (await db.execute(
                text(sql), {"customer_id": customer_id}
            )).mappings().all()

    data = [
        {
            "rental_id": r["rental_id"],
            "computer_id": r["computer_id"],
            "computer_name": r["computer_name"] or "",
            "admin_id": r["admin_id"],
            "admin_username": r["admin_username"] or "",
            "rental_start": to_iso(r["rental_start_time"]),
            "rental_end": to_iso(r["rental_end_time"]),
            "total_cost": r["total_cost"],
            "booking_status": r["booking_status"],
        }
        for r in rows
    ]
    return {"message": "Booking report retrieved successfully", "data": data}


async def revenue_report(
    db: AsyncSession, gated: Gated, admin: AdminPrincipal, payload: dict
) -> Dict[str, Any]:
    start_date = payload.get("start_date")
    end_date = payload.get("end_date")
    t0, t1 = parse_day_range(start_date, end_date)

    async with gated():
        async with db.begin():
            totals = (await db.execute(
                text("""
                    SELECT COALESCE(SUM(amount), 0) AS total_revenue,
                           COUNT(*) AS total_transactions
                    FROM transactions
                    WHERE transaction_date >= :t0
                      AND transaction_date < :t1
                      AND LOWER(status) IN :paid
                """).bindparams(bindparam("paid", expanding=True)),
                {"t0": t0, "t1": t1, "paid": sorted(PAID_STATUSES)},
            )).mappings().one()

            top = (await db.execute(
                text("""
                    SELECT s.name AS service_name,
                           SUM(rs.quantity * s.price) AS total_revenue,
                           SUM(rs.quantity) AS total_sold
                    FROM rental_services rs
                    JOIN service s ON rs.service_id = s.id
                    WHERE rs.created_at >= :t0 AND rs.created_at < :t1
                    GROUP BY s.id, s.name
                    ORDER BY total_revenue DESC, s.id
                    LIMIT :lim
                """),
                {"t0": t0, "t1": t1, "lim": TOP_SERVICES_LIMIT},
            )).mappings().all()
            top_services = [
                {
                    "service_name": r["service_name"],
                    "total_revenue": int(r["total_revenue"] or 0),
                    "total_sold": int(r["total_sold"] or 0),
                }
                for r in top
            ]

            total_revenue = int(totals["total_revenue"] or 0)
            total_transactions = int(totals["total_transactions"] or 0)

            await db.execute(
                text("""
                    INSERT INTO report (admin_id, report_type, start_date,
                                        end_date, total_transactions,
                                        total_revenue, top_services,
                                        created_at)
                    VALUES (:admin_id, :rtype, :start, :end, :n, :revenue,
                            :top, :ts)
                """),
                {
                    "admin_id": admin.admin_id,
                    "rtype": REVENUE_REPORT,
                    "start": start_date,
                    "end": end_date,
                    "n": total_transactions,
                    "revenue": total_revenue,
                    "top": json.dumps(top_services),
                    "ts": now_ts(),
                },
            )
            await write_log(
                db,
                f"Super-admin (ID: {admin.admin_id}) generated a revenue "
                f"report for {start_date} to {end_date}",
            )

    logger.info("revenue report %s..%s by admin %s",
                start_date, end_date, admin.admin_id)
    return {
        "total_revenue": total_revenue,
        "total_transactions": total_transactions,
        "top_services": top_services,
    }
