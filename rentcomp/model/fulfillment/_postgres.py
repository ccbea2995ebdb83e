from __future__ import annotations

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ...helpers import now_ts


class FulfillmentGate:
    """One ``fulfillment_gates`` row per settled order.

    The claim is written on the caller's session, so it commits (or rolls
    back) together with the side effects it guards.
    """

    def __init__(self, *, db: AsyncSession) -> None:
        self.db = db

    async def claim(self, order_id: str) -> bool:
        row = (await self.db.execute(
            text("""
              INSERT INTO fulfillment_gates(order_id, created_at)
              VALUES(:order_id, :ts)
              ON CONFLICT (order_id) DO NOTHING
              RETURNING order_id
            """),
            {"order_id": order_id, "ts": now_ts()},
        )).first()
        return row is not None

    async def release(self, order_id: str) -> None:
        # the rollback of the surrounding transaction drops the row
        return None
