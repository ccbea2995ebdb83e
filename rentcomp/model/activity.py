from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import now_ts


async def write_log(
    db: AsyncSession,
    description: str,
    *,
    customer_id: Optional[int] = None,
    computer_id: Optional[int] = None,
    login_time: Optional[float] = None,
    logout_time: Optional[float] = None,
) -> None:
    """Append one row to the business activity log.

    Must be called inside the caller's transaction so the entry commits or
    rolls back together with the change it describes.
    """
    await db.execute(
        text("""
            INSERT INTO log (customer_id, computer_id, login_time,
                             logout_time, description, created_at)
            VALUES (:customer_id, :computer_id, :login_time,
                    :logout_time, :description, :created_at)
        """),
        {
            "customer_id": customer_id,
            "computer_id": computer_id,
            "login_time": login_time,
            "logout_time": logout_time,
            "description": description,
            "created_at": now_ts(),
        },
    )
