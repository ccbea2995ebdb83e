import asyncio
import os
import sys

from sqlalchemy import text

from rentcomp.helpers import now_ts
from rentcomp.infra.sql import make_async_engine
from rentcomp.model.orm import Base

# Seed data
COMPUTERS = [
    ("PC-01 Gaming", "RTX 4070, Ryzen 7 7700, 32GB", 15_000),
    ("PC-02 Gaming", "RTX 4070, Ryzen 7 7700, 32GB", 15_000),
    ("PC-03 Office", "Intel i5-12400, 16GB", 8_000),
    ("PC-04 Office", "Intel i5-12400, 16GB", 8_000),
    ("PC-05 Workstation", "RTX A4000, Xeon W-2245, 64GB", 25_000),
]

SERVICES = [
    ("Instant Noodles", 10_000, 100),
    ("Iced Tea", 5_000, 200),
    ("Printing (per page)", 1_000, 1_000),
    ("Headset Rental", 7_500, 20),
]


async def seed(database_url: str) -> None:
    engine, SessionAsync, _, _ = make_async_engine(database_url)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SessionAsync() as db:
        async with db.begin():
            n = (await db.execute(
                text("SELECT COUNT(*) FROM computer")
            )).scalar_one()
            if n:
                print(f'computer table already has {n} rows, skipping')
            else:
                for name, specs, rate in COMPUTERS:
                    await db.execute(text("""
                        INSERT INTO computer (name, specs, hourly_rate,
                                              is_available, created_at)
                        VALUES (:name, :specs, :rate, TRUE, :ts)
                    """), {"name": name, "specs": specs, "rate": rate,
                           "ts": now_ts()})
                print(f'✅ {len(COMPUTERS)} computers created')

            n = (await db.execute(
                text("SELECT COUNT(*) FROM service")
            )).scalar_one()
            if n:
                print(f'service table already has {n} rows, skipping')
            else:
                for name, price, qty in SERVICES:
                    await db.execute(text("""
                        INSERT INTO service (name, price, quantity, created_at)
                        VALUES (:name, :price, :qty, :ts)
                    """), {"name": name, "price": price, "qty": qty,
                           "ts": now_ts()})
                print(f'✅ {len(SERVICES)} services created')

    await engine.dispose()


if __name__ == '__main__':
    url = os.getenv("DATABASE_URL")
    if not url:
        print("NEED DATABASE_URL!")
        sys.exit(1)
    asyncio.run(seed(url))
