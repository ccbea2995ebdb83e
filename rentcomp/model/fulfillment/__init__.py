from typing import Optional

import redis.asyncio as redis
from sqlalchemy.ext.asyncio import AsyncSession

from ... import config

BACKEND = config.FULFILLMENT_BACKEND  # 'pg' | 'redis'

if BACKEND == "redis":
    from ._redis import FulfillmentGate as _FulfillmentGate
else:
    from ._postgres import FulfillmentGate as _FulfillmentGate


# Factory keeps server.py constructor-agnostic:
def new_gate(*, db: Optional[AsyncSession] = None,
             r: Optional[redis.Redis] = None):
    if BACKEND == "redis":
        if r is None:
            raise RuntimeError("FulfillmentGate(redis) requires r=redis.Redis")
        return _FulfillmentGate(r=r)
    if db is None:
        raise RuntimeError("FulfillmentGate(pg) requires db=AsyncSession")
    return _FulfillmentGate(db=db)


FulfillmentGate = _FulfillmentGate
__all__ = ["FulfillmentGate", "new_gate", "BACKEND"]
