from __future__ import annotations
import redis.asyncio as redis

# 24h is far longer than any gateway keeps retrying a notification
GATE_TTL_SECONDS = 24 * 3600


# ---- keys
def k_fulfill(order_id: str) -> str: return f"fulfill:{order_id}"


class FulfillmentGate:
    def __init__(self, *, r: redis.Redis,
                 ttl_seconds: int = GATE_TTL_SECONDS) -> None:
        self.r = r
        self.ttl = ttl_seconds

    async def claim(self, order_id: str) -> bool:
        # NX gate: only the first caller gets True
        ok = await self.r.set(k_fulfill(order_id), "1", nx=True, ex=self.ttl)
        return bool(ok)

    async def release(self, order_id: str) -> None:
        # the DB side failed after we claimed; let the next poll retry
        await self.r.delete(k_fulfill(order_id))
