# rentcomp/infra/timings.py
from __future__ import annotations
import logging
import statistics
import time
from typing import Dict, List

from fastapi import FastAPI

logger = logging.getLogger(__name__)

# ------------ hot path: append only ------------
# one list per kind; no locks, single-threaded event loop
_TIMINGS: Dict[str, List[float]] = {}


def now_ts() -> float:
    # monotonic for durations
    return time.perf_counter()


def record_timing(kind: str, value: float) -> None:
    lst = _TIMINGS.get(kind)
    if lst is None:
        lst = []
        _TIMINGS[kind] = lst
    lst.append(float(value))


class timeit:
    """async usage:
        async with timeit("gateway.charge"):
            await fn()
    """
    __slots__ = ("_kind", "_t0")

    def __init__(self, kind: str):
        self._kind = kind
        self._t0 = 0.0

    async def __aenter__(self):
        self._t0 = now_ts()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        record_timing(self._kind, now_ts() - self._t0)


# ------------ stats only on demand ------------

def _mean_std(values: list[float]) -> tuple[float, float]:
    if not values:
        return 0.0, 0.0
    return (
        statistics.mean(values),
        statistics.stdev(values) if len(values) > 1 else 0.0
    )


def snapshot() -> Dict[str, Dict[str, float]]:
    out = {}
    for kind, vals in sorted(_TIMINGS.items()):
        mean, std = _mean_std(vals)
        out[kind] = {"n": len(vals), "mean": mean, "std": std}
    return out


def reset() -> None:
    _TIMINGS.clear()


def install_shutdown_dump(app: FastAPI) -> None:
    """Log the per-operation aggregates once when the app stops."""

    @app.on_event("shutdown")
    async def _dump_on_shutdown():
        for kind, rec in snapshot().items():
            logger.info(
                "timing %s n=%d mean=%.6f std=%.6f",
                kind, rec["n"], rec["mean"], rec["std"],
            )
