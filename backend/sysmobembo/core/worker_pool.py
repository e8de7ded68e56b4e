"""
Shared worker pool for indicator builders.
One ThreadPoolExecutor per process, started and stopped with the app lifespan.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from sysmobembo.core.config import settings

logger = logging.getLogger("sysmobembo.worker_pool")

_lock = threading.Lock()
_pool: Optional[ThreadPoolExecutor] = None
_workers = 0


def start_pool(max_workers: Optional[int] = None) -> ThreadPoolExecutor:
    """
    Create the shared pool.
    Called once at application startup; calling it again is a no-op.
    """
    global _pool, _workers
    with _lock:
        if _pool is not None:
            logger.warning("Worker pool already running, skipping start")
            return _pool
        _workers = max_workers or settings.indicators_pool_workers
        _pool = ThreadPoolExecutor(max_workers=_workers, thread_name_prefix="indicators")
        logger.info(f"Worker pool started with {_workers} workers")
        return _pool


def get_pool() -> ThreadPoolExecutor:
    """Return the shared pool, starting it lazily (scripts and tests run without lifespan)."""
    if _pool is None:
        return start_pool()
    return _pool


def stop_pool():
    """Shut the pool down without waiting for abandoned builders."""
    global _pool
    with _lock:
        if _pool is not None:
            _pool.shutdown(wait=False, cancel_futures=True)
            _pool = None
            logger.info("Worker pool stopped")


def get_pool_status() -> dict:
    return {
        "running": _pool is not None,
        "max_workers": _workers if _pool is not None else 0,
        "fan_out": settings.indicators_fan_out,
    }
