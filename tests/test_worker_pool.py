"""Tests for the shared builder pool lifecycle."""

from sysmobembo.core import worker_pool


def test_pool_lifecycle():
    worker_pool.stop_pool()
    assert worker_pool.get_pool_status()["running"] is False

    pool = worker_pool.start_pool(max_workers=2)
    assert worker_pool.start_pool() is pool
    assert worker_pool.get_pool() is pool
    assert worker_pool.get_pool_status() == {"running": True, "max_workers": 2, "fan_out": True}
    assert pool.submit(sum, [1, 2, 3]).result() == 6

    worker_pool.stop_pool()
    assert worker_pool.get_pool_status()["max_workers"] == 0


def test_pool_starts_lazily():
    worker_pool.stop_pool()
    assert worker_pool.get_pool() is not None
    assert worker_pool.get_pool_status()["running"] is True
    worker_pool.stop_pool()
