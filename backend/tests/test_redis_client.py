import threading
from decimal import Decimal

import pytest
import redis

import models
from errors import ConflictError
from order_aggregator import OrderAggregator
from redis_client import RedisClient
from schemas import OrderItemCreate
from table_sessions import TableSessionManager


@pytest.fixture
def cache():
    return RedisClient(enabled=False)


def hold_in_thread(lock_cm):
    """Take ``lock_cm`` in another thread and keep it until the returned event is set"""
    taken, release = threading.Event(), threading.Event()

    def holder():
        with lock_cm:
            taken.set()
            release.wait(5)

    thread = threading.Thread(target=holder, daemon=True)
    thread.start()
    assert taken.wait(5)
    return release, thread


def test_busy_session_lock_raises_conflict(cache):
    release, thread = hold_in_thread(cache.session_lock(1))
    try:
        with pytest.raises(ConflictError) as excinfo:
            with cache.session_lock(1, wait=0.1):
                pass
        assert excinfo.value.context == {"session_id": 1}
    finally:
        release.set()
        thread.join(5)

    with cache.session_lock(1, wait=0.1):
        pass


def test_locks_are_per_key(cache):
    release, thread = hold_in_thread(cache.session_lock(1))
    try:
        with cache.session_lock(2, wait=0.1):
            pass
        with cache.table_lock(1, wait=0.1):
            pass
    finally:
        release.set()
        thread.join(5)


def test_busy_table_lock_raises_conflict(cache):
    release, thread = hold_in_thread(cache.table_lock(3))
    try:
        with pytest.raises(ConflictError) as excinfo:
            with cache.table_lock(3, wait=0.1):
                pass
        assert excinfo.value.context == {"table_id": 3}
    finally:
        release.set()
        thread.join(5)


def test_same_thread_can_nest_a_lock(cache):
    with cache.session_lock(5, wait=0.1):
        with cache.session_lock(5, wait=0.1):
            pass


class UnreachableRedis:
    def lock(self, key, timeout=None, blocking_timeout=None):
        raise redis.ConnectionError("connection refused")


class BusyRedisLock:
    def acquire(self):
        return False

    def release(self):
        raise AssertionError("never acquired")


class BusyRedis:
    def lock(self, key, timeout=None, blocking_timeout=None):
        return BusyRedisLock()


def test_unreachable_redis_falls_back_to_local_lock(cache):
    cache.client = UnreachableRedis()
    with cache.session_lock(1, wait=0.1):
        pass

    release, thread = hold_in_thread(cache.session_lock(1))
    try:
        with pytest.raises(ConflictError):
            with cache.session_lock(1, wait=0.1):
                pass
    finally:
        release.set()
        thread.join(5)


def test_redis_lock_held_elsewhere_raises_conflict(cache):
    cache.client = BusyRedis()
    with pytest.raises(ConflictError):
        with cache.session_lock(1, wait=0.1):
            pass


def test_concurrent_submit_and_remove_keep_totals(file_sessions):
    setup = file_sessions()
    try:
        manager = TableSessionManager(setup)
        party_id = manager.check_in(4).id
        table_id = setup.query(models.Table.id).filter(models.Table.number == 1).scalar()
        manager.seat(party_id, table_id)
        burger_id = setup.query(models.MenuItem.id).filter(models.MenuItem.name == "Burger").scalar()
        coffee_id = setup.query(models.MenuItem.id).filter(models.MenuItem.name == "Coffee").scalar()

        big = OrderAggregator(setup).submit_order(
            party_id, table_id, [OrderItemCreate(menu_item_id=coffee_id, quantity=1) for _ in range(6)]
        )
        big_id, item_ids = big.id, [i.id for i in big.items]
    finally:
        setup.close()

    failures = []

    def terminal(job, arg):
        db = file_sessions()
        try:
            aggregator = OrderAggregator(db)
            if job == "remove":
                aggregator.remove_item(big_id, arg)
            else:
                aggregator.submit_order(party_id, table_id, [OrderItemCreate(menu_item_id=burger_id, quantity=2)])
        except Exception as e:
            failures.append(e)
        finally:
            db.close()

    jobs = [("remove", i) for i in item_ids[:5]] + [("submit", None)] * 5
    threads = [threading.Thread(target=terminal, args=job) for job in jobs]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(30)

    assert failures == []

    check = file_sessions()
    try:
        orders = check.query(models.Order).filter(models.Order.session_id == party_id).all()
        assert len(orders) == 6
        for order in orders:
            items_sum = sum(Decimal(str(i.unit_price)) * i.quantity for i in order.items)
            assert Decimal(str(order.total_amount)) == items_sum

        big = next(o for o in orders if o.id == big_id)
        assert [i.id for i in big.items] == item_ids[5:]
        assert Decimal(str(big.total_amount)) == Decimal("3.00")
    finally:
        check.close()
