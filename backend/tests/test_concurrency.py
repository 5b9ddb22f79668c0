"""
并发预订测试（防超卖）
使用文件型 SQLite，每个线程独立会话，锁由数据库持有
"""
import threading
import time
from types import SimpleNamespace
from datetime import timedelta

import pytest
from sqlalchemy import text

from booking_engine.database import build_session_factory, create_store_engine, init_db
from booking_engine.exceptions import AvailabilityError, ConflictError
from booking_engine.models.ledger import Booking, BookingStatus, Property, RatePlan, Room
from booking_engine.models.schemas import BookingCreate
from booking_engine.services.booking_service import BookingService
from booking_engine.services.cancellation_service import CancellationService
from booking_engine.services.inventory_ledger import InventoryLedger

from conftest import TENANT_ID, available_by_date, booking_request, seed_inventory


def open_store(path, lock_timeout):
    engine = create_store_engine(f"sqlite:///{path}", lock_timeout=lock_timeout)
    init_db(bind=engine)
    return engine, build_session_factory(engine)


@pytest.fixture
def file_store(tmp_path):
    engine, factory = open_store(tmp_path / "concurrency.db", lock_timeout=10)
    yield factory
    engine.dispose()


@pytest.fixture
def seeded(file_store, stay_start):
    return seed_hotel(file_store, stay_start)


def seed_hotel(file_store, stay_start):
    """3 间房，stay_start 起 3 天"""
    db = file_store()
    try:
        prop = Property(tenant_id=TENANT_ID, name="Harbor View Hotel", currency="EUR", is_active=True)
        db.add(prop)
        db.commit()
        room = Room(tenant_id=TENANT_ID, property_id=prop.id, name="Deluxe King",
                    max_occupancy=4, max_adults=4, max_children=2, amenities=[], is_active=True)
        plan = RatePlan(tenant_id=TENANT_ID, property_id=prop.id, name="Flexible", is_active=True)
        db.add_all([room, plan])
        db.commit()
        seed_inventory(db, room, plan, stay_start, days=3, available=3, total=3)
        return {"property_id": prop.id, "room_id": room.id, "rate_plan_id": plan.id}
    finally:
        db.close()


def ref(entity_id: str) -> SimpleNamespace:
    """只带 id 的引用对象"""
    return SimpleNamespace(id=entity_id)


def run_concurrently(file_store, count, work):
    """多个线程同时开始执行 work(session)，返回 (成功结果, 异常)"""
    barrier = threading.Barrier(count)
    successes, failures = [], []
    lock = threading.Lock()

    def runner():
        db = file_store()
        try:
            barrier.wait()
            result = work(db)
            with lock:
                successes.append(result)
        except Exception as e:
            with lock:
                failures.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=runner) for _ in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)
    return successes, failures


class TestNoOversell:
    """并发防超卖"""

    def test_two_concurrent_bookings_only_one_succeeds(self, file_store, seeded, stay_start):
        """3 间可售，两个并发请求各订 2 间：恰好一个成功"""
        data = booking_request(ref(seeded["property_id"]), ref(seeded["room_id"]),
                               ref(seeded["rate_plan_id"]), stay_start, nights=3,
                               rooms=2, adults=2)

        def book(db):
            service = BookingService(db, event_publisher=lambda event: None)
            return service.create_booking(TENANT_ID, BookingCreate(**data)).id

        successes, failures = run_concurrently(file_store, 2, book)

        assert len(successes) == 1
        assert len(failures) == 1
        assert isinstance(failures[0], (AvailabilityError, ConflictError))

        db = file_store()
        try:
            assert db.query(Booking).filter(Booking.status == BookingStatus.CONFIRMED).count() == 1
            room = ref(seeded["room_id"])
            plan = ref(seeded["rate_plan_id"])
            available = available_by_date(db, room, plan)
            assert all(v == 1 for v in available.values())
            ledger = InventoryLedger(db)
            assert ledger.audit_conservation(TENANT_ID, room.id, plan.id, stay_start,
                                             stay_start + timedelta(days=3)) == []
        finally:
            db.close()

    def test_many_single_room_bookings_never_exceed_capacity(self, file_store, seeded, stay_start):
        data = booking_request(ref(seeded["property_id"]), ref(seeded["room_id"]),
                               ref(seeded["rate_plan_id"]), stay_start, nights=2)

        def book(db):
            service = BookingService(db, event_publisher=lambda event: None)
            return service.create_booking(TENANT_ID, BookingCreate(**data)).id

        successes, failures = run_concurrently(file_store, 5, book)

        assert len(successes) == 3
        assert all(isinstance(e, (AvailabilityError, ConflictError)) for e in failures)
        db = file_store()
        try:
            available = available_by_date(db, ref(seeded["room_id"]), ref(seeded["rate_plan_id"]))
            assert available[stay_start] == 0
            assert available[stay_start + timedelta(days=1)] == 0
            assert available[stay_start + timedelta(days=2)] == 3
        finally:
            db.close()

    def test_concurrent_double_cancel_releases_once(self, file_store, seeded, stay_start):
        data = booking_request(ref(seeded["property_id"]), ref(seeded["room_id"]),
                               ref(seeded["rate_plan_id"]), stay_start, nights=2, rooms=2)
        db = file_store()
        try:
            booking_id = BookingService(db, event_publisher=lambda event: None).create_booking(
                TENANT_ID, BookingCreate(**data)
            ).id
        finally:
            db.close()

        def cancel(db):
            service = CancellationService(db, event_publisher=lambda event: None)
            return service.cancel_booking(TENANT_ID, booking_id).id

        successes, failures = run_concurrently(file_store, 2, cancel)

        assert len(successes) == 1
        assert len(failures) == 1
        db = file_store()
        try:
            available = available_by_date(db, ref(seeded["room_id"]), ref(seeded["rate_plan_id"]))
            assert available[stay_start] == 3
            assert available[stay_start + timedelta(days=1)] == 3
        finally:
            db.close()


class TestLockWait:
    """锁等待有上限：超时返回可重试的冲突"""

    @pytest.fixture
    def short_wait_store(self, tmp_path):
        engine, factory = open_store(tmp_path / "lock_wait.db", lock_timeout=0.5)
        yield factory
        engine.dispose()

    def test_booking_gives_up_when_inventory_is_held(self, short_wait_store, stay_start):
        ids = seed_hotel(short_wait_store, stay_start)
        data = booking_request(ref(ids["property_id"]), ref(ids["room_id"]),
                               ref(ids["rate_plan_id"]), stay_start, nights=2)

        holder = short_wait_store()
        db = short_wait_store()
        try:
            # 另一个事务持有写锁不提交
            holder.execute(text("UPDATE room_inventory SET price = price"))

            service = BookingService(db, event_publisher=lambda event: None)
            started = time.monotonic()
            with pytest.raises(ConflictError) as exc_info:
                service.create_booking(TENANT_ID, BookingCreate(**data))
            elapsed = time.monotonic() - started

            assert exc_info.value.details["retryable"] is True
            assert exc_info.value.details["stage"] == "lock"
            assert elapsed < 3
        finally:
            holder.rollback()
            holder.close()
            db.close()

        db = short_wait_store()
        try:
            assert db.query(Booking).count() == 0
            available = available_by_date(db, ref(ids["room_id"]), ref(ids["rate_plan_id"]))
            assert all(v == 3 for v in available.values())
        finally:
            db.close()
