"""
Pytest 配置和共享 fixtures
"""
import os

# 应用启动时 init_db 使用的默认库，测试中不落盘
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

import pytest
from datetime import date, timedelta
from decimal import Decimal
from typing import List
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from fastapi.testclient import TestClient

from booking_engine.database import Base, get_db
from booking_engine.models.ledger import (
    Property, Room, RatePlan, InventoryRecord, Booking, BookingStatus
)
from booking_engine.services.event_bus import event_bus
from booking_engine.main import app

TENANT_ID = "tenant-a"
OTHER_TENANT_ID = "tenant-b"


@pytest.fixture(scope="function")
def db_engine():
    """创建内存数据库引擎"""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine):
    """创建数据库会话"""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def client(db_session):
    """创建测试客户端"""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def clean_event_history():
    """每个测试前清空事件历史"""
    event_bus.clear_history()
    yield


@pytest.fixture
def published_events():
    """收集服务发布的事件"""
    return []


@pytest.fixture
def publisher(published_events):
    return published_events.append


# ============== 参考数据 Fixtures ==============

@pytest.fixture
def tenant_id():
    return TENANT_ID


@pytest.fixture
def stay_start():
    """入住日期（未来日期，避免"入住日期已过"校验）"""
    return date.today() + timedelta(days=30)


@pytest.fixture
def hotel(db_session):
    """创建物业"""
    prop = Property(
        tenant_id=TENANT_ID,
        name="Harbor View Hotel",
        star_rating=4,
        city="Lisbon",
        country="PT",
        currency="EUR",
        is_active=True
    )
    db_session.add(prop)
    db_session.commit()
    db_session.refresh(prop)
    return prop


@pytest.fixture
def room(db_session, hotel):
    """创建房型（单间最多 2 成人 1 儿童）"""
    room = Room(
        tenant_id=TENANT_ID,
        property_id=hotel.id,
        name="Deluxe King",
        room_type="deluxe",
        max_occupancy=3,
        max_adults=2,
        max_children=1,
        amenities=["wifi", "sea_view"],
        is_active=True
    )
    db_session.add(room)
    db_session.commit()
    db_session.refresh(room)
    return room


@pytest.fixture
def rate_plan(db_session, hotel):
    """创建价格计划"""
    plan = RatePlan(
        tenant_id=TENANT_ID,
        property_id=hotel.id,
        name="Flexible",
        plan_type="refundable",
        is_active=True
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


def seed_inventory(db, room, rate_plan, start: date, days: int,
                   available: int = 3, total: int = 3,
                   price: Decimal = Decimal("100.00"), **fields) -> List[InventoryRecord]:
    """为 [start, start + days) 写入库存记录"""
    records = []
    for i in range(days):
        record = InventoryRecord(
            tenant_id=room.tenant_id,
            property_id=room.property_id,
            room_id=room.id,
            rate_plan_id=rate_plan.id,
            date=start + timedelta(days=i),
            available_rooms=available,
            total_rooms=total,
            price=price,
            currency="EUR",
            min_stay=fields.get("min_stay", 1),
            max_stay=fields.get("max_stay"),
            closed_to_arrival=fields.get("closed_to_arrival", False),
            closed_to_departure=fields.get("closed_to_departure", False),
            stop_sell=fields.get("stop_sell", False),
        )
        db.add(record)
        records.append(record)
    db.commit()
    return records


@pytest.fixture
def inventory(db_session, room, rate_plan, stay_start):
    """7 天库存，每天 3 间，价格 100.00"""
    return seed_inventory(db_session, room, rate_plan, stay_start, days=7)


def available_by_date(db, room, rate_plan) -> dict:
    """读取当前库存 {date: available_rooms}"""
    db.expire_all()
    rows = db.query(InventoryRecord).filter(
        InventoryRecord.room_id == room.id,
        InventoryRecord.rate_plan_id == rate_plan.id
    ).all()
    return {r.date: r.available_rooms for r in rows}


def booking_request(hotel, room, rate_plan, check_in: date, nights: int = 2, **overrides) -> dict:
    """构造预订请求数据"""
    data = {
        "property_id": hotel.id,
        "room_id": room.id,
        "rate_plan_id": rate_plan.id,
        "check_in_date": check_in,
        "check_out_date": check_in + timedelta(days=nights),
        "adults": 2,
        "children": 0,
        "rooms": 1,
        "guest_info": {
            "email": "Ana.Silva@example.com",
            "first_name": "Ana",
            "last_name": "Silva",
            "phone": "+351 910 000 000",
        },
        "channel": "direct",
    }
    data.update(overrides)
    return data


def mark_completed(db, booking: Booking) -> None:
    """退房流程由外部模块完成，测试中直接修改状态"""
    booking.status = BookingStatus.COMPLETED
    db.commit()
