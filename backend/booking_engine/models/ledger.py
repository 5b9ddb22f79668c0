"""
库存账本与预订对象定义
room_inventory 为每个 (租户, 房型, 价格计划, 日期) 的可售记录，是供给的唯一事实来源
bookings 在 confirmed 状态下持有 [check_in_date, check_out_date) 每一天的 rooms 个单位
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from sqlalchemy import (
    Column, Integer, String, DateTime, Date, ForeignKey, Text, Boolean, Numeric,
    JSON, CheckConstraint, UniqueConstraint, Index, Enum as SQLEnum
)
from sqlalchemy.orm import relationship
from booking_engine.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ============== 枚举定义 ==============

class BookingStatus(str, Enum):
    """预订状态枚举"""
    CONFIRMED = "confirmed"    # 已确认（占用库存）
    CANCELLED = "cancelled"    # 已取消
    COMPLETED = "completed"    # 已完成


class PaymentStatus(str, Enum):
    """支付状态"""
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


# ============== 参考数据（由外部协作方维护） ==============

class Property(Base):
    """物业对象"""
    __tablename__ = "properties"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    star_rating = Column(Integer)                        # 星级 1-5
    city = Column(String(100))
    country = Column(String(100))
    currency = Column(String(3), default="USD")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    rooms = relationship("Room", back_populates="property")


class Room(Base):
    """
    房型对象
    max_occupancy / max_adults / max_children 为单间容量
    """
    __tablename__ = "rooms"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    name = Column(String(255), nullable=False)
    room_type = Column(String(100), nullable=False, default="standard")
    max_occupancy = Column(Integer, nullable=False, default=2)
    max_adults = Column(Integer, nullable=False, default=2)
    max_children = Column(Integer, nullable=False, default=0)
    amenities = Column(JSON, default=list)               # 设施列表
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)

    property = relationship("Property", back_populates="rooms")


class RatePlan(Base):
    """价格计划（可退 / 不可退等）"""
    __tablename__ = "rate_plans"

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    name = Column(String(255), nullable=False)
    plan_type = Column(String(50), nullable=False, default="standard")
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=utcnow)


class Guest(Base):
    """客人对象，(tenant_id, email) 唯一"""
    __tablename__ = "guests"
    __table_args__ = (
        UniqueConstraint("tenant_id", "email", name="uq_guests_tenant_email"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(50))
    nationality = Column(String(100))
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)


# ============== 库存账本 ==============

class InventoryRecord(Base):
    """
    每日库存记录
    不变量：0 <= available_rooms <= total_rooms
    只会被覆盖，不会被删除
    """
    __tablename__ = "room_inventory"
    __table_args__ = (
        UniqueConstraint("tenant_id", "room_id", "rate_plan_id", "date",
                         name="uq_room_inventory_key"),
        CheckConstraint("available_rooms >= 0", name="ck_room_inventory_available_nonneg"),
        CheckConstraint("available_rooms <= total_rooms", name="ck_room_inventory_available_le_total"),
        Index("ix_room_inventory_tenant_date", "tenant_id", "date"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=False)
    rate_plan_id = Column(String(36), ForeignKey("rate_plans.id"), nullable=False)
    date = Column(Date, nullable=False)
    available_rooms = Column(Integer, nullable=False, default=0)
    total_rooms = Column(Integer, nullable=False, default=0)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD")
    min_stay = Column(Integer, default=1)                # 最少入住晚数
    max_stay = Column(Integer)                           # 最多入住晚数（空为不限）
    closed_to_arrival = Column(Boolean, default=False)
    closed_to_departure = Column(Boolean, default=False)
    stop_sell = Column(Boolean, default=False)
    restrictions = Column(JSON)                          # 其他限制
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    room = relationship("Room")
    rate_plan = relationship("RatePlan")


# ============== 预订 ==============

class Booking(Base):
    """
    预订对象 - 预订阶段的聚合根
    只由预订事务创建，只由取消事务改变状态，不做物理删除
    """
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("tenant_id", "booking_reference", name="uq_bookings_tenant_reference"),
        Index("ix_bookings_tenant_dates", "tenant_id", "check_in_date", "check_out_date"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    tenant_id = Column(String(36), nullable=False, index=True)
    property_id = Column(String(36), ForeignKey("properties.id"), nullable=False)
    room_id = Column(String(36), ForeignKey("rooms.id"), nullable=False)
    rate_plan_id = Column(String(36), ForeignKey("rate_plans.id"), nullable=False)
    guest_id = Column(String(36), ForeignKey("guests.id"))
    booking_reference = Column(String(50), nullable=False)
    channel = Column(String(100), default="direct")      # direct, booking.com, expedia ...
    channel_booking_id = Column(String(255))
    status = Column(SQLEnum(BookingStatus), nullable=False, default=BookingStatus.CONFIRMED)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=False)        # 不含当天
    total_nights = Column(Integer, nullable=False)
    rooms = Column(Integer, nullable=False, default=1)
    adults = Column(Integer, nullable=False, default=1)
    children = Column(Integer, default=0)
    base_price = Column(Numeric(10, 2), nullable=False)
    taxes = Column(Numeric(10, 2), default=0)
    fees = Column(Numeric(10, 2), default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), default="USD")
    payment_status = Column(String(50), default=PaymentStatus.PENDING.value)
    payment_method = Column(String(100))
    guest_info = Column(JSON)
    special_requests = Column(Text)
    cancel_reason = Column(Text)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    guest = relationship("Guest")
    room = relationship("Room")
    rate_plan = relationship("RatePlan")
    property = relationship("Property")
