"""
库存账本服务 - 数据访问层
管理 room_inventory 记录的读取、加锁、条件扣减与恢复

锁必须存在于共享的持久化存储中（服务可能多实例运行）：
- PostgreSQL: SELECT ... FOR UPDATE，并以 lock_timeout 限定等待时间
- SQLite: 没有行锁，以一条空更新获取数据库写锁，busy timeout 限定等待时间
"""
import logging
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, update, func, text
from sqlalchemy.orm import Session

from booking_engine.config import settings
from booking_engine.exceptions import ConflictError, ValidationError
from booking_engine.models.ledger import Booking, BookingStatus, InventoryRecord, utcnow

logger = logging.getLogger(__name__)


def stay_dates(check_in: date, check_out: date) -> List[date]:
    """入住覆盖的日期 [check_in, check_out)"""
    return [check_in + timedelta(days=i) for i in range((check_out - check_in).days)]


def lock_rows(db: Session, model, *criteria, order_by=None):
    """
    在当前事务内锁定满足条件的行并返回最新数据

    锁持有到 commit / rollback 为止。等待上限不由调用方指定：
    - SQLite: engine 的 busy timeout（create_store_engine 的 lock_timeout，默认 LOCK_TIMEOUT_SECONDS）
    - PostgreSQL: LOCK_TIMEOUT_SECONDS，以 SET LOCAL lock_timeout 作用于当前事务
    """
    timeout = settings.LOCK_TIMEOUT_SECONDS
    dialect = db.get_bind().dialect.name

    if dialect == "sqlite":
        # 空更新：在 SQLite 中获取 RESERVED 写锁，之后的读取都在锁内
        db.execute(
            update(model).where(*criteria).values({model.updated_at: model.updated_at}),
            execution_options={"synchronize_session": False},
        )
        stmt = select(model).where(*criteria)
    else:
        if dialect == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{int(timeout * 1000)}ms'"))
        stmt = select(model).where(*criteria).with_for_update()

    if order_by is not None:
        stmt = stmt.order_by(order_by)
    return db.execute(stmt.execution_options(populate_existing=True)).scalars().all()


class InventoryLedger:
    """库存账本"""

    def __init__(self, db: Session):
        self.db = db

    def _key_criteria(self, tenant_id: str, room_id: str, rate_plan_id: str):
        return (
            InventoryRecord.tenant_id == tenant_id,
            InventoryRecord.room_id == room_id,
            InventoryRecord.rate_plan_id == rate_plan_id,
        )

    def _range_criteria(self, tenant_id: str, room_id: str, rate_plan_id: str,
                        start: date, end: date):
        return self._key_criteria(tenant_id, room_id, rate_plan_id) + (
            InventoryRecord.date >= start,
            InventoryRecord.date < end,
        )

    # ============== 读取 ==============

    def fetch_range(self, tenant_id: str, room_id: str, rate_plan_id: str,
                    start: date, end: date) -> List[InventoryRecord]:
        """不加锁读取 [start, end) 的记录（只用于查询，结果需要在锁内重新校验）"""
        stmt = select(InventoryRecord).where(
            *self._range_criteria(tenant_id, room_id, rate_plan_id, start, end)
        ).order_by(InventoryRecord.date)
        return self.db.execute(stmt).scalars().all()

    def get_record(self, tenant_id: str, record_id: str) -> Optional[InventoryRecord]:
        return self.db.execute(
            select(InventoryRecord).where(
                InventoryRecord.tenant_id == tenant_id,
                InventoryRecord.id == record_id,
            )
        ).scalars().first()

    def calendar(self, tenant_id: str, start: date, end: date,
                 property_id: Optional[str] = None, room_id: Optional[str] = None,
                 rate_plan_id: Optional[str] = None,
                 page: int = 1, limit: int = 100) -> Tuple[List[InventoryRecord], int]:
        """
        库存日历（含首尾日期）

        Returns:
            (当前页记录, 总数)
        """
        if end < start:
            raise ValidationError("End date must not be before start date",
                                  details={"start_date": str(start), "end_date": str(end)})
        if page < 1 or not 1 <= limit <= 500:
            raise ValidationError("Page must be >= 1 and limit between 1 and 500")

        criteria = [
            InventoryRecord.tenant_id == tenant_id,
            InventoryRecord.date >= start,
            InventoryRecord.date <= end,
        ]
        if property_id:
            criteria.append(InventoryRecord.property_id == property_id)
        if room_id:
            criteria.append(InventoryRecord.room_id == room_id)
        if rate_plan_id:
            criteria.append(InventoryRecord.rate_plan_id == rate_plan_id)

        total = self.db.execute(
            select(func.count()).select_from(InventoryRecord).where(*criteria)
        ).scalar_one()
        records = self.db.execute(
            select(InventoryRecord).where(*criteria)
            .order_by(InventoryRecord.date, InventoryRecord.room_id, InventoryRecord.rate_plan_id)
            .offset((page - 1) * limit).limit(limit)
        ).scalars().all()
        return records, total

    # ============== 加锁 ==============

    def lock_range(self, tenant_id: str, room_id: str, rate_plan_id: str,
                   start: date, end: date) -> List[InventoryRecord]:
        """锁定一次入住涉及的全部库存行（按日期顺序加锁，避免死锁）"""
        return lock_rows(
            self.db, InventoryRecord,
            *self._range_criteria(tenant_id, room_id, rate_plan_id, start, end),
            order_by=InventoryRecord.date,
        )

    def lock_day(self, tenant_id: str, room_id: str, rate_plan_id: str,
                 day: date) -> Optional[InventoryRecord]:
        rows = lock_rows(
            self.db, InventoryRecord,
            *self._key_criteria(tenant_id, room_id, rate_plan_id),
            InventoryRecord.date == day,
        )
        return rows[0] if rows else None

    def lock_record(self, tenant_id: str, record_id: str) -> Optional[InventoryRecord]:
        rows = lock_rows(
            self.db, InventoryRecord,
            InventoryRecord.tenant_id == tenant_id,
            InventoryRecord.id == record_id,
        )
        return rows[0] if rows else None

    # ============== 扣减 / 恢复 ==============

    def decrement(self, tenant_id: str, room_id: str, rate_plan_id: str,
                  start: date, end: date, quantity: int) -> int:
        """
        条件扣减：available = available - N WHERE available >= N

        影响行数必须等于涉及天数，否则视为并发超卖，抛出 ConflictError
        """
        expected = len(stay_dates(start, end))
        result = self.db.execute(
            update(InventoryRecord)
            .where(
                *self._range_criteria(tenant_id, room_id, rate_plan_id, start, end),
                InventoryRecord.available_rooms >= quantity,
            )
            .values(
                available_rooms=InventoryRecord.available_rooms - quantity,
                updated_at=utcnow(),
            ),
            execution_options={"synchronize_session": False},
        )
        if result.rowcount != expected:
            logger.warning(
                f"Conditional decrement touched {result.rowcount}/{expected} days "
                f"tenant={tenant_id} room={room_id} rate_plan={rate_plan_id} "
                f"range={start}..{end} quantity={quantity}"
            )
            raise ConflictError(
                "Inventory changed concurrently, please retry",
                details={"retryable": True, "expected_days": expected,
                         "updated_days": result.rowcount},
            )
        return result.rowcount

    def release(self, tenant_id: str, room_id: str, rate_plan_id: str,
                start: date, end: date, quantity: int) -> List[date]:
        """
        恢复库存：available = available + N，且不超过 total_rooms

        调用前需已持有 lock_range 的锁。
        会超过 total_rooms 或缺失的日期说明账本已损坏：按 total_rooms 截断并以 CRITICAL 记录

        Returns:
            出现不一致的日期列表
        """
        rows = self.db.execute(
            select(InventoryRecord)
            .where(*self._range_criteria(tenant_id, room_id, rate_plan_id, start, end))
            .execution_options(populate_existing=True)
        ).scalars().all()
        by_date = {record.date: record for record in rows}

        anomalies = []
        overflow = []
        for day in stay_dates(start, end):
            record = by_date.get(day)
            if record is None:
                logger.critical(
                    f"LEDGER CONSISTENCY ERROR: missing inventory row while releasing "
                    f"tenant={tenant_id} room={room_id} rate_plan={rate_plan_id} date={day} "
                    f"quantity={quantity}"
                )
                anomalies.append(day)
            elif record.available_rooms + quantity > record.total_rooms:
                logger.critical(
                    f"LEDGER CONSISTENCY ERROR: release would exceed total_rooms "
                    f"tenant={tenant_id} room={room_id} rate_plan={rate_plan_id} date={day} "
                    f"available={record.available_rooms} total={record.total_rooms} "
                    f"quantity={quantity}; clamping to total_rooms"
                )
                overflow.append(record)
                anomalies.append(day)

        result = self.db.execute(
            update(InventoryRecord)
            .where(
                *self._range_criteria(tenant_id, room_id, rate_plan_id, start, end),
                InventoryRecord.available_rooms + quantity <= InventoryRecord.total_rooms,
            )
            .values(
                available_rooms=InventoryRecord.available_rooms + quantity,
                updated_at=utcnow(),
            ),
            execution_options={"synchronize_session": False},
        )
        expected = len(rows) - len(overflow)
        if result.rowcount != expected:
            raise ConflictError(
                "Inventory changed while it was being released, please retry",
                details={"retryable": True, "expected_days": expected,
                         "updated_days": result.rowcount},
            )

        for record in overflow:
            record.available_rooms = record.total_rooms
        self.db.flush()
        for record in rows:
            self.db.expire(record)
        return anomalies

    # ============== 审计 ==============

    def audit_conservation(self, tenant_id: str, room_id: str, rate_plan_id: str,
                           start: date, end: date) -> List[Dict]:
        """
        守恒校验：available + Σ(已确认预订占用) == total

        Returns:
            不满足守恒关系的日期明细（空列表表示账本一致）
        """
        records = self.fetch_range(tenant_id, room_id, rate_plan_id, start, end)
        bookings = self.db.execute(
            select(Booking).where(
                Booking.tenant_id == tenant_id,
                Booking.room_id == room_id,
                Booking.rate_plan_id == rate_plan_id,
                Booking.status == BookingStatus.CONFIRMED,
                Booking.check_in_date < end,
                Booking.check_out_date > start,
            )
        ).scalars().all()

        discrepancies = []
        for record in records:
            held = sum(
                b.rooms for b in bookings
                if b.check_in_date <= record.date < b.check_out_date
            )
            if record.available_rooms + held != record.total_rooms:
                discrepancies.append({
                    "date": record.date,
                    "total_rooms": record.total_rooms,
                    "available_rooms": record.available_rooms,
                    "held_rooms": held,
                    "difference": record.total_rooms - record.available_rooms - held,
                })
        return discrepancies
