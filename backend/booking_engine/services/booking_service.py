"""
预订服务 - 预订事务
校验 -> 锁定库存行 -> 锁内重新校验 -> 计价 -> 客人 -> 写入预订 -> 条件扣减 -> 提交
任何一步失败整体回滚，库存不会被部分扣减
"""
import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.config import settings
from booking_engine.exceptions import (
    AvailabilityError, ConflictError, DomainStateError, NotFoundError, ValidationError
)
from booking_engine.models.events import BookingCreatedData, EventType
from booking_engine.models.ledger import Booking, BookingStatus, Guest, utcnow
from booking_engine.models.schemas import BookingCreate, BookingUpdate
from booking_engine.services.availability_service import (
    CAPACITY, check_capacity, evaluate_stay, validate_stay_request
)
from booking_engine.services.event_bus import Event, event_bus, safe_publish
from booking_engine.services.guest_service import GuestStore
from booking_engine.services.inventory_ledger import InventoryLedger
from booking_engine.services.pricing import PricingConfig, quantize
from booking_engine.services.references import ReferenceLookup
from booking_engine.services.transaction import atomic

logger = logging.getLogger(__name__)

_REFERENCE_CONSTRAINTS = ("uq_bookings_tenant_reference", "booking_reference")


def _is_reference_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig).lower()
    return any(name in message for name in _REFERENCE_CONSTRAINTS)


class BookingService:
    """预订服务"""

    def __init__(self, db: Session, event_publisher: Callable = None,
                 pricing: Optional[PricingConfig] = None):
        self.db = db
        self.ledger = InventoryLedger(db)
        self.references = ReferenceLookup(db)
        self.guests = GuestStore(db)
        self.pricing = pricing or PricingConfig()
        self._publish_event = event_publisher or event_bus.publish

    def _generate_reference(self) -> str:
        """生成预订号：BK + 10 位随机十六进制"""
        return f"BK{uuid.uuid4().hex[:10].upper()}"

    # ============== 查询 ==============

    def get_booking(self, tenant_id: str, booking_id: str) -> Booking:
        """获取单个预订"""
        booking = self.db.query(Booking).filter(
            Booking.tenant_id == tenant_id,
            Booking.id == booking_id
        ).first()
        if not booking:
            raise NotFoundError("Booking not found", details={"booking_id": booking_id})
        return booking

    def list_bookings(self, tenant_id: str, status: Optional[BookingStatus] = None,
                      channel: Optional[str] = None, property_id: Optional[str] = None,
                      room_id: Optional[str] = None, guest_id: Optional[str] = None,
                      check_in_from: Optional[date] = None,
                      check_out_to: Optional[date] = None,
                      search: Optional[str] = None,
                      page: int = 1, limit: int = 50) -> Tuple[List[Booking], int]:
        """获取预订列表（分页）"""
        if page < 1 or not 1 <= limit <= 200:
            raise ValidationError("Page must be >= 1 and limit between 1 and 200")

        query = self.db.query(Booking).filter(Booking.tenant_id == tenant_id)
        if status:
            query = query.filter(Booking.status == status)
        if channel:
            query = query.filter(Booking.channel == channel)
        if property_id:
            query = query.filter(Booking.property_id == property_id)
        if room_id:
            query = query.filter(Booking.room_id == room_id)
        if guest_id:
            query = query.filter(Booking.guest_id == guest_id)
        if check_in_from:
            query = query.filter(Booking.check_in_date >= check_in_from)
        if check_out_to:
            query = query.filter(Booking.check_out_date <= check_out_to)
        if search:
            pattern = f"%{search}%"
            query = query.outerjoin(Guest, Guest.id == Booking.guest_id).filter(or_(
                Booking.booking_reference.ilike(pattern),
                Guest.email.ilike(pattern),
                Guest.first_name.ilike(pattern),
                Guest.last_name.ilike(pattern),
            ))

        total = query.count()
        items = (query.order_by(Booking.created_at.desc(), Booking.id)
                 .offset((page - 1) * limit).limit(limit).all())
        return items, total

    def get_booking_stats(self, tenant_id: str, period_days: int = 30) -> Dict[str, Any]:
        """预订统计"""
        if period_days < 1:
            raise ValidationError("period_days must be positive", details={"period_days": period_days})

        status_counts = dict(
            self.db.query(Booking.status, func.count(Booking.id))
            .filter(Booking.tenant_id == tenant_id)
            .group_by(Booking.status).all()
        )
        recent = self.db.query(func.count(Booking.id)).filter(
            Booking.tenant_id == tenant_id,
            Booking.created_at >= utcnow() - timedelta(days=period_days)
        ).scalar()

        revenue_statuses = (BookingStatus.CONFIRMED, BookingStatus.COMPLETED)
        revenue = self.db.query(
            func.coalesce(func.sum(Booking.total_amount), 0),
            func.count(Booking.id)
        ).filter(
            Booking.tenant_id == tenant_id,
            Booking.status.in_(revenue_statuses)
        ).one()
        total_revenue = quantize(Decimal(str(revenue[0])))
        revenue_count = revenue[1]

        channels = (
            self.db.query(Booking.channel, func.count(Booking.id),
                          func.coalesce(func.sum(Booking.total_amount), 0))
            .filter(Booking.tenant_id == tenant_id, Booking.status.in_(revenue_statuses))
            .group_by(Booking.channel)
            .order_by(func.count(Booking.id).desc(), Booking.channel)
            .all()
        )

        confirmed = status_counts.get(BookingStatus.CONFIRMED, 0)
        cancelled = status_counts.get(BookingStatus.CANCELLED, 0)
        completed = status_counts.get(BookingStatus.COMPLETED, 0)
        return {
            "total_bookings": confirmed + cancelled + completed,
            "confirmed_bookings": confirmed,
            "cancelled_bookings": cancelled,
            "completed_bookings": completed,
            "recent_bookings": recent or 0,
            "total_revenue": total_revenue,
            "avg_booking_value": quantize(total_revenue / revenue_count) if revenue_count else Decimal("0.00"),
            "channel_breakdown": [
                {"channel": channel or "direct", "booking_count": count,
                 "revenue": quantize(Decimal(str(amount)))}
                for channel, count, amount in channels
            ],
        }

    # ============== 预订事务 ==============

    def create_booking(self, tenant_id: str, data: BookingCreate) -> Booking:
        """
        创建预订

        Raises:
            ValidationError: 日期、人数、引用对象不合法
            NotFoundError: 物业 / 房型 / 价格计划不存在
            AvailabilityError: 锁内校验不可售
            ConflictError: 锁等待超时或条件扣减影响行数不足（可重试）
        """
        nights = validate_stay_request(data.check_in_date, data.check_out_date,
                                       data.adults, data.children, data.rooms)
        if not data.guest_id and not data.guest_info:
            raise ValidationError("Either guest_id or guest_info is required")

        with atomic(self.db, "create_booking", tenant_id=tenant_id,
                    room_id=data.room_id, rate_plan_id=data.rate_plan_id,
                    check_in=str(data.check_in_date), check_out=str(data.check_out_date),
                    rooms=data.rooms) as scope:
            scope["stage"] = "validate"
            prop, room, rate_plan = self.references.resolve_stay_references(
                tenant_id, data.property_id, data.room_id, data.rate_plan_id
            )
            if not check_capacity(room, data.adults, data.children, data.rooms):
                raise AvailabilityError(
                    "Party size exceeds room capacity",
                    details={"reasons": [CAPACITY], "max_occupancy": room.max_occupancy,
                             "max_adults": room.max_adults, "max_children": room.max_children,
                             "rooms": data.rooms}
                )

            scope["stage"] = "lock"
            records = self.ledger.lock_range(tenant_id, room.id, rate_plan.id,
                                             data.check_in_date, data.check_out_date)

            scope["stage"] = "revalidate"
            evaluation = evaluate_stay(records, data.check_in_date, data.check_out_date, data.rooms)
            if not evaluation.is_available:
                raise AvailabilityError(
                    "Requested stay is not available",
                    details={
                        "reasons": evaluation.violations,
                        "missing_dates": [str(d) for d in evaluation.missing_dates],
                        "min_available_rooms": evaluation.min_available,
                        "required_min_stay": evaluation.required_min_stay,
                    }
                )

            scope["stage"] = "price"
            currency = evaluation.currency or prop.currency or settings.DEFAULT_CURRENCY
            price = self.pricing.quote(tenant_id, evaluation.nightly_prices, currency)

            scope["stage"] = "guest"
            guest_id, guest_info = self._resolve_guest(tenant_id, data)

            scope["stage"] = "insert"
            booking = self._insert_booking(
                tenant_id=tenant_id,
                property_id=prop.id,
                room_id=room.id,
                rate_plan_id=rate_plan.id,
                guest_id=guest_id,
                channel=data.channel,
                channel_booking_id=data.channel_booking_id,
                status=BookingStatus.CONFIRMED,
                check_in_date=data.check_in_date,
                check_out_date=data.check_out_date,
                total_nights=nights,
                rooms=data.rooms,
                adults=data.adults,
                children=data.children,
                base_price=price.base_price,
                taxes=price.taxes,
                fees=price.fees,
                total_amount=price.total_amount,
                currency=price.currency,
                guest_info=guest_info,
                special_requests=data.special_requests,
            )

            scope["stage"] = "decrement"
            self.ledger.decrement(tenant_id, room.id, rate_plan.id,
                                  data.check_in_date, data.check_out_date, data.rooms)
            for record in records:
                self.db.expire(record)

        self.db.refresh(booking)
        logger.info(
            f"Booking {booking.booking_reference} created: tenant={tenant_id} "
            f"room={booking.room_id} rate_plan={booking.rate_plan_id} "
            f"{booking.check_in_date}..{booking.check_out_date} rooms={booking.rooms} "
            f"total={booking.total_amount} {booking.currency}"
        )
        self._publish_created(booking)
        return booking

    def _resolve_guest(self, tenant_id: str, data: BookingCreate) -> Tuple[Optional[str], Optional[dict]]:
        if data.guest_info:
            guest_info = data.guest_info.model_dump()
            guest = self.guests.upsert_guest(tenant_id, guest_info)
            guest_info["email"] = guest.email
            return guest.id, guest_info

        guest = self.guests.get_guest(tenant_id, data.guest_id)
        if not guest:
            raise NotFoundError("Guest not found", details={"guest_id": data.guest_id})
        return guest.id, {
            "email": guest.email,
            "first_name": guest.first_name,
            "last_name": guest.last_name,
            "phone": guest.phone,
            "nationality": guest.nationality,
        }

    def _insert_booking(self, **fields) -> Booking:
        """
        写入预订；预订号唯一冲突时重新生成

        每次尝试在 savepoint 内 flush，冲突只回滚这一次插入，已持有的库存锁不受影响
        """
        attempts = settings.REFERENCE_MAX_ATTEMPTS
        for attempt in range(1, attempts + 1):
            booking = Booking(booking_reference=self._generate_reference(), **fields)
            try:
                with self.db.begin_nested():
                    self.db.add(booking)
                return booking
            except IntegrityError as e:
                if not _is_reference_conflict(e):
                    raise
                logger.warning(
                    f"Booking reference {booking.booking_reference} already used "
                    f"(attempt {attempt}/{attempts}), regenerating"
                )
        raise ConflictError(
            "Could not allocate a unique booking reference, please retry",
            details={"retryable": True, "attempts": attempts}
        )

    # ============== 非容量字段更新 ==============

    def update_booking(self, tenant_id: str, booking_id: str, data: BookingUpdate) -> Booking:
        """更新预订的非容量字段（备注、客人信息、支付状态等）"""
        update_data = data.model_dump(exclude_unset=True)
        if not update_data:
            raise ValidationError("No fields to update")

        with atomic(self.db, "update_booking", tenant_id=tenant_id, booking_id=booking_id):
            booking = self.get_booking(tenant_id, booking_id)
            if booking.status == BookingStatus.CANCELLED:
                raise DomainStateError("Cancelled bookings cannot be modified",
                                       details={"booking_id": booking_id,
                                                "status": booking.status.value})
            for key, value in update_data.items():
                if key == "payment_status" and value is not None:
                    value = value.value
                setattr(booking, key, value)

        self.db.refresh(booking)
        return booking

    # ============== 事件 ==============

    def _publish_created(self, booking: Booking) -> None:
        safe_publish(self._publish_event, Event.from_data(
            EventType.BOOKING_CREATED.value,
            BookingCreatedData(
                tenant_id=booking.tenant_id,
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                channel=booking.channel,
                room_id=booking.room_id,
                rate_plan_id=booking.rate_plan_id,
                check_in_date=booking.check_in_date,
                check_out_date=booking.check_out_date,
                rooms=booking.rooms,
                total_amount=booking.total_amount,
                currency=booking.currency,
            ),
            "booking_service"
        ))
