"""
取消服务 - 取消事务
预订扣减的逆操作：恢复库存并把预订置为 cancelled

幂等保护：先锁定预订行再检查状态，重复取消返回 DomainStateError 且不修改库存
"""
import logging
from typing import Callable, Optional

from sqlalchemy.orm import Session

from booking_engine.exceptions import DomainStateError, NotFoundError
from booking_engine.models.events import BookingCancelledData, EventType
from booking_engine.models.ledger import Booking, BookingStatus, utcnow
from booking_engine.services.event_bus import Event, event_bus, safe_publish
from booking_engine.services.inventory_ledger import InventoryLedger, lock_rows
from booking_engine.services.transaction import atomic

logger = logging.getLogger(__name__)


class CancellationService:
    """取消服务"""

    def __init__(self, db: Session, event_publisher: Callable = None):
        self.db = db
        self.ledger = InventoryLedger(db)
        self._publish_event = event_publisher or event_bus.publish

    def cancel_booking(self, tenant_id: str, booking_id: str,
                       reason: Optional[str] = None) -> Booking:
        """
        取消预订

        Raises:
            NotFoundError: 预订不存在（或属于其他租户）
            DomainStateError: 预订已取消或已完成
            ConflictError: 锁等待超时（可重试）
        """
        with atomic(self.db, "cancel_booking", tenant_id=tenant_id,
                    booking_id=booking_id) as scope:
            scope["stage"] = "lock_booking"
            rows = lock_rows(
                self.db, Booking,
                Booking.tenant_id == tenant_id,
                Booking.id == booking_id,
            )
            if not rows:
                raise NotFoundError("Booking not found", details={"booking_id": booking_id})
            booking = rows[0]

            if booking.status == BookingStatus.CANCELLED:
                raise DomainStateError("Booking is already cancelled",
                                       details={"booking_id": booking_id,
                                                "booking_reference": booking.booking_reference})
            if booking.status == BookingStatus.COMPLETED:
                raise DomainStateError("Completed bookings cannot be cancelled",
                                       details={"booking_id": booking_id,
                                                "booking_reference": booking.booking_reference})

            scope["stage"] = "lock_inventory"
            self.ledger.lock_range(tenant_id, booking.room_id, booking.rate_plan_id,
                                   booking.check_in_date, booking.check_out_date)

            scope["stage"] = "release"
            anomalies = self.ledger.release(tenant_id, booking.room_id, booking.rate_plan_id,
                                            booking.check_in_date, booking.check_out_date,
                                            booking.rooms)

            scope["stage"] = "status"
            booking.status = BookingStatus.CANCELLED
            booking.cancel_reason = reason
            booking.cancelled_at = utcnow()

        self.db.refresh(booking)
        if anomalies:
            logger.critical(
                f"Booking {booking.booking_reference} cancelled with ledger inconsistencies "
                f"on {[str(d) for d in anomalies]}; conservation audit required"
            )
        logger.info(
            f"Booking {booking.booking_reference} cancelled: tenant={tenant_id} "
            f"room={booking.room_id} rate_plan={booking.rate_plan_id} "
            f"{booking.check_in_date}..{booking.check_out_date} rooms={booking.rooms}"
        )
        safe_publish(self._publish_event, Event.from_data(
            EventType.BOOKING_CANCELLED.value,
            BookingCancelledData(
                tenant_id=tenant_id,
                booking_id=booking.id,
                booking_reference=booking.booking_reference,
                channel=booking.channel,
                room_id=booking.room_id,
                rate_plan_id=booking.rate_plan_id,
                check_in_date=booking.check_in_date,
                check_out_date=booking.check_out_date,
                rooms=booking.rooms,
                reason=reason or "",
                inconsistent_dates=[str(d) for d in anomalies],
            ),
            "cancellation_service"
        ))
        return booking
