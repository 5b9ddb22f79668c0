"""
预订管理路由
"""
from typing import Optional
from datetime import date
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from booking_engine.database import get_db
from booking_engine.models.ledger import BookingStatus
from booking_engine.models.schemas import (
    BookingCreate, BookingUpdate, BookingCancel, BookingResponse,
    BookingListResponse, BookingStats
)
from booking_engine.security.tenant import get_tenant_id
from booking_engine.services.booking_service import BookingService
from booking_engine.services.cancellation_service import CancellationService

router = APIRouter(prefix="/bookings", tags=["预订管理"])


@router.get("", response_model=BookingListResponse)
def list_bookings(
    status_filter: Optional[BookingStatus] = Query(None, alias="status"),
    channel: Optional[str] = None,
    property_id: Optional[str] = None,
    room_id: Optional[str] = None,
    guest_id: Optional[str] = None,
    check_in_from: Optional[date] = None,
    check_out_to: Optional[date] = None,
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """获取预订列表"""
    service = BookingService(db)
    items, total = service.list_bookings(
        tenant_id, status=status_filter, channel=channel, property_id=property_id,
        room_id=room_id, guest_id=guest_id, check_in_from=check_in_from,
        check_out_to=check_out_to, search=search, page=page, limit=limit
    )
    return BookingListResponse(
        items=[BookingResponse.model_validate(b) for b in items],
        total=total, page=page, limit=limit
    )


@router.get("/stats", response_model=BookingStats)
def get_booking_stats(
    period_days: int = Query(30, ge=1, le=366),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """预订统计"""
    service = BookingService(db)
    return service.get_booking_stats(tenant_id, period_days)


@router.get("/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """获取预订详情"""
    service = BookingService(db)
    return service.get_booking(tenant_id, booking_id)


@router.post("", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_booking(
    data: BookingCreate,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """创建预订"""
    service = BookingService(db)
    return service.create_booking(tenant_id, data)


@router.patch("/{booking_id}", response_model=BookingResponse)
def update_booking(
    booking_id: str,
    data: BookingUpdate,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """更新预订（非容量字段）"""
    service = BookingService(db)
    return service.update_booking(tenant_id, booking_id, data)


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    data: Optional[BookingCancel] = None,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """取消预订"""
    service = CancellationService(db)
    return service.cancel_booking(tenant_id, booking_id, data.reason if data else None)
