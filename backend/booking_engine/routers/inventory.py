"""
库存管理路由
"""
from typing import Optional
from datetime import date
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from booking_engine.database import get_db
from booking_engine.models.schemas import (
    BulkInventoryRequest, BulkInventoryResponse, InventoryCalendarResponse,
    InventoryRecordResponse, InventoryRecordUpdate
)
from booking_engine.security.tenant import get_tenant_id
from booking_engine.services.bulk_inventory_service import BulkInventoryService

router = APIRouter(prefix="/inventory", tags=["库存管理"])


@router.post("/bulk", response_model=BulkInventoryResponse)
def bulk_update_inventory(
    data: BulkInventoryRequest,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """批量更新库存（逐条独立提交）"""
    service = BulkInventoryService(db)
    return service.bulk_update(tenant_id, data.updates)


@router.get("/calendar", response_model=InventoryCalendarResponse)
def get_inventory_calendar(
    start_date: date,
    end_date: date,
    property_id: Optional[str] = None,
    room_id: Optional[str] = None,
    rate_plan_id: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """库存日历"""
    service = BulkInventoryService(db)
    items, total = service.get_inventory_calendar(
        tenant_id, start_date, end_date, property_id=property_id,
        room_id=room_id, rate_plan_id=rate_plan_id, page=page, limit=limit
    )
    return InventoryCalendarResponse(
        items=[InventoryRecordResponse.model_validate(r) for r in items],
        total=total, page=page, limit=limit
    )


@router.patch("/{inventory_id}", response_model=InventoryRecordResponse)
def update_inventory_record(
    inventory_id: str,
    data: InventoryRecordUpdate,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """编辑单条库存记录"""
    service = BulkInventoryService(db)
    return service.update_inventory_record(tenant_id, inventory_id, data)
