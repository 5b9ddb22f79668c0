"""
可售查询路由
"""
from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from booking_engine.database import get_db
from booking_engine.models.schemas import AvailabilitySearch, AvailabilityResult
from booking_engine.security.tenant import get_tenant_id
from booking_engine.services.availability_service import AvailabilityService

router = APIRouter(prefix="/availability", tags=["可售查询"])


@router.post("/search", response_model=List[AvailabilityResult])
def search_availability(
    criteria: AvailabilitySearch,
    db: Session = Depends(get_db),
    tenant_id: str = Depends(get_tenant_id)
):
    """搜索可售房型"""
    service = AvailabilityService(db)
    return service.search(tenant_id, criteria)
