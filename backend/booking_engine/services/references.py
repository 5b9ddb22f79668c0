"""
参考数据查询
物业 / 房型 / 价格计划由外部模块维护，这里只做按租户的只读校验
"""
from typing import Optional, Tuple
from sqlalchemy.orm import Session

from booking_engine.exceptions import NotFoundError, ValidationError
from booking_engine.models.ledger import Property, Room, RatePlan


class ReferenceLookup:
    """参考数据查询"""

    def __init__(self, db: Session):
        self.db = db

    def get_property(self, tenant_id: str, property_id: str) -> Optional[Property]:
        return self.db.query(Property).filter(
            Property.tenant_id == tenant_id,
            Property.id == property_id
        ).first()

    def get_room(self, tenant_id: str, room_id: str) -> Optional[Room]:
        return self.db.query(Room).filter(
            Room.tenant_id == tenant_id,
            Room.id == room_id
        ).first()

    def get_rate_plan(self, tenant_id: str, rate_plan_id: str) -> Optional[RatePlan]:
        return self.db.query(RatePlan).filter(
            RatePlan.tenant_id == tenant_id,
            RatePlan.id == rate_plan_id
        ).first()

    def resolve_stay_references(self, tenant_id: str, property_id: str, room_id: str,
                                rate_plan_id: str) -> Tuple[Property, Room, RatePlan]:
        """
        校验一次预订引用的物业、房型、价格计划

        其他租户的对象视为不存在
        """
        prop = self.get_property(tenant_id, property_id)
        if not prop or not prop.is_active:
            raise NotFoundError("Property not found", details={"property_id": property_id})

        room = self.get_room(tenant_id, room_id)
        if not room or not room.is_active:
            raise NotFoundError("Room not found", details={"room_id": room_id})

        rate_plan = self.get_rate_plan(tenant_id, rate_plan_id)
        if not rate_plan or not rate_plan.is_active:
            raise NotFoundError("Rate plan not found", details={"rate_plan_id": rate_plan_id})

        if room.property_id != prop.id or rate_plan.property_id != prop.id:
            raise ValidationError(
                "Room and rate plan must belong to the requested property",
                details={"property_id": property_id, "room_id": room_id,
                         "rate_plan_id": rate_plan_id}
            )
        return prop, room, rate_plan
