"""
可售查询服务 - 只读
回答"这个日期范围、这个人数，可以订什么、多少钱"

查询结果只是建议，预订事务会在锁内用同一个谓词 (evaluate_stay) 重新校验
"""
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from booking_engine.config import settings
from booking_engine.exceptions import ValidationError
from booking_engine.models.ledger import InventoryRecord, Property, RatePlan, Room
from booking_engine.models.schemas import (
    AvailabilityResult, AvailabilitySearch, PropertySummary, RoomSummary
)
from booking_engine.services.inventory_ledger import stay_dates
from booking_engine.services.pricing import quantize

logger = logging.getLogger(__name__)

# 不可售原因
MISSING_INVENTORY = "missing_inventory"
INSUFFICIENT_INVENTORY = "insufficient_inventory"
STOP_SELL = "stop_sell"
CLOSED_TO_ARRIVAL = "closed_to_arrival"
CLOSED_TO_DEPARTURE = "closed_to_departure"
MIN_STAY = "min_stay"
MAX_STAY = "max_stay"
CAPACITY = "capacity"


def validate_stay_request(check_in: date, check_out: date, adults: int, children: int,
                          rooms: int, today: Optional[date] = None) -> int:
    """
    校验日期范围与人数（查询和预订共用）

    Returns:
        入住晚数
    """
    today = today or date.today()
    if check_out <= check_in:
        raise ValidationError("Check-out date must be after check-in date",
                              details={"check_in_date": str(check_in),
                                       "check_out_date": str(check_out)})
    if check_in < today:
        raise ValidationError("Check-in date cannot be in the past",
                              details={"check_in_date": str(check_in)})
    nights = (check_out - check_in).days
    if nights > settings.MAX_STAY_NIGHTS:
        raise ValidationError(f"Stay cannot exceed {settings.MAX_STAY_NIGHTS} nights",
                              details={"nights": nights})
    if adults < 1:
        raise ValidationError("At least one adult is required", details={"adults": adults})
    if children < 0:
        raise ValidationError("Children cannot be negative", details={"children": children})
    if rooms < 1:
        raise ValidationError("At least one room must be requested", details={"rooms": rooms})
    return nights


@dataclass
class StayEvaluation:
    """一次入住在某个 (房型, 价格计划) 上的评估结果"""
    nights: int
    violations: List[str] = field(default_factory=list)
    missing_dates: List[date] = field(default_factory=list)
    min_available: int = 0
    min_price: Decimal = Decimal("0")
    avg_price: Decimal = Decimal("0")
    max_price: Decimal = Decimal("0")
    nightly_prices: List[Decimal] = field(default_factory=list)
    required_min_stay: int = 1
    currency: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return not self.violations


def evaluate_stay(records: Iterable[InventoryRecord], check_in: date, check_out: date,
                  rooms_requested: int) -> StayEvaluation:
    """
    可售谓词

    (a) 每一天都有记录  (b) 最小可售数 >= 需求间数  (c) 无停售
    (d) 首日可到店  (e) 末日可离店  (f) 晚数 >= 最大 min_stay
    (h) 晚数 <= 最小 max_stay
    """
    days = stay_dates(check_in, check_out)
    result = StayEvaluation(nights=len(days))
    by_date: Dict[date, InventoryRecord] = {r.date: r for r in records}

    result.missing_dates = [d for d in days if d not in by_date]
    if result.missing_dates:
        result.violations.append(MISSING_INVENTORY)
        return result

    covered = [by_date[d] for d in days]
    result.min_available = min(r.available_rooms for r in covered)
    result.nightly_prices = [Decimal(r.price) for r in covered]
    result.min_price = min(result.nightly_prices)
    result.max_price = max(result.nightly_prices)
    result.avg_price = quantize(sum(result.nightly_prices, Decimal("0")) / len(covered))
    result.required_min_stay = max((r.min_stay or 1) for r in covered)
    result.currency = covered[0].currency

    if result.min_available < rooms_requested:
        result.violations.append(INSUFFICIENT_INVENTORY)
    if any(r.stop_sell for r in covered):
        result.violations.append(STOP_SELL)
    if covered[0].closed_to_arrival:
        result.violations.append(CLOSED_TO_ARRIVAL)
    if covered[-1].closed_to_departure:
        result.violations.append(CLOSED_TO_DEPARTURE)
    if result.nights < result.required_min_stay:
        result.violations.append(MIN_STAY)
    max_stays = [r.max_stay for r in covered if r.max_stay]
    if max_stays and result.nights > min(max_stays):
        result.violations.append(MAX_STAY)
    return result


def check_capacity(room: Room, adults: int, children: int, rooms: int) -> bool:
    """(g) 房型容量：单间容量 × 间数 >= 人数"""
    return (
        adults + children <= room.max_occupancy * rooms
        and adults <= room.max_adults * rooms
        and children <= room.max_children * rooms
    )


class AvailabilityService:
    """可售查询服务"""

    def __init__(self, db: Session):
        self.db = db

    def search(self, tenant_id: str, criteria: AvailabilitySearch) -> List[AvailabilityResult]:
        """搜索可售房型"""
        nights = validate_stay_request(
            criteria.check_in_date, criteria.check_out_date,
            criteria.adults, criteria.children, criteria.rooms
        )
        if (criteria.min_price is not None and criteria.max_price is not None
                and criteria.min_price > criteria.max_price):
            raise ValidationError("min_price cannot be greater than max_price")

        stmt = (
            select(InventoryRecord, Room, RatePlan, Property)
            .join(Room, Room.id == InventoryRecord.room_id)
            .join(RatePlan, RatePlan.id == InventoryRecord.rate_plan_id)
            .join(Property, Property.id == InventoryRecord.property_id)
            .where(
                InventoryRecord.tenant_id == tenant_id,
                InventoryRecord.date >= criteria.check_in_date,
                InventoryRecord.date < criteria.check_out_date,
                Room.is_active.is_(True),
                RatePlan.is_active.is_(True),
                Property.is_active.is_(True),
            )
        )
        if criteria.property_id:
            stmt = stmt.where(InventoryRecord.property_id == criteria.property_id)
        if criteria.room_id:
            stmt = stmt.where(InventoryRecord.room_id == criteria.room_id)
        if criteria.rate_plan_id:
            stmt = stmt.where(InventoryRecord.rate_plan_id == criteria.rate_plan_id)
        if criteria.city:
            stmt = stmt.where(Property.city == criteria.city)
        if criteria.country:
            stmt = stmt.where(Property.country == criteria.country)
        if criteria.room_type:
            stmt = stmt.where(Room.room_type == criteria.room_type)

        # 按 (房型, 价格计划) 分组
        candidates: Dict[Tuple[str, str], dict] = {}
        for record, room, rate_plan, prop in self.db.execute(stmt).all():
            entry = candidates.setdefault(
                (room.id, rate_plan.id),
                {"room": room, "rate_plan": rate_plan, "property": prop, "records": []}
            )
            entry["records"].append(record)

        results = []
        for entry in candidates.values():
            room, rate_plan, prop = entry["room"], entry["rate_plan"], entry["property"]
            evaluation = evaluate_stay(entry["records"], criteria.check_in_date,
                                       criteria.check_out_date, criteria.rooms)
            if not evaluation.is_available:
                continue
            if not check_capacity(room, criteria.adults, criteria.children, criteria.rooms):
                continue
            if criteria.min_price is not None and evaluation.avg_price < criteria.min_price:
                continue
            if criteria.max_price is not None and evaluation.avg_price > criteria.max_price:
                continue
            if criteria.amenities and not set(criteria.amenities) & set(room.amenities or []):
                continue

            results.append(AvailabilityResult(
                property=PropertySummary.model_validate(prop),
                room=RoomSummary.model_validate(room),
                rate_plan_id=rate_plan.id,
                rate_plan_name=rate_plan.name,
                plan_type=rate_plan.plan_type,
                min_available_rooms=evaluation.min_available,
                avg_price=evaluation.avg_price,
                min_price=evaluation.min_price,
                max_price=evaluation.max_price,
                currency=evaluation.currency or prop.currency or settings.DEFAULT_CURRENCY,
                nights=nights,
                rooms=criteria.rooms,
                total_price=quantize(sum(evaluation.nightly_prices, Decimal("0"))),
                min_stay=evaluation.required_min_stay,
                closed_to_arrival=False,
                closed_to_departure=False,
            ))

        self._sort(results, criteria.sort_by, criteria.sort_order)
        logger.debug(f"Availability search tenant={tenant_id} candidates={len(candidates)} "
                     f"available={len(results)}")
        return results

    @staticmethod
    def _sort(results: List[AvailabilityResult], sort_by: str, sort_order: str) -> None:
        """主排序键可选，平局按价格升序、名称升序"""
        results.sort(key=lambda r: (r.avg_price, r.property.name.lower(), r.room.name.lower()))
        if sort_by == "rating":
            key = lambda r: r.property.star_rating or 0
        elif sort_by == "name":
            key = lambda r: r.property.name.lower()
        else:
            key = lambda r: r.avg_price
        results.sort(key=key, reverse=(sort_order == "desc"))
