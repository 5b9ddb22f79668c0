"""
领域事件定义 (Domain Events)
事务提交后发布，供渠道同步与通知模块订阅
"""
from enum import Enum
from dataclasses import dataclass, field, asdict
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, Dict, Any, List


class EventType(str, Enum):
    """事件类型枚举"""
    BOOKING_CREATED = "booking.created"
    BOOKING_CANCELLED = "booking.cancelled"
    INVENTORY_BULK_UPDATED = "inventory.bulk_updated"


@dataclass
class BaseEventData:
    """事件数据基类"""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典"""
        result = asdict(self)
        for key, value in result.items():
            if isinstance(value, (datetime, date)):
                result[key] = value.isoformat()
            elif isinstance(value, Decimal):
                result[key] = str(value)
        return result


@dataclass
class BookingCreatedData(BaseEventData):
    """预订创建事件数据"""
    tenant_id: str = ""
    booking_id: str = ""
    booking_reference: str = ""
    channel: str = "direct"
    room_id: str = ""
    rate_plan_id: str = ""
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    rooms: int = 1
    total_amount: Decimal = Decimal("0")
    currency: str = "USD"


@dataclass
class BookingCancelledData(BaseEventData):
    """预订取消事件数据"""
    tenant_id: str = ""
    booking_id: str = ""
    booking_reference: str = ""
    channel: str = "direct"
    room_id: str = ""
    rate_plan_id: str = ""
    check_in_date: Optional[date] = None
    check_out_date: Optional[date] = None
    rooms: int = 1
    reason: str = ""
    inconsistent_dates: List[str] = field(default_factory=list)


@dataclass
class InventoryBulkUpdatedData(BaseEventData):
    """批量库存更新事件数据"""
    tenant_id: str = ""
    total: int = 0
    successful: int = 0
    failed: int = 0
