"""
库存批量更新服务
手工编辑与渠道同步共用的批量 upsert

批量为尽力而为：每个条目在独立事务中执行，单条失败只记录为失败结果，
不回滚其他条目
"""
import logging
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.config import settings
from booking_engine.exceptions import (
    BookingEngineError, ConflictError, NotFoundError, ValidationError
)
from booking_engine.models.events import EventType, InventoryBulkUpdatedData
from booking_engine.models.ledger import InventoryRecord
from booking_engine.models.schemas import (
    BulkItemResult, InventoryFields, InventoryItem, InventoryRecordUpdate
)
from booking_engine.services.event_bus import Event, event_bus, safe_publish
from booking_engine.services.inventory_ledger import InventoryLedger
from booking_engine.services.references import ReferenceLookup
from booking_engine.services.transaction import atomic

logger = logging.getLogger(__name__)

_FIELD_NAMES = tuple(InventoryFields.model_fields.keys())


def _format_pydantic_error(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else error.get("msg", ""))
    return "; ".join(parts)


def _check_counts(available: int, total: int) -> None:
    if total < 0 or available < 0:
        raise ValidationError("Room counts cannot be negative",
                              details={"available_rooms": available, "total_rooms": total})
    if available > total:
        raise ValidationError("available_rooms cannot exceed total_rooms",
                              details={"available_rooms": available, "total_rooms": total})


class BulkInventoryService:
    """库存批量更新服务"""

    def __init__(self, db: Session, event_publisher: Callable = None):
        self.db = db
        self.ledger = InventoryLedger(db)
        self.references = ReferenceLookup(db)
        self._publish_event = event_publisher or event_bus.publish

    # ============== 批量更新 ==============

    def bulk_update(self, tenant_id: str, items: List[Dict[str, Any]]) -> Dict[str, Any]:
        """
        批量更新库存

        Args:
            items: 原始条目，逐条校验（单条格式错误只影响该条）

        Returns:
            {"total_updates", "successful", "failed", "results"}，每个输入一条结果
        """
        if len(items) > settings.BULK_MAX_ITEMS:
            raise ValidationError(
                f"Bulk update accepts at most {settings.BULK_MAX_ITEMS} items",
                details={"items": len(items)}
            )

        results: List[BulkItemResult] = []
        for index, raw in enumerate(items):
            results.append(self._apply_raw_item(tenant_id, index, raw))

        successful = sum(1 for r in results if r.success)
        failed = len(results) - successful
        logger.info(f"Bulk inventory update tenant={tenant_id}: "
                    f"{successful} succeeded, {failed} failed of {len(results)}")

        if successful:
            safe_publish(self._publish_event, Event.from_data(
                EventType.INVENTORY_BULK_UPDATED.value,
                InventoryBulkUpdatedData(
                    tenant_id=tenant_id,
                    total=len(results),
                    successful=successful,
                    failed=failed,
                ),
                "bulk_inventory_service"
            ))

        return {
            "total_updates": len(results),
            "successful": successful,
            "failed": failed,
            "results": results,
        }

    def _apply_raw_item(self, tenant_id: str, index: int, raw: Any) -> BulkItemResult:
        echo = raw if isinstance(raw, dict) else {}
        result = BulkItemResult(
            index=index,
            room_id=_as_text(echo.get("room_id")),
            rate_plan_id=_as_text(echo.get("rate_plan_id")),
            date=_as_text(echo.get("date")),
            success=False,
        )
        try:
            item = InventoryItem.model_validate(raw)
        except PydanticValidationError as e:
            result.error = _format_pydantic_error(e)
            logger.warning(f"Bulk item {index} rejected for tenant={tenant_id}: {result.error}")
            return result

        try:
            record, action = self.upsert_item(tenant_id, item)
        except BookingEngineError as e:
            result.error = e.message
            logger.warning(f"Bulk item {index} failed for tenant={tenant_id} "
                           f"room={item.room_id} date={item.date}: {e.message}")
            return result

        result.success = True
        result.action = action
        result.inventory_id = record.id
        return result

    def upsert_item(self, tenant_id: str, item: InventoryItem) -> Tuple[InventoryRecord, str]:
        """
        单条 upsert（独立事务）

        已存在：未提供的字段保持不变；不存在：total_rooms 与 price 必填，
        available_rooms 默认等于 total_rooms
        """
        with atomic(self.db, "bulk_inventory_item", tenant_id=tenant_id,
                    room_id=item.room_id, rate_plan_id=item.rate_plan_id,
                    date=str(item.date)) as scope:
            scope["stage"] = "validate"
            room = self.references.get_room(tenant_id, item.room_id)
            if not room:
                raise NotFoundError("Room not found", details={"room_id": item.room_id})
            rate_plan = self.references.get_rate_plan(tenant_id, item.rate_plan_id)
            if not rate_plan:
                raise NotFoundError("Rate plan not found", details={"rate_plan_id": item.rate_plan_id})
            if rate_plan.property_id != room.property_id:
                raise ValidationError("Rate plan does not belong to the room's property")

            scope["stage"] = "lock"
            record = self.ledger.lock_day(tenant_id, item.room_id, item.rate_plan_id, item.date)
            changes = {name: getattr(item, name) for name in _FIELD_NAMES
                       if getattr(item, name) is not None}

            scope["stage"] = "write"
            if record is not None:
                self._apply_changes(record, changes)
                action = "updated"
            else:
                record = self._new_record(tenant_id, room, item, changes)
                self.db.add(record)
                action = "created"

            try:
                self.db.flush()
            except IntegrityError as e:
                raise ConflictError(
                    "Inventory record was modified concurrently, please retry",
                    details={"retryable": True, "date": str(item.date)}
                ) from e

        return record, action

    def _apply_changes(self, record: InventoryRecord, changes: Dict[str, Any]) -> None:
        available = changes.get("available_rooms", record.available_rooms)
        total = changes.get("total_rooms", record.total_rooms)
        _check_counts(available, total)
        min_stay = changes.get("min_stay", record.min_stay)
        max_stay = changes.get("max_stay", record.max_stay)
        if min_stay and max_stay and max_stay < min_stay:
            raise ValidationError("max_stay cannot be less than min_stay",
                                  details={"min_stay": min_stay, "max_stay": max_stay})
        for key, value in changes.items():
            setattr(record, key, value)

    def _new_record(self, tenant_id: str, room, item: InventoryItem,
                    changes: Dict[str, Any]) -> InventoryRecord:
        if item.total_rooms is None or item.price is None:
            raise ValidationError("total_rooms and price are required to create an inventory record",
                                  details={"date": str(item.date)})
        changes.setdefault("available_rooms", item.total_rooms)
        _check_counts(changes["available_rooms"], item.total_rooms)
        if item.min_stay and item.max_stay and item.max_stay < item.min_stay:
            raise ValidationError("max_stay cannot be less than min_stay",
                                  details={"min_stay": item.min_stay, "max_stay": item.max_stay})
        changes.setdefault("currency",
                           (room.property.currency if room.property else None)
                           or settings.DEFAULT_CURRENCY)
        return InventoryRecord(
            tenant_id=tenant_id,
            property_id=room.property_id,
            room_id=item.room_id,
            rate_plan_id=item.rate_plan_id,
            date=item.date,
            **changes
        )

    # ============== 单条编辑 / 日历 ==============

    def update_inventory_record(self, tenant_id: str, record_id: str,
                                data: InventoryRecordUpdate) -> InventoryRecord:
        """编辑单条库存记录，校验规则与批量条目相同"""
        changes = {k: v for k, v in data.model_dump(exclude_unset=True).items() if v is not None}
        if not changes:
            raise ValidationError("No fields to update")

        with atomic(self.db, "update_inventory_record", tenant_id=tenant_id,
                    record_id=record_id) as scope:
            scope["stage"] = "lock"
            record = self.ledger.lock_record(tenant_id, record_id)
            if not record:
                raise NotFoundError("Inventory record not found", details={"inventory_id": record_id})
            scope["stage"] = "write"
            self._apply_changes(record, changes)
            self.db.flush()

        self.db.refresh(record)
        logger.info(f"Inventory record {record_id} updated for tenant={tenant_id}: {sorted(changes)}")
        return record

    def get_inventory_calendar(self, tenant_id: str, start_date: date, end_date: date,
                               property_id: Optional[str] = None, room_id: Optional[str] = None,
                               rate_plan_id: Optional[str] = None,
                               page: int = 1, limit: int = 100) -> Tuple[List[InventoryRecord], int]:
        """库存日历（含首尾日期，按日期、房型排序）"""
        return self.ledger.calendar(tenant_id, start_date, end_date,
                                    property_id=property_id, room_id=room_id,
                                    rate_plan_id=rate_plan_id, page=page, limit=limit)


def _as_text(value: Any) -> Optional[str]:
    return None if value is None else str(value)
