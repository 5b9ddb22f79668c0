"""
事件处理器
订阅预订 / 库存事件，转交渠道同步与通知模块（外部协作方）

渠道同步适配器不在本服务内实现，默认只记录日志；
部署时通过 channel_notifier 注入真正的适配器
"""
import logging
from typing import Callable, Optional

from booking_engine.models.events import EventType
from booking_engine.services.event_bus import Event, event_bus

logger = logging.getLogger(__name__)


class EventHandlers:
    """
    事件处理器集合

    支持依赖注入以便于测试：
    - channel_notifier: 渠道同步回调，签名 (event_type, data) -> None
    """

    def __init__(self, channel_notifier: Optional[Callable[[str, dict], None]] = None):
        self._channel_notifier = channel_notifier
        self._registered = False

    def _notify_channel(self, event: Event) -> None:
        if self._channel_notifier is None:
            logger.debug(f"No channel notifier configured, skipping {event.event_type}")
            return
        self._channel_notifier(event.event_type, event.data)

    def handle_booking_created(self, event: Event) -> None:
        """预订创建：通知渠道扣减可售"""
        data = event.data
        logger.info(
            f"Channel sync requested for new booking {data.get('booking_reference')} "
            f"(tenant={data.get('tenant_id')}, channel={data.get('channel')})"
        )
        self._notify_channel(event)

    def handle_booking_cancelled(self, event: Event) -> None:
        """预订取消：通知渠道恢复可售"""
        data = event.data
        if data.get("inconsistent_dates"):
            logger.warning(
                f"Booking {data.get('booking_reference')} released inventory with "
                f"inconsistencies on {data.get('inconsistent_dates')}"
            )
        logger.info(
            f"Channel sync requested for cancelled booking {data.get('booking_reference')} "
            f"(tenant={data.get('tenant_id')}, channel={data.get('channel')})"
        )
        self._notify_channel(event)

    def handle_inventory_bulk_updated(self, event: Event) -> None:
        """批量库存更新完成"""
        data = event.data
        logger.info(
            f"Inventory bulk update for tenant={data.get('tenant_id')}: "
            f"{data.get('successful')}/{data.get('total')} applied"
        )
        self._notify_channel(event)

    def register_handlers(self, event_bus_instance=None) -> None:
        """注册所有事件处理器"""
        if self._registered:
            return

        bus = event_bus_instance or event_bus

        bus.subscribe(EventType.BOOKING_CREATED.value, self.handle_booking_created)
        bus.subscribe(EventType.BOOKING_CANCELLED.value, self.handle_booking_cancelled)
        bus.subscribe(EventType.INVENTORY_BULK_UPDATED.value, self.handle_inventory_bulk_updated)

        self._registered = True
        logger.info("Event handlers registered successfully")

    def unregister_handlers(self, event_bus_instance=None) -> None:
        """取消注册所有事件处理器（用于测试）"""
        bus = event_bus_instance or event_bus

        bus.unsubscribe(EventType.BOOKING_CREATED.value, self.handle_booking_created)
        bus.unsubscribe(EventType.BOOKING_CANCELLED.value, self.handle_booking_cancelled)
        bus.unsubscribe(EventType.INVENTORY_BULK_UPDATED.value, self.handle_inventory_bulk_updated)

        self._registered = False
        logger.info("Event handlers unregistered")


# 全局事件处理器实例
event_handlers = EventHandlers()


def register_event_handlers():
    """注册所有事件处理器（应用启动时调用）"""
    event_handlers.register_handlers()
