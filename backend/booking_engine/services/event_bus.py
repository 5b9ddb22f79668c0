"""
事件总线 - 进程内发布/订阅
预订创建、取消、批量库存更新在事务提交后发布事件，
渠道同步与通知模块订阅处理（fire-and-forget，失败不影响已提交的数据）
"""
from typing import Callable, Dict, List, Any, Optional
from dataclasses import dataclass, field
from datetime import datetime
from collections import deque
import logging
import threading
import uuid

logger = logging.getLogger(__name__)

# 订阅所有事件类型
ALL_EVENTS = "*"

Handler = Callable[["Event"], None]


@dataclass
class Event:
    """领域事件"""
    event_type: str
    timestamp: datetime
    data: Dict[str, Any]
    source: str  # 发布方（服务名）
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def tenant_id(self) -> Optional[str]:
        return self.data.get("tenant_id")

    @classmethod
    def from_data(cls, event_type: str, payload, source: str) -> "Event":
        """由事件数据对象（BaseEventData 子类）构造事件"""
        return cls(
            event_type=event_type,
            timestamp=datetime.now(),
            data=payload.to_dict(),
            source=source,
        )


class EventBus:
    """
    线程安全的事件总线（单例）

    - subscribe(event_type, handler)：event_type 为 ALL_EVENTS 时接收全部事件
    - publish(event)：同步调用处理器，返回失败的处理器数量；
      处理器异常只记录日志，不会抛给发布方
    """

    _instance = None
    _instance_lock = threading.Lock()

    def __new__(cls):
        with cls._instance_lock:
            if cls._instance is None:
                instance = super().__new__(cls)
                instance._handlers = {}
                instance._history = deque(maxlen=200)
                instance._lock = threading.RLock()
                cls._instance = instance
                logger.info("EventBus initialized")
        return cls._instance

    def subscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.setdefault(event_type, [])
            if handler in handlers:
                return
            handlers.append(handler)
        logger.debug(f"{getattr(handler, '__name__', handler)} subscribed to {event_type}")

    def unsubscribe(self, event_type: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def _handlers_for(self, event_type: str) -> List[Handler]:
        with self._lock:
            return list(self._handlers.get(event_type, [])) + list(self._handlers.get(ALL_EVENTS, []))

    def publish(self, event: Event) -> int:
        """
        发布事件

        Returns:
            执行失败的处理器数量
        """
        with self._lock:
            self._history.append(event)
        handlers = self._handlers_for(event.event_type)

        failures = 0
        for handler in handlers:
            try:
                handler(event)
            except Exception as e:
                failures += 1
                logger.error(
                    f"Handler {getattr(handler, '__name__', handler)} failed on "
                    f"{event.event_type} ({event.event_id}, tenant={event.tenant_id}): {e}",
                    exc_info=True
                )
        if handlers:
            logger.debug(f"{event.event_type} delivered to {len(handlers) - failures}/{len(handlers)} handlers")
        return failures

    def get_history(self, event_type: Optional[str] = None, tenant_id: Optional[str] = None,
                    limit: int = 50) -> List[Event]:
        """最近发布的事件（最新的在前），用于排查渠道同步问题"""
        with self._lock:
            history = list(self._history)
        matched = [
            e for e in reversed(history)
            if (event_type is None or e.event_type == event_type)
            and (tenant_id is None or e.tenant_id == tenant_id)
        ]
        return matched[:limit]

    def clear_subscribers(self) -> None:
        """清空所有订阅（用于测试）"""
        with self._lock:
            self._handlers.clear()

    def clear_history(self) -> None:
        with self._lock:
            self._history.clear()


# 全局事件总线实例
event_bus = EventBus()


def safe_publish(publisher: Callable[[Event], Any], event: Event) -> None:
    """
    在事务提交之后发布事件

    发布失败只记录日志，不影响已经提交的预订
    """
    try:
        publisher(event)
    except Exception as e:
        logger.error(f"Failed to publish {event.event_type} ({event.event_id}): {e}", exc_info=True)
