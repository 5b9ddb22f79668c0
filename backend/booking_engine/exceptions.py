"""
领域异常定义
在事务边界完成分类，由 API 层统一转换为 HTTP 响应
"""
import uuid
from typing import Any, Dict, Optional


class BookingEngineError(Exception):
    """引擎异常基类"""

    code = "booking_engine_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(BookingEngineError):
    """输入不合法：日期范围、人数、房间数等"""

    code = "validation_error"
    status_code = 422


class AvailabilityError(BookingEngineError):
    """无可售库存：库存不足、最少入住天数、禁止到店/离店、停售"""

    code = "availability_error"
    status_code = 409


class ConflictError(BookingEngineError):
    """
    并发冲突

    行锁在超时内未获取，或条件更新影响行数少于预期。
    调用方应退避后重试。
    """

    code = "conflict"
    status_code = 409
    retryable = True


class NotFoundError(BookingEngineError):
    """预订 / 物业 / 房型 / 价格计划不存在"""

    code = "not_found"
    status_code = 404


class DomainStateError(BookingEngineError):
    """对象状态不允许该操作（如取消已取消或已完成的预订）"""

    code = "domain_state_error"
    status_code = 409


class InternalError(BookingEngineError):
    """基础设施异常，对外只返回通用信息和关联ID"""

    code = "internal_error"
    status_code = 500

    def __init__(self, message: str = "An internal error occurred",
                 correlation_id: Optional[str] = None,
                 details: Optional[Dict[str, Any]] = None):
        super().__init__(message, details)
        self.correlation_id = correlation_id or uuid.uuid4().hex

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": "An internal error occurred",
            "correlation_id": self.correlation_id,
        }
