"""
事务边界
统一提交 / 回滚，并把数据库异常分类为领域异常：
- 锁等待超时、死锁、SQLite "database is locked" -> ConflictError（可重试）
- 其他数据库异常 -> InternalError（带关联ID，完整上下文写日志）
"""
import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator

from sqlalchemy.exc import OperationalError, SQLAlchemyError, DBAPIError
from sqlalchemy.orm import Session

from booking_engine.exceptions import BookingEngineError, ConflictError, InternalError

logger = logging.getLogger(__name__)

# PostgreSQL: lock_not_available, deadlock_detected, serialization_failure
_LOCK_SQLSTATES = {"55P03", "40P01", "40001"}
_LOCK_MESSAGES = ("database is locked", "deadlock detected", "lock timeout",
                  "could not obtain lock", "could not serialize access")


def is_lock_contention(exc: DBAPIError) -> bool:
    """判断数据库异常是否由锁竞争引起"""
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if sqlstate in _LOCK_SQLSTATES:
        return True
    message = str(exc).lower()
    return any(fragment in message for fragment in _LOCK_MESSAGES)


@contextmanager
def atomic(db: Session, operation: str, **context: Any) -> Iterator[Dict[str, Any]]:
    """
    原子执行一组数据库操作

    Yields:
        scope 字典，调用方可更新 scope["stage"] 以便出错时记录所在阶段

    Example:
        >>> with atomic(db, "create_booking", tenant_id=tid) as scope:
        ...     scope["stage"] = "lock"
        ...     ledger.lock_range(...)
    """
    scope: Dict[str, Any] = {"stage": "begin"}
    try:
        yield scope
        scope["stage"] = "commit"
        db.commit()
    except BookingEngineError:
        db.rollback()
        raise
    except OperationalError as exc:
        db.rollback()
        if is_lock_contention(exc):
            logger.warning(
                f"{operation}: lock contention at stage={scope['stage']} context={context}"
            )
            raise ConflictError(
                "The requested inventory is being modified by another request, please retry",
                details={"retryable": True, "stage": scope["stage"]},
            ) from exc
        raise _internal_error(operation, scope, context, exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise _internal_error(operation, scope, context, exc) from exc
    except Exception as exc:
        db.rollback()
        raise _internal_error(operation, scope, context, exc) from exc
    except BaseException:
        # 请求被取消 / 进程中断：整体回滚后继续向上抛出
        db.rollback()
        raise


def _internal_error(operation: str, scope: Dict[str, Any], context: Dict[str, Any],
                    exc: BaseException) -> InternalError:
    error = InternalError(details={"operation": operation, "stage": scope.get("stage")})
    logger.error(
        f"{operation} failed at stage={scope.get('stage')} "
        f"correlation_id={error.correlation_id} context={context}: {exc}",
        exc_info=exc,
    )
    return error
