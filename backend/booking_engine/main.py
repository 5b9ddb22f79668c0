"""
客房库存与预订事务引擎 - 主应用入口
"""
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from booking_engine import __version__
from booking_engine.config import settings
from booking_engine.database import init_db
from booking_engine.exceptions import BookingEngineError, InternalError
from booking_engine.routers import availability, bookings, inventory

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s"
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """应用生命周期管理"""
    # 初始化数据库
    init_db()

    # 注册事件处理器
    from booking_engine.services.event_handlers import register_event_handlers
    register_event_handlers()

    logger.info(f"{settings.APP_NAME} {__version__} started")
    yield


# 创建应用
app = FastAPI(
    title=settings.APP_NAME,
    description="多租户酒店客房库存与预订事务引擎",
    version=__version__,
    lifespan=lifespan
)


@app.exception_handler(BookingEngineError)
async def booking_engine_error_handler(request: Request, exc: BookingEngineError):
    """领域异常 -> HTTP 响应"""
    if isinstance(exc, InternalError):
        logger.error(f"{request.method} {request.url.path} failed, "
                     f"correlation_id={exc.correlation_id}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# 注册路由
app.include_router(availability.router)
app.include_router(bookings.router)
app.include_router(inventory.router)


@app.get("/health")
def health_check():
    """健康检查"""
    return {"status": "healthy", "version": __version__}
