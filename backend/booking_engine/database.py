"""
数据库配置 - 持久化层
显式构造 engine / session 工厂，由调用方注入到各个服务
开发与测试使用 SQLite，生产使用 PostgreSQL
"""
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

from booking_engine.config import settings

Base = declarative_base()


def create_store_engine(url: Optional[str] = None, lock_timeout: Optional[float] = None,
                        **kwargs) -> Engine:
    """
    创建存储引擎

    SQLite: 设置 busy timeout（作为锁等待上限）并开启外键约束
    """
    url = url or settings.DATABASE_URL
    timeout = settings.LOCK_TIMEOUT_SECONDS if lock_timeout is None else lock_timeout

    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        connect_args.setdefault("timeout", timeout)
        engine = create_engine(url, connect_args=connect_args,
                               echo=settings.DATABASE_ECHO, **kwargs)

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

        return engine

    return create_engine(url, echo=settings.DATABASE_ECHO, pool_pre_ping=True, **kwargs)


def build_session_factory(bind: Engine) -> sessionmaker:
    """创建会话工厂"""
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine = create_store_engine()
SessionLocal = build_session_factory(engine)


def get_db():
    """依赖注入：获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Optional[Engine] = None):
    """初始化数据库表"""
    from booking_engine.models import ledger  # noqa
    Base.metadata.create_all(bind=bind or engine)
