"""
应用配置
从环境变量 / .env 读取配置，税费率支持按租户覆盖
"""
from decimal import Decimal
from typing import Dict
from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """应用设置"""

    # 应用基础配置
    APP_NAME: str = "Booking Engine"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # 数据库配置
    DATABASE_URL: str = "sqlite:///./booking_engine.db"
    DATABASE_ECHO: bool = False

    # 并发控制：获取行锁的最长等待时间（秒），超时返回可重试的 ConflictError
    LOCK_TIMEOUT_SECONDS: float = 5.0
    # 预订号唯一冲突时的最大重新生成次数
    REFERENCE_MAX_ATTEMPTS: int = 5

    # 价格配置（默认税率 10%，服务费 5%）
    DEFAULT_TAX_RATE: Decimal = Decimal("0.10")
    DEFAULT_FEE_RATE: Decimal = Decimal("0.05")
    # 按租户覆盖: {"<tenant_id>": {"tax_rate": "0.08", "fee_rate": "0"}}
    TENANT_PRICING: Dict[str, Dict[str, Decimal]] = {}
    DEFAULT_CURRENCY: str = "USD"

    # 业务限制
    MAX_STAY_NIGHTS: int = 90
    BULK_MAX_ITEMS: int = 1000

    model_config = ConfigDict(env_file=".env", case_sensitive=True, extra="ignore")


# 全局设置实例
settings = Settings()
