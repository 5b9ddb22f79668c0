"""
租户上下文
认证由网关完成，这里只从请求头读取已认证的租户ID
"""
from fastapi import Header

from booking_engine.exceptions import ValidationError


def get_tenant_id(x_tenant_id: str = Header(..., alias="X-Tenant-ID")) -> str:
    """依赖注入：获取当前租户ID"""
    tenant_id = x_tenant_id.strip()
    if not tenant_id:
        raise ValidationError("X-Tenant-ID header must not be empty")
    return tenant_id
