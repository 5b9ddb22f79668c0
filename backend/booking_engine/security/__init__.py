# Security module
from booking_engine.security.tenant import get_tenant_id

__all__ = ['get_tenant_id']
