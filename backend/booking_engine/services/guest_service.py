"""
客人服务
预订时按 (租户, 邮箱) 查找或创建客人
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from booking_engine.models.ledger import Guest

logger = logging.getLogger(__name__)

_GUEST_FIELDS = ("first_name", "last_name", "phone", "nationality")


class GuestStore:
    """客人存储"""

    def __init__(self, db: Session):
        self.db = db

    def get_by_email(self, tenant_id: str, email: str) -> Optional[Guest]:
        return self.db.query(Guest).filter(
            Guest.tenant_id == tenant_id,
            Guest.email == email.lower()
        ).first()

    def get_guest(self, tenant_id: str, guest_id: str) -> Optional[Guest]:
        return self.db.query(Guest).filter(
            Guest.tenant_id == tenant_id,
            Guest.id == guest_id
        ).first()

    def upsert_guest(self, tenant_id: str, guest_info: Dict[str, Any]) -> Guest:
        """
        查找或创建客人（在调用方事务内执行）

        已存在的客人用非空字段更新；并发插入同一邮箱时回退为查询
        """
        email = guest_info["email"].strip().lower()
        guest = self.get_by_email(tenant_id, email)
        if guest:
            for key in _GUEST_FIELDS:
                value = guest_info.get(key)
                if value:
                    setattr(guest, key, value)
            return guest

        guest = Guest(
            tenant_id=tenant_id,
            email=email,
            **{key: guest_info.get(key) for key in _GUEST_FIELDS}
        )
        try:
            with self.db.begin_nested():
                self.db.add(guest)
        except IntegrityError:
            logger.info(f"Guest {email} created concurrently for tenant {tenant_id}, reusing it")
            guest = self.get_by_email(tenant_id, email)
            if guest is None:
                raise
        return guest
