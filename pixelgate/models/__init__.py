"""
Database models - import all models here so Alembic can discover them.
"""
from pixelgate.models.identity_binding import IdentityBinding
from pixelgate.models.shop_link import ShopLink, LinkState
from pixelgate.models.audit_record import AuditRecord, AuditStatus

__all__ = [
    "IdentityBinding",
    "ShopLink",
    "LinkState",
    "AuditRecord",
    "AuditStatus",
]
