"""
Admin API - read access to the audit log and storefront link status.
All endpoints require HTTP Basic auth against ADMIN_USERNAME / ADMIN_PASSWORD.
"""
import logging
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pixelgate.config import get_settings
from pixelgate.database import get_db
from pixelgate.models.audit_record import AuditRecord, AuditStatus
from pixelgate.schemas.api_responses import (
    AuditLogListResponse,
    AuditRecordSummary,
    Pagination,
    ShopLinkStatusResponse,
)
from pixelgate.services.identity_store import get_shop_link_status

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

basic_scheme = HTTPBasic(auto_error=False)


async def require_admin(
    credentials: Optional[HTTPBasicCredentials] = Depends(basic_scheme),
) -> str:
    """Dependency that checks Basic credentials. Disabled entirely while no password is set."""
    settings = get_settings()
    challenge = {"WWW-Authenticate": 'Basic realm="pixelgate admin"'}

    if not settings.admin_password:
        logger.warning("Admin API called but ADMIN_PASSWORD is not configured")
        raise HTTPException(status_code=401, detail="Admin access not configured", headers=challenge)
    if credentials is None:
        raise HTTPException(status_code=401, detail="Authentication required", headers=challenge)

    username_ok = secrets.compare_digest(
        credentials.username.encode(), settings.admin_username.encode(),
    )
    password_ok = secrets.compare_digest(
        credentials.password.encode(), settings.admin_password.encode(),
    )
    if not (username_ok and password_ok):
        logger.warning("Admin auth failed for user %s", credentials.username)
        raise HTTPException(status_code=401, detail="Invalid credentials", headers=challenge)
    return credentials.username


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_records(
    identity_token: Optional[str] = Query(default=None, alias="identityToken"),
    status: Optional[AuditStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    page: int = Query(default=1, ge=1),
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    """Audit records, newest first. Raw payloads are not included."""
    query = select(AuditRecord)
    if identity_token:
        query = query.where(AuditRecord.identity_token == identity_token)
    if status:
        query = query.where(AuditRecord.status == status.value)

    count_q = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_q)).scalar() or 0

    query = query.order_by(desc(AuditRecord.created_at)).offset((page - 1) * limit).limit(limit)
    result = await db.execute(query)
    records = result.scalars().all()

    return AuditLogListResponse(
        logs=[
            AuditRecordSummary(
                id=str(r.id),
                identity_token=r.identity_token,
                event_name=r.event_name,
                status=r.status,
                error_category=r.error_category,
                event_id=r.event_id,
                channel=r.channel,
                shop_domain=r.shop_domain,
                detail=r.detail,
                duration_ms=r.duration_ms,
                correlation_id=r.correlation_id,
                created_at=r.created_at,
                completed_at=r.completed_at,
            )
            for r in records
        ],
        pagination=Pagination(
            total=total,
            page=page,
            limit=limit,
            pages=max(1, (total + limit - 1) // limit),
        ),
    )


@router.get("/shops/{shop_domain}/status", response_model=ShopLinkStatusResponse)
async def shop_link_status(
    shop_domain: str,
    db: AsyncSession = Depends(get_db),
    admin: str = Depends(require_admin),
):
    """Four-state link status: no_link, linked_no_credential, orphaned, active."""
    status = await get_shop_link_status(db, shop_domain)
    return ShopLinkStatusResponse(
        shop_domain=status.shop_domain,
        state=status.state.value,
        identity_token=status.identity_token,
        label=status.label,
        is_active=status.is_active,
    )
