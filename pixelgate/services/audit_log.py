"""
Audit log - one record per ingestion attempt.

State machine: RECEIVED -> FORWARDED_SUCCESS | FORWARDED_ERROR.
open_audit_record commits before returning so the record survives a crash
during the outbound call; close_audit_record updates the same row once.
"""
import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from pixelgate.models.audit_record import AuditRecord, AuditStatus
from pixelgate.schemas.forward_outcome import ForwardOutcome
from pixelgate.utils.logging import get_correlation_id

logger = logging.getLogger(__name__)


async def open_audit_record(
    db: AsyncSession,
    identity_token: str,
    event_name: str,
    raw_payload: dict,
    event_id: Optional[str] = None,
    channel: Optional[str] = None,
    shop_domain: Optional[str] = None,
) -> AuditRecord:
    """Record an ingestion attempt in RECEIVED and make it durable."""
    record = AuditRecord(
        identity_token=identity_token,
        event_name=event_name,
        status=AuditStatus.RECEIVED.value,
        raw_payload=raw_payload if isinstance(raw_payload, dict) else {"raw": raw_payload},
        event_id=event_id,
        channel=channel,
        shop_domain=shop_domain,
        correlation_id=get_correlation_id(),
    )
    db.add(record)
    await db.flush()
    await db.commit()
    return record


async def close_audit_record(
    db: AsyncSession,
    record: AuditRecord,
    outcome: ForwardOutcome,
    duration_ms: Optional[int] = None,
) -> AuditRecord:
    """Move a RECEIVED record to its terminal status. Terminal records are left untouched."""
    if record.is_terminal:
        logger.warning(
            "Audit record %s already closed as %s; ignoring second outcome",
            str(record.id)[:8], record.status,
        )
        return record

    record.status = (
        AuditStatus.FORWARDED_SUCCESS.value if outcome.success
        else AuditStatus.FORWARDED_ERROR.value
    )
    record.error_category = outcome.category.value if outcome.category else None
    record.detail = outcome.audit_detail()
    record.duration_ms = duration_ms
    record.completed_at = datetime.now(timezone.utc)
    await db.flush()
    await db.commit()

    logger.info(
        "Audit record closed: %s %s",
        record.event_name, record.status,
        extra={
            "audit_record_id": str(record.id),
            "identity_token": record.identity_token,
            "error_category": record.error_category,
            "duration_ms": record.duration_ms,
        },
    )
    return record


async def get_audit_record(db: AsyncSession, record_id: uuid.UUID) -> Optional[AuditRecord]:
    return await db.get(AuditRecord, record_id)
