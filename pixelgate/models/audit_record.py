"""
Audit record - one row per ingestion attempt.

Created in RECEIVED before any outbound call, then updated exactly once to a
terminal status when the outcome is known. Rows are never replaced or expired.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import String, Integer, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.orm import Mapped, mapped_column
from pixelgate.database import Base


class AuditStatus(str, Enum):
    RECEIVED = "received"
    FORWARDED_SUCCESS = "forwarded_success"
    FORWARDED_ERROR = "forwarded_error"


TERMINAL_STATUSES = (AuditStatus.FORWARDED_SUCCESS.value, AuditStatus.FORWARDED_ERROR.value)


class AuditRecord(Base):
    __tablename__ = "audit_records"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    identity_token: Mapped[str] = mapped_column(String(64), nullable=False)
    event_name: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=AuditStatus.RECEIVED.value,
        server_default=AuditStatus.RECEIVED.value,
    )
    error_category: Mapped[Optional[str]] = mapped_column(String(40))

    # Idempotency token forwarded upstream, if the source supplied one
    event_id: Mapped[Optional[str]] = mapped_column(String(128))
    channel: Mapped[Optional[str]] = mapped_column(String(20))  # json, beacon
    shop_domain: Mapped[Optional[str]] = mapped_column(String(255))

    raw_payload: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    # Upstream response body or structured error; never holds a cleartext credential
    detail: Mapped[Optional[dict]] = mapped_column(JSONB)
    duration_ms: Mapped[Optional[int]] = mapped_column(Integer)

    correlation_id: Mapped[Optional[str]] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    __table_args__ = (
        Index("ix_audit_records_identity_token", "identity_token"),
        Index("ix_audit_records_status", "status"),
        Index("ix_audit_records_created_at", "created_at"),
        Index("ix_audit_records_correlation_id", "correlation_id"),
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<AuditRecord {self.event_name} status={self.status}>"
