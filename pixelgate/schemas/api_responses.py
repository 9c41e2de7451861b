"""
API response schemas for the ingestion and admin endpoints.
Wire names are camelCase to match what client emitters send.
"""
from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TrackResponse(_CamelModel):
    success: bool
    audit_record_id: Optional[str] = None
    event_name: Optional[str] = None
    error: Optional[str] = None  # ErrorCategory value
    message: Optional[str] = None
    resolution: Optional[str] = None
    detail: Optional[Any] = None
    upstream_response: Optional[Any] = None


class AuditRecordSummary(_CamelModel):
    id: str
    identity_token: str
    event_name: str
    status: str
    error_category: Optional[str] = None
    event_id: Optional[str] = None
    channel: Optional[str] = None
    shop_domain: Optional[str] = None
    detail: Optional[Any] = None
    duration_ms: Optional[int] = None
    correlation_id: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class Pagination(_CamelModel):
    total: int
    page: int
    limit: int
    pages: int


class AuditLogListResponse(_CamelModel):
    success: bool = True
    logs: list[AuditRecordSummary]
    pagination: Pagination


class ShopLinkStatusResponse(_CamelModel):
    shop_domain: str
    state: str  # LinkState value
    identity_token: Optional[str] = None
    label: Optional[str] = None
    is_active: bool = False
