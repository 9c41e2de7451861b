"""
Ingestion pipeline - one inbound event from validation to a terminal audit record.

    validate -> map -> resolve identity -> normalize facts -> open audit
             -> forward -> close audit -> result

Every attempt that passes validation ends with a closed audit record, including
unknown/inactive identities (opened and closed immediately, no forwarding) and
unexpected exceptions or cancellation while forwarding (closed as GatewayError).
Malformed requests are rejected before an audit record exists.
"""
import asyncio
import logging
import math
import time
from typing import Any, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from pixelgate.config import get_settings
from pixelgate.schemas.api_responses import TrackResponse
from pixelgate.schemas.canonical_event import CanonicalEvent
from pixelgate.schemas.forward_outcome import ForwardOutcome
from pixelgate.schemas.track_payloads import EVENT_ID_MAX_LENGTH, TrackEventPayload
from pixelgate.services.audit_log import close_audit_record, open_audit_record
from pixelgate.services.event_mapper import map_event
from pixelgate.services.forwarder import forward
from pixelgate.services.identity_store import (
    ResolutionStatus,
    normalize_shop_domain,
    resolve_identity,
)
from pixelgate.services.privacy import normalize_identity_facts
from pixelgate.utils.encryption import redact_secret
from pixelgate.utils.error_taxonomy import (
    HTTP_STATUS,
    MESSAGES,
    ErrorCategory,
    Resolution,
    resolution_for,
)
from pixelgate.utils.metrics import Timer

logger = logging.getLogger(__name__)

CHANNEL_JSON = "json"
CHANNEL_BEACON = "beacon"

# Anything above this is a millisecond timestamp (Date.now() from a browser)
_MILLISECOND_THRESHOLD = 100_000_000_000

_EVENT_ID_KEYS = ("eventId", "event_id")

# Forwarder detail keys safe to echo to anonymous callers; the rest stays in the audit record
_PUBLIC_DETAIL_KEYS = ("message", "type")


class IngestionResult(BaseModel):
    success: bool
    event_name: Optional[str] = None
    audit_record_id: Optional[str] = None
    category: Optional[ErrorCategory] = None
    resolution: Optional[Resolution] = None
    message: Optional[str] = None
    detail: Optional[Any] = None
    upstream_response: Optional[Any] = None

    @property
    def http_status(self) -> int:
        return 200 if self.success else HTTP_STATUS[self.category]

    def to_response(self) -> TrackResponse:
        return TrackResponse(
            success=self.success,
            audit_record_id=self.audit_record_id,
            event_name=self.event_name,
            error=self.category.value if self.category else None,
            message=self.message,
            resolution=self.resolution.value if self.resolution else None,
            detail=self.detail,
            upstream_response=self.upstream_response,
        )


def bad_request(message: str) -> IngestionResult:
    return IngestionResult(
        success=False,
        category=ErrorCategory.BAD_REQUEST,
        resolution=resolution_for(ErrorCategory.BAD_REQUEST),
        message=message,
    )


def parse_occurrence_time(value: Any) -> Optional[int]:
    """
    Unix seconds from an int, float or numeric string. Missing means now.
    Returns None for anything that is not a positive timestamp.
    """
    if value is None or value == "":
        return int(time.time())
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        try:
            value = float(value.strip())
        except ValueError:
            return None
    if not isinstance(value, (int, float)) or not math.isfinite(value):
        return None

    seconds = math.floor(value)
    if seconds > _MILLISECOND_THRESHOLD:
        seconds //= 1000
    return seconds if seconds > 0 else None


def _source_event_id(payload: TrackEventPayload, attributes: Any) -> Optional[str]:
    """The source's idempotency token, top-level first. Never generated here."""
    if payload.event_id:
        return payload.event_id
    if isinstance(attributes, dict):
        for key in _EVENT_ID_KEYS:
            value = attributes.get(key)
            if isinstance(value, (str, int)) and not isinstance(value, bool) and str(value).strip():
                return str(value).strip()
    return None


def public_detail(detail: Any) -> Optional[dict]:
    """The caller-facing subset of an outcome detail: no upstream URL, masked token or raw body."""
    if not isinstance(detail, dict):
        return None
    return {k: detail[k] for k in _PUBLIC_DETAIL_KEYS if detail.get(k) is not None} or None


def _result_from_outcome(outcome: ForwardOutcome, event_name: str, record_id: str) -> IngestionResult:
    if outcome.success:
        return IngestionResult(
            success=True,
            event_name=event_name,
            audit_record_id=record_id,
            upstream_response=outcome.upstream_body,
        )
    return IngestionResult(
        success=False,
        event_name=event_name,
        audit_record_id=record_id,
        category=outcome.category,
        resolution=outcome.resolution,
        message=MESSAGES[outcome.category],
        detail=public_detail(outcome.detail),
        upstream_response=outcome.upstream_body,
    )


async def ingest_event(
    db: AsyncSession,
    payload: TrackEventPayload,
    raw_payload: dict,
    channel: str = CHANNEL_JSON,
) -> IngestionResult:
    """Run one event through the pipeline and return its terminal result."""
    if not payload.identity_token or not payload.event_name:
        return bad_request(MESSAGES[ErrorCategory.BAD_REQUEST])

    occurrence_time = parse_occurrence_time(payload.occurrence_time)
    if occurrence_time is None:
        return bad_request("occurrenceTime must be a positive unix timestamp in seconds")

    settings = get_settings()
    identity_token = payload.identity_token
    mapped = map_event(payload.event_name, payload.attributes)
    attributes = {k: v for k, v in mapped.attributes.items() if k not in _EVENT_ID_KEYS}
    event_id = _source_event_id(payload, payload.attributes)
    if event_id and len(event_id) > EVENT_ID_MAX_LENGTH:
        return bad_request(f"eventId must be at most {EVENT_ID_MAX_LENGTH} characters")
    shop_domain = normalize_shop_domain(payload.shop_domain) if payload.shop_domain else None
    log_extra = {
        "identity_token": identity_token,
        "event_name": mapped.event_name,
        "channel": channel,
    }

    resolution = await resolve_identity(db, identity_token)

    if resolution.status != ResolutionStatus.ACTIVE:
        category = (
            ErrorCategory.UNKNOWN_IDENTITY
            if resolution.status == ResolutionStatus.UNKNOWN
            else ErrorCategory.INACTIVE_IDENTITY
        )
        record = await open_audit_record(
            db, identity_token, mapped.event_name, raw_payload,
            event_id=event_id, channel=channel, shop_domain=shop_domain,
        )
        outcome = ForwardOutcome.failure(
            category,
            detail={"message": MESSAGES[category], "identity_token": identity_token},
        )
        await close_audit_record(db, record, outcome)
        logger.info(
            "Event %s not forwarded: %s", mapped.event_name, category.value,
            extra={**log_extra, "error_category": category.value, "audit_record_id": str(record.id)},
        )
        return _result_from_outcome(outcome, mapped.event_name, str(record.id))

    event = CanonicalEvent(
        identity_token=identity_token,
        event_name=mapped.event_name,
        occurrence_time=occurrence_time,
        event_id=event_id,
        identity_facts=normalize_identity_facts(payload.identity_facts),
        attributes=attributes,
        event_source_url=payload.event_source_url,
        action_source=payload.action_source or settings.default_action_source,
        test_event_code=payload.test_event_code,
    )

    record = await open_audit_record(
        db, identity_token, event.event_name, raw_payload,
        event_id=event_id, channel=channel, shop_domain=shop_domain,
    )

    timer = Timer().start()
    try:
        outcome = await forward(resolution, event)
    except asyncio.CancelledError:
        # Request or server shutdown: the record still ends terminal before the cancellation propagates
        logger.warning(
            "Forwarding %s cancelled", event.event_name,
            extra={**log_extra, "audit_record_id": str(record.id)},
        )
        outcome = ForwardOutcome.failure(
            ErrorCategory.GATEWAY_ERROR,
            detail={"message": "Forwarding was cancelled", "type": "CancelledError"},
        )
        await asyncio.shield(close_audit_record(db, record, outcome, duration_ms=timer.stop()))
        raise
    except Exception as e:
        logger.exception(
            "Forwarding %s raised unexpectedly", event.event_name,
            extra={**log_extra, "audit_record_id": str(record.id)},
        )
        outcome = ForwardOutcome.failure(
            ErrorCategory.GATEWAY_ERROR,
            detail=redact_secret(
                {"message": str(e), "type": type(e).__name__},
                resolution.credential.get_secret_value(),
            ),
        )
    duration_ms = timer.stop()

    await close_audit_record(db, record, outcome, duration_ms=duration_ms)
    return _result_from_outcome(outcome, event.event_name, str(record.id))
