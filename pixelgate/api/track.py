"""
Ingestion endpoint - the one route every client emitter calls.

Encodings of the same event fields:
- POST application/json body (browser patch script, server callers)
- POST text/plain body holding JSON (navigator.sendBeacon)
- GET ?d=<url-encoded JSON> (storefront extension image beacon)
- GET with flat query parameters

GET answers with a 1x1 GIF and the outcome in X-Gateway-* headers, since an
image beacon cannot read a body; `format=json` returns the JSON result instead.
CORS is handled app-wide by the middleware in main.py.
"""
import base64
import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from pixelgate.database import get_db
from pixelgate.schemas.api_responses import TrackResponse
from pixelgate.schemas.track_payloads import TrackEventPayload
from pixelgate.services.ingestion import (
    CHANNEL_BEACON,
    CHANNEL_JSON,
    IngestionResult,
    bad_request,
    ingest_event,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/track", tags=["track"])

TRANSPARENT_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")

NO_CACHE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "Content-Type",
}

# Query parameters that carry nested objects as JSON strings
_JSON_QUERY_PARAMS = ("identityFacts", "user_data", "attributes", "custom_data")
_CONTROL_QUERY_PARAMS = ("d", "format")


def _json_response(result: IngestionResult) -> JSONResponse:
    return JSONResponse(
        status_code=result.http_status,
        content=result.to_response().model_dump(by_alias=True, exclude_none=True, mode="json"),
    )


def _gif_response(result: IngestionResult) -> Response:
    headers = dict(NO_CACHE_HEADERS)
    headers["X-Gateway-Success"] = "true" if result.success else "false"
    if result.audit_record_id:
        headers["X-Gateway-Audit-Record-Id"] = result.audit_record_id
    if result.event_name:
        headers["X-Gateway-Event-Name"] = result.event_name
    if result.category:
        headers["X-Gateway-Error"] = result.category.value
    return Response(content=TRANSPARENT_GIF, media_type="image/gif", headers=headers)


def _parse_json_object(text: str) -> Optional[dict]:
    try:
        data = json.loads(text)
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _payload_from_query(params: dict[str, str]) -> Optional[dict]:
    """Rebuild the event object from a beacon query string. None when `d` is not a JSON object."""
    if "d" in params:
        return _parse_json_object(params["d"])

    payload: dict[str, Any] = {k: v for k, v in params.items() if k not in _CONTROL_QUERY_PARAMS}
    for key in _JSON_QUERY_PARAMS:
        if key in payload:
            nested = _parse_json_object(payload[key])
            if nested is None:
                logger.debug("Dropping malformed %s query parameter", key)
                payload.pop(key)
            else:
                payload[key] = nested
    return payload


async def _run(db: AsyncSession, raw_payload: dict, channel: str) -> IngestionResult:
    try:
        payload = TrackEventPayload.model_validate(raw_payload)
    except ValidationError as e:
        return bad_request(f"Invalid event payload: {e.error_count()} field error(s)")
    return await ingest_event(db, payload, raw_payload, channel=channel)


@router.post("", response_model=TrackResponse, response_model_exclude_none=True)
async def track_event(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """
    Ingest one event from a JSON body. The content type is not trusted:
    sendBeacon posts JSON as text/plain to stay a CORS-simple request.
    """
    body = await request.body()
    raw_payload = _parse_json_object(body.decode("utf-8", errors="replace")) if body else None
    if raw_payload is None:
        return _json_response(bad_request("Request body must be a JSON object"))

    content_type = request.headers.get("content-type", "")
    channel = CHANNEL_JSON if content_type.startswith("application/json") else CHANNEL_BEACON
    result = await _run(db, raw_payload, channel)
    return _json_response(result)


@router.get("")
async def track_beacon(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    """Image-beacon ingestion: `?d=<json>` or flat query parameters."""
    params = dict(request.query_params)
    want_json = params.get("format") == "json"

    raw_payload = _payload_from_query(params)
    if raw_payload is None:
        result = bad_request("Query parameter d must be a JSON object")
    else:
        result = await _run(db, raw_payload, CHANNEL_BEACON)

    return _json_response(result) if want_json else _gif_response(result)


@router.options("")
async def track_options():
    """Preflight for callers that send OPTIONS without CORS request headers."""
    return Response(status_code=204, headers=CORS_HEADERS)
