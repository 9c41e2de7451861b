"""
Forwarder - submits one canonical event to the Conversions API.

POST {base}/{version}/{identity_token}/events
  params: access_token, test_event_code (optional)
  body:   {"data": [<event>]}

One best-effort attempt per call, no retries. The outcome is always returned,
never raised: transport failures, structured upstream errors and unexpected
responses each map to their own ErrorCategory. The credential is masked in
everything the outcome carries.
"""
import logging
from typing import Any, Optional

import httpx

from pixelgate.config import get_settings
from pixelgate.schemas.canonical_event import CanonicalEvent
from pixelgate.schemas.forward_outcome import ForwardOutcome
from pixelgate.services.identity_store import IdentityResolution
from pixelgate.utils.encryption import mask_secret, redact_secret
from pixelgate.utils.error_taxonomy import ErrorCategory

logger = logging.getLogger(__name__)

RAW_BODY_LIMIT = 2000


def events_url(identity_token: str) -> str:
    settings = get_settings()
    base = settings.graph_api_base_url.rstrip("/")
    return f"{base}/{settings.graph_api_version}/{identity_token}/events"


def _upstream_error_code(body: Any) -> Optional[int]:
    error = body.get("error") if isinstance(body, dict) else None
    code = error.get("code") if isinstance(error, dict) else None
    if isinstance(code, bool):
        return None
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


async def forward(resolution: IdentityResolution, event: CanonicalEvent) -> ForwardOutcome:
    """Send a single-event batch under the resolved credential."""
    if not resolution.is_active:
        # Registered but not provisioned: rejected here, never sent
        return ForwardOutcome.failure(
            ErrorCategory.INACTIVE_IDENTITY,
            detail={"message": "No forwarding credential for identity token"},
        )

    credential = resolution.credential.get_secret_value()
    params = {"access_token": credential}
    if event.test_event_code:
        params["test_event_code"] = event.test_event_code
    url = events_url(event.identity_token)
    request_detail = {
        "url": url,
        "access_token": mask_secret(credential),
        "test_event_code": event.test_event_code,
    }

    timeout = get_settings().forward_timeout_seconds
    try:
        async with httpx.AsyncClient(timeout=timeout) as client:
            response = await client.post(
                url,
                params=params,
                json={"data": [event.to_upstream()]},
            )
    except httpx.TimeoutException as e:
        logger.warning(
            "Conversions API timed out after %.1fs for %s",
            timeout, event.identity_token,
            extra={"identity_token": event.identity_token, "event_name": event.event_name},
        )
        return ForwardOutcome.failure(
            ErrorCategory.UPSTREAM_UNREACHABLE,
            detail=redact_secret(
                {"message": f"Timed out after {timeout}s", "type": type(e).__name__, **request_detail},
                credential,
            ),
        )
    except httpx.RequestError as e:
        logger.warning(
            "Conversions API unreachable: %s", type(e).__name__,
            extra={"identity_token": event.identity_token, "event_name": event.event_name},
        )
        return ForwardOutcome.failure(
            ErrorCategory.UPSTREAM_UNREACHABLE,
            detail=redact_secret(
                {"message": str(e), "type": type(e).__name__, **request_detail},
                credential,
            ),
        )

    status = response.status_code
    try:
        body = response.json()
    except ValueError:
        body = None

    if body is None or (not response.is_success and not (isinstance(body, dict) and "error" in body)):
        logger.warning(
            "Unexpected Conversions API response: HTTP %d", status,
            extra={"identity_token": event.identity_token, "event_name": event.event_name},
        )
        return ForwardOutcome.failure(
            ErrorCategory.UPSTREAM_MALFORMED_RESPONSE,
            http_status=status,
            detail=redact_secret(
                {
                    "message": "Response was not a structured API body",
                    "content_type": response.headers.get("content-type"),
                    "raw_body": response.text[:RAW_BODY_LIMIT],
                    **request_detail,
                },
                credential,
            ),
        )

    if not response.is_success:
        upstream_error = body["error"]
        logger.warning(
            "Conversions API rejected %s: HTTP %d %s",
            event.event_name, status,
            upstream_error.get("message") if isinstance(upstream_error, dict) else upstream_error,
            extra={"identity_token": event.identity_token, "event_name": event.event_name},
        )
        return ForwardOutcome.failure(
            ErrorCategory.UPSTREAM_REJECTED,
            http_status=status,
            upstream_body=redact_secret(body, credential),
            upstream_code=_upstream_error_code(body),
            detail=redact_secret(request_detail, credential),
        )

    logger.info(
        "Forwarded %s to Conversions API (HTTP %d)", event.event_name, status,
        extra={"identity_token": event.identity_token, "event_name": event.event_name},
    )
    return ForwardOutcome.ok(redact_secret(body, credential), http_status=status)
