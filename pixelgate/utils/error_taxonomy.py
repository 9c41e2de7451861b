"""
Error taxonomy for the ingestion pipeline.

Every failed ingestion carries exactly one ErrorCategory so callers and the
audit log can branch on a stable value instead of matching prose. Each
category also maps to an HTTP status for the JSON channel and to a
Resolution hint telling the caller who has to act:

- fix_configuration: the merchant's identity binding or credential is wrong
- retry_later: transient upstream or network trouble
- fix_event: the event itself was malformed
"""
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    BAD_REQUEST = "BadRequest"
    UNKNOWN_IDENTITY = "UnknownIdentity"
    INACTIVE_IDENTITY = "InactiveIdentity"
    UPSTREAM_REJECTED = "UpstreamRejected"
    UPSTREAM_UNREACHABLE = "UpstreamUnreachable"
    UPSTREAM_MALFORMED_RESPONSE = "UpstreamMalformedResponse"
    GATEWAY_ERROR = "GatewayError"  # unexpected exception inside the gateway


class Resolution(str, Enum):
    FIX_CONFIGURATION = "fix_configuration"
    RETRY_LATER = "retry_later"
    FIX_EVENT = "fix_event"


HTTP_STATUS = {
    ErrorCategory.BAD_REQUEST: 400,
    ErrorCategory.UNKNOWN_IDENTITY: 404,
    ErrorCategory.INACTIVE_IDENTITY: 409,
    ErrorCategory.UPSTREAM_REJECTED: 502,
    ErrorCategory.UPSTREAM_MALFORMED_RESPONSE: 502,
    ErrorCategory.UPSTREAM_UNREACHABLE: 504,
    ErrorCategory.GATEWAY_ERROR: 500,
}

MESSAGES = {
    ErrorCategory.BAD_REQUEST: "identityToken and eventName are required",
    ErrorCategory.UNKNOWN_IDENTITY: "The identity token is not configured in the gateway",
    ErrorCategory.INACTIVE_IDENTITY: "The identity token has no forwarding credential yet",
    ErrorCategory.UPSTREAM_REJECTED: "The Conversions API rejected the event",
    ErrorCategory.UPSTREAM_UNREACHABLE: "The Conversions API could not be reached",
    ErrorCategory.UPSTREAM_MALFORMED_RESPONSE: "The Conversions API returned an unexpected response",
    ErrorCategory.GATEWAY_ERROR: "Internal error while forwarding the event",
}

# Graph API error codes: 190 invalid/expired token, 102/104 session, 10 and 200-299 permission
CONFIGURATION_ERROR_CODES = {190, 10, 102, 104}
# Throttling: app/user/page-level rate limits
THROTTLING_ERROR_CODES = {4, 17, 32, 613, 80004}


def resolution_for(
    category: ErrorCategory,
    http_status: Optional[int] = None,
    upstream_code: Optional[int] = None,
) -> Resolution:
    """Map a failure to the party that has to act on it."""
    if category in (ErrorCategory.UNKNOWN_IDENTITY, ErrorCategory.INACTIVE_IDENTITY):
        return Resolution.FIX_CONFIGURATION
    if category == ErrorCategory.BAD_REQUEST:
        return Resolution.FIX_EVENT
    if category != ErrorCategory.UPSTREAM_REJECTED:
        return Resolution.RETRY_LATER

    if upstream_code is not None:
        if upstream_code in CONFIGURATION_ERROR_CODES or 200 <= upstream_code <= 299:
            return Resolution.FIX_CONFIGURATION
        if upstream_code in THROTTLING_ERROR_CODES:
            return Resolution.RETRY_LATER
    if http_status is not None:
        if http_status in (401, 403):
            return Resolution.FIX_CONFIGURATION
        if http_status == 429 or http_status >= 500:
            return Resolution.RETRY_LATER
    return Resolution.FIX_EVENT
