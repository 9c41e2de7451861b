"""
Tests for pixelgate/services/ingestion.py - the full ingest -> forward -> audit pipeline.
The Conversions API is mocked at httpx.AsyncClient or at the forwarder seam.
"""
import asyncio
import time
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select

from conftest import TEST_CREDENTIAL, build_mock_client, make_upstream_response
from pixelgate.models.audit_record import AuditRecord, AuditStatus
from pixelgate.schemas.forward_outcome import ForwardOutcome
from pixelgate.schemas.track_payloads import TrackEventPayload
from pixelgate.services.ingestion import (
    CHANNEL_BEACON,
    ingest_event,
    parse_occurrence_time,
    public_detail,
)
from pixelgate.services.privacy import sha256_hex
from pixelgate.utils.error_taxonomy import ErrorCategory, Resolution

FORWARD_PATCH = "pixelgate.services.ingestion.forward"

ADD_TO_CART = {
    "identityToken": "tok_456",
    "eventName": "product_added_to_cart",
    "attributes": {"productId": "p1", "value": 19.99, "currency": "USD"},
}


async def _ingest(db, raw: dict, **kwargs):
    return await ingest_event(db, TrackEventPayload.model_validate(raw), raw, **kwargs)


async def _audit_records(db) -> list[AuditRecord]:
    result = await db.execute(select(AuditRecord).order_by(AuditRecord.created_at))
    return list(result.scalars().all())


async def _audit_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(AuditRecord))).scalar()


class TestBadRequest:
    @pytest.mark.parametrize("raw", [
        {"eventName": "Purchase"},
        {"identityToken": "tok_456"},
        {"identityToken": "  ", "eventName": "Purchase"},
        {},
    ])
    async def test_missing_required_fields(self, db, raw):
        with patch(FORWARD_PATCH, new_callable=AsyncMock) as mock_forward:
            result = await _ingest(db, raw)

        assert result.success is False
        assert result.category == ErrorCategory.BAD_REQUEST
        assert result.resolution == Resolution.FIX_EVENT
        assert result.http_status == 400
        assert result.audit_record_id is None
        mock_forward.assert_not_called()
        assert await _audit_count(db) == 0

    async def test_invalid_occurrence_time(self, db, active_binding):
        raw = {**ADD_TO_CART, "occurrenceTime": -5}
        with patch(FORWARD_PATCH, new_callable=AsyncMock) as mock_forward:
            result = await _ingest(db, raw)

        assert result.category == ErrorCategory.BAD_REQUEST
        mock_forward.assert_not_called()
        assert await _audit_count(db) == 0


class TestUnknownIdentity:
    async def test_unregistered_token(self, db):
        raw = {"identityToken": "tok_123", "eventName": "Purchase", "attributes": {"value": 50, "currency": "USD"}}

        with patch(FORWARD_PATCH, new_callable=AsyncMock) as mock_forward:
            result = await _ingest(db, raw)

        assert result.success is False
        assert result.category == ErrorCategory.UNKNOWN_IDENTITY
        assert result.resolution == Resolution.FIX_CONFIGURATION
        assert result.http_status == 404
        mock_forward.assert_not_called()

        records = await _audit_records(db)
        assert len(records) == 1
        assert records[0].status == AuditStatus.FORWARDED_ERROR.value
        assert records[0].error_category == "UnknownIdentity"
        assert str(records[0].id) == result.audit_record_id

    async def test_never_reaches_http(self, db):
        mock_client = build_mock_client()
        with patch("httpx.AsyncClient", return_value=mock_client) as mock_cls:
            await _ingest(db, {"identityToken": "tok_123", "eventName": "PageView"})
        mock_cls.assert_not_called()


class TestInactiveIdentity:
    async def test_binding_without_credential(self, db, inactive_binding):
        raw = {"identityToken": "tok_789", "eventName": "Purchase"}

        with patch(FORWARD_PATCH, new_callable=AsyncMock) as mock_forward:
            result = await _ingest(db, raw)

        assert result.category == ErrorCategory.INACTIVE_IDENTITY
        assert result.http_status == 409
        assert result.http_status < 500
        mock_forward.assert_not_called()

        records = await _audit_records(db)
        assert len(records) == 1
        assert records[0].status == AuditStatus.FORWARDED_ERROR.value
        assert records[0].error_category == "InactiveIdentity"


class TestForwarding:
    async def test_add_to_cart_success(self, db, active_binding):
        mock_client = build_mock_client(make_upstream_response(200, {"events_received": 1}))

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await _ingest(db, ADD_TO_CART)

        assert result.success is True
        assert result.event_name == "AddToCart"
        assert result.upstream_response == {"events_received": 1}

        sent = mock_client.post.call_args.kwargs["json"]["data"][0]
        assert sent["event_name"] == "AddToCart"
        assert sent["custom_data"] == {"content_ids": ["p1"], "value": 19.99, "currency": "USD"}

        records = await _audit_records(db)
        assert len(records) == 1
        assert records[0].status == AuditStatus.FORWARDED_SUCCESS.value
        assert records[0].event_name == "AddToCart"
        assert records[0].raw_payload == ADD_TO_CART
        assert records[0].duration_ms is not None

    async def test_add_to_cart_rejected(self, db, active_binding):
        body = {"error": {"message": "Invalid parameter", "type": "OAuthException", "code": 100}}
        mock_client = build_mock_client(make_upstream_response(400, body))

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await _ingest(db, ADD_TO_CART)

        assert result.success is False
        assert result.category == ErrorCategory.UPSTREAM_REJECTED
        assert result.http_status == 502
        assert result.upstream_response == body

        records = await _audit_records(db)
        assert records[0].status == AuditStatus.FORWARDED_ERROR.value
        assert records[0].error_category == "UpstreamRejected"
        assert records[0].detail["response"] == body

    async def test_credential_never_in_audit_detail(self, db, active_binding):
        import httpx
        mock_client = build_mock_client(side_effect=httpx.ConnectError(f"refused {TEST_CREDENTIAL}"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await _ingest(db, ADD_TO_CART)

        assert result.category == ErrorCategory.UPSTREAM_UNREACHABLE
        records = await _audit_records(db)
        assert TEST_CREDENTIAL not in str(records[0].detail)

    async def test_identity_facts_hashed_before_forwarding(self, db, active_binding):
        mock_client = build_mock_client()
        raw = {**ADD_TO_CART, "identityFacts": {"email": " Jane@Example.com", "fbp": "fb.1.2.3"}}

        with patch("httpx.AsyncClient", return_value=mock_client):
            await _ingest(db, raw)

        user_data = mock_client.post.call_args.kwargs["json"]["data"][0]["user_data"]
        assert user_data == {"em": sha256_hex("jane@example.com"), "fbp": "fb.1.2.3"}

    async def test_legacy_field_names(self, db, active_binding):
        mock_client = build_mock_client()
        raw = {
            "pixelId": "tok_456",
            "event_name": "Purchase",
            "event_time": 1700000000,
            "event_id": "order-77",
            "user_data": {"em": "a@b.com"},
            "custom_data": {"value": 10, "currency": "USD"},
            "test_event_code": "TEST42",
        }

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await _ingest(db, raw)

        assert result.success is True
        kwargs = mock_client.post.call_args.kwargs
        assert kwargs["params"]["test_event_code"] == "TEST42"
        sent = kwargs["json"]["data"][0]
        assert sent["event_time"] == 1700000000
        assert sent["event_id"] == "order-77"
        assert sent["custom_data"] == {"value": 10.0, "currency": "USD"}

    async def test_default_occurrence_time_is_now(self, db, active_binding):
        mock_client = build_mock_client()
        before = int(time.time())

        with patch("httpx.AsyncClient", return_value=mock_client):
            await _ingest(db, ADD_TO_CART)

        sent = mock_client.post.call_args.kwargs["json"]["data"][0]
        assert before <= sent["event_time"] <= int(time.time())

    async def test_channel_recorded(self, db, active_binding):
        with patch(FORWARD_PATCH, new_callable=AsyncMock, return_value=ForwardOutcome.ok({})):
            await _ingest(db, ADD_TO_CART, channel=CHANNEL_BEACON)

        records = await _audit_records(db)
        assert records[0].channel == "beacon"


class TestForwarderThrows:
    async def test_unexpected_exception_closes_record(self, db, active_binding):
        with patch(FORWARD_PATCH, new_callable=AsyncMock, side_effect=RuntimeError("boom")):
            result = await _ingest(db, ADD_TO_CART)

        assert result.success is False
        assert result.category == ErrorCategory.GATEWAY_ERROR
        assert result.http_status == 500

        records = await _audit_records(db)
        assert len(records) == 1
        assert records[0].status == AuditStatus.FORWARDED_ERROR.value
        assert records[0].error_category == "GatewayError"
        assert records[0].detail["error"]["type"] == "RuntimeError"

    async def test_no_record_left_received(self, db, active_binding):
        outcomes = [
            ForwardOutcome.ok({"events_received": 1}),
            ForwardOutcome.failure(ErrorCategory.UPSTREAM_UNREACHABLE, detail={"message": "timeout"}),
        ]
        for outcome in outcomes:
            with patch(FORWARD_PATCH, new_callable=AsyncMock, return_value=outcome):
                await _ingest(db, ADD_TO_CART)
        with patch(FORWARD_PATCH, new_callable=AsyncMock, side_effect=ValueError("bad")):
            await _ingest(db, ADD_TO_CART)

        records = await _audit_records(db)
        assert len(records) == 3
        assert all(r.status != AuditStatus.RECEIVED.value for r in records)


class TestIdempotencyToken:
    async def test_same_event_id_forwarded_unchanged_twice(self, db, active_binding):
        mock_client = build_mock_client()
        raw = {**ADD_TO_CART, "eventId": "evt-abc-123"}

        with patch("httpx.AsyncClient", return_value=mock_client):
            first = await _ingest(db, raw)
            second = await _ingest(db, raw)

        assert first.audit_record_id != second.audit_record_id
        sent_ids = [c.kwargs["json"]["data"][0]["event_id"] for c in mock_client.post.call_args_list]
        assert sent_ids == ["evt-abc-123", "evt-abc-123"]
        assert await _audit_count(db) == 2

    async def test_event_id_from_attributes(self, db, active_binding):
        mock_client = build_mock_client()
        raw = {
            "identityToken": "tok_456",
            "eventName": "Purchase",
            "attributes": {"eventId": "attr-evt", "value": 5, "currency": "USD"},
        }

        with patch("httpx.AsyncClient", return_value=mock_client):
            await _ingest(db, raw)

        sent = mock_client.post.call_args.kwargs["json"]["data"][0]
        assert sent["event_id"] == "attr-evt"
        assert "eventId" not in sent["custom_data"]

    async def test_no_event_id_never_minted(self, db, active_binding):
        mock_client = build_mock_client()

        with patch("httpx.AsyncClient", return_value=mock_client):
            await _ingest(db, ADD_TO_CART)

        sent = mock_client.post.call_args.kwargs["json"]["data"][0]
        assert "event_id" not in sent
        records = await _audit_records(db)
        assert records[0].event_id is None


class TestParseOccurrenceTime:
    @pytest.mark.parametrize("value,expected", [
        (1700000000, 1700000000),
        ("1700000000", 1700000000),
        (1700000000.9, 1700000000),
        (1700000000123, 1700000000),
    ])
    def test_valid(self, value, expected):
        assert parse_occurrence_time(value) == expected

    @pytest.mark.parametrize("value", [0, -1, "yesterday", True, [1], {"t": 1}, float("nan")])
    def test_invalid(self, value):
        assert parse_occurrence_time(value) is None

    def test_missing_defaults_to_now(self):
        now = int(time.time())
        assert now <= parse_occurrence_time(None) <= now + 1


class TestForwardingCancelled:
    async def test_cancelled_forward_closes_record(self, db, active_binding):
        with patch(FORWARD_PATCH, new_callable=AsyncMock, side_effect=asyncio.CancelledError()):
            with pytest.raises(asyncio.CancelledError):
                await _ingest(db, ADD_TO_CART)

        records = await _audit_records(db)
        assert len(records) == 1
        assert records[0].status == AuditStatus.FORWARDED_ERROR.value
        assert records[0].error_category == "GatewayError"
        assert records[0].detail["error"]["type"] == "CancelledError"


class TestCallerFacingDetail:
    async def test_unreachable_detail_omits_request_data(self, db, active_binding):
        import httpx
        mock_client = build_mock_client(side_effect=httpx.ConnectError("connection refused"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await _ingest(db, ADD_TO_CART)

        assert result.detail == {"message": "connection refused", "type": "ConnectError"}

        records = await _audit_records(db)
        assert records[0].detail["error"]["access_token"] == "EAAB***6789"
        assert "url" in records[0].detail["error"]

    async def test_malformed_response_raw_body_stays_in_audit(self, db, active_binding):
        mock_client = build_mock_client(make_upstream_response(502, text="<html>Bad Gateway</html>"))

        with patch("httpx.AsyncClient", return_value=mock_client):
            result = await _ingest(db, ADD_TO_CART)

        assert result.category == ErrorCategory.UPSTREAM_MALFORMED_RESPONSE
        assert "raw_body" not in result.detail
        records = await _audit_records(db)
        assert records[0].detail["error"]["raw_body"] == "<html>Bad Gateway</html>"

    @pytest.mark.parametrize("detail,expected", [
        ({"message": "m", "type": "T", "url": "u", "access_token": "EAAB***6789"}, {"message": "m", "type": "T"}),
        ({"url": "u"}, None),
        ("not a dict", None),
        (None, None),
    ])
    def test_public_detail(self, detail, expected):
        assert public_detail(detail) == expected


class TestFieldLengths:
    async def test_oversized_event_id_in_attributes(self, db, active_binding):
        raw = {**ADD_TO_CART, "attributes": {"eventId": "e" * 129, "value": 1}}

        with patch(FORWARD_PATCH, new_callable=AsyncMock) as mock_forward:
            result = await _ingest(db, raw)

        assert result.category == ErrorCategory.BAD_REQUEST
        mock_forward.assert_not_called()
        assert await _audit_count(db) == 0

    async def test_event_id_at_limit_accepted(self, db, active_binding):
        raw = {**ADD_TO_CART, "eventId": "e" * 128}

        with patch(FORWARD_PATCH, new_callable=AsyncMock, return_value=ForwardOutcome.ok({})):
            result = await _ingest(db, raw)

        assert result.success is True
        records = await _audit_records(db)
        assert records[0].event_id == "e" * 128
