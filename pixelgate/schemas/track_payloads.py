"""
Ingestion wire payload - what client emitters send to /api/v1/track.

Browser and server callers use the camelCase names. The storefront pixel
extension and older emitters send the upstream-style snake_case names
(pixelId, event_name, user_data, custom_data, ...); both are accepted.
Nested objects stay loosely typed here: the privacy normalizer and event
mapper drop anything malformed instead of rejecting the whole event.
"""
from typing import Any, Optional
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

# Widths of the audit_records columns these fields are stored in
IDENTITY_TOKEN_MAX_LENGTH = 64
EVENT_NAME_MAX_LENGTH = 100
EVENT_ID_MAX_LENGTH = 128
SHOP_DOMAIN_MAX_LENGTH = 255


class TrackEventPayload(BaseModel):
    """One event submission, from a JSON body or a beacon query string."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    identity_token: Optional[str] = Field(
        default=None,
        max_length=IDENTITY_TOKEN_MAX_LENGTH,
        validation_alias=AliasChoices("identityToken", "pixelId", "identity_token"),
    )
    event_name: Optional[str] = Field(
        default=None,
        max_length=EVENT_NAME_MAX_LENGTH,
        validation_alias=AliasChoices("eventName", "event_name"),
    )
    occurrence_time: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("occurrenceTime", "event_time", "occurrence_time"),
    )
    event_id: Optional[str] = Field(
        default=None,
        max_length=EVENT_ID_MAX_LENGTH,
        validation_alias=AliasChoices("eventId", "event_id"),
    )
    identity_facts: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("identityFacts", "user_data", "identity_facts"),
    )
    attributes: Optional[Any] = Field(
        default=None, validation_alias=AliasChoices("attributes", "custom_data"),
    )
    event_source_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("eventSourceUrl", "event_source_url"),
    )
    action_source: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("actionSource", "action_source"),
    )
    test_event_code: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("testEventCode", "test_event_code"),
    )
    shop_domain: Optional[str] = Field(
        default=None,
        max_length=SHOP_DOMAIN_MAX_LENGTH,
        validation_alias=AliasChoices("shopDomain", "shop_domain", "shop"),
    )

    @field_validator(
        "identity_token", "event_name", "event_id", "event_source_url",
        "action_source", "test_event_code", "shop_domain",
        mode="before",
    )
    @classmethod
    def _coerce_scalar_to_str(cls, value: Any) -> Optional[str]:
        # Pixel IDs frequently arrive as JSON numbers
        if isinstance(value, bool):
            return None
        if isinstance(value, (int, float)):
            return str(int(value)) if float(value).is_integer() else str(value)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return None
