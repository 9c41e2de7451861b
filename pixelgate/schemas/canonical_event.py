"""
Canonical event - the source-agnostic unit that flows from the event mapper
to the forwarder. Every ingestion channel produces one of these.
"""
from typing import Any, Optional
from pydantic import BaseModel, Field


class MappedEvent(BaseModel):
    """Output of the event mapper: canonical name plus extracted domain attributes."""
    event_name: str
    attributes: dict[str, Any] = Field(default_factory=dict)


class CanonicalEvent(BaseModel):
    """
    The gateway's internal representation of one tracked action.
    The forwarder turns this into a single-event upstream batch.
    """
    identity_token: str = Field(..., description="Public identity token selecting the destination")
    event_name: str = Field(..., description="Canonical event name, e.g. Purchase")
    occurrence_time: int = Field(..., gt=0, description="Unix seconds")
    event_id: Optional[str] = Field(
        default=None,
        description="Idempotency token from the source; forwarded unchanged, never minted here",
    )
    identity_facts: dict[str, str] = Field(
        default_factory=dict, description="Hashed personal fields plus pass-through fields",
    )
    attributes: dict[str, Any] = Field(
        default_factory=dict, description="Currency, value, content ids, counts",
    )
    event_source_url: Optional[str] = None
    action_source: str = "website"
    test_event_code: Optional[str] = None

    def to_upstream(self) -> dict:
        """Shape of one entry in the upstream `data` array."""
        event: dict[str, Any] = {
            "event_name": self.event_name,
            "event_time": self.occurrence_time,
            "action_source": self.action_source,
            "user_data": dict(self.identity_facts),
            "custom_data": dict(self.attributes),
        }
        if self.event_id:
            event["event_id"] = self.event_id
        if self.event_source_url:
            event["event_source_url"] = self.event_source_url
        return event
