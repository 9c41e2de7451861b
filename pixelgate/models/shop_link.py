"""
Shop-to-identity link - which identity token a storefront currently uses.

The link stores the token itself rather than a foreign key so that a link
whose binding was removed stays representable (and reportable) as orphaned.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import String, Boolean, DateTime, Index
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from pixelgate.database import Base


class LinkState(str, Enum):
    NO_LINK = "no_link"
    LINKED_NO_CREDENTIAL = "linked_no_credential"
    ORPHANED = "orphaned"
    ACTIVE = "active"


class ShopLink(Base):
    __tablename__ = "shop_links"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    shop_domain: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    identity_token: Mapped[Optional[str]] = mapped_column(String(64))
    # True only while the linked binding exists and has a credential
    is_active: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_shop_links_identity_token", "identity_token"),
    )

    def __repr__(self) -> str:
        return f"<ShopLink {self.shop_domain} -> {self.identity_token}>"
