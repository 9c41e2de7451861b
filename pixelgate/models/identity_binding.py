"""
Identity binding - maps a public identity token (e.g. a pixel ID) to the
forwarding credential used for the upstream Conversions API.

A binding with no credential is registered but inactive: ingestion reports it
as InactiveIdentity instead of forwarding.
"""
import uuid
from datetime import datetime, timezone
from typing import Optional
from sqlalchemy import String, Text, DateTime
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column
from pixelgate.database import Base


class IdentityBinding(Base):
    __tablename__ = "identity_bindings"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    identity_token: Mapped[str] = mapped_column(
        String(64), nullable=False, unique=True, index=True
    )
    # Fernet-encrypted when ENCRYPTION_KEY is configured
    credential_encrypted: Mapped[Optional[str]] = mapped_column(Text)
    label: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    @property
    def has_credential(self) -> bool:
        return bool(self.credential_encrypted)

    def __repr__(self) -> str:
        state = "active" if self.has_credential else "inactive"
        return f"<IdentityBinding {self.identity_token} ({state})>"
