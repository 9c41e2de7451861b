"""
Identity store - resolves a public identity token to its forwarding credential,
and reports which identity a storefront is linked to.

The ingestion path only reads. The write helpers at the bottom are the
administrative side (install flow, admin tooling, scripts); they keep the
shop-link activation flag consistent with the binding's credential.
"""
import logging
from enum import Enum
from typing import Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, SecretStr
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pixelgate.models.identity_binding import IdentityBinding
from pixelgate.models.shop_link import LinkState, ShopLink
from pixelgate.utils.encryption import decrypt_value, encrypt_value

logger = logging.getLogger(__name__)


class ResolutionStatus(str, Enum):
    UNKNOWN = "unknown"
    INACTIVE = "inactive"
    ACTIVE = "active"


class IdentityResolution(BaseModel):
    """Outcome of resolve_identity. The credential is only set when ACTIVE."""
    identity_token: str
    status: ResolutionStatus
    label: Optional[str] = None
    credential: Optional[SecretStr] = None

    @property
    def is_active(self) -> bool:
        return self.status == ResolutionStatus.ACTIVE and self.credential is not None


class ShopLinkStatus(BaseModel):
    shop_domain: str
    state: LinkState
    identity_token: Optional[str] = None
    label: Optional[str] = None
    is_active: bool = False


async def get_binding(db: AsyncSession, identity_token: str) -> Optional[IdentityBinding]:
    result = await db.execute(
        select(IdentityBinding).where(IdentityBinding.identity_token == identity_token)
    )
    return result.scalar_one_or_none()


async def resolve_identity(db: AsyncSession, identity_token: str) -> IdentityResolution:
    """Look up a token: unknown, registered without credential, or ready to forward."""
    binding = await get_binding(db, identity_token)
    if binding is None:
        return IdentityResolution(identity_token=identity_token, status=ResolutionStatus.UNKNOWN)

    credential = decrypt_value(binding.credential_encrypted)
    if not credential:
        return IdentityResolution(
            identity_token=identity_token,
            status=ResolutionStatus.INACTIVE,
            label=binding.label,
        )

    return IdentityResolution(
        identity_token=identity_token,
        status=ResolutionStatus.ACTIVE,
        label=binding.label,
        credential=SecretStr(credential),
    )


def normalize_shop_domain(domain: str) -> str:
    """'HTTPS://Store.MyShopify.com/admin' -> 'store.myshopify.com'"""
    domain = (domain or "").strip().lower()
    if "://" in domain:
        domain = urlsplit(domain).netloc
    return domain.split("/", 1)[0].rstrip(".")


async def get_shop_link_status(db: AsyncSession, shop_domain: str) -> ShopLinkStatus:
    """
    Report the four-state link status for a storefront.
    A storefront with no link row reports NO_LINK.
    """
    domain = normalize_shop_domain(shop_domain)
    result = await db.execute(select(ShopLink).where(ShopLink.shop_domain == domain))
    link = result.scalar_one_or_none()

    if link is None or not link.identity_token:
        return ShopLinkStatus(shop_domain=domain, state=LinkState.NO_LINK)

    binding = await get_binding(db, link.identity_token)
    if binding is None:
        return ShopLinkStatus(
            shop_domain=domain,
            state=LinkState.ORPHANED,
            identity_token=link.identity_token,
        )

    state = LinkState.ACTIVE if binding.has_credential else LinkState.LINKED_NO_CREDENTIAL
    if link.is_active != (state == LinkState.ACTIVE):
        logger.warning(
            "Shop link activation out of sync: shop=%s stored=%s derived=%s",
            domain, link.is_active, state.value,
        )
    return ShopLinkStatus(
        shop_domain=domain,
        state=state,
        identity_token=binding.identity_token,
        label=binding.label,
        is_active=state == LinkState.ACTIVE,
    )


# ---------------------------------------------------------------------------
# Administrative writes
# ---------------------------------------------------------------------------

async def _sync_link_activation(db: AsyncSession, identity_token: str, active: bool) -> None:
    await db.execute(
        update(ShopLink)
        .where(ShopLink.identity_token == identity_token)
        .values(is_active=active)
    )


async def register_identity(
    db: AsyncSession,
    identity_token: str,
    label: Optional[str] = None,
    credential: Optional[str] = None,
) -> IdentityBinding:
    """Create a binding, or update the label/credential of an existing one."""
    binding = await get_binding(db, identity_token)
    if binding is None:
        binding = IdentityBinding(identity_token=identity_token, label=label)
        db.add(binding)
        logger.info("Identity binding registered: %s", identity_token)
    elif label is not None:
        binding.label = label

    if credential is not None:
        binding.credential_encrypted = encrypt_value(credential) or None

    await db.flush()
    await _sync_link_activation(db, identity_token, binding.has_credential)
    return binding


async def set_credential(
    db: AsyncSession, identity_token: str, credential: Optional[str],
) -> IdentityBinding:
    """Attach, rotate or clear a binding's credential. Raises LookupError for unknown tokens."""
    binding = await get_binding(db, identity_token)
    if binding is None:
        raise LookupError(f"Unknown identity token: {identity_token}")

    binding.credential_encrypted = encrypt_value(credential) if credential else None
    await db.flush()
    await _sync_link_activation(db, identity_token, binding.has_credential)
    logger.info(
        "Credential %s for identity %s",
        "attached" if binding.has_credential else "cleared", identity_token,
    )
    return binding


async def link_shop(
    db: AsyncSession, shop_domain: str, identity_token: Optional[str],
) -> ShopLink:
    """Point a storefront at an identity token (None unlinks it)."""
    domain = normalize_shop_domain(shop_domain)
    result = await db.execute(select(ShopLink).where(ShopLink.shop_domain == domain))
    link = result.scalar_one_or_none()
    if link is None:
        link = ShopLink(shop_domain=domain)
        db.add(link)

    link.identity_token = identity_token
    binding = await get_binding(db, identity_token) if identity_token else None
    link.is_active = bool(binding is not None and binding.has_credential)

    await db.flush()
    logger.info("Shop %s linked to identity %s (active=%s)", domain, identity_token, link.is_active)
    return link
