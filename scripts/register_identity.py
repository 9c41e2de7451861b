"""
Register an identity binding, attach its forwarding credential and link a storefront.

Usage:
    python scripts/register_identity.py 123456789012345 --label "Acme Store"
    python scripts/register_identity.py 123456789012345 --credential EAAB...
    python scripts/register_identity.py 123456789012345 --shop acme.myshopify.com
    python scripts/register_identity.py --status acme.myshopify.com
"""
import argparse
import asyncio
import logging

from pixelgate.database import async_session_factory, dispose_engine
from pixelgate.services.identity_store import (
    get_shop_link_status,
    link_shop,
    register_identity,
    set_credential,
)
from pixelgate.utils.encryption import mask_secret

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def register(token: str, label: str | None, credential: str | None, shop: str | None):
    async with async_session_factory() as session:
        binding = await register_identity(session, token, label=label)
        if credential is not None:
            binding = await set_credential(session, token, credential)
            logger.info("Credential set: %s", mask_secret(credential))
        if shop:
            await link_shop(session, shop, token)
        await session.commit()
        logger.info(
            "Identity %s registered (label=%s, active=%s)",
            binding.identity_token, binding.label, binding.has_credential,
        )

        if shop:
            status = await get_shop_link_status(session, shop)
            logger.info("Shop %s link state: %s", status.shop_domain, status.state.value)


async def show_status(shop: str):
    async with async_session_factory() as session:
        status = await get_shop_link_status(session, shop)
        logger.info(
            "Shop %s: state=%s identity=%s label=%s",
            status.shop_domain, status.state.value, status.identity_token, status.label,
        )


async def main():
    parser = argparse.ArgumentParser(description="Manage identity bindings and shop links")
    parser.add_argument("identity_token", nargs="?", help="Public identity token (pixel ID)")
    parser.add_argument("--label")
    parser.add_argument("--credential", help="Forwarding credential; pass an empty string to clear it")
    parser.add_argument("--shop", help="Storefront domain to link to the identity token")
    parser.add_argument("--status", metavar="SHOP", help="Only report the link state of a storefront")
    args = parser.parse_args()

    try:
        if args.status:
            await show_status(args.status)
        elif args.identity_token:
            await register(args.identity_token, args.label, args.credential, args.shop)
        else:
            parser.error("identity_token or --status is required")
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
