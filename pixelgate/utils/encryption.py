"""
Protection for forwarding credentials.

Credentials are stored Fernet-encrypted with the configured ENCRYPTION_KEY and
decrypted only during identity resolution. Anything written to logs or to an
audit record's detail goes through mask_secret / redact_secret first.
"""
import logging
from typing import Any, Optional

logger = logging.getLogger(__name__)


def _get_fernet():
    """Get a Fernet cipher using the configured encryption key."""
    from cryptography.fernet import Fernet
    from pixelgate.config import get_settings
    settings = get_settings()

    key = settings.encryption_key
    if not key:
        logger.warning("ENCRYPTION_KEY not configured - storing credentials as-is")
        return None

    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_value(plaintext: Optional[str]) -> Optional[str]:
    """
    Encrypt a credential. Returns the Fernet token as a string.
    Falls back to storing plaintext if encryption key is not configured.
    """
    if not plaintext:
        return plaintext

    fernet = _get_fernet()
    if fernet is None:
        return plaintext

    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_value(encrypted: Optional[str]) -> Optional[str]:
    """
    Decrypt a credential. Values that are not valid Fernet tokens are
    returned as-is (bindings provisioned before a key was configured).
    """
    if not encrypted:
        return encrypted

    fernet = _get_fernet()
    if fernet is None:
        return encrypted

    from cryptography.fernet import InvalidToken
    try:
        return fernet.decrypt(encrypted.encode()).decode()
    except InvalidToken:
        return encrypted


def mask_secret(secret: Optional[str], visible: int = 4) -> Optional[str]:
    """'EAABsb...xyz9' style redaction: keep a short suffix for support lookups."""
    if not secret:
        return secret
    if len(secret) <= visible * 2:
        return "***"
    return f"{secret[:visible]}***{secret[-visible:]}"


def redact_secret(value: Any, secret: Optional[str]) -> Any:
    """Recursively replace every occurrence of `secret` inside strings, dicts and lists."""
    if not secret:
        return value
    if isinstance(value, str):
        return value.replace(secret, mask_secret(secret))
    if isinstance(value, dict):
        return {k: redact_secret(v, secret) for k, v in value.items()}
    if isinstance(value, list):
        return [redact_secret(v, secret) for v in value]
    return value
