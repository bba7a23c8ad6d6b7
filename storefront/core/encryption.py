"""Encryption of gateway credentials at rest.

Midtrans server keys and Duitku API keys are stored as Fernet tokens. The
Fernet key is the SHA-256 of CREDENTIAL_ENCRYPTION_KEY, so rotating that
setting makes every stored credential read as missing until it is re-entered.
"""

import base64
import hashlib
import logging
from functools import lru_cache
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from storefront.core.config import settings

logger = logging.getLogger(__name__)


def _derive_key(key: str) -> bytes:
    """SHA-256 the configured secret into a urlsafe-base64 Fernet key."""
    return base64.urlsafe_b64encode(hashlib.sha256(key.encode()).digest())


@lru_cache(maxsize=1)
def get_fernet() -> Fernet:
    """Get a Fernet instance with the configured encryption key."""
    return Fernet(_derive_key(settings.CREDENTIAL_ENCRYPTION_KEY))


def encrypt_credential(plaintext: str) -> str:
    """Encrypt a gateway credential for storage.

    Raises:
        ValueError: If plaintext is empty; a blank key means "leave unchanged"
            to the admin service and must never reach the table
    """
    if not plaintext:
        raise ValueError("Cannot encrypt empty credential")
    return get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_credential(ciphertext: Optional[str]) -> Optional[str]:
    """Decrypt a gateway credential.

    Returns None when there is nothing to decrypt or when the ciphertext was
    produced with a different key; callers treat that as "not configured".
    """
    if not ciphertext:
        return None
    try:
        return get_fernet().decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        logger.warning("Stored credential could not be decrypted with the current key")
        return None


def mask_credential(value: Optional[str]) -> str:
    """Mask a credential for display, keeping the last four characters."""
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    return "*" * (len(value) - 4) + value[-4:]
