"""Device credential encryption.

Stored router passwords are sealed with AES-256-GCM. Token format:
``enc:v1:<base64(nonce || ciphertext || tag)>``. Rows written before
encryption was introduced hold the bare password and are passed through.
"""

import base64
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..core.config import settings
from ..core.logging import get_logger

logger = get_logger(__name__)

TOKEN_PREFIX = "enc:v1:"


class CryptoService:
    """Encrypts and decrypts device credentials."""

    # 96-bit nonce as recommended for GCM
    NONCE_LENGTH = 12
    KDF_SALT = b"linkwatch-device-credentials"

    def __init__(self, key: str | None = None) -> None:
        raw_key = key or settings.credential_encryption_key
        kdf = Scrypt(salt=self.KDF_SALT, length=32, n=2**14, r=8, p=1)
        self._aead = AESGCM(kdf.derive(raw_key.encode()))

    def encrypt(self, plaintext: str) -> str:
        """Seal a credential into a storable token."""
        if not plaintext:
            return ""
        nonce = os.urandom(self.NONCE_LENGTH)
        sealed = self._aead.encrypt(nonce, plaintext.encode(), None)
        return TOKEN_PREFIX + base64.b64encode(nonce + sealed).decode()

    def decrypt(self, token: str | None) -> str:
        """Open a stored credential.

        Raises:
            ValueError: the token is malformed or was sealed with another key.
        """
        if not token:
            return ""
        if not token.startswith(TOKEN_PREFIX):
            return token
        try:
            blob = base64.b64decode(token[len(TOKEN_PREFIX):], validate=True)
            nonce, sealed = blob[: self.NONCE_LENGTH], blob[self.NONCE_LENGTH:]
            return self._aead.decrypt(nonce, sealed, None).decode()
        except (InvalidTag, ValueError) as e:
            logger.error("credential_decryption_failed", error=type(e).__name__)
            raise ValueError("Failed to decrypt credential") from e


# Singleton instance
_crypto_service: CryptoService | None = None


def get_crypto_service() -> CryptoService:
    """Get the crypto service singleton."""
    global _crypto_service
    if _crypto_service is None:
        _crypto_service = CryptoService()
    return _crypto_service
