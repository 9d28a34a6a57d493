"""Field-level encryption for data at rest.

Dream descriptions are stored as Fernet tokens (AES-128-CBC + HMAC-SHA256).
"""

import base64
import binascii
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from dreamjournal.app.core.config import settings
from dreamjournal.app.core.logging import get_logger
from dreamjournal.app.exceptions import ConfigurationError

logger = get_logger(__name__)

_FERNET_VERSION = 0x80
# version (1) + timestamp (8) + iv (16) + one cipher block (16) + hmac (32)
_MIN_TOKEN_BYTES = 73
_KDF_SALT = b"dreamjournal_field_encryption_v1"


@lru_cache(maxsize=4)
def _build_cipher(key: str) -> Fernet:
    """Build a Fernet cipher from a Fernet key or a passphrase."""
    try:
        if len(base64.urlsafe_b64decode(key.encode())) == 32:
            return Fernet(key.encode())
    except (binascii.Error, ValueError):
        pass

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=32,
        salt=_KDF_SALT,
        iterations=100000,
    )
    return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


def get_cipher(key: str | None = None) -> Fernet:
    """Get the cipher for the configured ENCRYPTION_KEY.

    Raises:
        ConfigurationError: If no encryption key is configured
    """
    key = key if key is not None else settings.encryption_key
    if not key:
        raise ConfigurationError("ENCRYPTION_KEY environment variable is required")
    return _build_cipher(key)


def encrypt_text(text: str, cipher: Fernet | None = None) -> str:
    """Encrypt text for storage.

    Args:
        text: The plain text
        cipher: Optional Fernet instance (for testing)

    Returns:
        Fernet token as a URL-safe base64 string
    """
    if cipher is None:
        cipher = get_cipher()
    return cipher.encrypt(text.encode("utf-8")).decode("ascii")


def decrypt_text(token: str, cipher: Fernet | None = None) -> str:
    """Decrypt a token produced by encrypt_text.

    Raises:
        cryptography.fernet.InvalidToken: If the token is corrupt or was
            encrypted with another key
    """
    if cipher is None:
        cipher = get_cipher()
    return cipher.decrypt(token.encode("ascii")).decode("utf-8")


def safe_decrypt(token: str, cipher: Fernet | None = None) -> str:
    """Decrypt, returning the input unchanged when decryption fails."""
    try:
        return decrypt_text(token, cipher)
    except (InvalidToken, UnicodeError) as e:
        logger.error(f"Decryption failed: {type(e).__name__}")
        return token


def is_encrypted(data: str) -> bool:
    """Probe whether a stored value looks like a Fernet token.

    This is a structural check only; it does not prove the token decrypts.
    """
    if not data:
        return False
    try:
        raw = base64.urlsafe_b64decode(data.encode("ascii"))
    except (binascii.Error, ValueError, UnicodeError):
        return False
    return len(raw) >= _MIN_TOKEN_BYTES and raw[0] == _FERNET_VERSION


def generate_encryption_key() -> str:
    """Generate a new encryption key for .env file.

    Run: python -m dreamjournal.app.core.security
    """
    return Fernet.generate_key().decode()


if __name__ == "__main__":
    print(f"ENCRYPTION_KEY={generate_encryption_key()}")
