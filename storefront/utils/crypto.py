# storefront/utils/crypto.py
"""
Field-level encryption for customer PII stored on orders.

AES-256-GCM with a per-value PBKDF2-SHA256 key. Each ciphertext is
base64(salt[16] + iv[12] + ciphertext + tag[16]), so values are self-contained.
"""
import base64
import hmac
import logging
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
IV_LENGTH = 12
KEY_LENGTH = 32
ITERATIONS = 100_000


class EncryptionError(Exception):
    pass


def _derive_key(secret: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(secret.encode("utf-8"))


def encrypt(plaintext: str, encryption_key: str) -> str:
    if not plaintext:
        return ""
    salt = os.urandom(SALT_LENGTH)
    iv = os.urandom(IV_LENGTH)
    ciphertext = AESGCM(_derive_key(encryption_key, salt)).encrypt(iv, plaintext.encode("utf-8"), None)
    return base64.b64encode(salt + iv + ciphertext).decode("ascii")


def decrypt(token: str, encryption_key: str) -> str:
    if not token:
        return ""
    try:
        raw = base64.b64decode(token)
    except ValueError as e:
        raise EncryptionError("Malformed ciphertext") from e
    if len(raw) <= SALT_LENGTH + IV_LENGTH:
        raise EncryptionError("Malformed ciphertext")

    salt, iv, ciphertext = raw[:SALT_LENGTH], raw[SALT_LENGTH:SALT_LENGTH + IV_LENGTH], raw[SALT_LENGTH + IV_LENGTH:]
    try:
        plaintext = AESGCM(_derive_key(encryption_key, salt)).decrypt(iv, ciphertext, None)
    except InvalidTag as e:
        raise EncryptionError("Decryption failed") from e
    return plaintext.decode("utf-8")


def encrypt_field(value: Optional[str], encryption_key: str) -> Optional[str]:
    if not value:
        return None
    return encrypt(value, encryption_key)


def decrypt_field(value: Optional[str], encryption_key: str) -> Optional[str]:
    if not value:
        return None
    try:
        return decrypt(value, encryption_key)
    except EncryptionError:
        logger.warning("Could not decrypt stored field, returning it masked")
        return "***"


def timing_safe_equal(a: str, b: str) -> bool:
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
