"""
Credential vault for third-party tokens stored at rest.

AES-256-GCM with a fresh 96-bit nonce per call. The nonce is prepended to
the ciphertext (tag included) and the whole blob is base64 encoded.

The key is process-wide, read-only state: call init_token_processor() once
at startup (API lifespan, worker main) and hand the returned TokenProcessor
to the components that need it.
"""

import base64
import binascii
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from app.core.config import settings

NONCE_SIZE = 12
KEY_SIZE = 32


class DecryptionError(Exception):
    """Ciphertext was tampered with, truncated, or encrypted under another key"""


def load_key(encoded_key: Optional[str]) -> bytes:
    """
    Decode a base64 encoded 256-bit key.

    Raises:
        ValueError: If the key is missing, not base64 or not 32 bytes
    """
    if not encoded_key:
        raise ValueError("ENCRYPTION_KEY not configured")
    try:
        key = base64.b64decode(encoded_key, validate=True)
    except (binascii.Error, ValueError) as err:
        raise ValueError(f"ENCRYPTION_KEY is not valid base64: {err}") from err
    if len(key) != KEY_SIZE:
        raise ValueError(f"ENCRYPTION_KEY must decode to {KEY_SIZE} bytes")
    return key


def encrypt_data(plaintext: str, key: bytes) -> str:
    """
    Encrypt a string and return base64(nonce || ciphertext || tag).

    Args:
        plaintext: Value to encrypt
        key: 32 byte AES key

    Returns:
        str: Base64 blob safe to store in a text column
    """
    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode("utf-8"), None)
    return base64.b64encode(nonce + ciphertext).decode("ascii")


def decrypt_data(blob: str, key: bytes) -> str:
    """
    Decrypt a blob produced by encrypt_data.

    Args:
        blob: Base64 blob with the nonce in the first 12 bytes
        key: 32 byte AES key

    Returns:
        str: Decrypted plain text

    Raises:
        DecryptionError: On tamper, wrong key or malformed input
    """
    try:
        raw = base64.b64decode(blob, validate=True)
    except (binascii.Error, ValueError, TypeError) as err:
        raise DecryptionError("Encrypted value is not valid base64") from err

    if len(raw) <= NONCE_SIZE:
        raise DecryptionError("Encrypted value is too short")

    nonce, ciphertext = raw[:NONCE_SIZE], raw[NONCE_SIZE:]
    try:
        plaintext = AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as err:
        raise DecryptionError("Encrypted value failed authentication") from err
    return plaintext.decode("utf-8")


class TokenProcessor:
    """
    Token encryption and decryption bound to a single key
    """

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Encryption key must be {KEY_SIZE} bytes")
        self._key = key

    def encrypt(self, token: str) -> str:
        return encrypt_data(token, self._key)

    def decrypt(self, encrypted_token: str) -> str:
        return decrypt_data(encrypted_token, self._key)

    def __repr__(self) -> str:
        return "TokenProcessor(key=***)"


_token_processor: Optional[TokenProcessor] = None


def init_token_processor(encoded_key: Optional[str] = None) -> TokenProcessor:
    """
    Initialize the process-wide token processor.

    Idempotent: a second call returns the existing instance. Pass encoded_key
    to override settings.ENCRYPTION_KEY (used by tests and tooling).
    """
    global _token_processor
    if _token_processor is None:
        _token_processor = TokenProcessor(
            load_key(encoded_key or settings.ENCRYPTION_KEY)
        )
    return _token_processor


def get_token_processor() -> TokenProcessor:
    """
    Return the initialized token processor.

    Also usable as a FastAPI dependency.

    Raises:
        RuntimeError: If init_token_processor() has not run
    """
    if _token_processor is None:
        raise RuntimeError("Token processor used before init_token_processor()")
    return _token_processor
