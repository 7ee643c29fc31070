"""
OAuth token encryption for the Google Calendar integration

AES-256-GCM with a key derived per record (PBKDF2-HMAC-SHA256, random 16-byte salt).

Stored format:  base64(salt[16] || iv[12] || ciphertext+tag)
Legacy format:  base64(iv[12] || ciphertext+tag), key derived from one fixed salt

Legacy values are still readable so existing rows keep working; they are upgraded
to the salted format the first time they are decrypted.
"""

import base64
import binascii
import logging
import os
from typing import NamedTuple, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

logger = logging.getLogger(__name__)

SALT_LENGTH = 16
IV_LENGTH = 12  # 96 bits for GCM
TAG_LENGTH = 16  # 128 bits
KEY_LENGTH = 32  # AES-256
PBKDF2_ITERATIONS = 100000

# Shared by every row written before per-record salts; read-only
LEGACY_SALT = b"lovable-oauth-tokens-v1"

MIN_ENCRYPTED_LENGTH = SALT_LENGTH + IV_LENGTH + TAG_LENGTH
MIN_LEGACY_LENGTH = IV_LENGTH + TAG_LENGTH


class TokenCipherError(Exception):
    """Base class for token encryption failures"""


class ConfigurationError(TokenCipherError):
    """Encryption passphrase is not configured"""


class AuthenticationError(TokenCipherError):
    """Ciphertext failed AES-GCM verification (tampered, wrong key or not a token)"""


class DecryptedToken(NamedTuple):
    plaintext: str
    legacy: bool


def _b64decode(value: str) -> Optional[bytes]:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError):
        return None


def is_encrypted(value: str) -> bool:
    """True when the decoded length fits the salted format (>= 44 bytes)"""
    decoded = _b64decode(value)
    return decoded is not None and len(decoded) >= MIN_ENCRYPTED_LENGTH


def is_legacy_encrypted(value: str) -> bool:
    """True when the decoded length only fits the legacy format ([28, 44) bytes)"""
    decoded = _b64decode(value)
    return decoded is not None and MIN_LEGACY_LENGTH <= len(decoded) < MIN_ENCRYPTED_LENGTH


class TokenCipher:
    """
    Encrypts and decrypts OAuth tokens with a passphrase-derived AES-256-GCM key.

    The passphrase is kept; derived keys are recomputed per call and never stored.
    """

    def __init__(self, passphrase: Optional[str]):
        if not passphrase:
            raise ConfigurationError("TOKEN_ENCRYPTION_KEY not configured")
        self._passphrase = passphrase.encode("utf-8")

    def _derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_LENGTH,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return kdf.derive(self._passphrase)

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a token with a fresh salt and IV.

        Returns:
            base64(salt || iv || ciphertext+tag)
        """
        salt = os.urandom(SALT_LENGTH)
        iv = os.urandom(IV_LENGTH)
        ciphertext = AESGCM(self._derive_key(salt)).encrypt(iv, plaintext.encode("utf-8"), None)
        return base64.b64encode(salt + iv + ciphertext).decode("ascii")

    def decrypt(self, encrypted_token: str) -> str:
        """Decrypt a salted token. Raises AuthenticationError on any verification failure."""
        data = _b64decode(encrypted_token)
        if data is None or len(data) < MIN_ENCRYPTED_LENGTH:
            raise AuthenticationError("Value is not a salted encrypted token")

        salt = data[:SALT_LENGTH]
        iv = data[SALT_LENGTH : SALT_LENGTH + IV_LENGTH]
        ciphertext = data[SALT_LENGTH + IV_LENGTH :]
        return self._open(self._derive_key(salt), iv, ciphertext)

    def decrypt_legacy(self, encrypted_token: str) -> str:
        """Decrypt a token written with the fixed legacy salt. Never used for writes."""
        data = _b64decode(encrypted_token)
        if data is None or len(data) < MIN_LEGACY_LENGTH:
            raise AuthenticationError("Value is not a legacy encrypted token")

        iv = data[:IV_LENGTH]
        ciphertext = data[IV_LENGTH:]
        return self._open(self._derive_key(LEGACY_SALT), iv, ciphertext)

    def decrypt_stored(self, encrypted_token: str) -> DecryptedToken:
        """
        Decrypt a stored value in either format.

        Length only hints at the format: a legacy token with a plaintext of 16+ bytes
        decodes to 44+ bytes, so the salted path falls back to the legacy one.

        Returns:
            DecryptedToken with legacy=True when the value should be re-encrypted
        """
        if is_encrypted(encrypted_token):
            try:
                return DecryptedToken(self.decrypt(encrypted_token), legacy=False)
            except AuthenticationError:
                logger.debug("Salted decrypt failed, trying legacy format")
            try:
                return DecryptedToken(self.decrypt_legacy(encrypted_token), legacy=True)
            except AuthenticationError:
                raise AuthenticationError("Token failed verification in both formats") from None

        if is_legacy_encrypted(encrypted_token):
            return DecryptedToken(self.decrypt_legacy(encrypted_token), legacy=True)

        raise AuthenticationError("Value is not an encrypted token")

    @staticmethod
    def _open(key: bytes, iv: bytes, ciphertext: bytes) -> str:
        try:
            plaintext = AESGCM(key).decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise AuthenticationError("Token failed authentication") from e
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise AuthenticationError("Token plaintext is not valid UTF-8") from e
