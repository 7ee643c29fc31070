"""
Security helpers shared by routes and services
"""

from functools import lru_cache
from typing import Optional

from fastapi import Depends

from .config import Settings, get_settings
from .utils.token_cipher import TokenCipher

MASK = "****"


def mask_identifier(value: Optional[str]) -> str:
    """Mask an identifier for logging, showing only the first 2 and last 2 characters"""
    if not value:
        return MASK
    value = str(value)
    if len(value) <= 4:
        return MASK  # Always mask short values
    return f"{value[:2]}{MASK}{value[-2:]}"


@lru_cache(maxsize=4)
def _cipher_for(passphrase: Optional[str]) -> TokenCipher:
    return TokenCipher(passphrase)


def get_token_cipher(settings: Settings = Depends(get_settings)) -> TokenCipher:
    """Token cipher built from TOKEN_ENCRYPTION_KEY (raises ConfigurationError if unset)"""
    return _cipher_for(settings.token_encryption_key)
