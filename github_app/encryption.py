"""
Encryption of GitHub tokens at rest.

Uses Fernet from the ``cryptography`` library, keyed by
``config.token_encryption_key`` (env var: ``TOKEN_ENCRYPTION_KEY``).
Without a key, tokens are stored as plaintext and a warning is logged
once. Generate a key with::

    python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"
"""

from __future__ import annotations

import logging
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from config.settings import config

logger = logging.getLogger(__name__)

_fernet: Optional[Fernet] = None
_initialised = False


def _get_fernet() -> Optional[Fernet]:
    """Build the cipher on first use."""
    global _fernet, _initialised

    if _initialised:
        return _fernet
    _initialised = True

    key = config.token_encryption_key
    if not key:
        logger.warning(
            "TOKEN_ENCRYPTION_KEY not set — GitHub tokens will be stored as plaintext."
        )
        return None

    _fernet = Fernet(key.encode())
    logger.info("Token encryption enabled")
    return _fernet


def reset() -> None:
    """Drop the cached cipher so the next call re-reads the key."""
    global _fernet, _initialised
    _fernet = None
    _initialised = False


def encrypt_token(plaintext: str) -> str:
    fernet = _get_fernet()
    if fernet is None:
        return plaintext
    return fernet.encrypt(plaintext.encode()).decode()


def decrypt_token(ciphertext: str) -> str:
    """
    Decrypt a stored token.

    Values written before encryption was switched on are not valid Fernet
    tokens and are returned unchanged.
    """
    fernet = _get_fernet()
    if fernet is None:
        return ciphertext
    try:
        return fernet.decrypt(ciphertext.encode()).decode()
    except InvalidToken:
        return ciphertext
