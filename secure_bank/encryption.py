"""
PII Encryption at Rest Module

Field-level AES-256-GCM encryption for SSNs, a keyed blind index for
equality lookups on encrypted values, and secure account-number generation.
"""

import hashlib
import hmac
import logging
import os
import secrets
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import BankConfig
from .errors import InternalError

logger = logging.getLogger(__name__)

KEY_SIZE = 32      # AES-256 / HMAC-SHA256 key, bytes
NONCE_SIZE = 16    # Fresh per encrypt call
TAG_SIZE = 16      # GCM authentication tag
ENVELOPE_SEPARATOR = ":"

# Development-only fallbacks; each key derives from its own label
FALLBACK_ENCRYPTION_LABEL = b"secure-bank-fallback-key"
FALLBACK_INDEX_LABEL = b"secure-bank-fallback-ssn-index-key"

ACCOUNT_NUMBER_DIGITS = 10


class KeyConfigurationError(InternalError):
    """Key material missing or malformed"""
    default_message = "Encryption keys are not configured"


class DecryptionFormatError(InternalError):
    """Ciphertext envelope is not nonce:tag:ciphertext hex"""
    default_message = "Invalid encrypted text format"


class DecryptionAuthenticationError(InternalError):
    """Authentication tag did not verify (tampered data or wrong key)"""
    default_message = "Encrypted data failed authentication"


def load_key(hex_value: Optional[str], name: str, fallback_label: bytes, production: bool) -> bytes:
    """
    Decode a 32-byte hex key.

    When the key is absent, development environments get a derived fallback
    and production environments fail closed.
    """
    if not hex_value:
        if production:
            raise KeyConfigurationError(f"{name} must be set in production")
        logger.warning(f"{name} not set - using development fallback key")
        return hashlib.sha256(fallback_label).digest()

    try:
        key = bytes.fromhex(hex_value.strip())
    except ValueError:
        raise KeyConfigurationError(f"{name} must be a hex string")
    if len(key) != KEY_SIZE:
        raise KeyConfigurationError(f"{name} must be {KEY_SIZE} bytes ({KEY_SIZE * 2} hex characters)")
    return key


class FieldCipher:
    """AES-256-GCM encryption with a hex "nonce:tag:ciphertext" envelope"""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise KeyConfigurationError(f"Encryption key must be {KEY_SIZE} bytes")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        """Encrypt plaintext under a fresh random nonce"""
        nonce = os.urandom(NONCE_SIZE)
        sealed = self._aesgcm.encrypt(nonce, plaintext.encode('utf-8'), None)

        # cryptography appends the tag to the ciphertext
        ciphertext, tag = sealed[:-TAG_SIZE], sealed[-TAG_SIZE:]
        return ENVELOPE_SEPARATOR.join([nonce.hex(), tag.hex(), ciphertext.hex()])

    def decrypt(self, envelope: str) -> str:
        """Decrypt an envelope produced by encrypt()"""
        parts = envelope.split(ENVELOPE_SEPARATOR)
        if len(parts) != 3:
            raise DecryptionFormatError()

        try:
            nonce, tag, ciphertext = (bytes.fromhex(part) for part in parts)
        except ValueError:
            raise DecryptionFormatError()
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise DecryptionFormatError()

        try:
            plaintext = self._aesgcm.decrypt(nonce, ciphertext + tag, None)
        except InvalidTag:
            raise DecryptionAuthenticationError()
        return plaintext.decode('utf-8')


class BlindIndex:
    """Keyed HMAC-SHA256 used only for equality lookups on encrypted fields"""

    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise KeyConfigurationError(f"Index key must be {KEY_SIZE} bytes")
        self._key = key

    def hash(self, plaintext: str) -> str:
        return hmac.new(self._key, plaintext.encode('utf-8'), hashlib.sha256).hexdigest()


@dataclass
class CryptoService:
    """Cipher and blind index pair built from one configuration"""
    cipher: FieldCipher
    index: BlindIndex

    def encrypt(self, plaintext: str) -> str:
        return self.cipher.encrypt(plaintext)

    def decrypt(self, envelope: str) -> str:
        return self.cipher.decrypt(envelope)

    def hash(self, plaintext: str) -> str:
        return self.index.hash(plaintext)

    @classmethod
    def from_config(cls, config: BankConfig) -> 'CryptoService':
        """Load both keys; raises KeyConfigurationError in production if either is missing"""
        production = config.is_production
        encryption_key = load_key(config.encryption_key, "ENCRYPTION_KEY",
                                  FALLBACK_ENCRYPTION_LABEL, production)
        index_key = load_key(config.ssn_index_key, "SSN_INDEX_KEY",
                             FALLBACK_INDEX_LABEL, production)
        return cls(cipher=FieldCipher(encryption_key), index=BlindIndex(index_key))


def generate_account_number() -> str:
    """Uniform random 10-digit account number from the OS CSPRNG"""
    return str(secrets.randbelow(10 ** ACCOUNT_NUMBER_DIGITS)).zfill(ACCOUNT_NUMBER_DIGITS)
