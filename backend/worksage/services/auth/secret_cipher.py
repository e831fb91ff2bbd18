"""AES-256-GCM encryption for TOTP secrets at rest."""

import hashlib
import logging
import os
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

logger = logging.getLogger(__name__)

IV_BYTES = 12
TAG_BYTES = 16


class SecretDecryptionError(Exception):
    """Envelope could not be authenticated or parsed."""


@dataclass(frozen=True)
class SecretEnvelope:
    """Hex-encoded ciphertext, IV and GCM tag.

    ``issued_at`` (epoch milliseconds) is set only on enrollment envelopes
    handed to a client, where it is part of the associated data.
    """

    ciphertext: str
    iv: str
    tag: str
    issued_at: int | None = None


def derive_key(key_material: str) -> bytes:
    """Turn configured key material into a 32-byte AES key.

    A 64-character hex string is used as-is; anything else is hashed with SHA-256.
    """
    if len(key_material) == 64:
        try:
            return bytes.fromhex(key_material)
        except ValueError:
            pass
    return hashlib.sha256(key_material.encode("utf-8")).digest()


class SecretCipher:
    """Encrypts short secrets with a fresh IV per call.

    ``associated_data`` is authenticated but not encrypted; decrypt must be
    given the same bytes or the envelope is rejected.
    """

    def __init__(self, key_material: str) -> None:
        if not key_material:
            raise ValueError("MFA encryption key not configured")
        self._aesgcm = AESGCM(derive_key(key_material))

    def encrypt(self, plaintext: str, associated_data: bytes | None = None) -> SecretEnvelope:
        iv = os.urandom(IV_BYTES)
        sealed = self._aesgcm.encrypt(iv, plaintext.encode("utf-8"), associated_data)
        # AESGCM appends the tag to the ciphertext
        return SecretEnvelope(
            ciphertext=sealed[:-TAG_BYTES].hex(),
            iv=iv.hex(),
            tag=sealed[-TAG_BYTES:].hex(),
        )

    def decrypt(self, envelope: SecretEnvelope, associated_data: bytes | None = None) -> str:
        """Decrypt an envelope, raising SecretDecryptionError on any tampering."""
        try:
            iv = bytes.fromhex(envelope.iv)
            sealed = bytes.fromhex(envelope.ciphertext) + bytes.fromhex(envelope.tag)
        except (TypeError, ValueError) as e:
            raise SecretDecryptionError("Malformed secret envelope") from e
        if len(iv) != IV_BYTES or len(bytes.fromhex(envelope.tag)) != TAG_BYTES:
            raise SecretDecryptionError("Malformed secret envelope")

        try:
            plaintext = self._aesgcm.decrypt(iv, sealed, associated_data)
        except InvalidTag as e:
            logger.warning("MFA secret failed authentication")
            raise SecretDecryptionError("Secret envelope failed authentication") from e
        return plaintext.decode("utf-8")
