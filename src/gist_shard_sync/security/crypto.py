"""AES-256-GCM crypto provider.

Payloads are ``base64(iv):base64(ciphertext)`` with a 12-byte random IV.
The key is derived from the vault password with PBKDF2-HMAC-SHA256 over a
fixed salt, so every client holding the same password can read the same
documents.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from gist_shard_sync.exceptions import AuthRequiredError

logger = logging.getLogger(__name__)

SALT = b"Nexus_Security_Salt_v1"
ITERATIONS = 100_000
KEY_BYTES = 32
IV_BYTES = 12


def derive_key(password: str) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_BYTES,
        salt=SALT,
        iterations=ITERATIONS,
    )
    return kdf.derive(password.encode("utf-8"))


class AesGcmCryptoProvider:
    """``CryptoProvider`` holding at most one derived key in memory."""

    def __init__(self, password: str | None = None) -> None:
        self._aes: AESGCM | None = None
        if password:
            self.set_password(password)

    def has_key(self) -> bool:
        return self._aes is not None

    def set_password(self, password: str) -> None:
        self._aes = AESGCM(derive_key(password))

    def clear(self) -> None:
        self._aes = None

    def _cipher(self) -> AESGCM:
        if self._aes is None:
            raise AuthRequiredError("Vault password not set")
        return self._aes

    def encrypt(self, plaintext: str) -> str:
        aes = self._cipher()
        iv = os.urandom(IV_BYTES)
        ciphertext = aes.encrypt(iv, plaintext.encode("utf-8"), None)
        return (
            f"{base64.b64encode(iv).decode('ascii')}:"
            f"{base64.b64encode(ciphertext).decode('ascii')}"
        )

    def decrypt(self, payload: str) -> str:
        """Decrypt a ``iv:ciphertext`` payload.

        Raises:
            AuthRequiredError: If no key is set.
            ValueError: If the payload is malformed or the key is wrong.
        """
        aes = self._cipher()
        parts = payload.split(":")
        if len(parts) != 2:
            raise ValueError("Invalid encrypted format")
        try:
            iv = base64.b64decode(parts[0], validate=True)
            ciphertext = base64.b64decode(parts[1], validate=True)
        except binascii.Error as exc:
            raise ValueError("Invalid encrypted format") from exc
        try:
            return aes.decrypt(iv, ciphertext, None).decode("utf-8")
        except (InvalidTag, ValueError) as exc:
            raise ValueError("Decryption failed. Wrong password?") from exc
