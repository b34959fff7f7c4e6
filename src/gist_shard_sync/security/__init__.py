"""Encryption for secure documents."""

from .crypto import AesGcmCryptoProvider

__all__ = ["AesGcmCryptoProvider"]
