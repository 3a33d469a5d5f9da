"""SHA-256 and HMAC-SHA256 primitives behind a swappable backend."""

import hashlib
import hmac
from typing import Protocol

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac


class HashBackend(Protocol):
    def sha256(self, data: bytes) -> bytes: ...

    def hmac_sha256(self, key: bytes, msg: bytes) -> bytes: ...


class HashlibBackend:
    def sha256(self, data: bytes) -> bytes:
        return hashlib.sha256(data).digest()

    def hmac_sha256(self, key: bytes, msg: bytes) -> bytes:
        return hmac.new(key, msg, hashlib.sha256).digest()


class CryptographyBackend:
    """Same primitives computed by the ``cryptography`` package (OpenSSL)."""

    def sha256(self, data: bytes) -> bytes:
        digest = hashes.Hash(hashes.SHA256())
        digest.update(data)
        return digest.finalize()

    def hmac_sha256(self, key: bytes, msg: bytes) -> bytes:
        mac = crypto_hmac.HMAC(key, hashes.SHA256())
        mac.update(msg)
        return mac.finalize()


DEFAULT_BACKEND: HashBackend = HashlibBackend()


def sha256_hex(data: bytes, backend: HashBackend | None = None) -> str:
    return (backend or DEFAULT_BACKEND).sha256(data).hex()


def hmac_sha256(
    key: bytes, msg: str | bytes, backend: HashBackend | None = None
) -> bytes:
    if isinstance(msg, str):
        msg = msg.encode("utf-8")
    return (backend or DEFAULT_BACKEND).hmac_sha256(key, msg)
