"""
AES-256-GCM sealing of clean uploads.

Every call to seal() mints a fresh key, so a nonce is never reused under
the same key. The key is handed back to the caller and not kept here.
"""

from dataclasses import dataclass
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from scanvault.errors import CipherError

KEY_BITS = 256
NONCE_BYTES = 12
TAG_BYTES = 16


@dataclass(frozen=True)
class SealedContent:
    ciphertext: bytes
    nonce: bytes
    key: bytes

    @property
    def blob(self) -> bytes:
        """Storage layout: nonce || ciphertext (ciphertext includes the GCM tag)."""
        return self.nonce + self.ciphertext

    def __repr__(self) -> str:
        return f"SealedContent(ciphertext=<{len(self.ciphertext)} bytes>, nonce={self.nonce.hex()}, key=<redacted>)"


def seal(content: bytes) -> SealedContent:
    try:
        key = AESGCM.generate_key(bit_length=KEY_BITS)
        nonce = os.urandom(NONCE_BYTES)
        ciphertext = AESGCM(key).encrypt(nonce, content, None)
    except Exception as exc:
        raise CipherError(f"Encryption failed: {exc.__class__.__name__}") from exc
    return SealedContent(ciphertext=ciphertext, nonce=nonce, key=key)


def open_sealed(key: bytes | str, blob: bytes) -> bytes:
    """Reverse seal(). key may be raw bytes or the hex string returned to the client."""
    if isinstance(key, str):
        try:
            key = bytes.fromhex(key)
        except ValueError as exc:
            raise CipherError("Key is not valid hex") from exc
    if len(key) != KEY_BITS // 8:
        raise CipherError("Key must be 256 bits")
    if len(blob) < NONCE_BYTES + TAG_BYTES:
        raise CipherError("Blob too short")

    nonce, ciphertext = blob[:NONCE_BYTES], blob[NONCE_BYTES:]
    try:
        return AESGCM(key).decrypt(nonce, ciphertext, None)
    except InvalidTag as exc:
        raise CipherError("Integrity check failed") from exc
