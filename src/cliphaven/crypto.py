"""End-to-end encryption for sync payloads (AES-256-GCM)."""

import base64
import binascii
import logging
import os
import secrets
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from cliphaven.errors import DecryptionError, EncryptionError

logger = logging.getLogger(__name__)

KEY_SIZE = 32
NONCE_SIZE = 12


class EncryptionService:
    def __init__(self, key: bytes):
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def generate(cls) -> "EncryptionService":
        return cls(AESGCM.generate_key(bit_length=KEY_SIZE * 8))

    @classmethod
    def load_or_create(cls, path: str | Path) -> "EncryptionService":
        """Load the key file at path, creating it with a fresh key if missing.

        Every device that syncs must share the same key file.
        """
        path = Path(path)
        if path.exists():
            try:
                key = base64.b64decode(path.read_text(encoding="ascii").strip(), validate=True)
            except (UnicodeDecodeError, binascii.Error) as exc:
                raise ValueError(f"Corrupt key file: {path}") from exc
            return cls(key)

        key = AESGCM.generate_key(bit_length=KEY_SIZE * 8)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w", encoding="ascii") as fh:
            fh.write(base64.b64encode(key).decode("ascii"))
        logger.info("Created new sync key at %s", path)
        return cls(key)

    def encrypt(self, data: bytes) -> tuple[bytes, bytes]:
        nonce = secrets.token_bytes(NONCE_SIZE)
        try:
            return self._aead.encrypt(nonce, data, None), nonce
        except (OverflowError, TypeError) as exc:
            raise EncryptionError() from exc

    def decrypt(self, ciphertext: bytes, nonce: bytes) -> bytes:
        try:
            return self._aead.decrypt(nonce, ciphertext, None)
        except (InvalidTag, ValueError, TypeError) as exc:
            raise DecryptionError() from exc
