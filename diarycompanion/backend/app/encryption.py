from __future__ import annotations

import base64
import json
import os
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

ENVELOPE_VERSION = 1
SALT_BYTES = 16
IV_BYTES = 12
KEY_BYTES = 32


class DecryptionError(ValueError):
    pass


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(value: str) -> bytes:
    return base64.b64decode(value.encode("ascii"), validate=True)


class EncryptionService:
    """AES-256-GCM over JSON values with a PBKDF2-SHA256 key per record.

    Every call to ``encrypt_json`` draws a fresh salt and IV, so equal values
    never produce equal ciphertexts.
    """

    def __init__(self, password: str, iterations: int = 100_000) -> None:
        if not password:
            raise ValueError("Encryption password must not be empty")
        self._password = password.encode("utf-8")
        self.iterations = iterations

    def derive_key(self, salt: bytes) -> bytes:
        kdf = PBKDF2HMAC(algorithm=hashes.SHA256(), length=KEY_BYTES, salt=salt, iterations=self.iterations)
        return kdf.derive(self._password)

    def encrypt_json(self, value: Any) -> str:
        salt = os.urandom(SALT_BYTES)
        iv = os.urandom(IV_BYTES)
        plaintext = json.dumps(value, separators=(",", ":")).encode("utf-8")
        ciphertext = AESGCM(self.derive_key(salt)).encrypt(iv, plaintext, None)
        return json.dumps(
            {"data": _b64(ciphertext), "iv": _b64(iv), "salt": _b64(salt), "version": ENVELOPE_VERSION}
        )

    def decrypt_json(self, token: str) -> Any:
        try:
            envelope = json.loads(token)
            ciphertext = _unb64(envelope["data"])
            iv = _unb64(envelope["iv"])
            salt = _unb64(envelope["salt"])
        except (ValueError, KeyError, TypeError) as exc:
            raise DecryptionError("Encrypted payload is not a valid envelope") from exc
        if envelope.get("version") != ENVELOPE_VERSION:
            raise DecryptionError(f"Unsupported envelope version: {envelope.get('version')!r}")
        try:
            plaintext = AESGCM(self.derive_key(salt)).decrypt(iv, ciphertext, None)
        except (InvalidTag, ValueError) as exc:
            raise DecryptionError("Encrypted payload failed authentication") from exc
        try:
            return json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise DecryptionError("Decrypted payload is not JSON") from exc
