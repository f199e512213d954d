"""Encryption utilities for answers stored at rest.

Answers are serialized to JSON and sealed with AES-256-GCM under a fresh
96-bit nonce per record.  The stored value is a versioned JSON envelope::

    {"v": 1, "nonce": "<base64>", "ciphertext": "<base64>"}
"""

import base64
import binascii
import json
import os
from typing import Any, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

ENVELOPE_VERSION = 1
KEY_BYTES = 32
NONCE_BYTES = 12


class AnswerCipherError(ValueError):
    """Raised for bad keys, unknown envelope versions or tampered data."""


class AnswerCipher:
    """Key handle for sealing and opening answer envelopes."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_BYTES:
            raise AnswerCipherError(f"Answer encryption key must be {KEY_BYTES} bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def from_base64(cls, key_b64: str) -> "AnswerCipher":
        try:
            raw = base64.b64decode(key_b64, validate=True)
        except (binascii.Error, ValueError):
            raise AnswerCipherError("Answer encryption key is not valid base64")
        return cls(raw)

    @staticmethod
    def generate_key() -> str:
        return base64.b64encode(AESGCM.generate_key(bit_length=256)).decode("ascii")

    def encrypt(self, obj: Any) -> str:
        nonce = os.urandom(NONCE_BYTES)
        plaintext = json.dumps(obj, ensure_ascii=False).encode("utf-8")
        ciphertext = self._aead.encrypt(nonce, plaintext, None)
        return json.dumps({
            "v": ENVELOPE_VERSION,
            "nonce": base64.b64encode(nonce).decode("ascii"),
            "ciphertext": base64.b64encode(ciphertext).decode("ascii"),
        })

    def decrypt(self, envelope: str) -> Any:
        try:
            payload = json.loads(envelope)
        except (TypeError, json.JSONDecodeError):
            raise AnswerCipherError("Encrypted answers are not a valid envelope")
        if not isinstance(payload, dict):
            raise AnswerCipherError("Encrypted answers are not a valid envelope")
        if payload.get("v") != ENVELOPE_VERSION:
            raise AnswerCipherError(f"Unknown ciphertext version: {payload.get('v')!r}")
        try:
            nonce = base64.b64decode(payload["nonce"], validate=True)
            ciphertext = base64.b64decode(payload["ciphertext"], validate=True)
        except (KeyError, TypeError, binascii.Error, ValueError):
            raise AnswerCipherError("Encrypted answers are missing nonce or ciphertext")
        if len(nonce) != NONCE_BYTES:
            raise AnswerCipherError("Encrypted answers carry a nonce of the wrong size")
        try:
            plaintext = self._aead.decrypt(nonce, ciphertext, None)
        except InvalidTag:
            raise AnswerCipherError("Invalid or corrupted encrypted answers")
        return json.loads(plaintext.decode("utf-8"))


def cipher_from_env(var: str = "ANSWERS_ENC_KEY_BASE64") -> Optional[AnswerCipher]:
    """Build the key handle once at startup; ``None`` when no key is configured."""
    value = os.getenv(var, "")
    if not value:
        return None
    return AnswerCipher.from_base64(value)
