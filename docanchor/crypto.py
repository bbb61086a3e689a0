"""
Client-side encryption for documents before they leave the machine.

- Cipher: AES-256-GCM (`cryptography` package), 96-bit random nonce per call
- Key/IV transport: standard base64 text, suitable for a user-kept key file

The key is generated and held by the encrypting client only. Neither the
key nor the plaintext is ever sent to the storage network or the API server;
only the encoded IV travels with the upload metadata.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from docanchor import KEY_SIZE, NONCE_SIZE, TAG_SIZE


class AuthenticationFailure(ValueError):
    """Ciphertext, tag, key or nonce did not verify. Never returns partial plaintext."""


@dataclass(frozen=True)
class EncryptedPayload:
    """AES-256-GCM output bound to exactly one (key, nonce) pair.

    Attributes:
        ciphertext: Encrypted bytes with the 16-byte GCM tag appended.
    """

    ciphertext: bytes

    @property
    def body(self) -> bytes:
        return self.ciphertext[:-TAG_SIZE]

    @property
    def tag(self) -> bytes:
        return self.ciphertext[-TAG_SIZE:]

    def to_bytes(self) -> bytes:
        """Raw blob as uploaded to storage."""
        return self.ciphertext

    @classmethod
    def from_bytes(cls, data: bytes) -> EncryptedPayload:
        if len(data) < TAG_SIZE:
            raise ValueError("Encrypted payload too short")
        return cls(ciphertext=bytes(data))


def generate_key() -> bytes:
    """Generate a fresh 256-bit AES key from the OS CSPRNG."""
    return AESGCM.generate_key(bit_length=KEY_SIZE * 8)


def encrypt(
    plaintext: bytes,
    key: bytes | None = None,
) -> tuple[EncryptedPayload, bytes, bytes]:
    """Encrypt bytes with AES-256-GCM.

    A new random nonce is drawn on every call; nonces are never derived or
    reused. If no key is given a new one is generated.

    Returns:
        (payload, key, nonce)
    """
    if key is None:
        key = generate_key()
    _check_key(key)

    nonce = os.urandom(NONCE_SIZE)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext, None)
    return EncryptedPayload(ciphertext=ciphertext), key, nonce


def decrypt(payload: EncryptedPayload, key: bytes, nonce: bytes) -> bytes:
    """Decrypt a payload. Fails closed.

    Raises:
        AuthenticationFailure: tag mismatch (tampered data, wrong key or nonce).
    """
    _check_key(key)
    if len(nonce) != NONCE_SIZE:
        raise AuthenticationFailure(f"Nonce must be {NONCE_SIZE} bytes")
    try:
        return AESGCM(key).decrypt(nonce, payload.ciphertext, None)
    except InvalidTag:
        raise AuthenticationFailure(
            "Decryption failed — wrong key or tampered ciphertext"
        ) from None


def encrypt_file(path: str | Path, key: bytes | None = None) -> tuple[EncryptedPayload, bytes, bytes]:
    """Read a file and encrypt its contents."""
    return encrypt(Path(path).read_bytes(), key)


def _check_key(key: bytes) -> None:
    if len(key) != KEY_SIZE:
        raise AuthenticationFailure(f"Key must be {KEY_SIZE} bytes")


# ---------------------------------------------------------------------------
# Text encodings
# ---------------------------------------------------------------------------

def _b64encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _b64decode(text: str, size: int, what: str) -> bytes:
    try:
        raw = base64.b64decode(text.strip(), validate=True)
    except (binascii.Error, ValueError, AttributeError) as e:
        raise ValueError(f"Invalid {what} encoding: {e}") from e
    if len(raw) != size:
        raise ValueError(f"{what.capitalize()} must decode to {size} bytes, got {len(raw)}")
    return raw


def encode_key(key: bytes) -> str:
    return _b64encode(key)


def decode_key(text: str) -> bytes:
    return _b64decode(text, KEY_SIZE, "key")


def encode_nonce(nonce: bytes) -> str:
    return _b64encode(nonce)


def decode_nonce(text: str) -> bytes:
    return _b64decode(text, NONCE_SIZE, "nonce")


# ---------------------------------------------------------------------------
# Key file
# ---------------------------------------------------------------------------

def write_key_file(
    path: str | Path,
    key: bytes,
    nonce: bytes,
    cid: str | None = None,
    filename: str | None = None,
) -> Path:
    """Write the encoded key and IV to a JSON file readable by the owner only."""
    path = Path(path)
    data = {"key": encode_key(key), "iv": encode_nonce(nonce)}
    if cid:
        data["cid"] = cid
    if filename:
        data["filename"] = filename

    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    return path


def read_key_file(path: str | Path) -> dict:
    """Read a key file. Returns a dict with decoded ``key`` and ``iv`` bytes."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        raise ValueError(f"Cannot read key file {path}: {e}") from e
    if not isinstance(data, dict) or "key" not in data or "iv" not in data:
        raise ValueError(f"Key file {path} must contain 'key' and 'iv'")

    result = dict(data)
    result["key"] = decode_key(data["key"])
    result["iv"] = decode_nonce(data["iv"])
    return result
