# wg_busy/core/keys.py
"""
WireGuard key material

Curve25519 keys via `cryptography`, so no `wg` binary is needed to
create peers or to check that a public key belongs to a private key.
"""

import base64
import binascii
import secrets
from typing import Tuple

from cryptography.hazmat.primitives.asymmetric.x25519 import X25519PrivateKey

from .exceptions import KeyParseError

KEY_LENGTH = 32


def _encode(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def decode_key(key: str) -> bytes:
    """Decode a base64 WireGuard key, raising KeyParseError if malformed"""
    try:
        raw = base64.b64decode(key.strip(), validate=True)
    except (binascii.Error, ValueError) as e:
        raise KeyParseError(f"invalid base64 key: {e}") from e
    if len(raw) != KEY_LENGTH:
        raise KeyParseError(f"key must be {KEY_LENGTH} bytes, got {len(raw)}")
    return raw


def generate_private_key() -> str:
    return _encode(X25519PrivateKey.generate().private_bytes_raw())


def public_key_from_private(private_key: str) -> str:
    """Derive the base64 public key from a base64 private key"""
    priv = X25519PrivateKey.from_private_bytes(decode_key(private_key))
    return _encode(priv.public_key().public_bytes_raw())


def generate_keypair() -> Tuple[str, str]:
    """
    Returns (private_key, public_key)
    """
    priv = generate_private_key()
    return priv, public_key_from_private(priv)


def generate_preshared_key() -> str:
    return _encode(secrets.token_bytes(KEY_LENGTH))
