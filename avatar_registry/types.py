"""
Avatar Registry value types.

Identities are 20-byte address-like values, digests are 32-byte opaque
fingerprints. Both travel as raw bytes inside the registry and as
0x-prefixed lowercase hex at the edges.
"""

import re
from typing import Union

IDENTITY_SIZE = 20
DIGEST_SIZE = 32

ZERO_IDENTITY = bytes(IDENTITY_SIZE)
ZERO_DIGEST = bytes(DIGEST_SIZE)

# Type aliases
Identity = bytes
Digest = bytes

HEX_PATTERN = re.compile(r'^(0[xX])?[a-fA-F0-9]*$')


def _from_hex(value: str, size: int, kind: str) -> bytes:
    if not HEX_PATTERN.match(value):
        raise ValueError(f"Invalid {kind} '{value}': must be hexadecimal")
    raw = value[2:] if value[:2].lower() == "0x" else value
    if len(raw) != size * 2:
        raise ValueError(f"Invalid {kind} '{value}': must be {size} bytes")
    return bytes.fromhex(raw)


def to_identity(value: Union[bytes, str]) -> Identity:
    """
    Normalize an identity given as raw bytes or hex text.

    Raises:
        ValueError: If the value is not exactly 20 bytes
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != IDENTITY_SIZE:
            raise ValueError(f"Invalid identity: must be {IDENTITY_SIZE} bytes, got {len(value)}")
        return bytes(value)
    if isinstance(value, str):
        return _from_hex(value.strip(), IDENTITY_SIZE, "identity")
    raise ValueError(f"Invalid identity type: {type(value).__name__}")


def to_digest(value: Union[bytes, str]) -> Digest:
    """
    Normalize a digest given as raw bytes or hex text.

    Raises:
        ValueError: If the value is not exactly 32 bytes
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != DIGEST_SIZE:
            raise ValueError(f"Invalid digest: must be {DIGEST_SIZE} bytes, got {len(value)}")
        return bytes(value)
    if isinstance(value, str):
        return _from_hex(value.strip(), DIGEST_SIZE, "digest")
    raise ValueError(f"Invalid digest type: {type(value).__name__}")


def identity_hex(identity: Identity) -> str:
    return "0x" + identity.hex()


def digest_hex(digest: Digest) -> str:
    return "0x" + digest.hex()


def is_zero_digest(digest: Digest) -> bool:
    """The zero digest means "no entry", whether never set or set to zero."""
    return digest == ZERO_DIGEST
