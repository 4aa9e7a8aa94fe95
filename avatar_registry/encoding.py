"""
Digest <-> IPFS CIDv0 rendering.

A CIDv0 is the base58btc encoding of a sha2-256 multihash:

    0x12 (sha2-256) | 0x20 (32 bytes) | <32-byte digest>

The registry stores only the 32-byte digest; the two prefix bytes are
implied.
"""

from typing import Optional

import base58

from .types import DIGEST_SIZE, Digest, is_zero_digest, to_digest

SHA2_256_CODE = 0x12
MULTIHASH_PREFIX = bytes([SHA2_256_CODE, DIGEST_SIZE])


def digest_to_cid(digest: Digest) -> str:
    """Render a digest as a CIDv0 string ("Qm...")."""
    digest = to_digest(digest)
    return base58.b58encode(MULTIHASH_PREFIX + digest).decode('ascii')


def cid_to_digest(cid: str) -> Digest:
    """
    Extract the digest from a CIDv0 string.

    Raises:
        ValueError: If cid is not a base58 sha2-256 multihash
    """
    raw = base58.b58decode(cid.strip())
    if len(raw) != len(MULTIHASH_PREFIX) + DIGEST_SIZE or not raw.startswith(MULTIHASH_PREFIX):
        raise ValueError(f"Invalid CIDv0 '{cid}': not a sha2-256 multihash")
    return raw[len(MULTIHASH_PREFIX):]


def cid_or_none(digest: Digest) -> Optional[str]:
    """CID for a stored digest; None for the zero digest, which means no entry."""
    if is_zero_digest(digest):
        return None
    return digest_to_cid(digest)
