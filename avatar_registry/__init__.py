"""
Avatar Registry

Version: 1.0.0

A permissioned registry mapping each identity ("avatar") to a single 32-byte
metadata digest, such as the sha2-256 digest behind an IPFS CIDv0.

Two write paths, both checked against an external membership oracle:
- self_update:  a recognized member sets its own digest
- batch_update: the seeder sets digests for many members, all-or-nothing

The seeder may renounce its role; renunciation is permanent.

Usage:
    from avatar_registry import (
        AvatarRegistry,
        StaticMembershipOracle,
        InvalidMember,
    )

    oracle = StaticMembershipOracle.from_file("membership/snapshot.json")
    registry = AvatarRegistry(oracle, seeder="0x5eed...")

    try:
        registry.self_update(caller, digest)
    except InvalidMember:
        ...  # registry unchanged

    registry.get_digest(caller)   # zero digest if never set
"""

__version__ = "1.0.0"
__license__ = "Apache-2.0"

# Types
from .types import (
    Identity,
    Digest,
    IDENTITY_SIZE,
    DIGEST_SIZE,
    ZERO_IDENTITY,
    ZERO_DIGEST,
    to_identity,
    to_digest,
    identity_hex,
    digest_hex,
    is_zero_digest,
)

# Errors
from .errors import (
    RegistryError,
    InvalidMember,
    UnauthorizedSeeder,
    LengthMismatch,
    OracleUnavailable,
)

# Membership oracle
from .membership import (
    MembershipOracle,
    StaticMembershipOracle,
    HttpMembershipOracle,
    OpenMembershipOracle,
    is_recognized_member,
)

# Events
from .events import MetadataDigestUpdated, InMemoryEventLog

# Registry
from .store import RegistryStore, InMemoryRegistryStore
from .registry import AvatarRegistry

# Encoding
from .encoding import digest_to_cid, cid_to_digest, cid_or_none

# Caller proofs
from .signing import CallerKey, sign_request, verify_caller_proof, request_hash


__all__ = [
    "__version__",

    # Types
    "Identity",
    "Digest",
    "IDENTITY_SIZE",
    "DIGEST_SIZE",
    "ZERO_IDENTITY",
    "ZERO_DIGEST",
    "to_identity",
    "to_digest",
    "identity_hex",
    "digest_hex",
    "is_zero_digest",

    # Errors
    "RegistryError",
    "InvalidMember",
    "UnauthorizedSeeder",
    "LengthMismatch",
    "OracleUnavailable",

    # Membership
    "MembershipOracle",
    "StaticMembershipOracle",
    "HttpMembershipOracle",
    "OpenMembershipOracle",
    "is_recognized_member",

    # Events
    "MetadataDigestUpdated",
    "InMemoryEventLog",

    # Registry
    "RegistryStore",
    "InMemoryRegistryStore",
    "AvatarRegistry",

    # Encoding
    "digest_to_cid",
    "cid_to_digest",
    "cid_or_none",

    # Caller proofs
    "CallerKey",
    "sign_request",
    "verify_caller_proof",
    "request_hash",
]
