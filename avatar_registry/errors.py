"""
Registry rejections.

Every error here is raised before any state is mutated: a caller that
catches one can rely on the registry being exactly as it was.
"""

from typing import Optional

from .types import Identity, identity_hex


class RegistryError(Exception):
    """Base class for all registry rejections."""

    code = "REGISTRY_ERROR"

    def __init__(self, message: str):
        self.message = message
        super().__init__(f"{self.code}: {message}")


class InvalidMember(RegistryError):
    """Raised when the membership oracle does not recognize an identity."""

    code = "INVALID_MEMBER"

    def __init__(self, identity: Identity):
        self.identity = identity
        super().__init__(f"{identity_hex(identity)} is not a recognized member")


class UnauthorizedSeeder(RegistryError):
    """Raised when the caller is not the current seeder (or there is none)."""

    code = "UNAUTHORIZED_SEEDER"

    def __init__(self, caller: Identity):
        self.caller = caller
        super().__init__(f"{identity_hex(caller)} is not the seeder")


class LengthMismatch(RegistryError):
    """Raised when batch identities and digests differ in length."""

    code = "LENGTH_MISMATCH"

    def __init__(self, identities_len: int, digests_len: int):
        self.identities_len = identities_len
        self.digests_len = digests_len
        super().__init__(f"{identities_len} identities but {digests_len} digests")


class OracleUnavailable(RegistryError):
    """Raised when the membership oracle cannot give an answer."""

    code = "ORACLE_UNAVAILABLE"

    def __init__(self, reason: str, identity: Optional[Identity] = None):
        self.identity = identity
        super().__init__(reason)
